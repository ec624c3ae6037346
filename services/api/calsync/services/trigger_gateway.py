"""Out-of-band "run now" call to the job runner entrypoint."""

import logging

import httpx

from calsync.config import Settings
from calsync.errors import SyncValidationError, TransientProviderError

logger = logging.getLogger(__name__)


class TriggerGateway:
    """Asks the runner to drain a small batch immediately.

    Only shortens latency: without it jobs still run within one runner or
    scheduler interval.
    """

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        self._transport = transport

    async def trigger_now(self) -> dict:
        secret = self._settings.sync_runner_secret.get_secret_value()
        if not self._settings.sync_runner_url or not secret:
            raise SyncValidationError("sync runner URL or secret is not configured")

        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=self._settings.google_api_timeout_seconds,
            ) as client:
                response = await client.post(
                    self._settings.sync_runner_url,
                    headers={"X-Sync-Secret": secret},
                    json={"limit": self._settings.trigger_batch_size},
                )
        except httpx.HTTPError as exc:
            raise TransientProviderError(f"sync runner unreachable: {type(exc).__name__}") from exc

        if response.status_code != 200:
            logger.error("Sync runner returned %s", response.status_code)
            raise TransientProviderError(f"sync runner returned {response.status_code}", status=response.status_code)

        data = response.json()
        processed = int(data.get("processed", 0))
        logger.info("Triggered sync runner, processed=%d", processed)
        return {"ok": True, "processed": processed}
