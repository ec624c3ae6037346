"""Tests for the out-of-band runner trigger."""

import json

import httpx
import pytest
from pydantic import SecretStr

from calsync.errors import SyncValidationError, TransientProviderError
from calsync.services.trigger_gateway import TriggerGateway


class TestTriggerNow:
    @pytest.mark.asyncio
    async def test_posts_secret_and_batch_size(self, settings):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"processed": 4, "succeeded": 4, "failed": 0})

        gateway = TriggerGateway(settings, transport=httpx.MockTransport(handler))

        result = await gateway.trigger_now()

        assert result == {"ok": True, "processed": 4}
        assert str(seen[0].url) == settings.sync_runner_url
        assert seen[0].headers["X-Sync-Secret"] == "sync-secret"
        assert json.loads(seen[0].content) == {"limit": settings.trigger_batch_size}

    @pytest.mark.asyncio
    async def test_runner_error_is_transient(self, settings):
        gateway = TriggerGateway(settings, transport=httpx.MockTransport(lambda r: httpx.Response(500)))

        with pytest.raises(TransientProviderError):
            await gateway.trigger_now()

    @pytest.mark.asyncio
    async def test_unreachable_runner_is_transient(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        gateway = TriggerGateway(settings, transport=httpx.MockTransport(handler))

        with pytest.raises(TransientProviderError):
            await gateway.trigger_now()

    @pytest.mark.asyncio
    async def test_missing_secret(self, settings):
        settings.sync_runner_secret = SecretStr("")
        gateway = TriggerGateway(settings)

        with pytest.raises(SyncValidationError):
            await gateway.trigger_now()
