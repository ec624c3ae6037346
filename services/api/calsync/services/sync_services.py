"""Wiring of the sync engine services around one set of repositories."""

from dataclasses import dataclass

import httpx

from calsync.config import Settings
from calsync.repositories import SyncRepositories
from calsync.services.calendar_upsert import CalendarUpsertEngine
from calsync.services.crypto_service import CryptoService, get_crypto_service
from calsync.services.google_calendar_client import CalendarClientFactory, default_client_factory
from calsync.services.job_queue import JobQueue
from calsync.services.job_runner import JobRunner
from calsync.services.scheduler import Scheduler
from calsync.services.token_manager import TokenManager
from calsync.services.watch_manager import WatchManager
from calsync.services.webhook_ingestor import WebhookIngestor


@dataclass
class SyncServices:
    repos: SyncRepositories
    tokens: TokenManager
    queue: JobQueue
    watches: WatchManager
    upserts: CalendarUpsertEngine
    ingestor: WebhookIngestor
    scheduler: Scheduler
    runner: JobRunner


def build_sync_services(
    settings: Settings,
    repos: SyncRepositories,
    *,
    crypto: CryptoService | None = None,
    client_factory: CalendarClientFactory | None = None,
    token_transport: httpx.AsyncBaseTransport | None = None,
) -> SyncServices:
    crypto = crypto or get_crypto_service(settings)
    client_factory = client_factory or default_client_factory(settings)
    tokens = TokenManager(settings, repos.credentials, crypto, transport=token_transport)
    queue = JobQueue(repos.jobs)
    watches = WatchManager(settings, repos, tokens, client_factory)
    upserts = CalendarUpsertEngine(settings, repos, tokens, client_factory)
    return SyncServices(
        repos=repos,
        tokens=tokens,
        queue=queue,
        watches=watches,
        upserts=upserts,
        ingestor=WebhookIngestor(repos, queue),
        scheduler=Scheduler(settings, repos, queue),
        runner=JobRunner(repos, queue, watches, upserts),
    )
