"""Service Wiring — builds the per-process object graph from Settings.

Invariants:
    - Exactly one queue, forwarder and scheduler per application instance
    - The scheduler's delivery hook marks quotes FORWARDED through its own DB session
    - Nothing here is module-level state: main.py's lifespan owns the container

Design Decisions:
    - Plain dataclass container on app.state over a DI framework: routes read it
      through one FastAPI dependency that tests can override
"""

import logging
from dataclasses import dataclass

from quotedesk.config import Settings
from quotedesk.core.fallback_queue import LocalFallbackQueue
from quotedesk.core.repository_protocols import KeyValueStorage
from quotedesk.infrastructure.database import DatabaseSessionManager
from quotedesk.infrastructure.downstream_client import DownstreamForwarder
from quotedesk.infrastructure.email_notifier import EmailNotifier, SmtpConfig
from quotedesk.infrastructure.key_value_storage import (
    JsonFileStorage, MemoryStorage,
)
from quotedesk.services.quote_intake import QuoteStatusUpdater
from quotedesk.services.retry_scheduler import RetryScheduler

logger = logging.getLogger(__name__)


@dataclass
class QuoteServices:
    settings: Settings
    db_manager: DatabaseSessionManager
    storage: KeyValueStorage
    queue: LocalFallbackQueue
    forwarder: DownstreamForwarder
    notifier: EmailNotifier
    scheduler: RetryScheduler
    status_updater: QuoteStatusUpdater

    async def aclose(self) -> None:
        """Stop the retry timer and release the HTTP client."""
        await self.scheduler.shutdown()
        await self.forwarder.aclose()


def build_storage(settings: Settings) -> KeyValueStorage:
    if settings.queue_storage == "memory":
        logger.warning("Fallback queue uses memory storage: lost on restart")
        return MemoryStorage()
    return JsonFileStorage(settings.queue_storage_path)


def build_notifier(settings: Settings) -> EmailNotifier:
    smtp = None
    if settings.smtp_configured:
        smtp = SmtpConfig(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
        )
    return EmailNotifier(
        from_address=settings.email_from,
        notify_address=settings.notify_email,
        resend_api_key=settings.resend_api_key,
        smtp=smtp,
        site_url=settings.site_url,
    )


def build_services(
    settings: Settings,
    db_manager: DatabaseSessionManager,
    storage: KeyValueStorage | None = None,
    forwarder: DownstreamForwarder | None = None,
) -> QuoteServices:
    """Assemble queue, forwarder, notifier and scheduler from settings."""
    storage = storage if storage is not None else build_storage(settings)
    forwarder = forwarder or DownstreamForwarder(
        mode=settings.downstream_mode,
        base_url=settings.downstream_base_url,
        path=settings.downstream_path,
        api_key=settings.downstream_api_key,
        timeout_seconds=settings.downstream_timeout_seconds,
    )
    queue = LocalFallbackQueue(storage, max_retries=settings.retry_max_attempts)
    status_updater = QuoteStatusUpdater(db_manager)
    scheduler = RetryScheduler(
        queue,
        forwarder,
        delay_seconds=settings.retry_delay_seconds,
        on_delivered=status_updater.mark_forwarded,
    )
    logger.info(
        f"Quote services ready (downstream={settings.downstream_mode.value}, "
        f"queue_storage={settings.queue_storage})",
    )
    return QuoteServices(
        settings=settings,
        db_manager=db_manager,
        storage=storage,
        queue=queue,
        forwarder=forwarder,
        notifier=build_notifier(settings),
        scheduler=scheduler,
        status_updater=status_updater,
    )
