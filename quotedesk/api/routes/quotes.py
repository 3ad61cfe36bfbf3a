"""Quote Routes — submission, retry forwarding, public read and queue inspection.

Invariants:
    - Submission returns 201 once the record is committed; notification and
      forwarding run as a background task after the response
    - Retry forwarding returns 200 {success: true} or 502 {success: false, error}
    - Public read answers 404 for an unknown id, a malformed id and a wrong token alike
    - Queue inspection requires X-Api-Key when ADMIN_API_KEY is configured
    - /pending routes are declared before /{quote_id} so they are never
      captured as an id

Design Decisions:
    - Bodies taken as raw dicts and validated in the service: the 400 body is the
      domain error shape ({success, message, error}) the storefront already reads
    - QuoteServices read from app.state through get_services (overridable in tests)
"""

import hmac
import logging
import uuid

from fastapi import (
    APIRouter, BackgroundTasks, Body, Depends, Header, Query, Request, status,
)
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from quotedesk.core.errors import (
    ConfigurationError, ResourceNotFoundError, UnauthorizedError,
)
from quotedesk.core.fallback_queue import LocalFallbackQueue, PendingQueueEntry
from quotedesk.infrastructure.database import get_db
from quotedesk.schemas.quote import (
    PendingEntryView, PendingQueueResponse, QuotePublicView,
    QuoteSubmitResponse, RetryForwardResponse,
)
from quotedesk.services.quote_intake import QuoteIntakeHandler
from quotedesk.services.wiring import QuoteServices

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/quotes", tags=["quotes"])


def get_services(request: Request) -> QuoteServices:
    services: QuoteServices | None = getattr(request.app.state, "services", None)
    if services is None:
        raise ConfigurationError("Quote services not initialized", "services")
    return services


def get_intake_handler(
    db: AsyncSession = Depends(get_db),
    services: QuoteServices = Depends(get_services),
) -> QuoteIntakeHandler:
    return QuoteIntakeHandler(
        db,
        services.forwarder,
        notifier=services.notifier,
        scheduler=services.scheduler,
        on_forwarded=services.status_updater.mark_forwarded,
    )


def require_admin_key(
    services: QuoteServices = Depends(get_services),
    x_api_key: str | None = Header(None),
) -> None:
    expected = services.settings.admin_api_key
    if not expected:
        return
    if not x_api_key or not hmac.compare_digest(
        x_api_key.encode(), expected.encode(),
    ):
        raise UnauthorizedError()


@router.post(
    "", response_model=QuoteSubmitResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_quote(
    background_tasks: BackgroundTasks,
    body: dict = Body(...),
    handler: QuoteIntakeHandler = Depends(get_intake_handler),
):
    """Create a quote request."""
    return await handler.submit_quote_request(body, background=background_tasks)


@router.post(
    "/retry", response_model=RetryForwardResponse,
    response_model_exclude_none=True,
)
async def retry_forwarding(
    body: dict = Body(...),
    handler: QuoteIntakeHandler = Depends(get_intake_handler),
):
    """Forward a previously failed submission again."""
    result = await handler.retry_forward(body)
    if not result.success:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content=RetryForwardResponse(
                success=False, error=result.error,
            ).model_dump(by_alias=True),
        )
    return RetryForwardResponse(success=True)


@router.get(
    "/pending", response_model=PendingQueueResponse,
    dependencies=[Depends(require_admin_key)],
)
async def list_pending(services: QuoteServices = Depends(get_services)):
    """Every queued entry, dead-lettered ones included."""
    entries = services.queue.list()
    return _queue_response(services, entries)


@router.get(
    "/pending/dead-letter", response_model=PendingQueueResponse,
    dependencies=[Depends(require_admin_key)],
)
async def list_dead_lettered(services: QuoteServices = Depends(get_services)):
    """Entries that exhausted their retry budget."""
    entries = services.queue.list_dead_lettered()
    return _queue_response(services, entries)


@router.get("/{quote_id}", response_model=QuotePublicView)
async def get_public_quote(
    quote_id: str,
    token: str | None = Query(None),
    handler: QuoteIntakeHandler = Depends(get_intake_handler),
):
    """Tokenized read for the original submitter."""
    try:
        parsed = uuid.UUID(quote_id)
    except ValueError:
        raise ResourceNotFoundError("Quote request", quote_id)
    return await handler.get_public_quote(parsed, token)


def _queue_response(
    services: QuoteServices, entries: list[PendingQueueEntry],
) -> PendingQueueResponse:
    return PendingQueueResponse(
        entries=[_entry_view(services.queue, e) for e in entries],
        count=len(entries),
        scheduler_state=services.scheduler.state.value,
    )


def _entry_view(
    queue: LocalFallbackQueue, entry: PendingQueueEntry,
) -> PendingEntryView:
    return PendingEntryView(
        correlation_id=entry.correlation_id,
        quote_id=entry.quote_id,
        email=entry.payload.get("email"),
        retry_count=entry.retry_count,
        last_retry_timestamp=entry.last_retry_timestamp,
        timestamp=entry.timestamp,
        dead_lettered=queue.is_dead(entry),
    )
