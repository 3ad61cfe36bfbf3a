"""Quote Intake — persists quote requests and hands them to side channels.

Invariants:
    - Validation happens before any write; an invalid submission creates nothing
    - The QuoteRequest row is committed before images, notifications or forwarding
    - Each image is validated and committed on its own: a bad image is counted in
      failed_images and never fails the submission
    - Notification and forwarding failures are logged, never raised: the
      submitter already has a durable record and a tracking token
    - Forwarding failure enqueues the payload for the retry scheduler
    - Public read requires a constant-time token match; any mismatch is a 404

Design Decisions:
    - Side channels (notify + forward) run after persistence, inline or as a
      FastAPI background task; they never touch the request's DB session —
      status updates go through QuoteStatusUpdater with its own session
    - Images are written with plain commits, not savepoints: the parent row is
      already committed, so a rollback only discards the failing image
"""

import hmac
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import BackgroundTasks
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from quotedesk.core.domain_types import DeliverySource, QuoteStatus
from quotedesk.core.errors import (
    DatabaseError, ErrorContext, QuoteValidationError, ResourceNotFoundError,
)
from quotedesk.core.repository_protocols import (
    DeliveredHook, DeliveryResult, Forwarder, Notifier,
)
from quotedesk.infrastructure.database import DatabaseSessionManager
from quotedesk.models.quote_request import QuoteRequest, generate_public_token
from quotedesk.models.quote_request_image import QuoteRequestImage
from quotedesk.schemas.quote import (
    QuoteImageInput, QuotePublicView, QuoteSubmission, QuoteSubmitResponse,
)
from quotedesk.services.retry_scheduler import RetryScheduler

logger = logging.getLogger(__name__)


def validate_submission(data: dict | QuoteSubmission) -> QuoteSubmission:
    """Parse raw input, mapping the first pydantic error to QuoteValidationError."""
    if isinstance(data, QuoteSubmission):
        return data
    try:
        return QuoteSubmission.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(loc) for loc in first["loc"]) or "body"
        if first["type"] == "missing":
            message = f"{field} is required"
        else:
            message = f"{field}: {first['msg']}"
        raise QuoteValidationError(message, field)


@dataclass(frozen=True)
class StoredQuote:
    """Plain snapshot of a committed quote; survives later session rollbacks."""
    id: uuid.UUID
    public_token: str
    status: str
    created_at: datetime

    @classmethod
    def of(cls, quote: QuoteRequest) -> "StoredQuote":
        return cls(quote.id, quote.public_token, quote.status, quote.created_at)


class QuoteStatusUpdater:
    """Marks quotes FORWARDED using its own DB session (safe from background tasks)."""

    def __init__(self, db_manager: DatabaseSessionManager):
        self._db_manager = db_manager

    async def mark_forwarded(self, payload: dict) -> None:
        raw_id = payload.get("quoteId")
        if not raw_id:
            return
        try:
            quote_id = uuid.UUID(str(raw_id))
        except ValueError:
            logger.warning(f"Cannot mark forwarded, bad quote id: {raw_id}")
            return

        async with self._db_manager.session() as db:
            quote = await db.get(QuoteRequest, quote_id)
            if quote is None:
                logger.warning(
                    "Forwarded quote no longer exists",
                    extra={"quote_id": str(quote_id)},
                )
                return
            quote.status = QuoteStatus.FORWARDED.value
            quote.forwarded_at = datetime.now(timezone.utc)
            await db.commit()
        logger.info("Quote marked forwarded", extra={"quote_id": str(quote_id)})


class QuoteIntakeHandler:
    """submit_quote_request / get_public_quote over one request's DB session."""

    def __init__(
        self,
        db: AsyncSession,
        forwarder: Forwarder,
        notifier: Notifier | None = None,
        scheduler: RetryScheduler | None = None,
        on_forwarded: DeliveredHook | None = None,
    ):
        self._db = db
        self._forwarder = forwarder
        self._notifier = notifier
        self._scheduler = scheduler
        self._on_forwarded = on_forwarded

    async def submit_quote_request(
        self,
        data: dict | QuoteSubmission,
        background: BackgroundTasks | None = None,
    ) -> QuoteSubmitResponse:
        """Validate, persist, then notify and forward (best-effort).

        Raises QuoteValidationError (nothing persisted) or DatabaseError.
        With `background`, side channels run after the response is sent.
        """
        submission = validate_submission(data)
        stored = StoredQuote.of(await self._persist(submission))
        images, failed_images = await self._persist_images(stored, submission.images)
        payload = self._build_payload(submission, stored, images)

        if background is not None:
            background.add_task(self.dispatch_side_channels, payload)
        else:
            await self.dispatch_side_channels(payload)

        return QuoteSubmitResponse(
            quote_id=str(stored.id),
            public_token=stored.public_token,
            failed_images=failed_images,
        )

    async def dispatch_side_channels(self, payload: dict) -> bool:
        """Notify, then forward. Returns True if the downstream accepted the quote."""
        await self._notify(payload)
        return await self._forward(payload)

    async def retry_forward(self, data: dict) -> DeliveryResult:
        """Re-send a payload the client still holds, tagged as a retry.

        Raises QuoteValidationError for a payload without a valid email.
        Nothing is queued here: the caller owns its own retry budget.
        """
        validate_submission(data)
        payload = dict(data)
        result = await self._deliver(payload, DeliverySource.RETRY)
        if result.success:
            await self._mark_forwarded(payload)
        else:
            logger.warning(
                f"Retry forwarding failed: {result.error}",
                extra={"quote_id": payload.get("quoteId")},
            )
        return result

    async def get_public_quote(
        self, quote_id: uuid.UUID, token: str | None,
    ) -> QuotePublicView:
        """Public tokenized read. Unknown id or wrong token → ResourceNotFoundError."""
        quote = None
        if token:
            result = await self._db.execute(
                select(QuoteRequest)
                .where(QuoteRequest.id == quote_id)
                .execution_options(populate_existing=True),
            )
            quote = result.scalar_one_or_none()
        if quote is None or not hmac.compare_digest(
            quote.public_token.encode(), token.encode(),
        ):
            raise ResourceNotFoundError("Quote request", str(quote_id))

        return QuotePublicView(
            id=str(quote.id),
            customer_name=quote.customer_name,
            email=quote.email,
            phone=quote.phone,
            zip=quote.zip,
            product_id=quote.product_id,
            product_name=quote.product_name,
            sku=quote.sku,
            material=quote.material,
            dimensions=quote.dimensions,
            notes=quote.notes,
            status=quote.status,
            created_at=quote.created_at,
            image_urls=[img.secure_url for img in quote.images],
        )

    # ─── Persistence ─────────────────────────────────────────────

    async def _persist(self, submission: QuoteSubmission) -> QuoteRequest:
        quote = QuoteRequest(
            id=uuid.uuid4(),
            public_token=generate_public_token(),
            email=submission.email,
            customer_name=submission.customer_name,
            phone=submission.phone,
            zip=submission.zip,
            product_id=submission.product_id,
            product_name=submission.product_name,
            sku=submission.sku,
            material=submission.material,
            dimensions=submission.dimensions,
            notes=submission.notes,
            status=QuoteStatus.NEW.value,
        )
        quote_id = quote.id
        self._db.add(quote)
        try:
            await self._db.commit()
        except SQLAlchemyError as e:
            await self._db.rollback()
            logger.error(f"Failed to store quote request: {e}", exc_info=True)
            raise DatabaseError(
                "Could not store quote request", "commit",
                ErrorContext(quote_id=str(quote_id)),
            )
        logger.info("Quote request stored", extra={"quote_id": str(quote_id)})
        return quote

    async def _persist_images(
        self, quote: StoredQuote, raw_images: list,
    ) -> tuple[list[QuoteImageInput], int]:
        stored: list[QuoteImageInput] = []
        failed = 0
        for index, raw in enumerate(raw_images):
            try:
                image = QuoteImageInput.model_validate(raw)
            except ValidationError as e:
                failed += 1
                logger.warning(
                    f"Skipping invalid image #{index}: {e.errors()[0]['msg']}",
                    extra={"quote_id": str(quote.id)},
                )
                continue

            self._db.add(QuoteRequestImage(
                quote_request_id=quote.id,
                public_id=image.public_id,
                secure_url=image.secure_url,
                width=image.width,
                height=image.height,
                bytes=image.bytes,
                format=image.format,
                original_name=image.original_name,
            ))
            try:
                await self._db.commit()
            except SQLAlchemyError as e:
                await self._db.rollback()
                failed += 1
                logger.warning(
                    f"Failed to store image #{index}: {e}",
                    extra={"quote_id": str(quote.id)},
                )
                continue
            stored.append(image)

        if raw_images:
            logger.info(
                f"Stored {len(stored)}/{len(raw_images)} images",
                extra={"quote_id": str(quote.id)},
            )
        return stored, failed

    def _build_payload(
        self,
        submission: QuoteSubmission,
        quote: StoredQuote,
        images: list[QuoteImageInput],
    ) -> dict:
        payload = submission.to_payload()
        payload.update(
            quoteId=str(quote.id),
            publicToken=quote.public_token,
            status=quote.status,
            createdAt=quote.created_at.isoformat(),
            images=[
                img.model_dump(by_alias=True, exclude_none=True) for img in images
            ],
        )
        return payload

    # ─── Side channels ───────────────────────────────────────────

    async def _notify(self, payload: dict) -> None:
        if self._notifier is None or not self._notifier.enabled:
            return
        try:
            await self._notifier.send_quote_notifications(payload)
        except Exception as e:
            logger.error(
                f"Failed to send quote notification: {e}",
                extra={"quote_id": payload.get("quoteId")},
            )

    async def _forward(self, payload: dict) -> bool:
        if not self._forwarder.enabled:
            logger.debug("Downstream forwarding disabled")
            return False

        result = await self._deliver(payload, DeliverySource.INTAKE)
        if result.success:
            await self._mark_forwarded(payload)
            return True

        logger.warning(
            f"Forwarding failed ({result.error}), queueing for retry",
            extra={"quote_id": payload.get("quoteId")},
        )
        if self._scheduler is not None:
            self._scheduler.enqueue(payload)
        return False

    async def _mark_forwarded(self, payload: dict) -> None:
        if self._on_forwarded is None:
            return
        try:
            await self._on_forwarded(payload)
        except Exception as e:
            logger.error(
                f"Failed to mark quote forwarded: {e}",
                extra={"quote_id": payload.get("quoteId")},
            )

    async def _deliver(self, payload: dict, source: DeliverySource) -> DeliveryResult:
        try:
            return await self._forwarder.deliver(payload, source)
        except Exception as e:
            logger.error(
                f"Unexpected forwarding error: {e}", exc_info=True,
                extra={"quote_id": payload.get("quoteId")},
            )
            return DeliveryResult(False, error=str(e))
