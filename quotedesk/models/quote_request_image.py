"""QuoteRequestImage ORM — uploaded image attached to a quote request.

Invariants:
    - quote_request_id references quote_requests.id (cascade delete)
    - public_id and secure_url come from the image host's signed upload
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Integer, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import UUID

from quotedesk.db.base import Base


class QuoteRequestImage(Base):
    __tablename__ = "quote_request_images"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    quote_request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("quote_requests.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    public_id: Mapped[str] = mapped_column(String(300), nullable=False)
    secure_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bytes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    format: Mapped[str | None] = mapped_column(String(20), nullable=True)
    original_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    quote_request: Mapped["QuoteRequest"] = relationship(
        "QuoteRequest", back_populates="images",
    )
