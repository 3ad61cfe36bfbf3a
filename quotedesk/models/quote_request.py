"""QuoteRequest ORM — the durable record of truth for a submitted quote request.

Invariants:
    - id is UUID primary key (client-side default, assigned at flush)
    - email is non-nullable and non-empty (validated upstream by the intake handler)
    - public_token is unique and opaque; it is the only credential for public read
    - status transitions: NEW -> FORWARDED; records are never deleted here

Design Decisions:
    - Submitted fields are unbounded Text: the storefront sends whatever the
      product page collected, and a long value must never fail the insert
    - images relationship loaded with selectin: the public view always needs them
"""

import uuid
import secrets
from datetime import datetime, timezone

from sqlalchemy import String, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import UUID

from quotedesk.core.domain_types import QuoteStatus
from quotedesk.db.base import Base


def generate_public_token() -> str:
    return secrets.token_urlsafe(24)


class QuoteRequest(Base):
    """Quote request submitted from the storefront."""
    __tablename__ = "quote_requests"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    email: Mapped[str] = mapped_column(Text, nullable=False)
    customer_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone: Mapped[str | None] = mapped_column(Text, nullable=True)
    zip: Mapped[str | None] = mapped_column(Text, nullable=True)
    product_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    product_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    sku: Mapped[str | None] = mapped_column(Text, nullable=True)
    material: Mapped[str | None] = mapped_column(Text, nullable=True)
    dimensions: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=QuoteStatus.NEW.value,
    )
    public_token: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, default=generate_public_token,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    forwarded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    images: Mapped[list["QuoteRequestImage"]] = relationship(
        "QuoteRequestImage", back_populates="quote_request",
        cascade="all, delete-orphan", lazy="selectin",
        order_by="QuoteRequestImage.created_at",
    )
