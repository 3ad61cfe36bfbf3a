"""Initial schema — quote_requests, quote_request_images.

Revision ID: 001_quote_requests
Revises: None
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001_quote_requests"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "quote_requests",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.Text, nullable=False),
        sa.Column("customer_name", sa.Text, nullable=True),
        sa.Column("phone", sa.Text, nullable=True),
        sa.Column("zip", sa.Text, nullable=True),
        sa.Column("product_id", sa.Text, nullable=True),
        sa.Column("product_name", sa.Text, nullable=True),
        sa.Column("sku", sa.Text, nullable=True),
        sa.Column("material", sa.Text, nullable=True),
        sa.Column("dimensions", sa.Text, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="NEW"),
        sa.Column("public_token", sa.String(64), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("forwarded_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "quote_request_images",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "quote_request_id", UUID(as_uuid=True),
            sa.ForeignKey("quote_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("public_id", sa.String(300), nullable=False),
        sa.Column("secure_url", sa.String(1000), nullable=False),
        sa.Column("width", sa.Integer, nullable=True),
        sa.Column("height", sa.Integer, nullable=True),
        sa.Column("bytes", sa.Integer, nullable=True),
        sa.Column("format", sa.String(20), nullable=True),
        sa.Column("original_name", sa.String(300), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_quote_request_images_quote_request_id",
        "quote_request_images", ["quote_request_id"],
    )


def downgrade() -> None:
    op.drop_index("ix_quote_request_images_quote_request_id", table_name="quote_request_images")
    op.drop_table("quote_request_images")
    op.drop_table("quote_requests")
