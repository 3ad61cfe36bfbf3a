"""Quote Schemas — Pydantic models with field-level validation for API boundaries.

Invariants:
    - QuoteSubmission.email: required, stripped, non-empty
    - Optional text fields: stripped; empty strings become None; no length caps
    - images stay raw at this layer — each one is validated separately by
      the intake handler so a single bad image never rejects the submission
    - Responses serialize camelCase (the storefront's JSON convention)

Design Decisions:
    - AliasChoices for name/customerName and zip/zipCode: the storefront posts
      both shapes from different forms
    - productId coerced to str: some product pages send numeric ids
"""

from datetime import datetime
from typing import Any

from pydantic import (
    AliasChoices, BaseModel, ConfigDict, Field, field_validator,
)
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for camelCase JSON models."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Requests -----------------------------------------------------------------

class QuoteImageInput(CamelModel):
    """One uploaded image reference (signed upload metadata)."""
    public_id: str = Field(min_length=1, max_length=300)
    secure_url: str = Field(min_length=1, max_length=1000)
    width: int | None = Field(None, ge=0)
    height: int | None = Field(None, ge=0)
    bytes: int | None = Field(None, ge=0)
    format: str | None = Field(None, max_length=20)
    original_name: str | None = Field(None, max_length=300)


class QuoteSubmission(BaseModel):
    """Quote request submission — email required, everything else optional."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    email: str = Field(min_length=1)
    customer_name: str | None = Field(
        None,
        validation_alias=AliasChoices("name", "customerName", "customer_name"),
    )
    phone: str | None = None
    zip: str | None = Field(
        None,
        validation_alias=AliasChoices("zip", "zipCode", "zip_code"),
    )
    product_id: str | None = Field(
        None,
        validation_alias=AliasChoices("productId", "product_id"),
    )
    product_name: str | None = Field(
        None,
        validation_alias=AliasChoices("productName", "product_name"),
    )
    sku: str | None = None
    material: str | None = None
    dimensions: str | None = None
    notes: str | None = None
    images: list[Any] = Field(default_factory=list)

    @field_validator("email", mode="before")
    @classmethod
    def strip_email(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip()
            if not v:
                raise ValueError("email cannot be empty or whitespace")
        return v

    @field_validator(
        "customer_name", "phone", "zip", "product_id", "product_name",
        "sku", "material", "dimensions", "notes",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            v = str(v)
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("images", mode="before")
    @classmethod
    def null_images(cls, v: Any) -> Any:
        return [] if v is None else v

    def to_payload(self) -> dict:
        """camelCase payload sent downstream and stored in the fallback queue."""
        return {
            "email": self.email,
            "customerName": self.customer_name,
            "phone": self.phone,
            "zip": self.zip,
            "productId": self.product_id,
            "productName": self.product_name,
            "sku": self.sku,
            "material": self.material,
            "dimensions": self.dimensions,
            "notes": self.notes,
            "images": list(self.images),
        }


# --- Responses ----------------------------------------------------------------

class QuoteSubmitResponse(CamelModel):
    """Returned on successful persistence, whatever happened downstream."""
    success: bool = True
    message: str = "Quote request created successfully"
    quote_id: str
    public_token: str
    failed_images: int = 0


class RetryForwardResponse(CamelModel):
    success: bool
    error: str | None = None


class QuotePublicView(CamelModel):
    """What the original submitter sees through the tokenized link."""
    id: str
    customer_name: str | None
    email: str
    phone: str | None
    zip: str | None
    product_id: str | None
    product_name: str | None
    sku: str | None
    material: str | None
    dimensions: str | None
    notes: str | None
    status: str
    created_at: datetime
    image_urls: list[str]


class PendingEntryView(CamelModel):
    correlation_id: str
    quote_id: str | None
    email: str | None
    retry_count: int
    last_retry_timestamp: str | None
    timestamp: str
    dead_lettered: bool


class PendingQueueResponse(CamelModel):
    entries: list[PendingEntryView]
    count: int
    scheduler_state: str
