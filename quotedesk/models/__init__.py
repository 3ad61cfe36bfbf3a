"""ORM Models — SQLAlchemy declarative models for all domain entities.

Invariants:
    - All models inherit from Base (db/base.py)
    - QuoteRequest is the aggregate root; images are scoped by quote_request_id

Design Decisions:
    - One file per entity for locality
    - All models imported here so SQLAlchemy resolves string-based relationship()
      references before any query runs
"""

from quotedesk.models.quote_request import QuoteRequest  # noqa: F401
from quotedesk.models.quote_request_image import QuoteRequestImage  # noqa: F401
