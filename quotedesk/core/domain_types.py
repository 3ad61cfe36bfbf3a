"""Domain Types — rich types that replace bare primitives across the codebase.

Invariants:
    - QuoteId wraps the server-assigned UUID; CorrelationId is client-generated
      and exists before the server acknowledges anything
    - All valid states encoded as Enums — no raw string matching

Design Decisions:
    - NewType over dataclass wrappers: zero runtime cost, full type-checker support
    - str Enums: serialize to JSON without custom encoders (queue entries are JSON)
"""

from enum import Enum
from typing import NewType
from uuid import UUID


# ─── Identity Types ──────────────────────────────────────────────

QuoteId = NewType("QuoteId", UUID)
CorrelationId = NewType("CorrelationId", str)


# ─── Constants ───────────────────────────────────────────────────

MAX_RETRIES = 5
RETRY_DELAY_SECONDS = 60.0
DELIVERY_TIMEOUT_SECONDS = 10.0

PENDING_QUOTES_KEY = "pending_quotes"
RETRY_SCHEDULED_KEY = "quote_retry_scheduled"


# ─── Enums ───────────────────────────────────────────────────────

class QuoteStatus(str, Enum):
    """Quote request lifecycle — maps to DB `status` column."""
    NEW = "NEW"
    FORWARDED = "FORWARDED"


class SchedulerState(str, Enum):
    """Retry scheduler states (per queue, not per entry)."""
    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"


class ForwardingMode(str, Enum):
    """Downstream integration mode, fixed at deployment time.

    OFF: no downstream system; forwarding skipped, nothing queued.
    HTTP: real delivery to the configured URL.
    NOOP: deliberate always-succeed integration (staging, demos).
    """
    OFF = "off"
    HTTP = "http"
    NOOP = "noop"


class DeliverySource(str, Enum):
    """X-Source header values sent to the downstream system."""
    INTAKE = "website-quote-request"
    RETRY = "website-quote-retry"
