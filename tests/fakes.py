"""Test doubles — forwarder, notifier and storage fakes shared across suites.

Invariants:
    - FakeForwarder records every (payload, source) call in order
    - Outcomes are consumed one per call; the last one repeats when exhausted
    - FailingStorage raises OSError on the operations it is told to fail

Design Decisions:
    - Flat fake classes (no mocking library): simple, explicit, easy to debug
"""

from quotedesk.core.domain_types import DeliverySource
from quotedesk.core.repository_protocols import DeliveryResult
from quotedesk.infrastructure.key_value_storage import MemoryStorage


OK = DeliveryResult(True, status_code=200)
FAIL = DeliveryResult(False, status_code=500, error="HTTP 500")
TIMEOUT = DeliveryResult(False, error="Timeout")


class FakeForwarder:
    """Forwarder returning scripted outcomes."""

    def __init__(self, *outcomes, enabled: bool = True):
        self.outcomes = list(outcomes) or [OK]
        self.calls: list[tuple[dict, DeliverySource]] = []
        self._enabled = enabled
        self.closed = False

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def deliver(self, payload, source=DeliverySource.INTAKE):
        self.calls.append((dict(payload), source))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def aclose(self):
        self.closed = True

    @property
    def delivered_ids(self) -> list:
        return [payload.get("quoteId") for payload, _ in self.calls]


class FakeNotifier:
    def __init__(self, error: Exception | None = None):
        self.sent: list[dict] = []
        self.error = error

    @property
    def enabled(self) -> bool:
        return True

    async def send_quote_notifications(self, quote):
        if self.error is not None:
            raise self.error
        self.sent.append(quote)


class FailingStorage(MemoryStorage):
    """MemoryStorage that raises OSError for selected operations."""

    def __init__(self, fail_get=False, fail_set=False, fail_remove=False):
        super().__init__()
        self.fail_get = fail_get
        self.fail_set = fail_set
        self.fail_remove = fail_remove

    def get_item(self, key):
        if self.fail_get:
            raise OSError("storage unavailable")
        return super().get_item(key)

    def set_item(self, key, value):
        if self.fail_set:
            raise OSError("quota exceeded")
        super().set_item(key, value)

    def remove_item(self, key):
        if self.fail_remove:
            raise OSError("storage unavailable")
        super().remove_item(key)

    def ping(self):
        return not (self.fail_get or self.fail_set)
