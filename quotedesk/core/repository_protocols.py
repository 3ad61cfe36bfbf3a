"""Boundary Protocols — contracts between core and shell.

Invariants:
    - Core NEVER imports from shell — dependency arrows point inward only
    - All IO operations accessed through Protocol types
    - Implementations provided by shell via dependency injection

Design Decisions:
    - Protocol over ABC: structural subtyping, no inheritance hierarchy
    - KeyValueStorage is synchronous and string-valued, mirroring the browser
      storage API the fallback queue was first written against
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol

from quotedesk.core.domain_types import DeliverySource


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of one downstream delivery attempt."""
    success: bool
    status_code: int | None = None
    error: str | None = None


class KeyValueStorage(Protocol):
    """Contract for persistent client-side storage — implemented by shell.

    Implementations may raise OSError/ValueError when unavailable; callers
    decide whether that is fatal.
    """
    def get_item(self, key: str) -> str | None: ...
    def set_item(self, key: str, value: str) -> None: ...
    def remove_item(self, key: str) -> None: ...
    def ping(self) -> bool: ...


class Forwarder(Protocol):
    """Contract for the downstream delivery call — implemented by shell."""
    @property
    def enabled(self) -> bool: ...

    async def deliver(
        self, payload: dict, source: DeliverySource = DeliverySource.INTAKE,
    ) -> DeliveryResult: ...


class Notifier(Protocol):
    """Contract for best-effort submission notifications — implemented by shell."""
    @property
    def enabled(self) -> bool: ...

    async def send_quote_notifications(self, quote: dict) -> None: ...


DeliveredHook = Callable[[dict], Awaitable[None]]
