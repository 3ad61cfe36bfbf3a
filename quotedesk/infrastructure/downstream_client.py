"""Downstream Forwarder — delivers quote requests to the configured secondary system.

Invariants:
    - Exactly one contract: POST {base_url}{path}, JSON body, fixed at configuration time
    - Every attempt is bounded by timeout_seconds (default 10s); a timeout is a failure
    - deliver() never raises for network, timeout or non-2xx outcomes —
      it returns DeliveryResult(success=False, ...)
    - NOOP mode succeeds without any network call; OFF mode reports disabled

Design Decisions:
    - Wrapper over raw httpx client: isolates transport concerns from intake
      and scheduler
    - No in-call retry: the retry budget lives in the fallback queue, so a
      failed attempt is counted exactly once there
    - httpx.AsyncClient injectable: tests pass one built on httpx.MockTransport
"""

import logging

import httpx

from quotedesk.core.domain_types import (
    DELIVERY_TIMEOUT_SECONDS, DeliverySource, ForwardingMode,
)
from quotedesk.core.errors import ConfigurationError
from quotedesk.core.repository_protocols import DeliveryResult

logger = logging.getLogger(__name__)

DEFAULT_PATH = "/api/quotes/submit"


class DownstreamForwarder:
    """Forwards quote payloads to the downstream admin system."""

    def __init__(
        self,
        mode: ForwardingMode = ForwardingMode.OFF,
        base_url: str | None = None,
        path: str = DEFAULT_PATH,
        api_key: str | None = None,
        timeout_seconds: float = DELIVERY_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ):
        if mode == ForwardingMode.HTTP and not base_url:
            raise ConfigurationError(
                "DOWNSTREAM_BASE_URL is required when DOWNSTREAM_MODE=http",
                "downstream_base_url",
            )
        self.mode = mode
        self.url = (
            f"{base_url.rstrip('/')}/{path.lstrip('/')}" if base_url else None
        )
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self._client = client
        self._owns_client = client is None

    @property
    def enabled(self) -> bool:
        return self.mode != ForwardingMode.OFF

    async def deliver(
        self, payload: dict, source: DeliverySource = DeliverySource.INTAKE,
    ) -> DeliveryResult:
        """Send one payload downstream. Single attempt, bounded by timeout."""
        if self.mode == ForwardingMode.OFF:
            return DeliveryResult(False, error="Downstream forwarding disabled")
        if self.mode == ForwardingMode.NOOP:
            logger.info(
                "Downstream delivery skipped (noop mode)",
                extra={"quote_id": payload.get("quoteId")},
            )
            return DeliveryResult(True)

        try:
            response = await self._get_client().post(
                self.url,
                json=payload,
                headers=self._headers(source),
                timeout=self.timeout_seconds,
            )
        except httpx.TimeoutException:
            logger.warning(
                f"Downstream timeout after {self.timeout_seconds}s",
                extra={"quote_id": payload.get("quoteId")},
            )
            return DeliveryResult(False, error="Timeout")
        except httpx.HTTPError as e:
            logger.warning(
                f"Downstream network error: {e}",
                extra={"quote_id": payload.get("quoteId")},
            )
            return DeliveryResult(False, error="Network error")

        if not response.is_success:
            logger.warning(
                f"Downstream rejected quote with HTTP {response.status_code}",
                extra={
                    "quote_id": payload.get("quoteId"),
                    "status_code": response.status_code,
                },
            )
            return DeliveryResult(
                False, status_code=response.status_code,
                error=f"HTTP {response.status_code}",
            )

        logger.info(
            "Downstream delivery succeeded",
            extra={
                "quote_id": payload.get("quoteId"),
                "status_code": response.status_code,
            },
        )
        return DeliveryResult(True, status_code=response.status_code)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    def _headers(self, source: DeliverySource) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "X-Source": source.value,
        }
        if self.api_key:
            headers["X-Api-Key"] = self.api_key
        return headers
