"""
HTTP Transport — outbound POST to subscriber endpoints.

Any HTTP status is a response. Only network-level failures (timeout, DNS,
connection refused) raise TransportError.
"""
from dataclasses import dataclass

import httpx

from hookrelay.core.config import settings
from hookrelay.core.exceptions import TransportError
from hookrelay.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class TransportResponse:
    status_code: int
    body: str
    reason: str = ""


class HttpTransport:
    """
    Thin wrapper over a shared httpx.AsyncClient.

    The client is created lazily and owned by the transport unless one is
    injected (tests pass a client built on httpx.MockTransport).
    """

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float | None = None):
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout or settings.WEBHOOK_TIMEOUT_SECONDS

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=False,
            )
        return self._client

    async def post(
        self,
        url: str,
        body: bytes,
        headers: dict[str, str],
        timeout: float | None = None,
    ) -> TransportResponse:
        client = self._get_client()
        try:
            response = await client.post(
                url,
                content=body,
                headers=headers,
                timeout=timeout or self._timeout,
                follow_redirects=False,
            )
        except httpx.TimeoutException as exc:
            logger.warning("Webhook request timed out", extra_data={"url": url})
            raise TransportError(url, f"Request timed out: {exc}", timeout=True) from exc
        except httpx.RequestError as exc:
            logger.warning(
                "Webhook request failed",
                extra_data={"url": url, "error": str(exc)},
            )
            raise TransportError(url, f"Network error: {exc}") from exc

        return TransportResponse(
            status_code=response.status_code,
            body=response.text,
            reason=response.reason_phrase,
        )

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
