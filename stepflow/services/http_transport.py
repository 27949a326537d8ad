"""HTTP transport used by http_request steps."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

import httpx

from stepflow.config import settings
from stepflow.core.exceptions import HttpRequestFailed

logger = logging.getLogger(__name__)


@dataclass
class HttpResponse:
    status: int
    text: str
    headers: dict[str, str] = field(default_factory=dict)
    reason: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class HttpTransport:
    def __init__(
        self,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout or settings.http_timeout_seconds
        self._transport = transport

    async def request(
        self,
        url: str,
        method: str = "GET",
        headers: dict[str, str] | None = None,
        body: str | None = None,
    ) -> HttpResponse:
        """Perform one request. Transport-level failures raise HttpRequestFailed."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(
                    method.upper(),
                    url,
                    headers=headers,
                    content=body.encode("utf-8") if body is not None else None,
                )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.error("[HTTP] %s %s failed: %s", method, url, exc)
            raise HttpRequestFailed(f"HTTP request to {url} failed: {exc}") from exc

        return HttpResponse(
            status=response.status_code,
            text=response.text,
            headers=dict(response.headers),
            reason=response.reason_phrase,
        )
