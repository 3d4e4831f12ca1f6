"""httpx implementation of the form POST port."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

import httpx

from delivery.app.ports.http_client import (
    HttpClientError,
    HttpClientTimeoutError,
    HttpResponse,
    RequestTimeout,
)


@dataclass(frozen=True)
class _PostResult:
    status_code: int
    reason_phrase: str
    text: str


def _httpx_timeout(timeout: RequestTimeout) -> httpx.Timeout:
    # Writing the form body counts against the read budget; waiting for a pooled
    # connection counts against the connect budget.
    return httpx.Timeout(
        connect=timeout.connect_seconds,
        read=timeout.read_seconds,
        write=timeout.read_seconds,
        pool=timeout.connect_seconds,
    )


class HttpxHttpClient:
    """AbstractHttpClient over a shared httpx.AsyncClient."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def post_form(
        self,
        url: str,
        *,
        data: Mapping[str, str],
        timeout: RequestTimeout,
        headers: dict[str, str] | None = None,
    ) -> HttpResponse:
        try:
            response = await self._client.post(
                url,
                data=dict(data),
                headers=headers,
                timeout=_httpx_timeout(timeout),
            )
        except httpx.TimeoutException as exc:
            raise HttpClientTimeoutError(f"timeout while posting to {url}") from exc
        except httpx.HTTPError as exc:
            raise HttpClientError(f"POST {url} failed: {exc}") from exc
        return _PostResult(
            status_code=response.status_code,
            reason_phrase=response.reason_phrase,
            text=response.text,
        )

    async def close(self) -> None:
        await self._client.aclose()
