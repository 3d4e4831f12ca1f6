"""Port for the outbound delivery request: one form-encoded POST per task.

The delivery client only needs the status line and body of the response, so that is
all the port exposes.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Protocol


class HttpClientError(Exception):
    """Transport-level POST failure (connection refused, protocol error)."""


class HttpClientTimeoutError(HttpClientError):
    pass


class HttpResponse(Protocol):
    status_code: int
    reason_phrase: str
    text: str


@dataclass(frozen=True)
class RequestTimeout:
    connect_seconds: float
    read_seconds: float


class AbstractHttpClient(Protocol):
    async def post_form(
        self,
        url: str,
        *,
        data: Mapping[str, str],
        timeout: RequestTimeout,
        headers: dict[str, str] | None = None,
    ) -> HttpResponse:
        """Send ``data`` as application/x-www-form-urlencoded.

        Any status code is returned as a response; only transport failures raise
        HttpClientError (HttpClientTimeoutError for timeouts).
        """
        ...

    async def close(self) -> None: ...
