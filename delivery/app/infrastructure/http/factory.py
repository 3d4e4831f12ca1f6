"""Builds the outbound HTTP client for the composition root."""
from __future__ import annotations

import httpx

from delivery.app.config.settings import Settings
from delivery.app.infrastructure.http.httpx_client import HttpxHttpClient
from delivery.app.ports.http_client import AbstractHttpClient


def create_http_client(settings: Settings) -> AbstractHttpClient:
    # Timeouts are passed per request; a redirect is reported as its 3xx status.
    async_client = httpx.AsyncClient(
        follow_redirects=False,
        headers={"User-Agent": settings.user_agent},
    )
    return HttpxHttpClient(async_client)
