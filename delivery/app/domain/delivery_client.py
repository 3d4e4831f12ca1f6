"""Delivery client: forwards one task as a form POST and reports plain success or failure.

Uses the HTTP port (AbstractHttpClient); the client is built in the composition root.
Only an exact 200 counts as delivered. Every failure, including transport exceptions,
is logged here and surfaces to the caller as False.
"""
from __future__ import annotations

import json
from typing import Any, Mapping

from loguru import logger

from delivery.app.core import SERVICE_NAME
from delivery.app.domain.models import encode_form_fields
from delivery.app.ports.http_client import AbstractHttpClient, RequestTimeout

LOG_CATEGORY = "delivery.request"


def _logger(event: str, **kwargs: Any):
    return logger.bind(service_name=SERVICE_NAME, category=LOG_CATEGORY, event=event, **kwargs)


class DeliveryClient:
    def __init__(
        self,
        client: AbstractHttpClient,
        url: str,
        user_agent: str,
        connect_timeout_seconds: float,
        read_timeout_seconds: float,
    ) -> None:
        self._client = client
        self._url = url
        self._user_agent = user_agent
        self._timeout = RequestTimeout(
            connect_seconds=connect_timeout_seconds,
            read_seconds=read_timeout_seconds,
        )

    async def send(self, data: Mapping[str, Any]) -> bool:
        _logger("request_target", url=self._url).info("Request target URL: {}", self._url)
        form_params = json.dumps(dict(data), default=str, ensure_ascii=False)
        try:
            response = await self._client.post_form(
                self._url,
                data=encode_form_fields(data),
                timeout=self._timeout,
                headers={"User-Agent": self._user_agent},
            )
        except Exception as exc:
            _logger("request_error", url=self._url).exception(
                "Request error: {}\nTarget Url: {}\nForm params:\n{}", exc, self._url, form_params
            )
            return False

        if response.status_code != 200:
            _logger("request_rejected", url=self._url, status_code=response.status_code).error(
                "Target Url: {}\nForm params:\n{}\n{} {}:\n{}",
                self._url,
                form_params,
                response.status_code,
                response.reason_phrase,
                response.text,
            )
            return False
        return True
