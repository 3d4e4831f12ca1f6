"""Worker composition root: build and lifecycle-manage concrete dependencies.

Components receive explicit, already validated values from Settings; nothing is
copied onto instances by attribute name.
"""
from __future__ import annotations

from typing import Any

from loguru import logger

from delivery.app.application.delivery_service import DeliveryService
from delivery.app.config.settings import Settings
from delivery.app.core import SERVICE_NAME
from delivery.app.domain.delivery_client import DeliveryClient
from delivery.app.infrastructure.http.factory import create_http_client
from delivery.app.infrastructure.messaging.factory import create_message_queue
from delivery.app.ports.http_client import AbstractHttpClient
from delivery.app.ports.message_queue import MessageQueue


def _warn(event: str, text: str, *args: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event).warning(text, *args)


class WorkerDependencies:
    """Holds wired worker dependencies and their lifecycle."""

    def __init__(self, *, settings: Settings) -> None:
        self._settings = settings
        self._message_queue: MessageQueue | None = None
        self._http_client: AbstractHttpClient | None = None
        self._delivery_service: DeliveryService | None = None

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def message_queue(self) -> MessageQueue:
        if self._message_queue is None:
            raise RuntimeError("message_queue is not initialized")
        return self._message_queue

    @property
    def delivery_service(self) -> DeliveryService:
        if self._delivery_service is None:
            raise RuntimeError("delivery_service is not initialized")
        return self._delivery_service

    async def connect(self) -> None:
        self._message_queue = create_message_queue(self._settings)
        await self._message_queue.connect()

        self._http_client = create_http_client(self._settings)
        delivery_client = DeliveryClient(
            self._http_client,
            url=self._settings.target_url,
            user_agent=self._settings.user_agent,
            connect_timeout_seconds=self._settings.delivery_connect_timeout_seconds,
            read_timeout_seconds=self._settings.delivery_read_timeout_seconds,
        )
        self._delivery_service = DeliveryService(
            self._message_queue,
            delivery_client,
            self._settings.queue_name,
            retry_limit=self._settings.retry_limit,
            requeue_delay_ms=self._settings.requeue_delay_ms,
            requeue_exchange=self._settings.requeue_exchange,
        )

    async def close(self) -> None:
        if self._message_queue is not None:
            try:
                await self._message_queue.close()
            except Exception as exc:
                _warn("message_queue_close_failed", "message queue close failed: {}", exc)
            self._message_queue = None

        if self._http_client is not None:
            try:
                await self._http_client.close()
            except Exception as exc:
                _warn("http_client_close_failed", "http client close failed: {}", exc)
            self._http_client = None

        self._delivery_service = None


def create_worker_dependencies(settings: Settings | None = None) -> WorkerDependencies:
    return WorkerDependencies(settings=settings or Settings())
