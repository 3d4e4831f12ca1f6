"""
RabbitMQ work queue client: connection lifecycle, persistent publish and fair-dispatch consume.

Lifecycle:
  DISCONNECTED -> CONNECTING (backoff) -> READY once the channel has its prefetch limit.
  consume(): READY -> RUNNING until stop_event is set -> DRAINING (consumer cancelled,
  in-flight handler awaited) -> STOPPED.
  close(): channel and connection closed -> CLOSED.

Concurrency:
  - prefetch_count (1 by default) bounds unacked deliveries per process.
  - Deliveries are handled under _processing_lock, so one message is processed at a time
    and DRAINING only completes once the current handler has returned.
  - The robust connection restores the channel, queue and consumer after a broker drop.
"""
from __future__ import annotations

import asyncio
import json
from typing import Any, Mapping
from urllib.parse import quote

import aio_pika
from aio_pika import DeliveryMode, Message
from loguru import logger

from delivery.app.config.settings import Settings
from delivery.app.core import SERVICE_NAME
from delivery.app.core.backoff import connection_backoff
from delivery.app.infrastructure.messaging.rabbitmq.aio_pika_message_adapter import AioPikaMessageAdapter
from delivery.app.infrastructure.messaging.rabbitmq.constants import QueueClientState
from delivery.app.ports.message_queue import MessageHandler

LOG_CATEGORY = "delivery.queue"


def _log(event: str, text: str = "", **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, category=LOG_CATEGORY, event=event, **kwargs).info(text)


def _warn(event: str, text: str, *args: Any, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, category=LOG_CATEGORY, event=event, **kwargs).warning(text, *args)


class RabbitMQQueue:
    """MessageQueue implementation"""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._state = QueueClientState.DISCONNECTED
        self._connection: aio_pika.abc.AbstractRobustConnection | None = None
        self._channel: aio_pika.abc.AbstractChannel | None = None
        self._queues: dict[str, aio_pika.abc.AbstractQueue] = {}
        self._processing_lock = asyncio.Lock()

    @property
    def state(self) -> QueueClientState:
        return self._state

    def _set_state(self, state: QueueClientState) -> None:
        self._state = state

    def _build_amqp_url(self) -> str:
        return (
            f"amqp://{quote(self._settings.broker_user, safe='')}:"
            f"{quote(self._settings.broker_password, safe='')}"
            f"@{self._settings.broker_host}:{self._settings.broker_port}/"
            f"{quote(self._settings.broker_vhost, safe='')}"
        )

    async def connect(self) -> None:
        self._set_state(QueueClientState.CONNECTING)
        _log("rmq_connecting")
        async for attempt, waited in connection_backoff(
            self._settings.initial_backoff_seconds,
            self._settings.max_backoff_seconds,
            self._settings.backoff_multiplier,
            self._settings.max_connection_attempts,
        ):
            _log("rmq_connect_attempt", attempt=attempt, waited=waited)
            try:
                self._connection = await aio_pika.connect_robust(self._build_amqp_url())
                break
            except Exception as e:
                _warn("rmq_connect_error", "rmq connect failed: {}", e, attempt=attempt)
                if attempt >= self._settings.max_connection_attempts:
                    _log("rmq_connect_failed", attempt=attempt)
                    self._set_state(QueueClientState.DISCONNECTED)
                    raise
        _log("rmq_connected")
        self._channel = await self._connection.channel()
        # Fair dispatch instead of round-robin: one unacked message per consumer.
        await self._channel.set_qos(prefetch_count=self._settings.prefetch_count)
        self._set_state(QueueClientState.READY)

    def _require_channel(self) -> aio_pika.abc.AbstractChannel:
        if self._channel is None:
            raise RuntimeError("queue client not connected")
        return self._channel

    async def _declare_queue(self, queue_name: str) -> aio_pika.abc.AbstractQueue:
        channel = self._require_channel()
        queue = self._queues.get(queue_name)
        if queue is None:
            # Durable: the queue survives a broker restart.
            queue = await channel.declare_queue(queue_name, durable=True)
            self._queues[queue_name] = queue
        return queue

    async def publish(
        self,
        queue_name: str,
        payload: Mapping[str, Any],
        *,
        exchange: str = "",
        delay_ms: int = 0,
    ) -> None:
        await self._declare_queue(queue_name)
        channel = self._require_channel()
        body = json.dumps(dict(payload)).encode()
        headers = {"x-delay": int(delay_ms)} if delay_ms > 0 else None
        message = Message(
            body,
            delivery_mode=DeliveryMode.PERSISTENT,
            content_type="application/json",
            headers=headers,
        )
        if exchange:
            target = await channel.get_exchange(exchange)
        else:
            target = channel.default_exchange
        await target.publish(message, routing_key=queue_name)
        _log(
            "message_published",
            f'Message {body.decode()} published to "{queue_name}" queue',
            queue=queue_name,
        )

    async def consume(
        self,
        queue_name: str,
        handler: MessageHandler,
        *,
        stop_event: asyncio.Event,
    ) -> None:
        queue = await self._declare_queue(queue_name)

        async def on_message(raw_message: aio_pika.abc.AbstractIncomingMessage) -> None:
            async with self._processing_lock:
                await handler(AioPikaMessageAdapter(raw_message))

        consumer_tag = await queue.consume(on_message, no_ack=False)
        self._set_state(QueueClientState.RUNNING)
        _log("consumer_started", f'Consuming messages at "{queue_name}" queue', queue=queue_name)
        try:
            await stop_event.wait()
        finally:
            self._set_state(QueueClientState.DRAINING)
            _log("consumer_draining", queue=queue_name)
            try:
                await queue.cancel(consumer_tag)
            except Exception as e:
                _warn("consumer_cancel_failed", "consumer cancel failed: {}", e, queue=queue_name)
            async with self._processing_lock:
                self._set_state(QueueClientState.STOPPED)
            _log("consumer_stopped", queue=queue_name)

    async def close(self) -> None:
        _log("queue_shutdown")
        self._queues.clear()
        if self._channel is not None:
            try:
                await self._channel.close()
            except Exception as e:
                _warn("channel_close_failed", "channel close failed (continuing to close connection): {}", e)
            self._channel = None
        if self._connection is not None:
            try:
                await self._connection.close()
            except Exception as e:
                _warn("connection_close_failed", "connection close failed: {}", e)
            self._connection = None
        self._set_state(QueueClientState.CLOSED)
