from __future__ import annotations

from typing import Any, Protocol

from loguru import logger

from delivery.app.constants import DELIVERY_OUTCOME
from delivery.app.core import SERVICE_NAME
from delivery.app.domain.models import DeliveryMessage
from delivery.app.ports.incoming_message import IncomingMessage
from delivery.app.ports.message_queue import MessageQueue

DEFAULT_RETRY_LIMIT = 86400
LOG_CATEGORY = "delivery.handler"


def _log(event: str, text: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, category=LOG_CATEGORY, event=event, **kwargs).info(text)


class Sender(Protocol):
    async def send(self, data: dict[str, Any]) -> bool: ...


class DeliveryService:
    """
    Forwards queued tasks to the HTTP target and decides ack vs requeue.

    A failed delivery is requeued as a new message carrying ``iteration + 1`` and the
    original delivery is acked. Once the next iteration would pass ``retry_limit`` the
    task is dropped (acked, not republished). Decode and infrastructure errors are
    raised to the caller, which owns the negative-ack.
    """

    def __init__(
        self,
        queue: MessageQueue,
        sender: Sender,
        queue_name: str,
        *,
        retry_limit: int = DEFAULT_RETRY_LIMIT,
        requeue_delay_ms: int = 0,
        requeue_exchange: str = "",
    ) -> None:
        self._queue = queue
        self._sender = sender
        self._queue_name = queue_name
        self._retry_limit = int(retry_limit)
        self._requeue_delay_ms = int(requeue_delay_ms)
        self._requeue_exchange = requeue_exchange

    async def process_message(self, message: IncomingMessage) -> str:
        raw_body = message.body.decode("utf-8", errors="replace")
        _log("message_received", f'Received message data "{raw_body}"', queue=self._queue_name)
        task = DeliveryMessage.from_body(message.body)

        if await self._sender.send(task.form_data()):
            _log("message_delivered", "Message delivered successfully.")
            await message.ack()
            return DELIVERY_OUTCOME.DELIVERED

        # A malformed counter surfaces here as MessageDecodeError, after the send attempt.
        iteration = task.iteration
        next_iteration = iteration + 1
        if next_iteration > self._retry_limit:
            _log(
                "message_abandoned",
                f"Message delivering failed. Retry limit {self._retry_limit} reached, task abandoned.",
                iteration=iteration,
            )
            await message.ack()
            return DELIVERY_OUTCOME.ABANDONED

        _log("message_requeue", "Message delivering failed. Requeue", iteration=next_iteration)
        await self._queue.publish(
            self._queue_name,
            task.with_iteration(next_iteration).payload,
            exchange=self._requeue_exchange,
            delay_ms=self._requeue_delay_ms,
        )
        await message.ack()
        return DELIVERY_OUTCOME.REQUEUED
