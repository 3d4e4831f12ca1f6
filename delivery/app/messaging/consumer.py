"""Message handler: resolves every delivery exactly once around DeliveryService."""
from __future__ import annotations

from loguru import logger

from delivery.app.application.delivery_service import LOG_CATEGORY, DeliveryService
from delivery.app.core import SERVICE_NAME
from delivery.app.domain.models import MessageDecodeError
from delivery.app.ports.incoming_message import IncomingMessage
from delivery.app.ports.message_queue import MessageHandler


def create_message_handler(delivery_service: DeliveryService) -> MessageHandler:
    """Create the per-delivery handler passed to MessageQueue.consume()."""

    async def on_message(message: IncomingMessage) -> None:
        body = message.body.decode("utf-8", errors="replace")
        bound = logger.bind(service_name=SERVICE_NAME, category=LOG_CATEGORY)
        try:
            await delivery_service.process_message(message)
            return
        except MessageDecodeError as exc:
            bound.bind(event="message_rejected").error(
                "Message rejected, malformed payload: {}\nBody: {}", exc, body
            )
            requeue = False
        except Exception as exc:
            bound.bind(event="message_error").exception(
                "Message delivered error.\nBody: {}\n{}", body, exc
            )
            requeue = True

        if message.processed:
            return
        try:
            await message.nack(requeue=requeue)
        except Exception as exc:
            # Fix ASAP: the delivery stays unacked until the broker drops the channel.
            bound.bind(event="message_nack_failed").exception("Message nack failed: {}", exc)

    return on_message
