"""Adapter: wrap aio_pika.IncomingMessage to implement ports.IncomingMessage."""
from __future__ import annotations

from aio_pika import IncomingMessage as AioPikaIncomingMessage


class AioPikaMessageAdapter:
    """Implements delivery.app.ports.incoming_message.IncomingMessage for aio_pika.

    The delivery tag is resolved at most once; a second ack/nack raises instead of
    reaching the broker (which would close the channel).
    """

    def __init__(self, message: AioPikaIncomingMessage) -> None:
        self._message = message
        self._processed = False

    @property
    def body(self) -> bytes:
        return self._message.body

    @property
    def processed(self) -> bool:
        return self._processed

    async def ack(self) -> None:
        self._ensure_unprocessed()
        await self._message.ack()
        self._processed = True

    async def nack(self, *, requeue: bool = True) -> None:
        self._ensure_unprocessed()
        await self._message.nack(requeue=requeue)
        self._processed = True

    def _ensure_unprocessed(self) -> None:
        if self._processed:
            raise RuntimeError("message delivery already resolved")
