"""In-memory work queue for local runs and tests.

Single process only: published payloads are kept as JSON bodies in per-queue asyncio
queues, nack(requeue=True) puts the body back, and delay/exchange are ignored.
"""
from __future__ import annotations

import asyncio
import json
from typing import Any, Mapping

from delivery.app.ports.message_queue import MessageHandler


class InMemoryMessage:
    def __init__(self, body: bytes, owner: "InMemoryQueue", queue_name: str) -> None:
        self.body = body
        self._owner = owner
        self._queue_name = queue_name
        self.acked = False
        self.nacked = False
        self.nack_requeue: bool | None = None

    @property
    def processed(self) -> bool:
        return self.acked or self.nacked

    async def ack(self) -> None:
        if self.processed:
            raise RuntimeError("message delivery already resolved")
        self.acked = True

    async def nack(self, *, requeue: bool = True) -> None:
        if self.processed:
            raise RuntimeError("message delivery already resolved")
        self.nacked = True
        self.nack_requeue = requeue
        if requeue:
            self._owner.put_body(self._queue_name, self.body)


class InMemoryQueue:
    def __init__(self) -> None:
        self._queues: dict[str, asyncio.Queue[bytes]] = {}
        self.published: list[tuple[str, dict[str, Any]]] = []

    def _queue(self, queue_name: str) -> asyncio.Queue[bytes]:
        return self._queues.setdefault(queue_name, asyncio.Queue())

    def put_body(self, queue_name: str, body: bytes) -> None:
        self._queue(queue_name).put_nowait(body)

    def pending(self, queue_name: str) -> int:
        return self._queue(queue_name).qsize()

    async def connect(self) -> None:
        return

    async def publish(
        self,
        queue_name: str,
        payload: Mapping[str, Any],
        *,
        exchange: str = "",
        delay_ms: int = 0,
    ) -> None:
        self.published.append((queue_name, dict(payload)))
        self.put_body(queue_name, json.dumps(dict(payload)).encode())

    async def consume(
        self,
        queue_name: str,
        handler: MessageHandler,
        *,
        stop_event: asyncio.Event,
    ) -> None:
        queue = self._queue(queue_name)
        stop_waiter = asyncio.ensure_future(stop_event.wait())
        try:
            while not stop_event.is_set():
                getter = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait(
                    {getter, stop_waiter}, return_when=asyncio.FIRST_COMPLETED
                )
                if getter not in done:
                    getter.cancel()
                    break
                await handler(InMemoryMessage(getter.result(), self, queue_name))
        finally:
            stop_waiter.cancel()

    async def close(self) -> None:
        return
