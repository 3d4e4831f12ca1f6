"""Port: work queue client (publish + blocking consume). Implementations live in infrastructure."""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Mapping, Protocol

from delivery.app.ports.incoming_message import IncomingMessage

MessageHandler = Callable[[IncomingMessage], Awaitable[None]]


class MessageQueue(Protocol):
    async def connect(self) -> None: ...

    async def publish(
        self,
        queue_name: str,
        payload: Mapping[str, Any],
        *,
        exchange: str = "",
        delay_ms: int = 0,
    ) -> None:
        """Serialize payload as JSON and send it persistently to queue_name."""
        ...

    async def consume(
        self,
        queue_name: str,
        handler: MessageHandler,
        *,
        stop_event: asyncio.Event,
    ) -> None:
        """Dispatch deliveries to handler one at a time until stop_event is set, then drain."""
        ...

    async def close(self) -> None: ...
