"""Port: one delivery taken off the work queue."""
from __future__ import annotations

from typing import Protocol


class IncomingMessage(Protocol):
    """Raw body plus the delivery handle, which must be resolved exactly once.

    ``ack`` removes the delivery for good; ``nack(requeue=True)`` hands it back to the
    broker for redelivery, ``nack(requeue=False)`` discards it.
    """

    @property
    def body(self) -> bytes: ...

    @property
    def processed(self) -> bool: ...

    async def ack(self) -> None: ...

    async def nack(self, *, requeue: bool = True) -> None: ...
