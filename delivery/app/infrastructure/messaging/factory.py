"""Message queue factory: selects implementation from config. Only place that imports concrete queues."""
from __future__ import annotations

from delivery.app.config.settings import Settings
from delivery.app.infrastructure.messaging.inmemory.in_memory_queue import InMemoryQueue
from delivery.app.infrastructure.messaging.rabbitmq.rabbitmq_queue import RabbitMQQueue
from delivery.app.ports.message_queue import MessageQueue


def create_message_queue(settings: Settings) -> MessageQueue:
    backend = settings.queue_backend.strip().lower()

    if backend == "rabbitmq":
        return RabbitMQQueue(settings)

    if backend == "inmemory":
        return InMemoryQueue()

    raise ValueError(f"Unsupported queue backend: {backend}")
