"""Lifecycle of the RabbitMQ queue client."""
from enum import Enum


class QueueClientState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    # Connected, prefetch applied; publish is allowed.
    READY = "READY"
    # consume() is dispatching deliveries.
    RUNNING = "RUNNING"
    # Stop requested: consumer cancelled, waiting for the in-flight handler.
    DRAINING = "DRAINING"
    STOPPED = "STOPPED"
    CLOSED = "CLOSED"
