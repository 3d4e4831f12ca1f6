"""Shared worker identity used in structured log context."""

SERVICE_NAME = "delivery"
