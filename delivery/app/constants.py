"""Worker-level constants shared across modules."""
from __future__ import annotations

# Reserved payload key carrying the requeue counter; never forwarded to the target.
ITERATION_KEY = "iteration"

DEFAULT_LOG_CATEGORY = "application"


class DELIVERY_OUTCOME:
    DELIVERED = "DELIVERED"
    REQUEUED = "REQUEUED"
    ABANDONED = "ABANDONED"
