from wsbridge.observability.logs import configure_logging
from wsbridge.observability.metrics import (
    ACTIVE_SESSIONS,
    DROPPED_MESSAGES,
    RELAYED_BYTES,
    RELAYED_MESSAGES,
    SESSIONS,
    generate_metrics,
    get_content_type,
)

__all__ = [
    "SESSIONS",
    "ACTIVE_SESSIONS",
    "RELAYED_MESSAGES",
    "RELAYED_BYTES",
    "DROPPED_MESSAGES",
    "generate_metrics",
    "get_content_type",
    "configure_logging",
]
