from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, generate_latest

SESSIONS = Counter(
    "wsbridge_sessions_total",
    "Relay sessions by outcome",
    ["outcome"],  # outcome: completed/dial_failed/rejected
)

ACTIVE_SESSIONS = Gauge(
    "wsbridge_active_sessions",
    "Current relay sessions",
)

RELAYED_MESSAGES = Counter(
    "wsbridge_messages_total",
    "Relayed WebSocket messages",
    ["direction", "type"],  # direction: upstream/downstream, type: text/binary
)

RELAYED_BYTES = Counter(
    "wsbridge_bytes_total",
    "Relayed payload bytes",
    ["direction"],
)

DROPPED_MESSAGES = Counter(
    "wsbridge_dropped_messages_total",
    "Messages dropped because the peer connection was not open",
    ["direction"],
)


def generate_metrics() -> bytes:
    return generate_latest()


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST
