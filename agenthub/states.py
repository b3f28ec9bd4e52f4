from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SessionState(Enum):
    AWAITING_MESSAGE = "awaiting_message"
    DISPATCHING = "dispatching"
    STREAMING = "streaming"
    CLOSED = "closed"


class ConnectionState(Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    FAILED = "failed"
    CLOSED = "closed"


@dataclass
class SessionMetrics:
    requests: int = 0
    completed: int = 0
    failed: int = 0
    rejected: int = 0
    fragments: int = 0
