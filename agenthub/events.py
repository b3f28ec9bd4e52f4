"""Stream events produced by the completion adapter and replayed by the client.

A completion stream is always ``Started``, zero or more ``Fragment``, then exactly
one of ``Ended`` / ``Failed``. ``Connected`` is the informational frame a server
sends once per connection; it is not part of any stream.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Started:
    message_id: str


@dataclass(frozen=True)
class Fragment:
    message_id: str
    text: str


@dataclass(frozen=True)
class Ended:
    message_id: str


@dataclass(frozen=True)
class Failed:
    reason: str


@dataclass(frozen=True)
class Connected:
    content: str


StreamEvent = Union[Started, Fragment, Ended, Failed]
TERMINAL_EVENTS = (Ended, Failed)


def is_terminal(event: StreamEvent) -> bool:
    return isinstance(event, TERMINAL_EVENTS)
