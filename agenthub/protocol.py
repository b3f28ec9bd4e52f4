"""JSON wire frames exchanged over the agent connection.

Server -> client::

    {"type": "connected", "content": str}
    {"type": "stream_start", "messageId": str}
    {"type": "stream_chunk", "messageId": str, "content": str}
    {"type": "stream_end", "messageId": str}
    {"type": "error", "content": str}

Client -> server::

    {"type": <agent id>, "content": str}
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Union

from .errors import EmptyRequestError, MalformedFrameError, MalformedRequestError
from .events import Connected, Ended, Failed, Fragment, Started, StreamEvent
from .personas import AgentRegistry, Persona


CONNECTED_TEXT = "Successfully connected to agent server"
PROVIDER_ERROR_TEXT = "Sorry, I encountered an error. Please try again."
INTERNAL_ERROR_TEXT = "Failed to process message"
TRANSPORT_ERROR_TEXT = "WebSocket error occurred"


@dataclass(frozen=True)
class InboundRequest:
    agent_id: str
    text: str
    persona: Persona


def encode_frame(frame: Dict[str, Any]) -> str:
    return json.dumps(frame, ensure_ascii=False, separators=(",", ":"))


def connected_frame(content: str = CONNECTED_TEXT) -> Dict[str, Any]:
    return {"type": "connected", "content": content}


def error_frame(content: str) -> Dict[str, Any]:
    return {"type": "error", "content": content}


def event_frame(event: StreamEvent) -> Dict[str, Any]:
    if isinstance(event, Started):
        return {"type": "stream_start", "messageId": event.message_id}
    if isinstance(event, Fragment):
        return {"type": "stream_chunk", "messageId": event.message_id, "content": event.text}
    if isinstance(event, Ended):
        return {"type": "stream_end", "messageId": event.message_id}
    if isinstance(event, Failed):
        return error_frame(event.reason)
    raise TypeError(f"not a stream event: {event!r}")


def request_frame(agent_id: str, text: str) -> Dict[str, Any]:
    return {"type": agent_id, "content": text}


def parse_request(raw: Union[str, bytes], registry: AgentRegistry) -> InboundRequest:
    """Decode and validate one inbound frame.

    Checks run in order: JSON, {type: str, content: str} shape, agent lookup,
    non-blank content. Each failure raises the matching ProtocolError.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedRequestError(f"frame is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedRequestError(f"frame is {type(data).__name__}, expected object")
    agent_id = data.get("type")
    content = data.get("content")
    if not isinstance(agent_id, str) or not isinstance(content, str):
        raise MalformedRequestError("frame must carry string 'type' and 'content'")
    persona = registry.resolve(agent_id)
    if not content.strip():
        raise EmptyRequestError(f"empty content for agent {agent_id!r}")
    return InboundRequest(agent_id=persona.agent_id, text=content, persona=persona)


def _field(data: Dict[str, Any], name: str) -> str:
    value = data.get(name)
    if not isinstance(value, str):
        raise MalformedFrameError(f"{data.get('type')} frame missing string {name!r}")
    return value


def parse_server_frame(raw: Union[str, bytes]) -> Union[Connected, StreamEvent]:
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedFrameError(f"frame is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedFrameError(f"frame is {type(data).__name__}, expected object")
    kind = data.get("type")
    if kind == "connected":
        return Connected(_field(data, "content"))
    if kind == "stream_start":
        return Started(_field(data, "messageId"))
    if kind == "stream_chunk":
        return Fragment(_field(data, "messageId"), _field(data, "content"))
    if kind == "stream_end":
        return Ended(_field(data, "messageId"))
    if kind == "error":
        return Failed(_field(data, "content"))
    raise MalformedFrameError(f"unknown frame type {kind!r}")
