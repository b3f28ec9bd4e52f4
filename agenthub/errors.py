"""Exception types shared by the server and the client."""

from __future__ import annotations


class AgentHubError(Exception):
    """Base exception for agenthub."""


class ProtocolError(AgentHubError):
    """A frame that cannot be acted on. ``client_message`` is safe to send back."""

    client_message = "Invalid message format"

    def __init__(self, detail: str = "", client_message: str | None = None) -> None:
        super().__init__(detail or self.client_message)
        if client_message is not None:
            self.client_message = client_message


class MalformedRequestError(ProtocolError):
    """Inbound frame failed to parse or does not have the {type, content} shape."""


class EmptyRequestError(MalformedRequestError):
    """Inbound request whose content is blank after trimming."""

    client_message = "Message content must not be empty"


class UnknownAgentError(ProtocolError):
    """Inbound request names an agent outside the registry."""

    client_message = "Unknown message type"


class MalformedFrameError(ProtocolError):
    """Server frame the client does not understand."""


class TransportClosed(AgentHubError):
    """The underlying connection is gone or unusable."""
