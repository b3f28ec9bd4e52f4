from __future__ import annotations

import itertools
import uuid
from contextlib import aclosing
from typing import Any, Dict, Optional, Protocol, Union

from loguru import logger

from .completion import CompletionAdapter
from .errors import ProtocolError, TransportClosed
from .events import Ended, Failed, Fragment, Started
from .protocol import (
    INTERNAL_ERROR_TEXT,
    PROVIDER_ERROR_TEXT,
    InboundRequest,
    connected_frame,
    encode_frame,
    error_frame,
    event_frame,
    parse_request,
)
from .personas import AgentRegistry
from .states import SessionMetrics, SessionState


class Transport(Protocol):
    async def send_text(self, data: str) -> None: ...

    async def receive_text(self) -> Union[str, bytes]: ...


class SessionDispatcher:
    """Per-connection request loop.

    Requests are handled strictly one at a time: the next frame is read only
    after the current stream reached its terminal event, so frames sent while
    a response is streaming wait in the transport and run in arrival order.
    """

    def __init__(
        self,
        transport: Transport,
        registry: AgentRegistry,
        adapter: CompletionAdapter,
        session_id: Optional[str] = None,
    ) -> None:
        self.transport = transport
        self.registry = registry
        self.adapter = adapter
        self.session_id = session_id or uuid.uuid4().hex[:8]
        self.state = SessionState.AWAITING_MESSAGE
        self.metrics = SessionMetrics()
        self._ids = itertools.count(1)

    def next_message_id(self) -> str:
        return f"m{next(self._ids)}"

    async def send(self, frame: Dict[str, Any]) -> None:
        await self.transport.send_text(encode_frame(frame))

    async def run(self) -> None:
        logger.info(f"session_open | sid={self.session_id}")
        try:
            await self.send(connected_frame())
            while True:
                raw = await self.transport.receive_text()
                await self.handle_frame(raw)
        except TransportClosed as e:
            logger.info(f"session_transport_closed | sid={self.session_id} | state={self.state.value} | {e}")
        finally:
            self.state = SessionState.CLOSED
            m = self.metrics
            logger.info(
                f"session_closed | sid={self.session_id} | requests={m.requests} completed={m.completed} "
                f"failed={m.failed} rejected={m.rejected} fragments={m.fragments}"
            )

    async def handle_frame(self, raw: Union[str, bytes]) -> None:
        """Handle one inbound frame. Only TransportClosed escapes."""
        try:
            try:
                request = parse_request(raw, self.registry)
            except ProtocolError as e:
                self.metrics.rejected += 1
                logger.warning(f"session_rejected | sid={self.session_id} | {type(e).__name__}: {e}")
                await self.send(error_frame(e.client_message))
                return
            await self.dispatch(request)
        except TransportClosed:
            raise
        except Exception:
            logger.exception(f"session_frame_error | sid={self.session_id}")
            self.state = SessionState.AWAITING_MESSAGE
            await self.send(error_frame(INTERNAL_ERROR_TEXT))

    async def dispatch(self, request: InboundRequest) -> None:
        persona = request.persona
        message_id = self.next_message_id()
        self.metrics.requests += 1
        self.state = SessionState.DISPATCHING
        logger.info(f"session_dispatch | sid={self.session_id} | agent={persona.agent_id} id={message_id} chars={len(request.text)}")
        events = self.adapter.stream(
            persona.instruction,
            request.text,
            persona.temperature,
            message_id,
            max_tokens=persona.max_tokens,
        )
        async with aclosing(events):
            async for event in events:
                if isinstance(event, Started):
                    self.state = SessionState.STREAMING
                    await self.send(event_frame(event))
                elif isinstance(event, Fragment):
                    self.metrics.fragments += 1
                    await self.send(event_frame(event))
                elif isinstance(event, Ended):
                    self.metrics.completed += 1
                    self.state = SessionState.AWAITING_MESSAGE
                    await self.send(event_frame(event))
                    return
                elif isinstance(event, Failed):
                    # provider detail stays in the log
                    self.metrics.failed += 1
                    self.state = SessionState.AWAITING_MESSAGE
                    logger.error(f"session_stream_failed | sid={self.session_id} | id={message_id} | {event.reason}")
                    await self.send(error_frame(PROVIDER_ERROR_TEXT))
                    return
        raise RuntimeError(f"completion stream {message_id} ended without a terminal event")
