from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import websockets
from websockets.exceptions import WebSocketException
from loguru import logger

from .errors import MalformedFrameError
from .events import Connected, Ended, Failed, Fragment, Started, StreamEvent
from .protocol import encode_frame, parse_server_frame, request_frame
from .states import ConnectionState


LOCAL_ID_PREFIX = "local-"
CONNECTION_LOST_TEXT = "Connection lost. Please wait for reconnection..."
CONNECTION_FAILED_TEXT = "Connection failed. Please restart the client to try again."
BUSY_TEXT = "Please wait for the current response to finish."
SEND_FAILED_TEXT = "Failed to send message. Please try again."


@dataclass
class ClientMessage:
    id: str
    content: str
    origin: str  # "user" | "agent"
    streaming: bool = False


class Transcript:
    """In-memory conversation rebuilt from local sends and server stream events."""

    def __init__(self) -> None:
        self.messages: List[ClientMessage] = []
        self._by_id: Dict[str, ClientMessage] = {}

    def __len__(self) -> int:
        return len(self.messages)

    def get(self, message_id: str) -> Optional[ClientMessage]:
        return self._by_id.get(message_id)

    def add_user(self, text: str) -> ClientMessage:
        msg = ClientMessage(id=f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex}", content=text, origin="user")
        self._append(msg)
        return msg

    def _append(self, msg: ClientMessage) -> None:
        self.messages.append(msg)
        self._by_id[msg.id] = msg

    def new_connection(self) -> None:
        """Forget server ids from the previous connection.

        Server message ids are only unique within one connection, so a new
        session may reuse them. Entries stay in the transcript; a reply cut
        off by the disconnect stops streaming.
        """
        for msg in self._by_id.values():
            if msg.origin == "agent":
                msg.streaming = False
        self._by_id = {k: v for k, v in self._by_id.items() if v.origin == "user"}

    def apply(self, event: StreamEvent) -> Optional[ClientMessage]:
        """Apply one stream event; returns the touched entry, if any."""
        if isinstance(event, Failed):
            return None
        if isinstance(event, Started):
            if event.message_id in self._by_id:
                logger.warning(f"protocol_violation | duplicate stream_start id={event.message_id}")
                return None
            msg = ClientMessage(id=event.message_id, content="", origin="agent", streaming=True)
            self._append(msg)
            return msg
        msg = self._by_id.get(event.message_id)
        if msg is None or msg.origin != "agent":
            logger.warning(f"protocol_violation | {type(event).__name__} for unknown id={event.message_id}")
            return None
        if isinstance(event, Fragment):
            msg.content += event.text
        elif isinstance(event, Ended):
            msg.streaming = False
        return msg


def _log_notice(text: str) -> None:
    logger.warning(f"client_notice | {text}")


class StreamClient:
    """Duplex client for one agent with bounded reconnection.

    ``run`` drives Connecting -> Open -> Reconnecting -> Connecting until the
    client is closed or ``max_attempts`` consecutive reconnects fail, which
    leaves it in ``FAILED`` after exactly one notice. An open connection resets
    the attempt counter.
    """

    def __init__(
        self,
        url: str,
        agent_id: str,
        max_attempts: int = 3,
        retry_delay: float = 2.0,
        on_notice: Optional[Callable[[str], None]] = None,
        on_update: Optional[Callable[[ClientMessage], None]] = None,
        connect: Optional[Callable[[str], Any]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.url = url
        self.agent_id = agent_id
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.on_notice = on_notice or _log_notice
        self.on_update = on_update
        self._connect = connect or websockets.connect
        self._sleep = sleep
        self.transcript = Transcript()
        self.notices: List[str] = []
        self.state = ConnectionState.CONNECTING
        self.attempts = 0
        self.reconnects = 0
        self.server_greeting: Optional[str] = None
        self._ws: Any = None
        self._pending: Optional[str] = None
        self._closing = False
        self._opened = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._done = asyncio.Event()

    # state ----------------------------------------------------------------

    def _set_state(self, state: ConnectionState) -> None:
        if state != self.state:
            logger.debug(f"client_state | {self.state.value} -> {state.value}")
        self.state = state
        if state == ConnectionState.OPEN:
            self._opened.set()
        else:
            self._opened.clear()
        if state in (ConnectionState.FAILED, ConnectionState.CLOSED):
            self._done.set()

    def notify(self, text: str) -> None:
        self.notices.append(text)
        try:
            self.on_notice(text)
        except Exception:
            logger.exception(f"client_callback_error | on_notice | text={text!r}")

    def _updated(self, msg: ClientMessage) -> None:
        if self.on_update is None:
            return
        try:
            self.on_update(msg)
        except Exception:
            logger.exception(f"client_callback_error | on_update | id={msg.id}")

    @property
    def busy(self) -> bool:
        return not self._idle.is_set()

    async def wait_open(self, timeout: Optional[float] = None) -> bool:
        """Wait until the connection is open; False if the client gave up or closed."""
        opened = asyncio.create_task(self._opened.wait())
        done = asyncio.create_task(self._done.wait())
        try:
            await asyncio.wait({opened, done}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            opened.cancel()
            done.cancel()
        return self.state == ConnectionState.OPEN

    async def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait for the outstanding request, if any, to reach its terminal frame."""
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    # connection loop -------------------------------------------------------

    async def run(self) -> ConnectionState:
        while not self._closing:
            self._set_state(ConnectionState.CONNECTING)
            try:
                async with self._connect(self.url) as ws:
                    if self._closing:
                        # close() ran while the handshake was in flight
                        await ws.close()
                        break
                    self._ws = ws
                    self.attempts = 0
                    self.transcript.new_connection()
                    self._set_state(ConnectionState.OPEN)
                    logger.info(f"client_open | url={self.url} | reconnects={self.reconnects}")
                    async for raw in ws:
                        self.handle_frame(raw)
                logger.info(f"client_closed_by_server | url={self.url}")
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                logger.warning(f"client_connection_error | url={self.url} | {type(e).__name__}: {e}")
            finally:
                self._ws = None
                self._clear_pending()

            if self._closing:
                break
            if self.attempts >= self.max_attempts:
                self._set_state(ConnectionState.FAILED)
                logger.error(f"client_failed | url={self.url} | attempts={self.attempts}")
                self.notify(CONNECTION_FAILED_TEXT)
                return self.state
            self.attempts += 1
            self.reconnects += 1
            self._set_state(ConnectionState.RECONNECTING)
            logger.info(f"client_reconnecting | attempt={self.attempts}/{self.max_attempts} | delay={self.retry_delay}s")
            await self._sleep(self.retry_delay)

        self._set_state(ConnectionState.CLOSED)
        return self.state

    async def close(self) -> None:
        self._closing = True
        ws = self._ws
        if ws is not None:
            await ws.close()
        if self.state != ConnectionState.OPEN:
            self._set_state(ConnectionState.CLOSED)

    # frames ----------------------------------------------------------------

    def handle_frame(self, raw: Any) -> None:
        try:
            frame = parse_server_frame(raw)
        except MalformedFrameError as e:
            logger.warning(f"client_bad_frame | {e}")
            return
        if isinstance(frame, Connected):
            self.server_greeting = frame.content
            logger.debug(f"client_connected | {frame.content}")
            return
        if isinstance(frame, Failed):
            self.notify(frame.reason)
            self._clear_pending()
            return
        msg = self.transcript.apply(frame)
        if isinstance(frame, Started) and msg is not None:
            self._pending = frame.message_id
        elif isinstance(frame, Ended) and frame.message_id == self._pending:
            self._clear_pending()
        if msg is not None:
            self._updated(msg)

    def _clear_pending(self) -> None:
        self._pending = None
        self._idle.set()

    async def send(self, text: str) -> Optional[ClientMessage]:
        """Send one request; returns the local transcript entry, or None if refused."""
        if not text or not text.strip():
            return None
        ws = self._ws
        if self.state != ConnectionState.OPEN or ws is None:
            self.notify(CONNECTION_LOST_TEXT)
            return None
        if self.busy:
            self.notify(BUSY_TEXT)
            return None
        msg = self.transcript.add_user(text)
        self._updated(msg)
        self._idle.clear()
        try:
            await ws.send(encode_frame(request_frame(self.agent_id, text)))
        except (OSError, WebSocketException) as e:
            logger.warning(f"client_send_failed | {type(e).__name__}: {e}")
            self._clear_pending()
            self.notify(SEND_FAILED_TEXT)
        return msg
