from __future__ import annotations

from typing import Optional, Union

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, status
from loguru import logger
from starlette.websockets import WebSocketState

from .completion import CompletionAdapter, openai_stream
from .config import Settings, load_settings
from .errors import TransportClosed
from .personas import AgentRegistry, build_registry
from .protocol import TRANSPORT_ERROR_TEXT, encode_frame, error_frame
from .session import SessionDispatcher


class WebSocketTransport:
    """Adapts a Starlette WebSocket to the dispatcher's transport interface."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket

    async def receive_text(self) -> Union[str, bytes]:
        try:
            message = await self.websocket.receive()
        except (WebSocketDisconnect, RuntimeError) as e:
            raise TransportClosed(f"receive failed: {e}") from e
        if message["type"] == "websocket.disconnect":
            raise TransportClosed(f"client disconnected code={message.get('code')}")
        if message.get("text") is not None:
            return message["text"]
        # binary frames are parsed as UTF-8 JSON like text frames
        if message.get("bytes") is not None:
            return message["bytes"]
        return ""

    async def send_text(self, data: str) -> None:
        if self.websocket.client_state != WebSocketState.CONNECTED:
            raise TransportClosed("socket is no longer connected")
        try:
            await self.websocket.send_text(data)
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            raise TransportClosed(f"send failed: {type(e).__name__}: {e}") from e


def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[AgentRegistry] = None,
    adapter: Optional[CompletionAdapter] = None,
) -> FastAPI:
    settings = settings or load_settings()
    registry = registry or build_registry(settings.prompts_dir, settings.max_tokens)
    adapter = adapter or CompletionAdapter(
        openai_stream(model=settings.model, timeout=settings.response_timeout),
        response_timeout=settings.response_timeout,
    )

    app = FastAPI(title="agenthub")
    app.state.settings = settings
    app.state.registry = registry
    app.state.adapter = adapter

    @app.get("/api/health")
    async def health() -> dict:
        return {"status": "healthy"}

    async def agent_socket(websocket: WebSocket) -> None:
        offered = list(websocket.scope.get("subprotocols") or [])
        if settings.reject_protocol and settings.reject_protocol in offered:
            logger.debug(f"ws_rejected | protocol={settings.reject_protocol} | client={websocket.client}")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return
        await websocket.accept(subprotocol=offered[0] if offered else None)
        logger.info(f"ws_accepted | client={websocket.client}")
        transport = WebSocketTransport(websocket)
        session = SessionDispatcher(transport, registry, adapter)
        try:
            await session.run()
        except Exception:
            logger.exception(f"ws_error | sid={session.session_id}")
            try:
                await transport.send_text(encode_frame(error_frame(TRANSPORT_ERROR_TEXT)))
            except TransportClosed as e:
                logger.debug(f"ws_error_frame_dropped | sid={session.session_id} | {e}")

    app.add_api_websocket_route("/", agent_socket)
    app.add_api_websocket_route("/ws", agent_socket)

    logger.info(f"app_ready | agents={','.join(registry.ids())} | model={settings.model}")
    return app
