from __future__ import annotations

import pytest

from agenthub.completion import CompletionAdapter
from agenthub.events import Fragment, Started
from agenthub.personas import AgentRegistry
from agenthub.session import SessionDispatcher
from agenthub.states import SessionState
from tests.fakes import FakeTransport, ScriptedProvider, frames

CONNECTED = {"type": "connected", "content": "Successfully connected to agent server"}
GENERIC_ERROR = {"type": "error", "content": "Sorry, I encountered an error. Please try again."}


def make_session(registry: AgentRegistry, inbound, provider=None, **transport_kwargs):
    transport = FakeTransport(inbound, **transport_kwargs)
    provider = provider or ScriptedProvider(["Here", " is the code"])
    session = SessionDispatcher(transport, registry, CompletionAdapter(provider), session_id="test")
    transport.session = session
    return session, transport, provider


@pytest.mark.asyncio
async def test_frontend_request_streams_one_answer(registry: AgentRegistry) -> None:
    session, transport, provider = make_session(
        registry, frames({"type": "frontend", "content": "Build a button component"})
    )
    await session.run()

    assert transport.sent == [
        CONNECTED,
        {"type": "stream_start", "messageId": "m1"},
        {"type": "stream_chunk", "messageId": "m1", "content": "Here"},
        {"type": "stream_chunk", "messageId": "m1", "content": " is the code"},
        {"type": "stream_end", "messageId": "m1"},
    ]
    assert provider.calls[0]["temperature"] == registry.resolve("frontend").temperature
    assert session.state == SessionState.CLOSED


@pytest.mark.asyncio
async def test_states_follow_the_stream(registry: AgentRegistry) -> None:
    session, transport, _ = make_session(registry, frames({"type": "design", "content": "palette"}))
    await session.run()

    assert transport.states == [
        SessionState.AWAITING_MESSAGE,  # connected
        SessionState.STREAMING,
        SessionState.STREAMING,
        SessionState.STREAMING,
        SessionState.AWAITING_MESSAGE,  # stream_end
    ]


@pytest.mark.asyncio
async def test_unknown_agent_gets_exactly_one_error(registry: AgentRegistry) -> None:
    session, transport, provider = make_session(registry, frames({"type": "unknown_agent", "content": "hi"}))
    await session.run()

    assert transport.sent == [CONNECTED, {"type": "error", "content": "Unknown message type"}]
    assert provider.calls == []
    assert session.metrics.rejected == 1


@pytest.mark.asyncio
async def test_provider_failure_after_two_fragments(registry: AgentRegistry) -> None:
    provider = ScriptedProvider(["Here", " is"], error=RuntimeError("429 rate limited: org-secret"))
    session, transport, _ = make_session(
        registry,
        frames({"type": "backend", "content": "an endpoint"}, {"type": "backend", "content": "again"}),
        provider=provider,
    )
    await session.run()

    first = transport.sent[1:5]
    assert first == [
        {"type": "stream_start", "messageId": "m1"},
        {"type": "stream_chunk", "messageId": "m1", "content": "Here"},
        {"type": "stream_chunk", "messageId": "m1", "content": " is"},
        GENERIC_ERROR,
    ]
    assert not any(f.get("type") == "stream_end" and f.get("messageId") == "m1" for f in transport.sent)
    assert "org-secret" not in str(transport.sent)
    # the session stays usable and never reuses m1
    assert transport.sent[5] == {"type": "stream_start", "messageId": "m2"}
    assert session.metrics.failed == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "bad",
    ["garbage", '{"type": "frontend"}', '{"type": "frontend", "content": ["x"]}', "[1, 2]", b"\xff\xfe\x00"],
)
async def test_malformed_frame_then_valid_frame(registry: AgentRegistry, bad) -> None:
    inbound = [bad] + frames({"type": "fullstack", "content": "wire it up"})
    session, transport, _ = make_session(registry, inbound)
    await session.run()

    assert transport.sent[1] == {"type": "error", "content": "Invalid message format"}
    assert transport.sent[2] == {"type": "stream_start", "messageId": "m1"}
    assert transport.sent[-1] == {"type": "stream_end", "messageId": "m1"}
    assert sum(1 for f in transport.sent if f["type"] == "error") == 1


@pytest.mark.asyncio
async def test_blank_content_is_rejected(registry: AgentRegistry) -> None:
    session, transport, provider = make_session(registry, frames({"type": "frontend", "content": "   "}))
    await session.run()

    assert transport.sent == [CONNECTED, {"type": "error", "content": "Message content must not be empty"}]
    assert provider.calls == []


@pytest.mark.asyncio
async def test_back_to_back_requests_are_processed_in_order(registry: AgentRegistry) -> None:
    inbound = frames(
        {"type": "frontend", "content": "first"},
        {"type": "backend", "content": "second"},
        {"type": "design", "content": "third"},
    )
    session, transport, provider = make_session(registry, inbound)
    await session.run()

    kinds = [(f["type"], f.get("messageId")) for f in transport.sent[1:]]
    assert kinds == [
        ("stream_start", "m1"), ("stream_chunk", "m1"), ("stream_chunk", "m1"), ("stream_end", "m1"),
        ("stream_start", "m2"), ("stream_chunk", "m2"), ("stream_chunk", "m2"), ("stream_end", "m2"),
        ("stream_start", "m3"), ("stream_chunk", "m3"), ("stream_chunk", "m3"), ("stream_end", "m3"),
    ]
    assert [call["messages"][1].content for call in provider.calls] == ["first", "second", "third"]
    assert session.metrics.completed == 3


class ExplodingAdapter:
    """Adapter that breaks its own contract."""

    def __init__(self, mode: str) -> None:
        self.mode = mode

    async def stream(self, instruction, user_text, temperature, message_id, max_tokens=None):
        yield Started(message_id)
        if self.mode == "raise":
            raise KeyError("internal bug")
        yield Fragment(message_id, "dangling")


@pytest.mark.asyncio
@pytest.mark.parametrize("mode", ["raise", "no-terminal"])
async def test_internal_errors_become_error_frames(registry: AgentRegistry, mode: str) -> None:
    transport = FakeTransport(frames({"type": "frontend", "content": "a"}, {"type": "frontend", "content": "b"}))
    session = SessionDispatcher(transport, registry, ExplodingAdapter(mode))  # type: ignore[arg-type]
    await session.run()

    errors = [f for f in transport.sent if f["type"] == "error"]
    assert errors == [{"type": "error", "content": "Failed to process message"}] * 2
    starts = [f["messageId"] for f in transport.sent if f["type"] == "stream_start"]
    assert starts == ["m1", "m2"]


@pytest.mark.asyncio
async def test_disconnect_mid_stream_abandons_completion(registry: AgentRegistry) -> None:
    provider = ScriptedProvider(["a", "b", "c", "d"])
    # connected + stream_start + one chunk, then the peer is gone
    session, transport, _ = make_session(
        registry,
        frames({"type": "frontend", "content": "hi"}, {"type": "frontend", "content": "never read"}),
        provider=provider,
        fail_after=3,
    )
    await session.run()

    assert [f["type"] for f in transport.sent] == ["connected", "stream_start", "stream_chunk"]
    assert provider.closed
    assert len(provider.calls) == 1
    assert session.state == SessionState.CLOSED


@pytest.mark.asyncio
async def test_sessions_do_not_share_ids(registry: AgentRegistry) -> None:
    one, t1, _ = make_session(registry, frames({"type": "frontend", "content": "x"}))
    two, t2, _ = make_session(registry, frames({"type": "frontend", "content": "y"}))
    await one.run()
    await two.run()

    assert t1.sent[1] == t2.sent[1] == {"type": "stream_start", "messageId": "m1"}
