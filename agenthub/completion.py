from __future__ import annotations

import asyncio
import time
from typing import AsyncGenerator, AsyncIterator, Callable, List, Optional

from loguru import logger
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from .events import Ended, Failed, Fragment, Started, StreamEvent
from .llm import get_openai_chat


StartStream = Callable[[List[BaseMessage], float, Optional[int]], AsyncIterator[str]]


def build_messages(instruction: str, user_text: str) -> List[BaseMessage]:
    """System guidance first, then the user's turn. No prior turns."""
    return [SystemMessage(content=instruction), HumanMessage(content=user_text)]


def openai_stream(model: Optional[str] = None, timeout: Optional[float] = None) -> StartStream:
    """Provider backed by LangChain's ChatOpenAI streaming API."""

    async def start_stream(messages: List[BaseMessage], temperature: float, max_tokens: Optional[int]) -> AsyncIterator[str]:
        llm = get_openai_chat(model=model, temperature=temperature, max_tokens=max_tokens, timeout=timeout)
        if llm is None:
            raise RuntimeError("openai_chat not initialized; set OPENAI_API_KEY (and optionally OPENAI_MODEL)")
        async for chunk in llm.astream(messages):
            content = chunk.content
            yield content if isinstance(content, str) else ""

    return start_stream


class CompletionAdapter:
    """Turns a persona instruction plus user text into a stream of events.

    ``stream`` yields ``Started`` before asking the provider for anything, one
    ``Fragment`` per non-empty increment, and exactly one terminal event. Errors
    are reported as ``Failed``; nothing is retried here.
    """

    def __init__(self, start_stream: Optional[StartStream] = None, response_timeout: float = 30.0) -> None:
        self.start_stream = start_stream or openai_stream()
        self.response_timeout = response_timeout

    async def stream(
        self,
        instruction: str,
        user_text: str,
        temperature: float,
        message_id: str,
        max_tokens: Optional[int] = None,
    ) -> AsyncGenerator[StreamEvent, None]:
        yield Started(message_id)
        t0 = time.perf_counter()
        fragments = 0
        iterator: Optional[AsyncIterator[str]] = None
        try:
            iterator = self.start_stream(build_messages(instruction, user_text), temperature, max_tokens)
            while True:
                try:
                    piece = await asyncio.wait_for(anext(iterator), timeout=self.response_timeout)
                except StopAsyncIteration:
                    break
                if not piece:
                    continue
                fragments += 1
                yield Fragment(message_id, piece)
        except asyncio.TimeoutError:
            logger.warning(f"completion_timeout | id={message_id} | after={self.response_timeout}s fragments={fragments}")
            yield Failed(f"provider did not respond within {self.response_timeout:g}s")
            return
        except Exception as e:
            logger.error(f"completion_failed | id={message_id} | fragments={fragments} | {type(e).__name__}: {e}")
            yield Failed(str(e) or type(e).__name__)
            return
        finally:
            await _close(iterator)
        dt = time.perf_counter() - t0
        logger.info(f"completion_done | id={message_id} | fragments={fragments} dt={dt:.2f}s")
        yield Ended(message_id)


async def _close(iterator: Optional[AsyncIterator[str]]) -> None:
    aclose = getattr(iterator, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception as e:
        logger.debug(f"completion_close_failed | {type(e).__name__}: {e}")
