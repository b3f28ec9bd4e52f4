from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

from loguru import logger
from langchain_openai import ChatOpenAI

from . import config  # noqa: F401  (loads .env before the key is read)


def get_openai_chat(
    model: Optional[str] = None,
    temperature: float = 0.7,
    max_tokens: Optional[int] = None,
    timeout: Optional[float] = None,
) -> Optional[ChatOpenAI]:
    """Return a cached streaming ChatOpenAI client using env configuration.

    One client per (model, temperature, max_tokens, timeout, key); personas
    share a client when their sampling settings match. The key is read on
    every call, so setting it later in the process takes effect.

    Env vars:
      - OPENAI_API_KEY (required)
      - OPENAI_MODEL (optional; default: gpt-4o)
    """
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        logger.error("OPENAI_API_KEY not set; cannot initialize OpenAI chat client")
        return None
    mdl = model or os.getenv("OPENAI_MODEL", "gpt-4o")
    return _build_chat(mdl, temperature, max_tokens, timeout, api_key)


@lru_cache(maxsize=16)
def _build_chat(
    model: str,
    temperature: float,
    max_tokens: Optional[int],
    timeout: Optional[float],
    api_key: str,
) -> ChatOpenAI:
    logger.debug(f"Initializing OpenAI chat model={model} temperature={temperature} max_tokens={max_tokens}")
    kwargs = {"model": model, "temperature": temperature, "api_key": api_key, "streaming": True}
    if max_tokens:
        kwargs["max_tokens"] = max_tokens
    if timeout:
        kwargs["timeout"] = timeout
    return ChatOpenAI(**kwargs)

