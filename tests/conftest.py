from __future__ import annotations

import pytest

from agenthub.config import Settings
from agenthub.llm import _build_chat
from agenthub.personas import AgentRegistry, build_registry


@pytest.fixture
def registry() -> AgentRegistry:
    return build_registry()


@pytest.fixture
def settings() -> Settings:
    return Settings(prompts_dir=None)


@pytest.fixture(autouse=True)
def _fresh_llm_cache():
    _build_chat.cache_clear()
    yield
    _build_chat.cache_clear()
