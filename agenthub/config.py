from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from loguru import logger


ROOT = Path(__file__).resolve().parents[1]

# Load env from common locations early so OPENAI_API_KEY is visible to the llm module
for _env_path in (ROOT / ".env", Path.cwd() / ".env"):
    if _env_path.is_file():
        load_dotenv(dotenv_path=str(_env_path), override=False)
        break


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"config_invalid | {name}={raw!r} is not an int; using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"config_invalid | {name}={raw!r} is not a number; using {default}")
        return default


@dataclass(frozen=True)
class Settings:
    """Process configuration, read once from the environment.

    Env vars:
      - OPENAI_MODEL (default: gpt-4o)
      - OPENAI_MAX_TOKENS (default: 1500)
      - OPENAI_TIMEOUT seconds to wait for the next streamed increment (default: 30)
      - AGENTHUB_HOST / AGENTHUB_PORT (default: 0.0.0.0 / 5000)
      - AGENTHUB_REJECT_PROTOCOL sub-protocol reserved for dev tooling (default: vite-hmr)
      - AGENTHUB_LOG_LEVEL (default: INFO)
      - PROMPTS_DIR persona instruction overrides (default: ./prompts)
      - AGENTHUB_MAX_RECONNECTS / AGENTHUB_RECONNECT_DELAY client retry policy (default: 3 / 2s)
    """

    model: str = "gpt-4o"
    max_tokens: int = 1500
    response_timeout: float = 30.0
    host: str = "0.0.0.0"
    port: int = 5000
    reject_protocol: str = "vite-hmr"
    log_level: str = "INFO"
    prompts_dir: Optional[Path] = None
    max_reconnects: int = 3
    reconnect_delay: float = 2.0


def load_settings() -> Settings:
    prompts = os.getenv("PROMPTS_DIR")
    return Settings(
        model=os.getenv("OPENAI_MODEL", "gpt-4o"),
        max_tokens=_env_int("OPENAI_MAX_TOKENS", 1500),
        response_timeout=_env_float("OPENAI_TIMEOUT", 30.0),
        host=os.getenv("AGENTHUB_HOST", "0.0.0.0"),
        port=_env_int("AGENTHUB_PORT", 5000),
        reject_protocol=os.getenv("AGENTHUB_REJECT_PROTOCOL", "vite-hmr"),
        log_level=os.getenv("AGENTHUB_LOG_LEVEL", "INFO").upper(),
        prompts_dir=Path(prompts) if prompts else ROOT / "prompts",
        max_reconnects=max(0, _env_int("AGENTHUB_MAX_RECONNECTS", 3)),
        reconnect_delay=max(0.0, _env_float("AGENTHUB_RECONNECT_DELAY", 2.0)),
    )


def configure_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), colorize=True, format="{time:HH:mm:ss} | {level} | {message}")
