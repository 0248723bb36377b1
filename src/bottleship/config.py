"""
Runtime settings for the Bottleship server, read from environment variables.

- BOTTLESHIP_HOST / BOTTLESHIP_PORT: where ``python -m bottleship`` listens.
- BOTTLESHIP_AI_THINK_DELAY / BOTTLESHIP_AI_CHAIN_DELAY: seconds the scripted
  opponent waits before its first move and between chained hits.
- BOTTLESHIP_ROOM_TTL_SECONDS: idle rooms without listeners are dropped after this.
- BOTTLESHIP_LOG_LEVEL: level passed to ``logging.basicConfig``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Callable


def _get(name: str, default: Any, cast: Callable[[Any], Any] | None = None) -> Any:
    env = os.environ.get(name)
    if env is None or env == "":
        return default
    return cast(env) if cast else env


@dataclass(frozen=True)
class Settings:
    host: str
    port: int
    ai_think_delay: float
    ai_chain_delay: float
    room_ttl_seconds: float
    log_level: str


def load_settings() -> Settings:
    return Settings(
        host=_get("BOTTLESHIP_HOST", "0.0.0.0"),
        port=_get("BOTTLESHIP_PORT", 8000, cast=int),
        ai_think_delay=_get("BOTTLESHIP_AI_THINK_DELAY", 0.7, cast=float),
        ai_chain_delay=_get("BOTTLESHIP_AI_CHAIN_DELAY", 0.5, cast=float),
        room_ttl_seconds=_get("BOTTLESHIP_ROOM_TTL_SECONDS", 60 * 30, cast=float),
        log_level=_get("BOTTLESHIP_LOG_LEVEL", "INFO", cast=str.upper),
    )


SETTINGS = load_settings()
