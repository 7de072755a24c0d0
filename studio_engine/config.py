"""Process-wide settings, fixed at startup."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_IMAGE_MODEL = "gemini-2.5-flash-image-preview"
DEFAULT_TEMPERATURE = 0.4
DEFAULT_MAX_OUTPUT_TOKENS = 4096
DEFAULT_PORT = 3001

_API_KEY_ENV_VARS = ("GOOGLE_AI_API_KEY", "GEMINI_API_KEY", "GOOGLE_API_KEY")


@dataclass(frozen=True)
class StudioSettings:
    api_key: str | None = None
    image_model: str = DEFAULT_IMAGE_MODEL
    temperature: float = DEFAULT_TEMPERATURE
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS
    provider: str = "gemini"
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    events_path: Path | None = None
    log_level: str = "INFO"


def load_settings(env_file: Path | None = None) -> StudioSettings:
    load_dotenv(env_file)
    events_raw = (os.getenv("STUDIO_EVENTS_PATH") or "").strip()
    return StudioSettings(
        api_key=_first_env(_API_KEY_ENV_VARS),
        image_model=(os.getenv("STUDIO_IMAGE_MODEL") or "").strip() or DEFAULT_IMAGE_MODEL,
        temperature=_env_float("STUDIO_TEMPERATURE", DEFAULT_TEMPERATURE),
        max_output_tokens=_env_int("STUDIO_MAX_OUTPUT_TOKENS", DEFAULT_MAX_OUTPUT_TOKENS),
        provider=(os.getenv("STUDIO_PROVIDER") or "").strip().lower() or "gemini",
        host=(os.getenv("STUDIO_HOST") or "").strip() or "127.0.0.1",
        port=_env_int("STUDIO_PORT", DEFAULT_PORT),
        events_path=Path(events_raw) if events_raw else None,
        log_level=(os.getenv("STUDIO_LOG_LEVEL") or "").strip().upper() or "INFO",
    )


def _first_env(names: tuple[str, ...]) -> str | None:
    for name in names:
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    return None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default
