"""Runtime configuration loaded from the environment (and an optional .env)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

from dotenv import load_dotenv

from errors import ConfigError, StageError

PLACEHOLDER_PROJECT_ID = "YOUR_PROJECT_ID_HERE"

NOISE_PHRASES = (
    "upgrade to our browser",
    "try the duckduckgo browser",
    "fast. free. private",
    "subscribe to our newsletter",
    "accept cookies",
    "privacy policy",
    "terms of service",
    "404 not found",
    "page not found",
    "error 403",
    "access denied",
    "loading...",
    "please wait",
    "javascript required",
)

SUBSTANCE_INDICATORS = (
    "published",
    "author",
    "news",
    "reported",
    "according to",
    "sources",
    "breaking",
    "update",
    "article",
    "story",
)


@dataclass(frozen=True)
class QualitySettings:
    min_length: int = 50
    substantial_length: int = 100
    long_length: int = 500
    noise_phrases: Tuple[str, ...] = NOISE_PHRASES
    substance_indicators: Tuple[str, ...] = SUBSTANCE_INDICATORS


@dataclass(frozen=True)
class ExecutorSettings:
    default_timeout_ms: int = 5000
    wait_default_ms: int = 1000
    navigate_timeout_cap_ms: int = 15000
    back_timeout_cap_ms: int = 10000
    settle_delay_ms: int = 2000
    primary_wait_cap_ms: int = 10000
    fallback_wait_ms: int = 3000
    action_timeout_ms: int = 5000
    extract_wait_cap_ms: int = 5000
    extract_fallback_limit: int = 3
    extract_fallback_min_chars: int = 20
    type_delay_ms: int = 150
    show_browser: bool = False


@dataclass(frozen=True)
class Settings:
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    transcribe_model: str = "whisper-1"
    browserbase_api_key: str = ""
    browserbase_project_id: str = ""
    firecrawl_api_key: str = ""
    turn_timeout_s: float = 180.0
    log_level: str = "INFO"
    quality: QualitySettings = field(default_factory=QualitySettings)
    executor: ExecutorSettings = field(default_factory=ExecutorSettings)

    def require_openai(self) -> None:
        if not self.openai_api_key:
            raise StageError(
                "intent",
                "OpenAI API key is required. Please set OPENAI_API_KEY environment variable",
            )

    def require_browserbase(self) -> None:
        if not self.browserbase_api_key:
            raise StageError(
                "execute",
                "Browserbase API key is required. Please set BROWSERBASE_API_KEY environment variable",
            )
        if not self.browserbase_project_id or self.browserbase_project_id == PLACEHOLDER_PROJECT_ID:
            raise StageError(
                "execute",
                "Browserbase Project ID is required. Please set a valid BROWSERBASE_PROJECT_ID environment variable",
            )


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_number(name: str, default, cast):
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    return _env_number(name, default, int)


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Read settings from the process environment after loading ``.env``.

    Values already present in the environment win over the file, matching
    ``load_dotenv``'s default behaviour.
    """
    load_dotenv(env_file)

    quality = QualitySettings(
        min_length=_env_int("AGENT_QUALITY_MIN_LENGTH", 50),
        substantial_length=_env_int("AGENT_QUALITY_SUBSTANTIAL_LENGTH", 100),
        long_length=_env_int("AGENT_QUALITY_LONG_LENGTH", 500),
    )
    executor = ExecutorSettings(show_browser=_env_flag("AGENT_SHOW_BROWSER"))

    return Settings(
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        openai_model=os.getenv("AGENT_OPENAI_MODEL", "gpt-4o-mini"),
        transcribe_model=os.getenv("AGENT_TRANSCRIBE_MODEL", "whisper-1"),
        browserbase_api_key=os.getenv("BROWSERBASE_API_KEY", ""),
        browserbase_project_id=os.getenv("BROWSERBASE_PROJECT_ID", ""),
        firecrawl_api_key=os.getenv("FIRECRAWL_API_KEY", ""),
        turn_timeout_s=_env_number("AGENT_TURN_TIMEOUT", 180.0, float),
        log_level=os.getenv("AGENT_LOG_LEVEL", "INFO").upper(),
        quality=quality,
        executor=executor,
    )
