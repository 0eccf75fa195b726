from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


def _env_optional(name: str) -> Optional[str]:
    value = os.getenv(name, "").strip()
    return value or None


@dataclass(frozen=True)
class Settings:
    """Runtime configuration, built once and passed to the components that need it."""

    # Completion provider
    llm_provider: str = "openai"
    llm_api_key: str = ""
    llm_base_url: str = "https://openrouter.ai/api/v1"
    llm_model: str = "openai/gpt-3.5-turbo"
    llm_timeout_s: float = 30.0
    llm_max_attempts: int = 1
    extraction_fallback_on_upstream_error: bool = False

    # Google Calendar
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_redirect_uri: str = "http://localhost:8000/auth/google/callback"
    google_calendar_id: str = "primary"

    # Notion
    notion_client_id: Optional[str] = None
    notion_client_secret: Optional[str] = None
    notion_redirect_uri: str = "http://localhost:8000/auth/notion/callback"
    notion_database_id: Optional[str] = None
    notion_base_url: str = "https://api.notion.com/v1"

    # Dispatch
    integration_timeout_s: float = 30.0
    dispatch_multi_platform: bool = False
    event_duration_min: int = 60

    # Storage
    database_url: Optional[str] = None
    token_encryption_key: Optional[str] = None

    # OAuth login state, signed so a callback can only connect the user who started it
    oauth_state_secret: Optional[str] = None
    oauth_state_ttl_s: int = 600

    # Where the OAuth callbacks send the browser afterwards
    frontend_url: str = "http://localhost:3000"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            llm_provider=os.getenv("LLM_PROVIDER", "openai").strip().lower(),
            llm_api_key=os.getenv("LLM_API_KEY", os.getenv("OPENROUTER_API_KEY", "")).strip(),
            llm_base_url=os.getenv("LLM_BASE_URL", "https://openrouter.ai/api/v1").strip(),
            llm_model=os.getenv("LLM_MODEL", "openai/gpt-3.5-turbo").strip(),
            llm_timeout_s=float(os.getenv("LLM_TIMEOUT_S", "30")),
            llm_max_attempts=max(1, int(os.getenv("LLM_MAX_ATTEMPTS", "1"))),
            extraction_fallback_on_upstream_error=_env_bool(
                "EXTRACTION_FALLBACK_ON_UPSTREAM_ERROR", "false"
            ),
            google_client_id=_env_optional("GOOGLE_CLIENT_ID"),
            google_client_secret=_env_optional("GOOGLE_CLIENT_SECRET"),
            google_redirect_uri=os.getenv(
                "GOOGLE_REDIRECT_URI", "http://localhost:8000/auth/google/callback"
            ),
            google_calendar_id=os.getenv("GOOGLE_CALENDAR_ID", "primary"),
            notion_client_id=_env_optional("NOTION_CLIENT_ID"),
            notion_client_secret=_env_optional("NOTION_CLIENT_SECRET"),
            notion_redirect_uri=os.getenv(
                "NOTION_REDIRECT_URI", "http://localhost:8000/auth/notion/callback"
            ),
            notion_database_id=_env_optional("NOTION_DATABASE_ID"),
            notion_base_url=os.getenv("NOTION_BASE_URL", "https://api.notion.com/v1").strip(),
            integration_timeout_s=float(os.getenv("INTEGRATION_TIMEOUT_S", "30")),
            dispatch_multi_platform=_env_bool("DISPATCH_MULTI_PLATFORM", "false"),
            event_duration_min=int(os.getenv("EVENT_DURATION_MIN", "60")),
            database_url=_env_optional("DATABASE_URL"),
            token_encryption_key=_env_optional("TOKEN_ENCRYPTION_KEY"),
            oauth_state_secret=_env_optional("OAUTH_STATE_SECRET"),
            oauth_state_ttl_s=int(os.getenv("OAUTH_STATE_TTL_S", "600")),
            frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/"),
        )
