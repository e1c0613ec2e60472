from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field


def _resolve_home() -> Path:
    override = os.getenv("FOUNDEROS_HOME", "").strip()
    if override:
        return Path(override).expanduser().resolve()
    return Path(__file__).parent.resolve()


def _env_list(name: str) -> list[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, "") or default)
    except ValueError:
        return default


class Settings(BaseModel):
    home: Path = Field(default_factory=_resolve_home)
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("FOUNDEROS_DB_PATH", "") or _resolve_home() / "data" / "founderos.db"
        )
    )

    # The HTTP and MCP surfaces act on behalf of one tenant.
    tenant_id: str = Field(default_factory=lambda: os.getenv("FOUNDEROS_TENANT_ID", "") or "demo-tenant")

    apify_token: str = Field(default_factory=lambda: os.getenv("APIFY_TOKEN", ""))
    apify_api_url: str = Field(default_factory=lambda: os.getenv("APIFY_API_URL", "") or "https://api.apify.com")
    apify_wait_seconds: int = Field(default_factory=lambda: _env_int("APIFY_WAIT_SECONDS", 120))
    rss_feeds: list[str] = Field(default_factory=lambda: _env_list("FOUNDEROS_RSS_FEEDS"))

    user_agent: str = "FounderOSBot/1.0 (+https://founderos.local)"
    request_timeout_seconds: float = 15.0

    llm_provider: str = Field(default_factory=lambda: os.getenv("LLM_PROVIDER", "") or "rule-based")
    llm_model: str = Field(default_factory=lambda: os.getenv("LLM_MODEL", ""))

    def ensure_directories(self) -> None:
        self.database_path.parent.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
