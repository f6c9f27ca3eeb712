from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    App settings.

    Notes:
    - Defaults are local and deterministic (SQLite file next to the repo, no cache backend).
    - The cache backend is configured with a URL + token pair; leaving either unset
      runs the app with caching disabled rather than failing startup.
    - ``redis_url`` must use a redis://, rediss:// or unix:// scheme. Anything else
      (e.g. an https:// REST endpoint) also disables caching, with a warning.
    """

    model_config = SettingsConfigDict(env_prefix="APP_", extra="ignore")

    db_url: str | None = None
    redis_url: str | None = None
    redis_token: str | None = None
    cache_backend: Literal["redis", "memory", "none"] = "redis"
    permission_catalog_path: str | None = None
    company_header: str = "X-Company-Id"
    log_level: str = "INFO"

    def resolved_db_url(self) -> str:
        if self.db_url:
            return self.db_url

        repo_root = Path(__file__).resolve().parents[1]
        db_path = repo_root / "app.db"
        return f"sqlite+aiosqlite:///{db_path}"

    def resolved_permission_catalog_path(self) -> Path:
        if self.permission_catalog_path:
            return Path(self.permission_catalog_path)

        repo_root = Path(__file__).resolve().parents[1]
        return repo_root / "config" / "permissions.yaml"

    @property
    def redis_configured(self) -> bool:
        return bool(self.redis_url and self.redis_token)


@lru_cache
def get_settings() -> Settings:
    return Settings()
