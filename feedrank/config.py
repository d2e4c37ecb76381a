"""
Configuration management using Pydantic BaseSettings.
All values can be overridden via environment variables or a .env file.
"""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── TiDB (MySQL-protocol compatible) ───────────────────────────────────
    tidb_host: str = "tidb"
    tidb_port: int = 4000
    tidb_user: str = "root"
    tidb_password: str = ""
    tidb_database: str = "social_feed"
    # Full SQLAlchemy URL; takes precedence over the tidb_* fields when set
    database_url: Optional[str] = None

    @property
    def sqlalchemy_url(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"mysql+aiomysql://{self.tidb_user}:{self.tidb_password}"
            f"@{self.tidb_host}:{self.tidb_port}/{self.tidb_database}"
        )

    # ── Redis ──────────────────────────────────────────────────────────────
    redis_host: str = "redis"
    redis_port: int = 6379
    feed_cache_ttl_seconds: int = 600    # 10 min per-user ranked feed

    # ── Feed ───────────────────────────────────────────────────────────────
    feed_candidate_limit: int = 500      # most-recent posts scored per request
    feed_page_size: int = 10
    feed_max_page_size: int = 50

    # ── Analytics ──────────────────────────────────────────────────────────
    analytics_window_days: int = 7       # trailing window for PostMetrics
    watch_event_retention_days: int = 90
    watch_batch_max_events: int = 100
    maintenance_recompute_limit: int = 1000

    # ── Cron ───────────────────────────────────────────────────────────────
    cron_secret: Optional[str] = None

    # ── Observability ──────────────────────────────────────────────────────
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"
    tracing_enabled: bool = True
    service_name: str = "feedrank"
    environment: str = "development"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
