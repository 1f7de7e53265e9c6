"""
Centralised application settings loaded from environment / .env file.
"""
from __future__ import annotations

from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings
from dotenv import load_dotenv

_ROOT = Path(__file__).resolve().parents[2]

# Load .env from project root (two levels up from this file)
_ENV_PATH = _ROOT / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseSettings):
    # ── ClickHouse ───────────────────────────────────────
    clickhouse_host: str = "localhost"
    clickhouse_port: int = 9000
    clickhouse_user: str = "default"
    clickhouse_password: str = ""
    clickhouse_database: str = "flowhouse"

    # ── Catalog ──────────────────────────────────────────
    catalog_path: str = str(_ROOT / "schema_catalog" / "flow_catalog.yml")

    # ── Query ────────────────────────────────────────────
    # Offset applied to the minute-precision timestamps sent by the form.
    time_utc_offset: str = "+02:00"
    query_timeout_s: float = 10.0
    flows_ttl_days: int = 14

    # ── App ──────────────────────────────────────────────
    api_port: int = 8000
    log_level: str = "INFO"

    @property
    def database_url(self) -> str:
        return (
            f"clickhouse+native://{self.clickhouse_user}:{self.clickhouse_password}"
            f"@{self.clickhouse_host}:{self.clickhouse_port}/{self.clickhouse_database}"
        )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
