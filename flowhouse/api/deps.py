"""
FastAPI dependencies -- one shared, read-only service per process.
"""
from __future__ import annotations

from functools import lru_cache

from flowhouse.catalog.loader import load_catalog
from flowhouse.core.config import get_settings
from flowhouse.db.gateway import ClickHouseGateway
from flowhouse.query.service import FlowQueryService


@lru_cache
def get_service() -> FlowQueryService:
    settings = get_settings()
    return FlowQueryService(
        catalog=load_catalog(settings.catalog_path),
        store=ClickHouseGateway(settings.clickhouse_database),
        utc_offset=settings.time_utc_offset,
        timeout_s=settings.query_timeout_s,
    )
