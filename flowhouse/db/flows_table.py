"""
Flows table bootstrap.

The table is created on startup via `ensure_flows_table()`.  Column names are
the catalog's field names; virtual prefix fields are stored as an address
column plus a prefix-length column.
"""
from __future__ import annotations

from flowhouse.core.config import get_settings
from flowhouse.core.logging import get_logger
from flowhouse.db.executor import execute_statement
from flowhouse.query.builder import FLOWS_TABLE

logger = get_logger(__name__)


def create_table_sql(database: str, ttl_days: int) -> str:
    return f"""
CREATE TABLE IF NOT EXISTS {database}.{FLOWS_TABLE} (
    agent           IPv6,
    int_in          UInt32,
    int_out         UInt32,
    src_ip_addr     IPv6,
    dst_ip_addr     IPv6,
    src_ip_pfx_addr IPv6,
    src_ip_pfx_len  UInt8,
    dst_ip_pfx_addr IPv6,
    dst_ip_pfx_len  UInt8,
    src_asn         UInt32,
    dst_asn         UInt32,
    ip_protocol     UInt8,
    src_port        UInt16,
    dst_port        UInt16,
    timestamp       DateTime,
    size            UInt64,
    packets         UInt64,
    samplerate      UInt64
) ENGINE = MergeTree()
PARTITION BY toStartOfTenMinutes(timestamp)
ORDER BY (timestamp)
TTL timestamp + INTERVAL {int(ttl_days)} DAY
SETTINGS index_granularity = 8192
"""


def ensure_flows_table() -> None:
    """Create the flows table if it doesn't exist."""
    settings = get_settings()
    execute_statement(create_table_sql(settings.clickhouse_database, settings.flows_ttl_days))
    logger.info("Flows table '%s.%s' ensured", settings.clickhouse_database, FLOWS_TABLE)
