"""
Query builder -- turns a QueryRequest into one aggregate ClickHouse SELECT.

Shape of the generated statement:

    SELECT timestamp AS t, <expr> AS <field>, ..., <throughput>
    FROM <database>.flows
    WHERE t BETWEEN toDateTime(:time_start) AND toDateTime(:time_end) AND ...
    GROUP BY t, <field>, ...
    ORDER BY t

Filter values are always bound parameters.  Only catalog-derived fragments
(column names, dictionary names, key templates) are written into the SQL text.
Fields that cannot be resolved are dropped and reported in
``BuiltQuery.warnings``; they never fail the whole request.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from flowhouse.catalog.loader import SchemaCatalog, is_identifier
from flowhouse.core.errors import (
    ResolutionError,
    TimeParseError,
    TimeRangeError,
    UnknownFieldError,
)
from flowhouse.core.logging import get_logger
from flowhouse.query.request import QueryRequest
from flowhouse.query.resolver import FieldResolver, split_field_name

logger = get_logger(__name__)

TIME_COLUMN = "timestamp"
BUCKET_ALIAS = "t"
FLOWS_TABLE = "flows"
BUCKET_INTERVAL_S = 10

# Bytes * sample rate -> bits, spread over the bucket interval.  Always the
# last selected column; the pivot step reads it by position.
THROUGHPUT_EXPR = f"sum(size * samplerate) * 8 / {BUCKET_INTERVAL_S}"


# ── Time parsing ─────────────────────────────────────────

def parse_form_time(value: str, utc_offset: str) -> int:
    """Convert a minute-precision form timestamp to epoch seconds.

    ``"2024-01-01T10:00"`` with offset ``"+02:00"`` is 08:00 UTC.
    """
    try:
        parsed = datetime.strptime(f"{value}:00{utc_offset}", "%Y-%m-%dT%H:%M:%S%z")
    except (TypeError, ValueError) as exc:
        raise TimeParseError(value) from exc
    return int(parsed.timestamp())


# ── Result objects ───────────────────────────────────────

@dataclass(frozen=True)
class DroppedField:
    """A breakdown field or filter left out of the statement."""

    field: str
    clause: str  # select | where
    reason: str


@dataclass
class BuiltQuery:
    sql: str
    params: dict[str, Any]
    breakdown: list[str] = field(default_factory=list)
    warnings: list[DroppedField] = field(default_factory=list)


# ── Builder ──────────────────────────────────────────────

class QueryBuilder:
    def __init__(
        self,
        catalog: SchemaCatalog,
        database: str,
        utc_offset: str = "+02:00",
    ):
        if not is_identifier(database):
            raise ValueError(f"Invalid database name {database!r}")
        self._resolver = FieldResolver(catalog)
        self._catalog = catalog
        self._database = database
        self._utc_offset = utc_offset

    def _resolve_known(self, field_name: str) -> str:
        """Resolve a field that must belong to the catalog's allow-list."""
        base, _ = split_field_name(field_name)
        if self._catalog.field(base) is None:
            raise UnknownFieldError(field_name)
        return self._resolver.resolve(field_name)

    def build(self, request: QueryRequest) -> BuiltQuery:
        start = parse_form_time(request.time_start, self._utc_offset)
        end = parse_form_time(request.time_end, self._utc_offset)
        if start > end:
            raise TimeRangeError(start, end)

        warnings: list[DroppedField] = []
        params: dict[str, Any] = {"time_start": start, "time_end": end}

        # ── SELECT clause ────────────────────────────────
        select_parts = [f"{TIME_COLUMN} AS {BUCKET_ALIAS}"]
        selected: list[str] = []
        for field_name in request.breakdown:
            try:
                expr = self._resolve_known(field_name)
            except ResolutionError as exc:
                logger.warning("Dropped field=%s clause=select reason=%s", field_name, exc.reason)
                warnings.append(DroppedField(field_name, "select", exc.reason))
                continue
            select_parts.append(f"{expr} AS {field_name}")
            selected.append(field_name)

        select_parts.append(THROUGHPUT_EXPR)

        # ── WHERE clause ─────────────────────────────────
        conditions = [
            f"{BUCKET_ALIAS} BETWEEN toDateTime(:time_start) AND toDateTime(:time_end)"
        ]
        for idx, (field_name, values) in enumerate(request.filters.items()):
            try:
                expr = self._resolve_known(field_name)
            except ResolutionError as exc:
                logger.warning("Dropped field=%s clause=where reason=%s", field_name, exc.reason)
                warnings.append(DroppedField(field_name, "where", exc.reason))
                continue

            if len(values) == 1:
                params[f"f{idx}"] = values[0]
                conditions.append(f"{expr} = :f{idx}")
            else:
                names = []
                for n, value in enumerate(values):
                    params[f"f{idx}_{n}"] = value
                    names.append(f":f{idx}_{n}")
                conditions.append(f"{expr} IN ({', '.join(names)})")

        # ── GROUP BY clause ──────────────────────────────
        group_parts = [BUCKET_ALIAS, *selected]

        sql = (
            f"SELECT {', '.join(select_parts)} "
            f"FROM {self._database}.{FLOWS_TABLE} "
            f"WHERE {' AND '.join(conditions)} "
            f"GROUP BY {', '.join(group_parts)} "
            f"ORDER BY {BUCKET_ALIAS}"
        )
        logger.info("Query: %s", sql)
        return BuiltQuery(sql=sql, params=params, breakdown=selected, warnings=warnings)
