"""
SQL executor.

Every statement runs through `execute_query`, which:
  1. Binds parameters through text() -- values never enter the SQL string
  2. Caps server-side run time (max_execution_time) by the caller's deadline
  3. Returns rows together with each column's declared ClickHouse type

A query may carry a *tag*, written into the statement as a leading comment.
ClickHouse keeps comments in system.processes, so `kill_query` can find and
stop the statement from another thread while its connection is still busy.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from flowhouse.core.config import get_settings
from flowhouse.core.errors import QueryExecutionError
from flowhouse.core.logging import get_logger
from flowhouse.core.utils import Deadline, timer
from flowhouse.db.connection import pooled_connection

logger = get_logger(__name__)

TAG_PREFIX = "flowhouse:"
_TAG_RE = re.compile(r"^[0-9A-Za-z_-]{1,64}$")

# The pattern is assembled server-side so this statement's own text never
# contains the full marker and cannot match itself.
_KILL_SQL = (
    "KILL QUERY WHERE query LIKE concat('%/* ', :prefix, :tag, ' */%') ASYNC"
)


@dataclass
class QueryResult:
    columns: list[tuple[str, str]]  # (name, declared type)
    rows: list[tuple[Any, ...]] = field(default_factory=list)

    @property
    def column_names(self) -> list[str]:
        return [name for name, _ in self.columns]


def _check_tag(tag: str) -> str:
    if not _TAG_RE.match(tag):
        raise QueryExecutionError(f"Invalid query tag {tag!r}")
    return tag


def _with_tag(sql: str, tag: str | None) -> str:
    if tag is None:
        return sql
    return f"/* {TAG_PREFIX}{_check_tag(tag)} */ {sql}"


def _with_time_limit(sql: str, deadline: Deadline | None) -> str:
    if deadline is None:
        seconds = get_settings().query_timeout_s
    else:
        if deadline.expired:
            raise QueryExecutionError("Deadline exceeded before the query was sent")
        seconds = deadline.remaining()
    return f"{sql} SETTINGS max_execution_time = {max(1, math.ceil(seconds))}"


def execute_query(
    sql: str,
    params: dict[str, Any] | None = None,
    deadline: Deadline | None = None,
    tag: str | None = None,
) -> QueryResult:
    """Execute a SELECT and return its rows and column types.

    Raises
    ------
    QueryExecutionError
        If the deadline already passed or ClickHouse rejects the query.
    """
    statement = _with_tag(_with_time_limit(sql, deadline), tag)
    logger.info("Executing SQL (%d chars) tag=%s", len(statement), tag)

    try:
        with timer() as t, pooled_connection() as conn:
            result = conn.execute(text(statement), params or {})
            description = result.cursor.description or []
            columns = [(str(d[0]), str(d[1])) for d in description]
            rows = [tuple(row) for row in result.fetchall()]
    except SQLAlchemyError as exc:
        logger.exception("Query failed")
        raise QueryExecutionError(f"Query failed: {exc}") from exc

    logger.info("Returned %d rows in %d ms", len(rows), t["elapsed_ms"])
    return QueryResult(columns=columns, rows=rows)


def execute_statement(sql: str, params: dict[str, Any] | None = None) -> None:
    """Run a statement whose result is not needed (DDL, KILL)."""
    try:
        with pooled_connection() as conn:
            conn.execute(text(sql), params or {})
            conn.commit()
    except SQLAlchemyError as exc:
        logger.exception("Statement failed")
        raise QueryExecutionError(f"Statement failed: {exc}") from exc


def kill_query(tag: str) -> None:
    """Ask ClickHouse to stop the running query tagged *tag*.

    Runs on its own pooled connection; the connection holding the tagged
    query is released once the server aborts it.
    """
    execute_statement(_KILL_SQL, {"prefix": TAG_PREFIX, "tag": _check_tag(tag)})
    logger.info("Kill requested for query tag=%s", tag)
