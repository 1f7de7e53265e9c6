"""
ClickHouse gateway -- the storage operations the query service relies on.
"""
from __future__ import annotations

from typing import Any

from flowhouse.catalog.loader import is_identifier
from flowhouse.core.errors import DictionarySelectorError, QueryExecutionError
from flowhouse.core.logging import get_logger
from flowhouse.core.utils import Deadline
from flowhouse.db.executor import QueryResult, execute_query, kill_query

logger = get_logger(__name__)


class ClickHouseGateway:
    def __init__(self, database: str):
        if not is_identifier(database):
            raise ValueError(f"Invalid database name {database!r}")
        self._database = database

    @property
    def database_name(self) -> str:
        return self._database

    def query(
        self,
        sql: str,
        params: dict[str, Any] | None = None,
        deadline: Deadline | None = None,
        tag: str | None = None,
    ) -> QueryResult:
        return execute_query(sql, params, deadline, tag)

    def cancel(self, tag: str) -> None:
        kill_query(tag)

    def describe_dictionary(self, name: str) -> list[str]:
        """Return the dictionary's column names, key columns first."""
        if not is_identifier(name):
            raise QueryExecutionError(f"Invalid dictionary name {name!r}")
        result = execute_query(f"DESCRIBE TABLE dictionary('{self._database}.{name}')")
        return [str(row[0]) for row in result.rows]

    def dictionary_values(self, name: str, column: str) -> list[str]:
        """Return every value of *column* in dictionary *name* as text."""
        columns = self.describe_dictionary(name)
        if column not in columns:
            raise DictionarySelectorError(f"Dict {name!r} has no column {column!r}")
        result = execute_query(
            f"SELECT DISTINCT toString({column}) FROM dictionary('{self._database}.{name}')"
        )
        logger.debug("Dict %s.%s returned %d values", name, column, len(result.rows))
        return [str(row[0]) for row in result.rows]
