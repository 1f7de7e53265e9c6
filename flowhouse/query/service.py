"""
Flow query service -- orchestrates parse -> build -> execute -> pivot -> CSV.

Also serves the catalog-driven lookups behind the query form: the field
groups (plain fields plus dictionary attributes) and the distinct values of
one dictionary column.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol

from flowhouse.catalog.loader import DICT_SEPARATOR, SchemaCatalog, is_identifier
from flowhouse.core.errors import DictionarySelectorError, FlowhouseError
from flowhouse.core.logging import get_logger
from flowhouse.core.utils import Deadline, timer
from flowhouse.db.executor import QueryResult
from flowhouse.query.builder import BuiltQuery, QueryBuilder
from flowhouse.query.emitter import series_to_csv
from flowhouse.query.pivot import PivotedSeries, ResultPivoter, capitalize
from flowhouse.query.request import parse_query_params

logger = get_logger(__name__)


class FlowStore(Protocol):
    """Storage operations used by the service (see ClickHouseGateway)."""

    @property
    def database_name(self) -> str: ...

    def query(
        self,
        sql: str,
        params: dict[str, Any] | None = None,
        deadline: Deadline | None = None,
        tag: str | None = None,
    ) -> QueryResult: ...

    def cancel(self, tag: str) -> None: ...

    def describe_dictionary(self, name: str) -> list[str]: ...

    def dictionary_values(self, name: str, column: str) -> list[str]: ...


@dataclass
class QueryOutcome:
    query: BuiltQuery
    series: PivotedSeries
    csv: bytes
    latency_ms: int = 0

    @property
    def dropped(self) -> list[str]:
        return [w.field for w in self.query.warnings]


@dataclass(frozen=True)
class FieldOption:
    name: str
    label: str


@dataclass
class FieldGroup:
    name: str
    label: str
    fields: list[FieldOption] = field(default_factory=list)


@dataclass
class FieldCatalogView:
    groups: list[FieldGroup]
    breakdown_len: int


class FlowQueryService:
    def __init__(
        self,
        catalog: SchemaCatalog,
        store: FlowStore,
        utc_offset: str = "+02:00",
        timeout_s: float = 10.0,
    ):
        self.catalog = catalog
        self.store = store
        self.timeout_s = timeout_s
        self.builder = QueryBuilder(catalog, store.database_name, utc_offset)
        self.pivoter = ResultPivoter(catalog)

    # ── /query ───────────────────────────────────────

    def run(
        self,
        items: Iterable[tuple[str, str]],
        deadline: Deadline | None = None,
        tag: str | None = None,
    ) -> QueryOutcome:
        """End-to-end: query-string pairs -> CSV.

        Raises QueryValidationError before any SQL is built when required
        parameters are missing, QueryExecutionError when ClickHouse fails and
        SerializationError when the CSV cannot be written.  *tag* marks the
        ClickHouse statement so that `cancel` can stop it.
        """
        with timer() as t:
            request = parse_query_params(items)
            built = self.builder.build(request)
            if deadline is None:
                deadline = Deadline.after(self.timeout_s)
            result = self.store.query(built.sql, built.params, deadline, tag=tag)
            series = self.pivoter.pivot(result)
            body = series_to_csv(series)

        logger.info(
            "Query done  rows=%d  timestamps=%d  dropped=%s  latency_ms=%d",
            len(result.rows), len(series), [w.field for w in built.warnings], t["elapsed_ms"],
        )
        return QueryOutcome(query=built, series=series, csv=body, latency_ms=t["elapsed_ms"])

    def cancel(self, tag: str) -> None:
        """Stop the in-flight query started by `run` with the same *tag*."""
        logger.warning("Cancelling query tag=%s", tag)
        self.store.cancel(tag)

    # ── /dict_values ─────────────────────────────────

    def dictionary_values(self, selector: str) -> list[str]:
        """Distinct, non-empty, sorted values for ``<field>__<column>``."""
        field_name, sep, column = selector.partition(DICT_SEPARATOR)
        if not sep or not field_name or not is_identifier(column) or DICT_SEPARATOR in column:
            raise DictionarySelectorError(f"Invalid format {selector!r}")

        binding = self.catalog.dict_for(field_name)
        if binding is None:
            raise DictionarySelectorError(f"No dict bound to field {field_name!r}")

        values = self.store.dictionary_values(binding.dict_name, column)
        return sorted({v for v in values if v != ""})

    # ── /fields ──────────────────────────────────────

    def field_groups(self) -> FieldCatalogView:
        """Group every field with the dictionary attributes that enrich it."""
        groups: list[FieldGroup] = []
        breakdown_len = 0

        for descriptor in self.catalog.fields:
            group = FieldGroup(name=descriptor.name, label=descriptor.label)
            group.fields.append(FieldOption(descriptor.name, descriptor.label))
            groups.append(group)

            for binding in self.catalog.dicts_for(descriptor.name):
                try:
                    dict_columns = self.store.describe_dictionary(binding.dict_name)
                except FlowhouseError:
                    logger.warning(
                        "Unable to describe dict %s for field %s -- skipping its attributes",
                        binding.dict_name, descriptor.name, exc_info=True,
                    )
                    continue

                for attr in dict_columns[binding.key_arity:]:
                    group.fields.append(FieldOption(
                        name=f"{descriptor.name}{DICT_SEPARATOR}{attr}",
                        label=f"{descriptor.label} {capitalize(attr)}",
                    ))
                    breakdown_len += 1

            breakdown_len += 2

        return FieldCatalogView(groups=groups, breakdown_len=breakdown_len)
