"""
QueryRequest -- the structured form of one /query call.

The HTTP layer hands over the raw (name, value) pairs of the query string;
everything that is not a reserved parameter becomes a filter.
"""
from __future__ import annotations

from typing import Iterable

from pydantic import BaseModel, Field

from flowhouse.core.errors import (
    MissingBreakdownError,
    MissingEndTimeError,
    MissingStartTimeError,
)

BREAKDOWN_PARAM = "breakdown"
TIME_START_PARAM = "time_start"
TIME_END_PARAM = "time_end"
# Form bookkeeping fields, never filters.
FILTER_META_PREFIX = "filter_field"

_RESERVED = {BREAKDOWN_PARAM, TIME_START_PARAM, TIME_END_PARAM}


class QueryRequest(BaseModel):
    """Parsed representation of a flow query."""

    breakdown: list[str] = Field(..., description="Ordered breakdown fields, e.g. ['src_asn']")
    time_start: str = Field(..., description="Local wall-clock time, e.g. '2024-01-01T10:00'")
    time_end: str = Field(..., description="Local wall-clock time, e.g. '2024-01-01T11:00'")
    filters: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Field -> list of allowed values, e.g. {'dst_port': ['443', '80']}",
    )


def group_params(items: Iterable[tuple[str, str]]) -> dict[str, list[str]]:
    """Collapse repeated query-string keys, keeping first-seen key order."""
    grouped: dict[str, list[str]] = {}
    for key, value in items:
        grouped.setdefault(key, []).append(value)
    return grouped


def is_filter_param(name: str) -> bool:
    return name not in _RESERVED and not name.startswith(FILTER_META_PREFIX)


def parse_query_params(items: Iterable[tuple[str, str]]) -> QueryRequest:
    """Build a QueryRequest from query-string pairs.

    Raises MissingBreakdownError, MissingStartTimeError or MissingEndTimeError,
    checked in that order.
    """
    params = group_params(items)

    breakdown = [b for b in params.get(BREAKDOWN_PARAM, []) if b]
    if not breakdown:
        raise MissingBreakdownError()

    starts = params.get(TIME_START_PARAM)
    if not starts or not starts[0]:
        raise MissingStartTimeError()

    ends = params.get(TIME_END_PARAM)
    if not ends or not ends[0]:
        raise MissingEndTimeError()

    # Repeated breakdown fields collapse onto their first position.
    ordered = list(dict.fromkeys(breakdown))

    return QueryRequest(
        breakdown=ordered,
        time_start=starts[0],
        time_end=ends[0],
        filters={k: v for k, v in params.items() if is_filter_param(k)},
    )
