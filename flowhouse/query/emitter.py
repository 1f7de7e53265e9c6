"""
CSV emitter for pivoted series.

One column per composite key (sorted), one row per timestamp (ascending),
``0`` where a key has no value at that timestamp.
"""
from __future__ import annotations

import csv
import datetime
import io
from typing import Any

from flowhouse.core.errors import SerializationError
from flowhouse.query.pivot import PivotedSeries

TIME_HEADER = "t"
_TS_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_timestamp(ts: Any) -> str:
    if isinstance(ts, datetime.datetime):
        return ts.strftime(_TS_FORMAT)
    return str(ts)


def series_to_csv(series: PivotedSeries) -> bytes:
    """Serialise *series*; identical input always yields identical bytes."""
    try:
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        keys = series.keys()
        writer.writerow([TIME_HEADER, *keys])
        for ts in series.timestamps():
            writer.writerow([format_timestamp(ts), *(series.value(ts, k) for k in keys)])
        return buf.getvalue().encode("utf-8")
    except (csv.Error, TypeError, ValueError, UnicodeError) as exc:
        raise SerializationError(f"Unable to write CSV: {exc}") from exc
