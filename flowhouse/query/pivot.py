"""
Result pivoter -- folds aggregate rows into a sparse, time-indexed series.

Every row is ``(t, <breakdown value>..., <throughput>)``.  The breakdown
values are decoded according to the column's declared ClickHouse type and
joined into one key such as ``Src.AS=65001;Dst.Port=443``.
"""
from __future__ import annotations

import ipaddress
from typing import Any, Callable

from flowhouse.catalog.loader import DICT_SEPARATOR, SchemaCatalog
from flowhouse.core.errors import QueryExecutionError, UnsupportedColumnTypeError
from flowhouse.db.executor import QueryResult


# ── Column decoding ──────────────────────────────────────

_WRAPPERS = ("Nullable(", "LowCardinality(")


def base_type(type_name: str) -> str:
    """Strip Nullable(...) / LowCardinality(...) wrappers."""
    type_name = type_name.strip()
    changed = True
    while changed:
        changed = False
        for wrapper in _WRAPPERS:
            if type_name.startswith(wrapper) and type_name.endswith(")"):
                type_name = type_name[len(wrapper):-1].strip()
                changed = True
    return type_name


def format_ip(value: Any) -> str:
    """Render an address the way the flow tooling prints it.

    IPv4-mapped IPv6 addresses (the storage form of IPv4) come out dotted.
    """
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        addr = value
    elif isinstance(value, (bytes, bytearray)):
        addr = ipaddress.ip_address(bytes(value))
    else:
        addr = ipaddress.ip_address(value)
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        return str(addr.ipv4_mapped)
    return str(addr)


def _format_uint(value: Any) -> str:
    return str(int(value))


def _format_text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace").rstrip("\x00")
    return str(value)


_DECODERS: dict[str, Callable[[Any], str]] = {
    "UInt8": _format_uint,
    "UInt16": _format_uint,
    "UInt32": _format_uint,
    "UInt64": _format_uint,
    "String": _format_text,
    "IPv4": format_ip,
    "IPv6": format_ip,
}


def decoder_for(column: str, type_name: str) -> Callable[[Any], str]:
    base = base_type(type_name)
    if base.startswith("FixedString("):
        return _format_text
    try:
        return _DECODERS[base]
    except KeyError:
        raise UnsupportedColumnTypeError(column, type_name) from None


def capitalize(word: str) -> str:
    """Upper-case the first letter only; ``org_name`` -> ``Org_name``, ``ASName`` stays."""
    return word[:1].upper() + word[1:]


def readable_label(column: str, catalog: SchemaCatalog) -> str:
    """``src_asn__org_name`` -> ``Src.AS.Org_name``."""
    label = column
    for f in catalog.fields:
        if label.startswith(f.name):
            label = f.short_label + label[len(f.name):]
            break

    if DICT_SEPARATOR not in label:
        return label

    base, _, sub = label.partition(DICT_SEPARATOR)
    return f"{base}.{capitalize(sub)}"


# ── Series ───────────────────────────────────────────────

class PivotedSeries:
    """timestamp -> composite key -> value."""

    def __init__(self) -> None:
        self._points: dict[Any, dict[str, int]] = {}

    def add(self, ts: Any, key: str, value: int) -> None:
        # A repeated (ts, key) pair overwrites the earlier value.
        self._points.setdefault(ts, {})[key] = value

    def timestamps(self) -> list[Any]:
        return sorted(self._points)

    def keys(self) -> list[str]:
        seen: set[str] = set()
        for per_ts in self._points.values():
            seen.update(per_ts)
        return sorted(seen)

    def value(self, ts: Any, key: str) -> int:
        return self._points.get(ts, {}).get(key, 0)

    def at(self, ts: Any) -> dict[str, int]:
        return dict(self._points.get(ts, {}))

    def __len__(self) -> int:
        return len(self._points)


class ResultPivoter:
    def __init__(self, catalog: SchemaCatalog):
        self._catalog = catalog

    def pivot(self, result: QueryResult) -> PivotedSeries:
        """Fold rows into a series.

        Raises
        ------
        QueryExecutionError
            If the result has fewer than two columns.
        UnsupportedColumnTypeError
            If a breakdown column has a type with no decoder.
        """
        if len(result.columns) < 2:
            raise QueryExecutionError(
                f"Expected a time column and a value column, got {len(result.columns)} column(s)"
            )

        breakdown = result.columns[1:-1]
        labels = [readable_label(name, self._catalog) for name, _ in breakdown]
        decoders = [decoder_for(name, type_name) for name, type_name in breakdown]

        series = PivotedSeries()
        for row in result.rows:
            parts = []
            for label, decode, value in zip(labels, decoders, row[1:-1]):
                rendered = "" if value is None else decode(value)
                parts.append(f"{label}={rendered}")

            series.add(row[0], ";".join(parts), int(row[-1] or 0))

        return series
