"""
Unit tests -- result pivoting, column decoding and readable labels.
"""
import datetime
import ipaddress

import pytest

from flowhouse.catalog.loader import load_catalog
from flowhouse.core.errors import QueryExecutionError, UnsupportedColumnTypeError
from flowhouse.db.executor import QueryResult
from flowhouse.query.pivot import (
    PivotedSeries,
    ResultPivoter,
    base_type,
    format_ip,
    readable_label,
)

VALUE_COL = ("sum(size * samplerate) * 8 / 10", "Float64")


@pytest.fixture(scope="module")
def catalog():
    return load_catalog()


@pytest.fixture(scope="module")
def pivoter(catalog) -> ResultPivoter:
    return ResultPivoter(catalog)


# ── Labels ───────────────────────────────────────────────

@pytest.mark.parametrize("column,label", [
    ("src_asn", "Src.AS"),
    ("dst_ip_pfx", "Dst.IP.Pfx"),
    ("src_ip_addr", "Src.IP"),
    ("int_out", "Int.Out"),
    ("src_asn__name", "Src.AS.Name"),
    ("int_in__description", "Int.In.Description"),
    ("dst_asn__org_name", "Dst.AS.Org_name"),
    ("src_asn__ASName", "Src.AS.ASName"),
    ("packets", "packets"),
])
def test_readable_label(catalog, column, label):
    assert readable_label(column, catalog) == label


# ── Decoding ─────────────────────────────────────────────

def test_base_type_unwraps():
    assert base_type("LowCardinality(Nullable(String))") == "String"
    assert base_type("UInt32") == "UInt32"


def test_format_ip_mapped_v4():
    assert format_ip(ipaddress.IPv6Address("::ffff:192.0.2.1")) == "192.0.2.1"


def test_format_ip_v6():
    assert format_ip(ipaddress.IPv6Address("2001:db8::1")) == "2001:db8::1"


def test_format_ip_from_bytes():
    raw = ipaddress.IPv6Address("2001:db8::2").packed
    assert format_ip(raw) == "2001:db8::2"


def test_format_ip_from_text():
    assert format_ip("10.0.0.1") == "10.0.0.1"


# ── Pivoting ─────────────────────────────────────────────

def test_two_keys_same_timestamp(pivoter):
    result = QueryResult(
        columns=[("t", "DateTime"), ("src_asn", "UInt32"), VALUE_COL],
        rows=[(100, 65001, 10.0), (100, 65002, 20.0)],
    )
    series = pivoter.pivot(result)
    assert series.timestamps() == [100]
    assert series.at(100) == {"Src.AS=65001": 10, "Src.AS=65002": 20}


def test_composite_key_in_column_order(pivoter):
    result = QueryResult(
        columns=[
            ("t", "DateTime"),
            ("dst_port", "UInt16"),
            ("src_asn__name", "String"),
            ("agent", "IPv6"),
            VALUE_COL,
        ],
        rows=[(1, 443, "Example", ipaddress.IPv6Address("::ffff:10.0.0.1"), 5.0)],
    )
    series = pivoter.pivot(result)
    assert series.keys() == ["Dst.Port=443;Src.AS.Name=Example;A.=10.0.0.1"]


def test_value_widened_to_int(pivoter):
    result = QueryResult(
        columns=[("t", "DateTime"), ("ip_protocol", "UInt8"), VALUE_COL],
        rows=[(1, 6, 1234.9)],
    )
    assert pivoter.pivot(result).value(1, "IP.Proto=6") == 1234


def test_no_breakdown_columns(pivoter):
    result = QueryResult(columns=[("t", "DateTime"), VALUE_COL], rows=[(1, 8.0)])
    assert pivoter.pivot(result).at(1) == {"": 8}


def test_nullable_none_rendered_empty(pivoter):
    result = QueryResult(
        columns=[("t", "DateTime"), ("src_asn__name", "Nullable(String)"), VALUE_COL],
        rows=[(1, None, 3.0)],
    )
    assert pivoter.pivot(result).keys() == ["Src.AS.Name="]


def test_duplicate_pair_last_write_wins(pivoter):
    result = QueryResult(
        columns=[("t", "DateTime"), ("src_asn", "UInt32"), VALUE_COL],
        rows=[(1, 1, 10.0), (1, 1, 30.0)],
    )
    assert pivoter.pivot(result).value(1, "Src.AS=1") == 30


def test_unsupported_type_fails_loudly(pivoter):
    result = QueryResult(
        columns=[("t", "DateTime"), ("ratio", "Float64"), VALUE_COL],
        rows=[(1, 0.5, 1.0)],
    )
    with pytest.raises(UnsupportedColumnTypeError) as exc_info:
        pivoter.pivot(result)
    assert exc_info.value.column == "ratio"


def test_too_few_columns(pivoter):
    with pytest.raises(QueryExecutionError):
        pivoter.pivot(QueryResult(columns=[("t", "DateTime")], rows=[]))


def test_datetime_timestamps_sorted(pivoter):
    t1 = datetime.datetime(2024, 1, 1, 10, 0, 0)
    t2 = datetime.datetime(2024, 1, 1, 10, 0, 10)
    result = QueryResult(
        columns=[("t", "DateTime"), ("src_port", "UInt16"), VALUE_COL],
        rows=[(t2, 53, 1.0), (t1, 53, 2.0)],
    )
    assert pivoter.pivot(result).timestamps() == [t1, t2]



def test_series_missing_value_is_zero():
    series = PivotedSeries()
    series.add(1, "a", 5)
    assert series.value(1, "b") == 0
    assert series.value(2, "a") == 0
    assert len(series) == 1
