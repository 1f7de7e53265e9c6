"""
API tests -- FastAPI endpoints via TestClient with the service swapped out.
"""
import asyncio
import threading
import time

import pytest
from fastapi.testclient import TestClient
from starlette.datastructures import QueryParams

from flowhouse.api.deps import get_service
from flowhouse.api.main import app
from flowhouse.api.routers import query as query_router
from flowhouse.catalog.loader import load_catalog
from flowhouse.core.errors import QueryExecutionError
from flowhouse.db.executor import QueryResult
from flowhouse.query.service import FlowQueryService

VALUE_COL = ("sum(size * samplerate) * 8 / 10", "Float64")

QUERY = [
    ("breakdown", "src_asn"),
    ("time_start", "2024-01-01T10:00"),
    ("time_end", "2024-01-01T11:00"),
]


class StubStore:
    database_name = "flowhouse"

    def __init__(self, fail=False):
        self.fail = fail

    def query(self, sql, params=None, deadline=None, tag=None):
        if self.fail:
            raise QueryExecutionError("connection refused")
        return QueryResult(
            columns=[("t", "DateTime"), ("src_asn", "UInt32"), VALUE_COL],
            rows=[(100, 65001, 10.0), (200, 65002, 20.0)],
        )

    def cancel(self, tag):
        pass

    def describe_dictionary(self, name):
        return ["asn", "name"]

    def dictionary_values(self, name, column):
        if self.fail:
            raise QueryExecutionError("connection refused")
        return ["zeta", "", "alpha"]


@pytest.fixture
def client_factory():
    def _make(fail=False):
        service = FlowQueryService(load_catalog(), StubStore(fail=fail))
        app.dependency_overrides[get_service] = lambda: service
        return TestClient(app)
    yield _make
    app.dependency_overrides.clear()



def test_health(client_factory):
    resp = client_factory().get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"



def test_query_returns_csv(client_factory):
    resp = client_factory().get("/query", params=QUERY)
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert resp.text == "t,Src.AS=65001,Src.AS=65002\n100,10,0\n200,0,20\n"
    assert "x-flowhouse-dropped" not in resp.headers


def test_empty_query_string_is_noop(client_factory):
    resp = client_factory().get("/query")
    assert resp.status_code == 200
    assert resp.content == b""


def test_missing_breakdown_rejected(client_factory):
    resp = client_factory().get("/query", params=QUERY[1:])
    assert resp.status_code == 400
    assert resp.content == b""


def test_bad_time_rejected(client_factory):
    params = QUERY[:1] + [("time_start", "soon"), ("time_end", "2024-01-01T11:00")]
    resp = client_factory().get("/query", params=params)
    assert resp.status_code == 400


def test_backend_failure_is_500_with_empty_body(client_factory):
    resp = client_factory(fail=True).get("/query", params=QUERY)
    assert resp.status_code == 500
    assert resp.content == b""


def test_dropped_field_header(client_factory):
    resp = client_factory().get("/query", params=QUERY + [("src_port__service", "https")])
    assert resp.status_code == 200
    assert resp.headers["x-flowhouse-dropped"] == "src_port__service"



def test_dict_values(client_factory):
    resp = client_factory().get("/dict_values/src_asn__name")
    assert resp.status_code == 200
    assert resp.json() == ["alpha", "zeta"]


def test_dict_values_malformed(client_factory):
    assert client_factory().get("/dict_values/src_asn").status_code == 400


def test_dict_values_selector_with_slash(client_factory):
    assert client_factory().get("/dict_values/src_asn__name/extra").status_code == 400


def test_dict_values_unknown_binding(client_factory):
    assert client_factory().get("/dict_values/dst_port__service").status_code == 400


def test_dict_values_backend_failure(client_factory):
    assert client_factory(fail=True).get("/dict_values/src_asn__name").status_code == 500



def test_fields(client_factory):
    resp = client_factory().get("/fields")
    assert resp.status_code == 200
    data = resp.json()
    assert len(data["groups"]) == 12
    src_asn = next(g for g in data["groups"] if g["name"] == "src_asn")
    assert [f["name"] for f in src_asn["fields"]] == ["src_asn", "src_asn__name"]
    assert isinstance(data["breakdown_len"], int)



class BlockingStore(StubStore):
    """Holds the query open until cancel() is called."""

    def __init__(self):
        super().__init__()
        self.started = threading.Event()
        self.released = threading.Event()
        self.query_tag = None
        self.cancelled = []

    def query(self, sql, params=None, deadline=None, tag=None):
        self.query_tag = tag
        self.started.set()
        self.released.wait(timeout=5)
        return super().query(sql, params, deadline, tag)

    def cancel(self, tag):
        self.cancelled.append(tag)
        self.released.set()


class GoneRequest:
    """Request whose client hangs up once the query is running."""

    def __init__(self, store):
        self.query_params = QueryParams(QUERY)
        self._store = store

    async def is_disconnected(self):
        return self._store.started.is_set()


def test_client_disconnect_kills_query(monkeypatch):
    monkeypatch.setattr(query_router, "_DISCONNECT_POLL_S", 0.01)
    store = BlockingStore()
    service = FlowQueryService(load_catalog(), store)

    started = time.monotonic()
    resp = asyncio.run(query_router.query_endpoint(GoneRequest(store), service))
    elapsed = time.monotonic() - started

    assert resp.status_code == 499
    assert elapsed < 2
    assert store.query_tag is not None
    assert store.cancelled == [store.query_tag]


def test_failed_kill_still_returns_499(monkeypatch):
    monkeypatch.setattr(query_router, "_DISCONNECT_POLL_S", 0.01)
    store = BlockingStore()

    def _refuse(tag):
        store.released.set()
        raise QueryExecutionError("connection refused")

    store.cancel = _refuse
    service = FlowQueryService(load_catalog(), store)
    resp = asyncio.run(query_router.query_endpoint(GoneRequest(store), service))
    assert resp.status_code == 499
