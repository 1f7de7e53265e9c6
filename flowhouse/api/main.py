"""
FastAPI application entry-point.
"""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from flowhouse.api.routers import catalog, query
from flowhouse.core.logging import get_logger
from flowhouse.db.flows_table import ensure_flows_table

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        ensure_flows_table()
    except Exception:
        logger.warning("Could not ensure flows table (ClickHouse may not be available)", exc_info=True)
    yield


app = FastAPI(
    title="Flowhouse",
    version="0.1.0",
    description="Breakdown queries over network flow records stored in ClickHouse",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(query.router, tags=["Query"])
app.include_router(catalog.router, tags=["Catalog"])


@app.get("/health")
def health():
    return {"status": "ok"}
