"""GET /query -- breakdown query returning a CSV time series."""
from __future__ import annotations

import asyncio
import uuid

from fastapi import APIRouter, Depends, Request, Response
from starlette.concurrency import run_in_threadpool

from flowhouse.api.deps import get_service
from flowhouse.core.errors import FlowhouseError, QueryValidationError
from flowhouse.core.logging import get_logger
from flowhouse.core.utils import Deadline
from flowhouse.query.service import FlowQueryService, QueryOutcome

logger = get_logger(__name__)
router = APIRouter()

_DISCONNECT_POLL_S = 0.5
# nginx's "client closed request"; nobody is listening any more.
_CLIENT_CLOSED = 499
DROPPED_HEADER = "X-Flowhouse-Dropped"


class ClientDisconnected(Exception):
    pass


async def _run_until_disconnect(request: Request, service: FlowQueryService, items, deadline) -> QueryOutcome:
    """Run the blocking query in the threadpool and kill it if the client goes away.

    The statement is tagged so the kill reaches the ClickHouse query itself;
    cancelling the asyncio task alone would leave the worker thread waiting
    on the server.
    """
    tag = uuid.uuid4().hex
    task = asyncio.ensure_future(run_in_threadpool(service.run, items, deadline, tag))
    while True:
        done, _ = await asyncio.wait({task}, timeout=_DISCONNECT_POLL_S)
        if done:
            return task.result()
        if await request.is_disconnected():
            try:
                await run_in_threadpool(service.cancel, tag)
            except FlowhouseError:
                logger.warning("Kill failed for query tag=%s", tag, exc_info=True)
            task.cancel()
            raise ClientDisconnected()


@router.get("/query")
async def query_endpoint(request: Request, service: FlowQueryService = Depends(get_service)):
    """Breakdown query.  An empty query string is a no-op (200, no body)."""
    items = request.query_params.multi_items()
    if not items:
        return Response(status_code=200)

    deadline = Deadline.after(service.timeout_s)
    try:
        outcome = await _run_until_disconnect(request, service, items, deadline)
    except ClientDisconnected:
        logger.warning("Client disconnected -- query killed")
        return Response(status_code=_CLIENT_CLOSED)
    except QueryValidationError as exc:
        logger.warning("Rejected query: %s", exc)
        return Response(status_code=400)
    except Exception:
        logger.exception("Unable to process query")
        return Response(status_code=500)

    headers = {}
    if outcome.dropped:
        headers[DROPPED_HEADER] = ",".join(outcome.dropped)
    return Response(content=outcome.csv, media_type="text/csv", headers=headers)
