"""
GET /fields, GET /dict_values/{field}__{column} -- metadata for the query form.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from flowhouse.api.deps import get_service
from flowhouse.core.errors import QueryValidationError
from flowhouse.core.logging import get_logger
from flowhouse.query.service import FlowQueryService

logger = get_logger(__name__)
router = APIRouter()



class FieldItem(BaseModel):
    name: str
    label: str


class FieldGroupItem(BaseModel):
    name: str
    label: str
    fields: list[FieldItem]


class FieldsResponse(BaseModel):
    groups: list[FieldGroupItem]
    breakdown_len: int



@router.get("/fields", response_model=FieldsResponse)
def list_fields(service: FlowQueryService = Depends(get_service)) -> FieldsResponse:
    """Return every field grouped with its dictionary attributes."""
    view = service.field_groups()
    return FieldsResponse(
        groups=[
            FieldGroupItem(
                name=g.name,
                label=g.label,
                fields=[FieldItem(name=f.name, label=f.label) for f in g.fields],
            )
            for g in view.groups
        ],
        breakdown_len=view.breakdown_len,
    )


@router.get("/dict_values/{selector:path}")
def dict_values(selector: str, service: FlowQueryService = Depends(get_service)):
    """Return the sorted, non-empty values of one dictionary column."""
    try:
        values = service.dictionary_values(selector)
        body = JSONResponse(values)
    except QueryValidationError as exc:
        logger.warning("Bad dict values request %r: %s", selector, exc)
        return Response(status_code=400)
    except Exception:
        logger.exception("Unable to fetch dict values for %r", selector)
        return Response(status_code=500)
    return body
