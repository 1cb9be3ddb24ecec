"""
api/routes/flows.py

GET /api/flows/search     — flows touching an address / CIDR / wildcard, paginated
GET /api/flows/aggregate  — byte totals per time bucket (per address when ip is set)
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from ...errors import QueryInputError
from ...query.engine import FlowQueryEngine
from ..serializers import AggregateBucketResponse, FlowSearchResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/flows", tags=["flows"])


def _get_engine() -> FlowQueryEngine:
    """FastAPI dependency — replaced in tests via app.dependency_overrides."""
    from ..main import get_query_engine
    return get_query_engine()


@router.get("/search", response_model=FlowSearchResponse)
async def search_flows(
    ip:        Annotated[str | None, Query()]              = None,
    mask:      Annotated[str | None, Query()]              = None,
    date_from: Annotated[str | None, Query(alias="from")]  = None,
    date_to:   Annotated[str | None, Query(alias="to")]    = None,
    page:      Annotated[int,        Query()]              = 1,
    limit:     Annotated[int,        Query()]              = 0,
    engine:    FlowQueryEngine = Depends(_get_engine),
) -> FlowSearchResponse:
    """Return one page of flows for an address expression, newest first."""
    try:
        result = engine.search(
            ip,
            mask=mask,
            date_from=date_from,
            date_to=date_to,
            page=page,
            limit=limit,
        )
    except QueryInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return FlowSearchResponse.from_result(result)


@router.get("/aggregate", response_model=list[AggregateBucketResponse])
async def aggregate_flows(
    start_time:  Annotated[str | None, Query()] = None,
    end_time:    Annotated[str | None, Query()] = None,
    granularity: Annotated[str | None, Query()] = None,
    ip:          Annotated[str | None, Query()] = None,
    mask:        Annotated[str | None, Query()] = None,
    engine:      FlowQueryEngine = Depends(_get_engine),
) -> list[AggregateBucketResponse]:
    """Return ordered byte totals per granularity bucket."""
    try:
        if ip:
            buckets = engine.aggregate_by_address(
                ip, start_time, end_time, granularity, mask=mask
            )
        else:
            buckets = engine.aggregate(start_time, end_time, granularity)
    except QueryInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [AggregateBucketResponse.from_bucket(b) for b in buckets]
