"""
Cache administration routes.

Operators inspect or evict one endpoint's cached responses by locale and
selector substring, and trigger invalidation cycles on demand.
"""

import logging
from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from ..cache.keys import CacheEndpoint
from ..models.invalidation import CycleResult
from ..services.due_sources import DueEntitySource, QueueDueSource, WatermarkDueSource
from ..services.orchestrator import InvalidationOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cache", tags=["cache"])


def _orchestrator(request: Request, source: DueEntitySource) -> InvalidationOrchestrator:
    state = request.app.state
    return InvalidationOrchestrator(
        source=source,
        session_factory=state.session_factory,
        evictor=state.evictor,
        expander=state.expander,
        listing_depth=state.config.listing_depth,
        max_hops=state.config.supersession_max_hops,
        queue=state.queue,
    )


def _cycle_response(result: CycleResult) -> JSONResponse:
    """200 on success, 503 for retryable failures, 400 for terminal ones."""
    if result.error is None:
        status_code = 200
    elif result.error.retryable:
        status_code = 503
    else:
        status_code = 400
    body = result.model_dump(mode="json")
    body["summary"] = result.summary
    return JSONResponse(status_code=status_code, content=body)


@router.post("/updated")
async def invalidate_updated(
    request: Request,
    limit: Optional[int] = Query(None, ge=1, description="Due rows per tracked table"),
    lookback_minutes: Optional[int] = Query(None, ge=1, description="Only consider recent changes"),
):
    """Run one invalidation cycle over rows changed since their last invalidation."""
    config = request.app.state.config
    source = WatermarkDueSource(
        request.app.state.session_factory,
        limit=limit or config.watermark_limit,
        lookback=timedelta(minutes=lookback_minutes) if lookback_minutes else None,
    )
    result = await _orchestrator(request, source).run_cycle()
    return _cycle_response(result)


@router.post("/batches/run")
async def run_staged_batch(
    request: Request,
    limit: Optional[int] = Query(None, ge=1, description="Queue rows to claim"),
):
    """Claim and process one batch of the staged invalidation queue."""
    config = request.app.state.config
    source = QueueDueSource(request.app.state.queue, claim_limit=limit or config.claim_limit)
    result = await _orchestrator(request, source).run_cycle()
    return _cycle_response(result)


@router.get("/{language_id}/{endpoint}", response_model=List[str])
async def list_cached_keys(
    request: Request,
    language_id: str,
    endpoint: CacheEndpoint,
    pattern: Optional[str] = Query(None, description="Selector substring filter"),
):
    """Keys cached for an endpoint in one locale."""
    return await request.app.state.trigger.list_keys(endpoint.value, language_id, pattern)


@router.delete("/{language_id}/{endpoint}", response_class=PlainTextResponse)
async def delete_cached_keys(
    request: Request,
    language_id: str,
    endpoint: CacheEndpoint,
    pattern: Optional[str] = Query(None, description="Selector substring filter"),
):
    """Evict an endpoint's cached responses in one locale."""
    deleted = await request.app.state.trigger.delete_keys(endpoint.value, language_id, pattern)
    return f"{deleted} key(s) deleted"
