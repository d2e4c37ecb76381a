"""
Watch-event ingestion:
  POST /posts/{id}/watch   — record one view (anonymous when user_id is omitted)
  POST /posts/watch-batch  — record up to 100 views in one write

The event is persisted before the response; metrics and interest updates run
in the background and never fail the request.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from opentelemetry import trace

from feedrank.errors import PersistenceUnavailable
from feedrank.schemas import WatchBatchRequest, WatchBatchResult, WatchEventIn
from feedrank.services import Services, get_services

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)


@router.post("/watch-batch", response_model=WatchBatchResult)
async def record_watch_batch(
    body: WatchBatchRequest, services: Services = Depends(get_services)
):
    with tracer.start_as_current_span("record_watch_batch") as span:
        span.set_attribute("watch.batch_size", len(body.events))
        result = await services.watch.record_watch_events_batch(body.events)
    return WatchBatchResult(**result)


@router.post("/{post_id}/watch", status_code=status.HTTP_201_CREATED)
async def record_watch(
    post_id: str,
    body: WatchEventIn,
    user_id: Optional[str] = Query(None, description="Viewer; omit for anonymous views"),
    services: Services = Depends(get_services),
):
    with tracer.start_as_current_span("record_watch") as span:
        span.set_attribute("post.id", post_id)
        try:
            row = await services.watch.record_watch_event(post_id, user_id, body)
        except PersistenceUnavailable as exc:
            logger.error("Watch event for post %s not stored: %s", post_id, exc)
            raise HTTPException(status_code=503, detail="Storage unavailable")

    return {
        "status": "recorded",
        "post_id": post_id,
        "completion_rate": row.completion_rate,
        "skipped_in_first_2s": row.skipped_in_first_2s,
    }
