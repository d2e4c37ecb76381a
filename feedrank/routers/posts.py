"""
Post-level endpoints:
  POST /posts/{id}/tags    — (re)compute the post's category vector
  GET  /posts/{id}/metrics — aggregated watch metrics and distribution phase
  POST /posts/{id}/report  — file a report; the creator is re-scored
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status

from feedrank.schemas import (
    ContentVectorResponse,
    PostMetricsResponse,
    ReportRequest,
    TagRequest,
)
from feedrank.services import Services, get_services

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/{post_id}/tags", response_model=ContentVectorResponse)
async def tag_post(
    post_id: str, body: TagRequest, services: Services = Depends(get_services)
):
    await services.tagger.auto_tag(post_id, body.content, body.hashtags)
    vector = await services.store.get_content_vector(post_id)
    if vector is None:
        raise HTTPException(status_code=503, detail="Tagging failed")
    return ContentVectorResponse.model_validate(vector)


@router.get("/{post_id}/metrics", response_model=PostMetricsResponse)
async def get_post_metrics(post_id: str, services: Services = Depends(get_services)):
    metrics = await services.aggregator.get_post_watch_stats(post_id)
    if metrics is None:
        raise HTTPException(status_code=404, detail="No metrics for this post")
    return PostMetricsResponse.model_validate(metrics)


@router.post("/{post_id}/report", status_code=status.HTTP_202_ACCEPTED)
async def report_post(
    post_id: str, body: ReportRequest, services: Services = Depends(get_services)
):
    if await services.store.get_post_author(post_id) is None:
        raise HTTPException(status_code=404, detail="Post not found")

    await services.store.add_post_report(
        post_id, body.reporter_id, body.reason, services.trust.clock()
    )
    logger.info("Post %s reported by %s", post_id, body.reporter_id)

    # Creator re-scoring is analytics work; it must not fail the report
    await services.dispatcher.dispatch(
        "trust-update", services.trust.handle_post_report, post_id, body.reporter_id
    )
    return {"status": "reported", "post_id": post_id}
