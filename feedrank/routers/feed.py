"""
Feed endpoints:
  GET    /feed                 — ranked, cursor-paginated feed
  POST   /feed/not-interested  — never show this post again
  POST   /feed/hide-creator    — never show this creator again
  DELETE /feed/cache/{user_id} — drop the cached ranked list

Ranking itself lives in feedrank.algorithm.ranking; see the pipeline diagram
there.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from feedrank.config import settings
from feedrank.errors import PersistenceUnavailable
from feedrank.schemas import (
    FeedPost,
    FeedResponse,
    FeedType,
    HideCreatorRequest,
    NotInterestedRequest,
)
from feedrank.services import Services, get_services

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=FeedResponse)
async def get_feed(
    user_id: Optional[str] = Query(None, description="Requesting user; omit for anonymous"),
    limit: int = Query(settings.feed_page_size, ge=1, le=settings.feed_max_page_size),
    cursor: Optional[str] = Query(None, description="Id of the last post already seen"),
    feed_type: FeedType = Query("for_you"),
    exclude: Optional[list[str]] = Query(None, description="Post ids to skip"),
    services: Services = Depends(get_services),
):
    try:
        page = await services.ranking.generate_personalized_feed(
            user_id,
            limit=limit,
            cursor=cursor,
            exclude_post_ids=exclude or (),
            feed_type=feed_type,
        )
    except PersistenceUnavailable as exc:
        logger.error("Feed generation failed for user %s: %s", user_id, exc)
        raise HTTPException(status_code=503, detail="Storage unavailable")

    return FeedResponse(
        posts=[
            FeedPost(
                id=p.id,
                user_id=p.user_id,
                created_at=p.created_at,
                score=p.score,
                reasons=p.reasons,
            )
            for p in page.posts
        ],
        next_cursor=page.next_cursor,
    )


@router.post("/not-interested", status_code=status.HTTP_204_NO_CONTENT)
async def not_interested(
    body: NotInterestedRequest, services: Services = Depends(get_services)
):
    await services.ranking.mark_not_interested(body.user_id, body.post_id)


@router.post("/hide-creator", status_code=status.HTTP_204_NO_CONTENT)
async def hide_creator(body: HideCreatorRequest, services: Services = Depends(get_services)):
    await services.ranking.hide_creator(body.user_id, body.creator_id)


@router.delete("/cache/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def invalidate_cache(user_id: str, services: Services = Depends(get_services)):
    await services.ranking.invalidate_feed_cache(user_id)
