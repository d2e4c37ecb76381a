"""
Creator trust endpoints:
  GET   /creators/{id}/trust-score — current trust row
  POST  /creators/{id}/trust-score — recalculate from recent activity
  PATCH /creators/{id}/trust-score — moderator override (lift_ban / apply_ban / reset)
  GET   /creators/{id}/shadow-ban  — ban status (expired bans are lifted on read)
"""
import logging

from fastapi import APIRouter, Depends, HTTPException

from feedrank.errors import CreatorNotFound, PersistenceUnavailable
from feedrank.schemas import ShadowBanStatus, TrustAdminAction, TrustScoreResponse
from feedrank.services import Services, get_services

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/{user_id}/trust-score", response_model=TrustScoreResponse)
async def get_trust_score(user_id: str, services: Services = Depends(get_services)):
    row = await services.trust.get_creator_trust_score(user_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Creator not found")
    return TrustScoreResponse.model_validate(row)


@router.post("/{user_id}/trust-score", response_model=TrustScoreResponse)
async def recalculate_trust_score(user_id: str, services: Services = Depends(get_services)):
    try:
        row = await services.trust.update_creator_trust_score(user_id)
    except PersistenceUnavailable as exc:
        logger.error("Trust recalculation failed for user %s: %s", user_id, exc)
        raise HTTPException(status_code=503, detail="Storage unavailable")
    return TrustScoreResponse.model_validate(row)


@router.patch("/{user_id}/trust-score", response_model=TrustScoreResponse)
async def apply_admin_action(
    user_id: str, body: TrustAdminAction, services: Services = Depends(get_services)
):
    try:
        row = await services.trust.apply_admin_action(user_id, body.action, body.reason)
    except CreatorNotFound:
        raise HTTPException(status_code=404, detail="Creator not found")
    return TrustScoreResponse.model_validate(row)


@router.get("/{user_id}/shadow-ban", response_model=ShadowBanStatus)
async def get_shadow_ban(user_id: str, services: Services = Depends(get_services)):
    banned = await services.trust.is_creator_shadow_banned(user_id)
    return ShadowBanStatus(user_id=user_id, is_shadow_banned=banned)
