"""
GET /admin/algorithm  ranking pipeline dashboard (phase mix, creator trust,
top posts, watch traffic, tagging coverage and feed cache health).
"""
import logging

from fastapi import APIRouter, Depends, HTTPException

from feedrank.errors import PersistenceUnavailable
from feedrank.schemas import AlgorithmAnalyticsResponse
from feedrank.services import Services, get_services

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/algorithm", response_model=AlgorithmAnalyticsResponse)
async def get_algorithm_analytics(services: Services = Depends(get_services)):
    try:
        return await services.analytics.snapshot()
    except PersistenceUnavailable as exc:
        logger.error("Algorithm analytics failed: %s", exc)
        raise HTTPException(status_code=503, detail="Storage unavailable")
