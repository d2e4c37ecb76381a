"""
POST /maintenance/run — daily cron hook.

When CRON_SECRET is configured the caller must send
`Authorization: Bearer <secret>`.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from feedrank.config import settings
from feedrank.services import Services, get_services

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/run")
async def run_maintenance(
    authorization: Optional[str] = Header(None),
    services: Services = Depends(get_services),
):
    if settings.cron_secret and authorization != f"Bearer {settings.cron_secret}":
        raise HTTPException(status_code=401, detail="Unauthorized")

    logger.info("Running daily maintenance")
    results = await services.maintenance.run_daily_maintenance()
    return {"success": True, "results": results}
