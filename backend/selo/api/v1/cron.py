"""
Scheduler-triggered endpoints, authenticated with the cron secret.
"""
import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from selo.core.deps import CronAuth, get_db
from selo.schemas.audit import CleanupResponse
from selo.services.cleanup import run_periodic_cleanup

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["Cron"], dependencies=[CronAuth])


@router.post("/audit-cleanup", response_model=CleanupResponse)
async def audit_cleanup(db: Annotated[AsyncSession, Depends(get_db)]):
    """Apply the audit retention policy."""
    result = await run_periodic_cleanup(db)
    await db.commit()
    logger.info(f"Cron cleanup finished: {result.to_dict()}")
    return CleanupResponse(success=True, **result.to_dict())
