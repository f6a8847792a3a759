"""
Scheduled job endpoints
Called by the platform scheduler with the cron secret
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_async_session
from app.core.auth import verify_cron_secret
from app.schemas.tiss import BatchJobReportResponse
from app.services.tiss.batch_generator import BatchGeneratorService, parse_reference
from app.api.endpoints.tiss.responses import success

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["Cron"])


@router.post("/tiss-batch-generator", dependencies=[Depends(verify_cron_secret)])
async def run_tiss_batch_generator(
    force: bool = False,
    clinic_id: Optional[int] = None,
    reference: Optional[str] = Query(None, description="YYYY-MM; defaults to the previous month"),
    db: AsyncSession = Depends(get_async_session),
):
    """Create the monthly batches; per-insurer failures are reported, not raised"""
    report = await BatchGeneratorService(db).run_monthly_job(
        force=force,
        clinic_id=clinic_id,
        reference=parse_reference(reference) if reference else None,
    )
    logger.info(f"Cron TISS batch job: {report.batches_created} batches created")
    return success(BatchJobReportResponse(**report.to_dict()))
