"""
TISS Report Endpoints
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_async_session
from app.models import User
from app.core.auth import get_current_clinic_id, require_tiss_admin
from app.services.tiss.report_service import TISSReportService
from app.api.endpoints.tiss.responses import success

router = APIRouter(prefix="/tiss/reports", tags=["TISS Reports"])


@router.get("/loss-analysis")
async def loss_analysis(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    operator_id: Optional[int] = None,
    current_user: User = Depends(require_tiss_admin),
    db: AsyncSession = Depends(get_async_session),
):
    """Billed, received and glosa values for a period"""
    clinic_id = get_current_clinic_id(current_user)
    report = await TISSReportService(db).loss_analysis(clinic_id, start_date, end_date, operator_id)
    return success(report)
