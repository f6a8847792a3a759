"""
TISS Dashboard Endpoints
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_async_session
from app.models import User
from app.core.auth import get_current_clinic_id, require_tiss_staff
from app.services.tiss.report_service import TISSReportService
from app.api.endpoints.tiss.responses import success

router = APIRouter(prefix="/tiss/dashboard", tags=["TISS Dashboard"])


@router.get("/stats")
async def dashboard_stats(
    current_user: User = Depends(require_tiss_staff),
    db: AsyncSession = Depends(get_async_session),
):
    """Batch counts, current month billing, approval and glosa rates, alerts"""
    clinic_id = get_current_clinic_id(current_user)
    return success(await TISSReportService(db).dashboard_stats(clinic_id))
