"""
TISS Guide Endpoints
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_async_session
from app.models import User
from app.core.auth import get_current_clinic_id, require_tiss_staff
from app.schemas.tiss import GuideCreate, GuideListResponse, GuideResponse
from app.services.tiss.guide_service import GuideService
from app.api.endpoints.tiss.responses import success

router = APIRouter(prefix="/tiss/guides", tags=["TISS Guides"])


@router.get("")
async def list_guides(
    status_filter: Optional[str] = Query(None, alias="status"),
    operator_id: Optional[int] = None,
    patient_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_tiss_staff),
    db: AsyncSession = Depends(get_async_session),
):
    """List guides of the caller's clinic"""
    clinic_id = get_current_clinic_id(current_user)
    result = await GuideService(db).list_guides(
        clinic_id,
        status=status_filter,
        operator_id=operator_id,
        patient_id=patient_id,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return success(GuideListResponse(
        guides=[GuideResponse.model_validate(g) for g in result["guides"]],
        total=result["total"],
        page=result["page"],
        limit=result["limit"],
        total_pages=result["total_pages"],
    ))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_guide(
    guide_data: GuideCreate,
    current_user: User = Depends(require_tiss_staff),
    db: AsyncSession = Depends(get_async_session),
):
    """Create a guide with its procedures"""
    clinic_id = get_current_clinic_id(current_user)
    guide = await GuideService(db).create_guide(clinic_id, guide_data)
    return success(GuideResponse.model_validate(guide))


@router.post("/from-appointment/{appointment_id}", status_code=status.HTTP_201_CREATED)
async def create_guide_from_appointment(
    appointment_id: int,
    current_user: User = Depends(require_tiss_staff),
    db: AsyncSession = Depends(get_async_session),
):
    """Bill a completed insurance appointment as a consultation guide"""
    clinic_id = get_current_clinic_id(current_user)
    guide = await GuideService(db).create_guide_from_appointment(clinic_id, appointment_id)
    return success(GuideResponse.model_validate(guide))


@router.get("/{guide_id}")
async def get_guide(
    guide_id: int,
    current_user: User = Depends(require_tiss_staff),
    db: AsyncSession = Depends(get_async_session),
):
    clinic_id = get_current_clinic_id(current_user)
    guide = await GuideService(db).get_guide(clinic_id, guide_id)
    return success(GuideResponse.model_validate(guide))
