"""
TISS Insurance Operator Endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_async_session
from app.models import User
from app.core.auth import get_current_clinic_id, require_tiss_admin, require_tiss_staff
from app.schemas.tiss import OperatorCreate, OperatorResponse, OperatorUpdate
from app.services.tiss.insurance_service import InsuranceService
from app.api.endpoints.tiss.responses import success

router = APIRouter(prefix="/tiss/operators", tags=["TISS Operators"])


@router.get("")
async def list_operators(
    search: Optional[str] = None,
    include_inactive: bool = False,
    current_user: User = Depends(require_tiss_staff),
    db: AsyncSession = Depends(get_async_session),
):
    """Insurers of the caller's clinic; search by name or ANS code"""
    clinic_id = get_current_clinic_id(current_user)
    operators = await InsuranceService(db).list_operators(clinic_id, search=search, include_inactive=include_inactive)
    return success([OperatorResponse.model_validate(o) for o in operators])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_operator(
    operator_data: OperatorCreate,
    current_user: User = Depends(require_tiss_admin),
    db: AsyncSession = Depends(get_async_session),
):
    clinic_id = get_current_clinic_id(current_user)
    operator = await InsuranceService(db).create_operator(clinic_id, operator_data)
    return success(OperatorResponse.model_validate(operator))


@router.get("/{operator_id}")
async def get_operator(
    operator_id: int,
    current_user: User = Depends(require_tiss_staff),
    db: AsyncSession = Depends(get_async_session),
):
    clinic_id = get_current_clinic_id(current_user)
    operator = await InsuranceService(db).get_operator(clinic_id, operator_id)
    return success(OperatorResponse.model_validate(operator))


@router.patch("/{operator_id}")
async def update_operator(
    operator_id: int,
    operator_data: OperatorUpdate,
    current_user: User = Depends(require_tiss_admin),
    db: AsyncSession = Depends(get_async_session),
):
    """Partial update; set is_active=false to retire an insurer"""
    clinic_id = get_current_clinic_id(current_user)
    operator = await InsuranceService(db).update_operator(clinic_id, operator_id, operator_data)
    return success(OperatorResponse.model_validate(operator))
