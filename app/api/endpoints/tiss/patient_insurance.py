"""
TISS Patient Insurance Endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_async_session
from app.models import User
from app.core.auth import get_current_clinic_id, require_tiss_staff
from app.schemas.tiss import PatientInsuranceCreate, PatientInsuranceResponse, PatientInsuranceUpdate
from app.services.tiss.insurance_service import InsuranceService
from app.api.endpoints.tiss.responses import success

router = APIRouter(prefix="/tiss/patient-insurance", tags=["TISS Patient Insurance"])


@router.get("")
async def list_patient_insurances(
    patient_id: Optional[int] = None,
    current_user: User = Depends(require_tiss_staff),
    db: AsyncSession = Depends(get_async_session),
):
    """Active cards of a patient"""
    clinic_id = get_current_clinic_id(current_user)
    insurances = await InsuranceService(db).list_patient_insurances(clinic_id, patient_id)
    return success([PatientInsuranceResponse.model_validate(i) for i in insurances])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_patient_insurance(
    insurance_data: PatientInsuranceCreate,
    current_user: User = Depends(require_tiss_staff),
    db: AsyncSession = Depends(get_async_session),
):
    clinic_id = get_current_clinic_id(current_user)
    insurance = await InsuranceService(db).create_patient_insurance(clinic_id, insurance_data)
    return success(PatientInsuranceResponse.model_validate(insurance))


@router.patch("/{insurance_id}")
async def update_patient_insurance(
    insurance_id: int,
    insurance_data: PatientInsuranceUpdate,
    current_user: User = Depends(require_tiss_staff),
    db: AsyncSession = Depends(get_async_session),
):
    clinic_id = get_current_clinic_id(current_user)
    insurance = await InsuranceService(db).update_patient_insurance(clinic_id, insurance_id, insurance_data)
    return success(PatientInsuranceResponse.model_validate(insurance))


@router.delete("/{insurance_id}")
async def deactivate_patient_insurance(
    insurance_id: int,
    current_user: User = Depends(require_tiss_staff),
    db: AsyncSession = Depends(get_async_session),
):
    """Deactivate the card; existing guides keep referencing it"""
    clinic_id = get_current_clinic_id(current_user)
    insurance = await InsuranceService(db).deactivate_patient_insurance(clinic_id, insurance_id)
    return success(PatientInsuranceResponse.model_validate(insurance))
