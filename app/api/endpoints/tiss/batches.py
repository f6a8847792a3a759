"""
TISS Batch Endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_async_session
from app.models import User
from app.core.auth import get_current_clinic_id, require_tiss_admin, require_tiss_staff
from app.core.error_handling import ValidationException
from app.schemas.tiss import (
    BatchCreate,
    BatchDetailResponse,
    BatchResponse,
    BatchSubmit,
    XMLGenerationResult,
)
from app.services.storage_service import StorageService, get_storage_service
from app.services.tiss.batch_generator import BatchGeneratorService
from app.services.tiss.xml_generator import BatchXMLExporter
from app.api.endpoints.tiss.responses import success

router = APIRouter(prefix="/tiss/batches", tags=["TISS Batches"])


@router.get("")
async def list_batches(
    status_filter: Optional[str] = Query(None, alias="status", description="Comma separated statuses"),
    insurance_company_id: Optional[int] = None,
    reference_month: Optional[int] = Query(None, ge=1, le=12),
    reference_year: Optional[int] = None,
    current_user: User = Depends(require_tiss_staff),
    db: AsyncSession = Depends(get_async_session),
):
    clinic_id = get_current_clinic_id(current_user)
    batches = await BatchGeneratorService(db).list_batches(
        clinic_id,
        statuses=status_filter.split(",") if status_filter else None,
        insurance_company_id=insurance_company_id,
        reference_month=reference_month,
        reference_year=reference_year,
    )
    return success([BatchResponse.model_validate(b) for b in batches])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_batch(
    batch_data: BatchCreate,
    current_user: User = Depends(require_tiss_admin),
    db: AsyncSession = Depends(get_async_session),
):
    """Create a batch for an insurer and reference month"""
    clinic_id = get_current_clinic_id(current_user)
    batch = await BatchGeneratorService(db).create_batch(
        clinic_id,
        insurance_company_id=batch_data.insurance_company_id,
        reference_month=batch_data.reference_month,
        reference_year=batch_data.reference_year,
        guide_ids=batch_data.guide_ids,
        user_id=current_user.id,
    )
    return success(BatchDetailResponse.model_validate(batch))


@router.get("/{batch_id}")
async def get_batch(
    batch_id: int,
    current_user: User = Depends(require_tiss_staff),
    db: AsyncSession = Depends(get_async_session),
):
    """Batch with its guides and timeline"""
    clinic_id = get_current_clinic_id(current_user)
    batch = await BatchGeneratorService(db).get_batch(clinic_id, batch_id, with_details=True)
    return success(BatchDetailResponse.model_validate(batch))


@router.post("/{batch_id}/validate")
async def validate_batch(
    batch_id: int,
    current_user: User = Depends(require_tiss_admin),
    db: AsyncSession = Depends(get_async_session),
):
    clinic_id = get_current_clinic_id(current_user)
    result = await BatchGeneratorService(db).validate_batch(clinic_id, batch_id, user_id=current_user.id)
    return success(result)


@router.post("/{batch_id}/submit")
async def submit_batch(
    batch_id: int,
    submit_data: Optional[BatchSubmit] = None,
    current_user: User = Depends(require_tiss_admin),
    db: AsyncSession = Depends(get_async_session),
):
    """Mark the batch as sent to the insurer"""
    clinic_id = get_current_clinic_id(current_user)
    batch = await BatchGeneratorService(db).submit_batch(
        clinic_id,
        batch_id,
        protocol_number=submit_data.protocol_number if submit_data else None,
        user_id=current_user.id,
    )
    return success(BatchResponse.model_validate(batch))


@router.post("/{batch_id}/generate-xml")
async def generate_batch_xml(
    batch_id: int,
    version: Optional[str] = Query(None, description="TISS version override"),
    current_user: User = Depends(require_tiss_admin),
    db: AsyncSession = Depends(get_async_session),
    storage: StorageService = Depends(get_storage_service),
):
    """Generate and store the TISS XML of a batch"""
    clinic_id = get_current_clinic_id(current_user)
    result = await BatchXMLExporter(db, storage).export(
        clinic_id, batch_id, user_id=current_user.id, forced_version=version
    )
    return success(XMLGenerationResult(**result))


@router.get("/{batch_id}/generate-xml")
async def download_batch_xml(
    batch_id: int,
    current_user: User = Depends(require_tiss_staff),
    db: AsyncSession = Depends(get_async_session),
):
    """Redirect to the stored XML"""
    clinic_id = get_current_clinic_id(current_user)
    batch = await BatchGeneratorService(db).get_batch(clinic_id, batch_id)
    if not batch.xml_file_url:
        raise ValidationException("XML ainda não foi gerado para este lote")
    return RedirectResponse(url=batch.xml_file_url, status_code=status.HTTP_302_FOUND)
