"""
TISS Return Endpoints
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_async_session
from app.models import User
from app.core.auth import get_current_clinic_id, require_tiss_admin
from app.schemas.tiss import ReturnProcessingResult, ReturnResponse, ReturnUpload
from app.services.storage_service import StorageService, get_storage_service
from app.services.tiss.return_processor import ReturnProcessor
from app.api.endpoints.tiss.responses import success

router = APIRouter(prefix="/tiss/returns", tags=["TISS Returns"])


@router.post("/upload", status_code=status.HTTP_201_CREATED)
async def upload_return(
    upload: ReturnUpload,
    current_user: User = Depends(require_tiss_admin),
    db: AsyncSession = Depends(get_async_session),
    storage: StorageService = Depends(get_storage_service),
):
    """Store an insurer return file for a submitted batch"""
    clinic_id = get_current_clinic_id(current_user)
    tiss_return = await ReturnProcessor(db).register_return(
        clinic_id, upload, storage, user_id=current_user.id
    )
    return success(ReturnResponse.model_validate(tiss_return))


@router.post("/{return_id}/parse")
async def parse_return(
    return_id: int,
    current_user: User = Depends(require_tiss_admin),
    db: AsyncSession = Depends(get_async_session),
):
    """Reconcile the return against its batch"""
    clinic_id = get_current_clinic_id(current_user)
    result = await ReturnProcessor(db).process_return(clinic_id, return_id, user_id=current_user.id)
    return success(ReturnProcessingResult(**result))


@router.get("/{return_id}")
async def get_return(
    return_id: int,
    current_user: User = Depends(require_tiss_admin),
    db: AsyncSession = Depends(get_async_session),
):
    clinic_id = get_current_clinic_id(current_user)
    tiss_return = await ReturnProcessor(db).get_return(clinic_id, return_id)
    return success(ReturnResponse.model_validate(tiss_return))
