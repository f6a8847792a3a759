"""
TISS Billing Schemas
"""
from typing import Any, Dict, List, Optional
from datetime import datetime, date
from decimal import Decimal
from pydantic import BaseModel, Field

from app.models.tiss import GuideType


class OperatorCreate(BaseModel):
    """Insurer registered by the clinic"""
    name: str = Field(..., min_length=1, max_length=200)
    ans_code: str = Field(..., min_length=1, max_length=20)
    cnpj: Optional[str] = Field(None, max_length=18)
    provider_code: Optional[str] = Field(None, max_length=30)
    tiss_version: Optional[str] = Field(None, max_length=20)


class OperatorUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    ans_code: Optional[str] = Field(None, min_length=1, max_length=20)
    cnpj: Optional[str] = Field(None, max_length=18)
    provider_code: Optional[str] = Field(None, max_length=30)
    tiss_version: Optional[str] = Field(None, max_length=20)
    is_active: Optional[bool] = None


class OperatorResponse(BaseModel):
    id: int
    clinic_id: int
    name: str
    ans_code: str
    cnpj: Optional[str] = None
    provider_code: Optional[str] = None
    tiss_version: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PatientInsuranceCreate(BaseModel):
    """Patient card with an insurer"""
    patient_id: int
    operator_id: int
    card_number: str = Field(..., min_length=1, max_length=30)
    plan_name: Optional[str] = Field(None, max_length=200)
    valid_until: Optional[date] = None


class PatientInsuranceUpdate(BaseModel):
    """Patient and insurer of a card are fixed; other fields may change"""
    card_number: Optional[str] = Field(None, min_length=1, max_length=30)
    plan_name: Optional[str] = Field(None, max_length=200)
    valid_until: Optional[date] = None


class PatientInsuranceResponse(BaseModel):
    id: int
    patient_id: int
    operator_id: int
    operator_name: Optional[str] = None
    card_number: str
    plan_name: Optional[str] = None
    valid_until: Optional[date] = None
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProcedureCreate(BaseModel):
    """Procedure line of a guide"""
    procedure_code: str = Field(..., min_length=1, max_length=20)
    description: str = Field(..., min_length=1, max_length=300)
    quantity: int = Field(1, ge=1)
    unit_price: Decimal = Field(..., ge=0)
    reduction_factor: Decimal = Field(Decimal("1.00"), gt=0, le=1)


class GuideCreate(BaseModel):
    """Schema for creating a guide; required fields are checked by the service"""
    guide_type: Optional[GuideType] = None
    patient_id: Optional[int] = None
    patient_insurance_id: Optional[int] = None
    doctor_id: Optional[int] = None
    appointment_id: Optional[int] = None
    cid_primary: Optional[str] = Field(None, max_length=10)
    cid_secondary: List[str] = Field(default_factory=list)
    authorization_number: Optional[str] = Field(None, max_length=30)
    execution_date: Optional[date] = None
    observation: Optional[str] = None
    procedures: List[ProcedureCreate] = Field(default_factory=list)


class ProcedureResponse(BaseModel):
    id: int
    procedure_code: str
    description: str
    quantity: int
    unit_price: Decimal
    reduction_factor: Decimal
    total_price: Decimal

    class Config:
        from_attributes = True


class GuideResponse(BaseModel):
    """Schema for guide response"""
    id: int
    clinic_id: int
    guide_number: str
    guide_type: str
    operator_id: int
    patient_id: int
    patient_insurance_id: int
    doctor_id: Optional[int] = None
    appointment_id: Optional[int] = None
    batch_id: Optional[int] = None
    cid_primary: Optional[str] = None
    cid_secondary: Optional[List[str]] = None
    authorization_number: Optional[str] = None
    execution_date: date
    observation: Optional[str] = None
    total_value: Optional[Decimal] = None
    glosa_value: Optional[Decimal] = None
    status: str
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    procedures: List[ProcedureResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


class GuideListResponse(BaseModel):
    guides: List[GuideResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class BatchCreate(BaseModel):
    """Schema for creating a batch manually"""
    insurance_company_id: int
    reference_month: int = Field(..., ge=1, le=12)
    reference_year: int = Field(..., ge=2020, le=2050)
    guide_ids: Optional[List[int]] = None


class BatchSubmit(BaseModel):
    protocol_number: Optional[str] = Field(None, max_length=100)


class BatchEventResponse(BaseModel):
    id: int
    event_type: str
    description: Optional[str] = None
    event_metadata: Optional[Dict[str, Any]] = None
    user_id: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BatchResponse(BaseModel):
    """Schema for batch response"""
    id: int
    clinic_id: int
    insurance_company_id: int
    batch_number: str
    reference_month: int
    reference_year: int
    total_guides: int
    total_value: Decimal
    status: str
    xml_file_url: Optional[str] = None
    xml_file_size: Optional[int] = None
    xml_generated_at: Optional[datetime] = None
    tiss_version_used: Optional[str] = None
    validation_errors: Optional[List[str]] = None
    protocol_number: Optional[str] = None
    submission_date: Optional[date] = None
    submitted_at: Optional[datetime] = None
    return_processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BatchDetailResponse(BatchResponse):
    guides: List[GuideResponse] = Field(default_factory=list)
    events: List[BatchEventResponse] = Field(default_factory=list)


class XMLGenerationResult(BaseModel):
    xml_url: str
    file_size: int
    guide_count: int
    generated_at: datetime
    tiss_version: str


class ReturnUpload(BaseModel):
    """Insurer return file, base64 encoded"""
    batch_id: int
    file_name: str = Field(..., min_length=1, max_length=255)
    file_content: str = Field(..., min_length=1)


class ReturnResponse(BaseModel):
    """Schema for return response"""
    id: int
    batch_id: int
    clinic_id: int
    file_name: str
    file_url: Optional[str] = None
    file_size: Optional[int] = None
    processing_status: str
    processing_error: Optional[str] = None
    total_guides_processed: Optional[int] = None
    total_approved: Optional[int] = None
    total_denied: Optional[int] = None
    total_partial: Optional[int] = None
    amount_requested: Optional[Decimal] = None
    amount_approved: Optional[Decimal] = None
    amount_denied: Optional[Decimal] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ReturnProcessingResult(BaseModel):
    return_id: int
    batch_id: int
    batch_status: str
    total_guides_processed: int
    total_approved: int
    total_denied: int
    total_partial: int
    amount_requested: Decimal
    amount_approved: Decimal
    amount_denied: Decimal
    glosas_created: int
    warnings: List[str] = Field(default_factory=list)


class JobError(BaseModel):
    clinic_id: int
    insurer_id: Optional[int] = None
    message: str


class BatchJobReportResponse(BaseModel):
    reference_month: int
    reference_year: int
    clinics_processed: int
    batches_created: int
    guides_created: int
    skipped: int
    errors: List[JobError] = Field(default_factory=list)
