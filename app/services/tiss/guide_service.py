"""
TISS Guide Service
Builds billable guides from manual requests and completed appointments
"""

import logging
import math
from datetime import date
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config import settings
from app.core.error_handling import NotFoundException, ValidationException
from app.models import Appointment, AppointmentStatus, Patient
from app.models.tiss import (
    GuideStatus,
    GuideType,
    InsuranceOperator,
    PatientInsurance,
    TISSGuide,
    TISSGuideProcedure,
)
from app.schemas.tiss import GuideCreate, ProcedureCreate
from app.services.tiss.money import to_money
from app.services.tiss.numbering import NumberingService

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def procedure_total(quantity: int, unit_price, reduction_factor=None) -> Decimal:
    """quantity x unit price x reduction factor, in cents"""
    factor = Decimal("1") if reduction_factor is None else Decimal(str(reduction_factor))
    return to_money(Decimal(quantity) * Decimal(str(unit_price)) * factor)


class GuideService:
    """Service for TISS guide aggregation"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.numbering = NumberingService(db)

    async def create_guide(self, clinic_id: int, data: GuideCreate) -> TISSGuide:
        """
        Create a guide with its procedure lines

        Args:
            clinic_id: Clinic issuing the guide
            data: Guide request

        Returns:
            The persisted guide, procedures loaded; total_value stays unset
            until the guide is aggregated into a batch
        """
        missing = [
            name for name in ("guide_type", "patient_id", "patient_insurance_id")
            if getattr(data, name) is None
        ]
        if missing:
            raise ValidationException(
                "Campos obrigatórios ausentes",
                details={"missing_fields": missing},
            )
        if not data.procedures:
            raise ValidationException("Informe ao menos um procedimento")

        patient = await self._get_patient(clinic_id, data.patient_id)
        insurance = await self._get_active_insurance(clinic_id, patient.id, data.patient_insurance_id)

        execution_date = data.execution_date or date.today()
        guide_number = await self.numbering.next_guide_number(clinic_id, date.today().year)

        guide = TISSGuide(
            clinic_id=clinic_id,
            guide_number=guide_number,
            guide_type=data.guide_type.value,
            operator_id=insurance.operator_id,
            patient_id=patient.id,
            patient_insurance_id=insurance.id,
            doctor_id=data.doctor_id,
            appointment_id=data.appointment_id,
            cid_primary=data.cid_primary,
            cid_secondary=data.cid_secondary or None,
            authorization_number=data.authorization_number,
            execution_date=execution_date,
            observation=data.observation,
            status=GuideStatus.PENDING.value,
        )
        guide.procedures = [self._build_procedure(p) for p in data.procedures]

        self.db.add(guide)
        await self.db.flush()

        logger.info(f"Created TISS guide {guide.guide_number} for clinic {clinic_id}")
        return await self.get_guide(clinic_id, guide.id)

    async def create_guide_from_appointment(self, clinic_id: int, appointment_id: int) -> TISSGuide:
        """Bill a completed insurance appointment as a consultation guide"""
        result = await self.db.execute(
            select(Appointment).where(
                Appointment.id == appointment_id,
                Appointment.clinic_id == clinic_id,
            )
        )
        appointment = result.scalar_one_or_none()
        if not appointment:
            raise NotFoundException("Agendamento não encontrado")
        if appointment.status != AppointmentStatus.COMPLETED.value:
            raise ValidationException("Apenas agendamentos concluídos podem ser faturados")
        if not appointment.insurance_operator_id:
            raise ValidationException("Agendamento não é de convênio")
        if appointment.tiss_guide_id:
            raise ValidationException("Agendamento já possui guia TISS")

        insurance = await self.find_patient_insurance(appointment.patient_id, appointment.insurance_operator_id)
        if not insurance:
            raise NotFoundException("Convênio do paciente não encontrado")

        guide = await self.create_guide(clinic_id, GuideCreate(
            guide_type=GuideType.CONSULTATION,
            patient_id=appointment.patient_id,
            patient_insurance_id=insurance.id,
            doctor_id=appointment.doctor_id,
            appointment_id=appointment.id,
            cid_primary=appointment.diagnosis_cid,
            execution_date=appointment.scheduled_at.date(),
            procedures=[ProcedureCreate(
                procedure_code=settings.TISS_CONSULTATION_PROCEDURE_CODE,
                description=settings.TISS_CONSULTATION_PROCEDURE_NAME,
                quantity=1,
                unit_price=to_money(appointment.payment_amount),
            )],
        ))
        appointment.tiss_guide_id = guide.id
        await self.db.flush()
        return guide

    async def get_guide(self, clinic_id: int, guide_id: int) -> TISSGuide:
        result = await self.db.execute(
            select(TISSGuide)
            .options(selectinload(TISSGuide.procedures))
            .where(TISSGuide.id == guide_id, TISSGuide.clinic_id == clinic_id)
            .execution_options(populate_existing=True)
        )
        guide = result.scalar_one_or_none()
        if not guide:
            raise NotFoundException("Guia não encontrada")
        return guide

    async def list_guides(
        self,
        clinic_id: int,
        status: Optional[str] = None,
        operator_id: Optional[int] = None,
        patient_id: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Dict:
        """List guides of a clinic with filters and pagination"""
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        filters = [TISSGuide.clinic_id == clinic_id]
        if status:
            filters.append(TISSGuide.status == status.upper())
        if operator_id:
            filters.append(TISSGuide.operator_id == operator_id)
        if patient_id:
            filters.append(TISSGuide.patient_id == patient_id)
        if start_date:
            filters.append(TISSGuide.execution_date >= start_date)
        if end_date:
            filters.append(TISSGuide.execution_date <= end_date)

        total = (await self.db.execute(
            select(func.count(TISSGuide.id)).where(*filters)
        )).scalar_one()

        result = await self.db.execute(
            select(TISSGuide)
            .options(selectinload(TISSGuide.procedures))
            .where(*filters)
            .order_by(TISSGuide.created_at.desc(), TISSGuide.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        guides = list(result.scalars().all())

        return {
            "guides": guides,
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if total else 0,
        }

    async def find_patient_insurance(self, patient_id: int, operator_id: int) -> Optional[PatientInsurance]:
        result = await self.db.execute(
            select(PatientInsurance)
            .where(
                PatientInsurance.patient_id == patient_id,
                PatientInsurance.operator_id == operator_id,
                PatientInsurance.is_active == True,  # noqa: E712
            )
            .order_by(PatientInsurance.id.desc())
        )
        return result.scalars().first()

    def _build_procedure(self, data: ProcedureCreate) -> TISSGuideProcedure:
        return TISSGuideProcedure(
            procedure_code=data.procedure_code,
            description=data.description,
            quantity=data.quantity,
            unit_price=to_money(data.unit_price),
            reduction_factor=data.reduction_factor,
            total_price=procedure_total(data.quantity, data.unit_price, data.reduction_factor),
        )

    async def _get_patient(self, clinic_id: int, patient_id: int) -> Patient:
        result = await self.db.execute(
            select(Patient).where(Patient.id == patient_id, Patient.clinic_id == clinic_id)
        )
        patient = result.scalar_one_or_none()
        if not patient:
            raise NotFoundException("Paciente não encontrado")
        return patient

    async def _get_active_insurance(self, clinic_id: int, patient_id: int, patient_insurance_id: int) -> PatientInsurance:
        result = await self.db.execute(
            select(PatientInsurance)
            .join(InsuranceOperator, InsuranceOperator.id == PatientInsurance.operator_id)
            .where(
                PatientInsurance.id == patient_insurance_id,
                PatientInsurance.patient_id == patient_id,
                PatientInsurance.is_active == True,  # noqa: E712
                InsuranceOperator.clinic_id == clinic_id,
                InsuranceOperator.is_active == True,  # noqa: E712
            )
        )
        insurance = result.scalar_one_or_none()
        if not insurance:
            raise NotFoundException("Convênio do paciente não encontrado")
        return insurance
