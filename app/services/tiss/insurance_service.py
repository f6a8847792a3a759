"""
TISS Insurance Service
Insurers registered by a clinic and the patients' cards with them
"""

import logging
from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.error_handling import ConflictException, NotFoundException, ValidationException
from app.models import Patient
from app.models.tiss import InsuranceOperator, PatientInsurance
from app.schemas.tiss import (
    OperatorCreate,
    OperatorUpdate,
    PatientInsuranceCreate,
    PatientInsuranceUpdate,
)

logger = logging.getLogger(__name__)

OPERATOR_EXISTS_MESSAGE = "Operadora já cadastrada com este registro ANS"


class InsuranceService:
    """Service for insurers and patient cards"""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ------------------------------------------------------------------
    # Operators
    # ------------------------------------------------------------------

    async def list_operators(
        self,
        clinic_id: int,
        search: Optional[str] = None,
        include_inactive: bool = False,
    ) -> List[InsuranceOperator]:
        """Insurers of the clinic ordered by name; search matches name or ANS code"""
        query = select(InsuranceOperator).where(InsuranceOperator.clinic_id == clinic_id)
        if not include_inactive:
            query = query.where(InsuranceOperator.is_active == True)  # noqa: E712
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(
                InsuranceOperator.name.ilike(pattern),
                InsuranceOperator.ans_code.ilike(pattern),
            ))
        result = await self.db.execute(query.order_by(InsuranceOperator.name))
        return list(result.scalars().all())

    async def get_operator(self, clinic_id: int, operator_id: int) -> InsuranceOperator:
        result = await self.db.execute(
            select(InsuranceOperator)
            .where(InsuranceOperator.id == operator_id, InsuranceOperator.clinic_id == clinic_id)
            .execution_options(populate_existing=True)
        )
        operator = result.scalar_one_or_none()
        if not operator:
            raise NotFoundException("Operadora não encontrada")
        return operator

    async def create_operator(self, clinic_id: int, data: OperatorCreate) -> InsuranceOperator:
        if await self._find_operator_by_ans(clinic_id, data.ans_code):
            raise ConflictException(OPERATOR_EXISTS_MESSAGE)

        operator = InsuranceOperator(clinic_id=clinic_id, is_active=True, **data.model_dump())
        await self._flush_operator(operator)

        logger.info(f"Registered operator {operator.ans_code} for clinic {clinic_id}")
        return operator

    async def update_operator(self, clinic_id: int, operator_id: int, data: OperatorUpdate) -> InsuranceOperator:
        """Partial update; deactivating keeps the insurer's history"""
        operator = await self.get_operator(clinic_id, operator_id)
        updates = data.model_dump(exclude_unset=True)

        new_code = updates.get("ans_code")
        if new_code and new_code != operator.ans_code:
            existing = await self._find_operator_by_ans(clinic_id, new_code)
            if existing and existing != operator.id:
                raise ConflictException(OPERATOR_EXISTS_MESSAGE)

        for name, value in updates.items():
            if value is None and name in ("name", "ans_code", "is_active"):
                continue
            setattr(operator, name, value)
        await self._flush_operator(operator)

        logger.info(f"Updated operator {operator.id} of clinic {clinic_id}: {sorted(updates)}")
        return operator

    async def _find_operator_by_ans(self, clinic_id: int, ans_code: str) -> Optional[int]:
        result = await self.db.execute(
            select(InsuranceOperator.id).where(
                InsuranceOperator.clinic_id == clinic_id,
                InsuranceOperator.ans_code == ans_code,
            )
        )
        return result.scalar_one_or_none()

    async def _flush_operator(self, operator: InsuranceOperator) -> None:
        self.db.add(operator)
        try:
            await self.db.flush()
        except IntegrityError as e:
            logger.warning(f"Unique violation saving operator {operator.ans_code}: {e.orig}")
            raise ConflictException(OPERATOR_EXISTS_MESSAGE) from e
        await self.db.refresh(operator)

    # ------------------------------------------------------------------
    # Patient cards
    # ------------------------------------------------------------------

    async def list_patient_insurances(self, clinic_id: int, patient_id: Optional[int]) -> List[PatientInsurance]:
        """Active cards of a patient, newest first"""
        if not patient_id:
            raise ValidationException("patient_id é obrigatório")
        await self._get_patient(clinic_id, patient_id)

        result = await self.db.execute(
            select(PatientInsurance)
            .options(selectinload(PatientInsurance.operator))
            .where(
                PatientInsurance.patient_id == patient_id,
                PatientInsurance.is_active == True,  # noqa: E712
            )
            .order_by(PatientInsurance.created_at.desc(), PatientInsurance.id.desc())
        )
        return list(result.scalars().all())

    async def create_patient_insurance(self, clinic_id: int, data: PatientInsuranceCreate) -> PatientInsurance:
        """
        Register a card for a patient

        The patient and the insurer must belong to the clinic and the insurer
        must be active. The same active card cannot be registered twice.
        """
        await self._get_patient(clinic_id, data.patient_id)
        operator = await self.get_operator(clinic_id, data.operator_id)
        if not operator.is_active:
            raise ValidationException("Operadora inativa")

        duplicate = (await self.db.execute(
            select(PatientInsurance.id).where(
                PatientInsurance.patient_id == data.patient_id,
                PatientInsurance.operator_id == data.operator_id,
                PatientInsurance.card_number == data.card_number,
                PatientInsurance.is_active == True,  # noqa: E712
            )
        )).first()
        if duplicate:
            raise ValidationException("Este convênio já está cadastrado para o paciente")

        insurance = PatientInsurance(is_active=True, **data.model_dump())
        self.db.add(insurance)
        await self.db.flush()

        logger.info(f"Registered card for patient {data.patient_id} with operator {operator.id}")
        return await self.get_patient_insurance(clinic_id, insurance.id)

    async def get_patient_insurance(self, clinic_id: int, insurance_id: int) -> PatientInsurance:
        result = await self.db.execute(
            select(PatientInsurance)
            .options(selectinload(PatientInsurance.operator))
            .join(Patient, Patient.id == PatientInsurance.patient_id)
            .where(PatientInsurance.id == insurance_id, Patient.clinic_id == clinic_id)
            .execution_options(populate_existing=True)
        )
        insurance = result.scalar_one_or_none()
        if not insurance:
            raise NotFoundException("Convênio do paciente não encontrado")
        return insurance

    async def update_patient_insurance(
        self,
        clinic_id: int,
        insurance_id: int,
        data: PatientInsuranceUpdate,
    ) -> PatientInsurance:
        insurance = await self.get_patient_insurance(clinic_id, insurance_id)
        updates = data.model_dump(exclude_unset=True)
        if updates.get("card_number") is None:
            updates.pop("card_number", None)
        for name, value in updates.items():
            setattr(insurance, name, value)
        await self.db.flush()
        return await self.get_patient_insurance(clinic_id, insurance_id)

    async def deactivate_patient_insurance(self, clinic_id: int, insurance_id: int) -> PatientInsurance:
        """Cards are never deleted; guides keep pointing at them"""
        insurance = await self.get_patient_insurance(clinic_id, insurance_id)
        insurance.is_active = False
        await self.db.flush()

        logger.info(f"Deactivated card {insurance_id} of patient {insurance.patient_id}")
        return insurance

    async def _get_patient(self, clinic_id: int, patient_id: int) -> Patient:
        result = await self.db.execute(
            select(Patient).where(Patient.id == patient_id, Patient.clinic_id == clinic_id)
        )
        patient = result.scalar_one_or_none()
        if not patient:
            raise NotFoundException("Paciente não encontrado")
        return patient
