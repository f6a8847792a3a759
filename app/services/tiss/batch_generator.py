"""
Batch Generator Service
Creates and manages TISS batches (lotes)
"""

import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config import settings
from app.core.error_handling import ConflictException, NotFoundException, ValidationException
from app.models import Appointment, AppointmentStatus, Clinic, User, UserRole
from app.models.tiss import (
    BatchEventType,
    BatchStatus,
    GuideStatus,
    GuideType,
    InsuranceOperator,
    TISSBatch,
    TISSBatchEvent,
    TISSGuide,
    TISSGuideProcedure,
)
from app.services.email_service import email_service as default_email_service
from app.services.tiss.guide_service import GuideService, procedure_total
from app.services.tiss.money import format_money, sum_money, to_money
from app.services.tiss.numbering import NumberingService, format_batch_guide_number
from app.services.tiss.validations import batch_integrity_validator
from app.services.tiss.validations.batch_integrity_validator import effective_guide_total

logger = logging.getLogger(__name__)

BATCH_EXISTS_MESSAGE = "Já existe um lote para esta operadora e período"
NO_ELIGIBLE_GUIDES_MESSAGE = "Nenhuma guia elegível para o lote"

_REFERENCE_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")


def previous_month(today: date) -> Tuple[int, int]:
    """(month, year) of the calendar month before today"""
    if today.month == 1:
        return 12, today.year - 1
    return today.month - 1, today.year


def parse_reference(value: str) -> Tuple[int, int]:
    """'YYYY-MM' -> (month, year)"""
    match = _REFERENCE_PATTERN.match(value or "")
    if not match or not 1 <= int(match.group(2)) <= 12:
        raise ValidationException("Período de referência inválido; use AAAA-MM")
    return int(match.group(2)), int(match.group(1))


def month_bounds(month: int, year: int) -> Tuple[datetime, datetime]:
    """[start, end) of the month, UTC"""
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    if month == 12:
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(year, month + 1, 1, tzinfo=timezone.utc)
    return start, end


def add_batch_event(
    db: AsyncSession,
    batch_id: int,
    event_type: BatchEventType,
    user_id: Optional[int] = None,
    description: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> TISSBatchEvent:
    """Append an event to the batch timeline"""
    event = TISSBatchEvent(
        batch_id=batch_id,
        user_id=user_id,
        event_type=event_type.value,
        description=description,
        event_metadata=metadata,
    )
    db.add(event)
    return event


@dataclass
class BatchJobError:
    clinic_id: int
    insurer_id: Optional[int]
    message: str


@dataclass
class BatchJobReport:
    """Outcome of one run of the monthly batch job"""
    reference_month: int
    reference_year: int
    clinics_processed: int = 0
    batches_created: int = 0
    guides_created: int = 0
    skipped: int = 0
    errors: List[BatchJobError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class _WorkUnit:
    clinic_id: int
    clinic_name: str
    operator_id: int
    operator_name: str


class BatchGeneratorService:
    """Service for generating TISS batches"""

    def __init__(self, db: AsyncSession, email_service=None):
        self.db = db
        self.numbering = NumberingService(db)
        self.email_service = email_service or default_email_service

    # ------------------------------------------------------------------
    # Monthly job
    # ------------------------------------------------------------------

    async def run_monthly_job(
        self,
        today: Optional[date] = None,
        force: bool = False,
        clinic_id: Optional[int] = None,
        reference: Optional[Tuple[int, int]] = None,
    ) -> BatchJobReport:
        """
        Create one batch per (clinic, active insurer) for the reference month

        Each unit commits on its own; a failing unit is rolled back and
        reported without stopping the others.

        Args:
            today: Run date (defaults to today); selects clinics by generation day
            force: Ignore the clinics' generation day
            clinic_id: Restrict the run to one clinic
            reference: (month, year) to bill; defaults to the previous month

        Returns:
            BatchJobReport
        """
        today = today or date.today()
        month, year = reference or previous_month(today)
        report = BatchJobReport(reference_month=month, reference_year=year)

        units = await self._build_work_list(today, force, clinic_id, report)
        logger.info(
            f"TISS batch job for {month:02d}/{year}: {report.clinics_processed} clinics, {len(units)} insurers"
        )

        for unit in units:
            try:
                created = await self._create_batch_for_unit(unit, month, year)
                if created is None:
                    report.skipped += 1
                    await self.db.rollback()
                    continue
                summary, admins = created
                await self.db.commit()
            except ConflictException:
                await self.db.rollback()
                logger.info(
                    f"Batch for clinic {unit.clinic_id} / insurer {unit.operator_id} "
                    f"{month:02d}/{year} created concurrently; skipping"
                )
                report.skipped += 1
                continue
            except Exception as e:
                await self.db.rollback()
                logger.error(
                    f"Error creating batch for clinic {unit.clinic_id} / insurer {unit.operator_id}: {e}",
                    exc_info=True,
                )
                message = getattr(e, "message", None) or str(e)
                report.errors.append(BatchJobError(unit.clinic_id, unit.operator_id, message))
                continue

            report.batches_created += 1
            report.guides_created += summary["total_guides"]
            await self._notify_admins(admins, unit, summary)

        logger.info(
            f"TISS batch job finished: {report.batches_created} batches, {report.guides_created} guides, "
            f"{report.skipped} skipped, {len(report.errors)} errors"
        )
        return report

    async def _build_work_list(
        self,
        today: date,
        force: bool,
        clinic_id: Optional[int],
        report: BatchJobReport,
    ) -> List[_WorkUnit]:
        query = select(Clinic).where(
            Clinic.is_active == True,  # noqa: E712
            Clinic.plan_type.in_(settings.tiss_batch_plan_types),
            Clinic.tiss_auto_generate == True,  # noqa: E712
        ).order_by(Clinic.id)
        if clinic_id is not None:
            query = query.where(Clinic.id == clinic_id)
        clinics = (await self.db.execute(query)).scalars().all()

        units = []
        for clinic in clinics:
            generation_day = clinic.tiss_generation_day or settings.TISS_BATCH_DEFAULT_DAY
            if not force and today.day != generation_day:
                continue
            report.clinics_processed += 1

            operators = (await self.db.execute(
                select(InsuranceOperator)
                .where(
                    InsuranceOperator.clinic_id == clinic.id,
                    InsuranceOperator.is_active == True,  # noqa: E712
                )
                .order_by(InsuranceOperator.id)
            )).scalars().all()
            units.extend(
                _WorkUnit(clinic.id, clinic.name, operator.id, operator.name)
                for operator in operators
            )
        return units

    async def _create_batch_for_unit(self, unit: _WorkUnit, month: int, year: int):
        """Returns (summary, admin recipients) or None when there is nothing to do"""
        if await self._find_existing(unit.clinic_id, unit.operator_id, month, year):
            logger.info(f"Batch already exists for clinic {unit.clinic_id} / insurer {unit.operator_id} {month:02d}/{year}")
            return None

        start, end = month_bounds(month, year)
        appointments = (await self.db.execute(
            select(Appointment)
            .where(
                Appointment.clinic_id == unit.clinic_id,
                Appointment.insurance_operator_id == unit.operator_id,
                Appointment.status == AppointmentStatus.COMPLETED.value,
                Appointment.tiss_guide_id.is_(None),
                Appointment.scheduled_at >= start,
                Appointment.scheduled_at < end,
            )
            .order_by(Appointment.scheduled_at, Appointment.id)
        )).scalars().all()

        if not appointments:
            return None

        guide_service = GuideService(self.db)
        cards = {}
        for appointment in appointments:
            if appointment.patient_id in cards:
                continue
            card = await guide_service.find_patient_insurance(appointment.patient_id, unit.operator_id)
            if card is None:
                raise ValidationException(
                    f"Paciente {appointment.patient_id} sem convênio ativo na operadora {unit.operator_name}"
                )
            cards[appointment.patient_id] = card

        batch_number = await self.numbering.next_batch_number(unit.clinic_id, year, month)
        batch = TISSBatch(
            clinic_id=unit.clinic_id,
            insurance_company_id=unit.operator_id,
            batch_number=batch_number,
            reference_month=month,
            reference_year=year,
            status=BatchStatus.DRAFT.value,
            total_guides=len(appointments),
            total_value=sum_money(a.payment_amount for a in appointments),
        )
        await self._insert_batch(batch)

        for index, appointment in enumerate(appointments, start=1):
            amount = to_money(appointment.payment_amount)
            guide = TISSGuide(
                clinic_id=unit.clinic_id,
                guide_number=format_batch_guide_number(batch_number, index),
                guide_type=GuideType.CONSULTATION.value,
                operator_id=unit.operator_id,
                patient_id=appointment.patient_id,
                patient_insurance_id=cards[appointment.patient_id].id,
                doctor_id=appointment.doctor_id,
                appointment_id=appointment.id,
                batch_id=batch.id,
                cid_primary=appointment.diagnosis_cid,
                execution_date=appointment.scheduled_at.date(),
                total_value=amount,
                status=GuideStatus.PENDING.value,
            )
            guide.procedures = [TISSGuideProcedure(
                procedure_code=settings.TISS_CONSULTATION_PROCEDURE_CODE,
                description=settings.TISS_CONSULTATION_PROCEDURE_NAME,
                quantity=1,
                unit_price=amount,
                reduction_factor=Decimal("1.00"),
                total_price=procedure_total(1, amount),
            )]
            self.db.add(guide)
            await self.db.flush()
            appointment.tiss_guide_id = guide.id

        add_batch_event(
            self.db,
            batch.id,
            BatchEventType.CREATED,
            description=f"Lote gerado automaticamente com {len(appointments)} guias",
            metadata={"source": "monthly_job", "guide_count": len(appointments), "total_value": format_money(batch.total_value)},
        )
        await self.db.flush()

        admins = (await self.db.execute(
            select(User.email, User.full_name).where(
                User.clinic_id == unit.clinic_id,
                User.role == UserRole.CLINIC_ADMIN.value,
                User.is_active == True,  # noqa: E712
            )
        )).all()

        logger.info(
            f"Created batch {batch_number} for clinic {unit.clinic_id} / insurer {unit.operator_id} "
            f"with {len(appointments)} guides"
        )
        summary = {
            "batch_number": batch_number,
            "total_guides": len(appointments),
            "total_value": to_money(batch.total_value),
            "reference_month": month,
            "reference_year": year,
        }
        return summary, [(a.email, a.full_name) for a in admins]

    async def _notify_admins(self, admins: List[Tuple[str, str]], unit: _WorkUnit, summary: Dict[str, Any]):
        """Best-effort email to the clinic admins; failures never reach the job"""
        subject = f"Lote TISS Gerado - {unit.operator_name}"
        for email, full_name in admins:
            html_body = f"""
            <div style="font-family: sans-serif; padding: 20px;">
                <h2>Olá, {full_name}!</h2>
                <p>Um novo lote TISS foi gerado automaticamente:</p>
                <ul>
                    <li><strong>Operadora:</strong> {unit.operator_name}</li>
                    <li><strong>Período:</strong> {summary['reference_month']:02d}/{summary['reference_year']}</li>
                    <li><strong>Número do Lote:</strong> {summary['batch_number']}</li>
                    <li><strong>Total de Guias:</strong> {summary['total_guides']}</li>
                    <li><strong>Valor Total:</strong> R$ {format_money(summary['total_value'])}</li>
                </ul>
                <p>Acesse o painel para revisar e enviar.</p>
            </div>
            """
            try:
                sent = await self.email_service.send_email(email, subject, html_body)
                if not sent:
                    logger.warning(f"Batch notification not delivered to {email}")
            except Exception as e:
                logger.warning(f"Failed to notify {email} about batch {summary['batch_number']}: {e}")

    # ------------------------------------------------------------------
    # Manual operations
    # ------------------------------------------------------------------

    async def create_batch(
        self,
        clinic_id: int,
        insurance_company_id: int,
        reference_month: int,
        reference_year: int,
        guide_ids: Optional[List[int]] = None,
        user_id: Optional[int] = None,
    ) -> TISSBatch:
        """
        Create a batch from existing unbatched guides

        Args:
            clinic_id: Clinic ID
            insurance_company_id: Insurer of the batch
            reference_month: 1 to 12
            reference_year: Reference year
            guide_ids: Guides to include; when omitted, every PENDING unbatched
                guide of the insurer executed in the reference month
            user_id: Creator

        Returns:
            Created TISSBatch with guides and events loaded
        """
        if not 1 <= reference_month <= 12:
            raise ValidationException("Mês de referência inválido")

        operator = (await self.db.execute(
            select(InsuranceOperator).where(
                InsuranceOperator.id == insurance_company_id,
                InsuranceOperator.clinic_id == clinic_id,
            )
        )).scalar_one_or_none()
        if not operator:
            raise NotFoundException("Operadora não encontrada")

        if await self._find_existing(clinic_id, insurance_company_id, reference_month, reference_year):
            raise ConflictException(BATCH_EXISTS_MESSAGE)

        query = (
            select(TISSGuide)
            .options(selectinload(TISSGuide.procedures))
            .where(
                TISSGuide.clinic_id == clinic_id,
                TISSGuide.operator_id == insurance_company_id,
                TISSGuide.batch_id.is_(None),
                TISSGuide.status == GuideStatus.PENDING.value,
            )
            .order_by(TISSGuide.id)
        )
        if guide_ids:
            query = query.where(TISSGuide.id.in_(guide_ids))
        else:
            start, end = month_bounds(reference_month, reference_year)
            query = query.where(
                TISSGuide.execution_date >= start.date(),
                TISSGuide.execution_date < end.date(),
            )
        guides = list((await self.db.execute(query)).scalars().all())

        if guide_ids:
            found = {g.id for g in guides}
            invalid = [gid for gid in guide_ids if gid not in found]
            if invalid:
                raise ValidationException(
                    "Guias não encontradas, já vinculadas a um lote ou de outra operadora",
                    details={"invalid_guide_ids": invalid},
                )
        if not guides:
            raise ValidationException(NO_ELIGIBLE_GUIDES_MESSAGE)

        batch_number = await self.numbering.next_batch_number(clinic_id, reference_year, reference_month)
        batch = TISSBatch(
            clinic_id=clinic_id,
            insurance_company_id=insurance_company_id,
            created_by=user_id,
            batch_number=batch_number,
            reference_month=reference_month,
            reference_year=reference_year,
            status=BatchStatus.DRAFT.value,
            total_guides=0,
            total_value=Decimal("0.00"),
        )
        await self._insert_batch(batch)

        for guide in guides:
            guide.batch_id = batch.id
            guide.total_value = sum_money(p.total_price for p in guide.procedures)
        batch.total_guides = len(guides)
        batch.total_value = sum_money(g.total_value for g in guides)

        add_batch_event(
            self.db,
            batch.id,
            BatchEventType.CREATED,
            user_id=user_id,
            description=f"Lote criado manualmente com {len(guides)} guias",
            metadata={"source": "manual", "guide_count": len(guides), "total_value": format_money(batch.total_value)},
        )
        await self.db.flush()

        logger.info(f"Created batch {batch_number} for clinic {clinic_id} with {len(guides)} guides")
        return await self.get_batch(clinic_id, batch.id, with_details=True)

    async def recalculate_totals(self, batch: TISSBatch) -> TISSBatch:
        """Recompute total_guides/total_value from the guides currently attached"""
        guides = (await self.db.execute(
            select(TISSGuide)
            .options(selectinload(TISSGuide.procedures))
            .where(TISSGuide.batch_id == batch.id)
        )).scalars().all()

        batch.total_guides = len(guides)
        batch.total_value = sum_money(effective_guide_total(g) for g in guides)
        await self.db.flush()
        return batch

    async def validate_batch(self, clinic_id: int, batch_id: int, user_id: Optional[int] = None) -> Dict:
        """
        Run the integrity check; failures move a DRAFT/VALID batch to INVALID

        Returns:
            Validation result with the batch status after the check
        """
        batch = await self.get_batch(clinic_id, batch_id, with_details=True)
        result = batch_integrity_validator.validate_batch_integrity(batch)

        if result["is_valid"]:
            batch.validation_errors = None
        else:
            batch.validation_errors = result["errors"]
            if batch.status in (BatchStatus.DRAFT.value, BatchStatus.VALID.value):
                batch.status = BatchStatus.INVALID.value

        add_batch_event(
            self.db,
            batch.id,
            BatchEventType.VALIDATED,
            user_id=user_id,
            description="Lote validado" if result["is_valid"] else f"Lote com {len(result['errors'])} erros",
            metadata={"is_valid": result["is_valid"], "errors": result["errors"], "warnings": result["warnings"]},
        )
        await self.db.flush()

        result["status"] = batch.status
        return result

    async def submit_batch(
        self,
        clinic_id: int,
        batch_id: int,
        protocol_number: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> TISSBatch:
        """Mark a batch with generated XML as sent to the insurer"""
        batch = await self.get_batch(clinic_id, batch_id)

        if not batch.xml_file_url:
            raise ValidationException("Gere o XML do lote antes de enviá-lo")
        if batch.status not in (BatchStatus.VALID.value, BatchStatus.DRAFT.value):
            raise ValidationException(f"Lote não pode ser enviado com status {batch.status}")

        now = datetime.now(timezone.utc)
        batch.status = BatchStatus.SENT.value
        batch.protocol_number = protocol_number
        batch.submission_date = now.date()
        batch.submitted_at = now

        add_batch_event(
            self.db,
            batch.id,
            BatchEventType.SUBMITTED,
            user_id=user_id,
            description="Lote enviado à operadora",
            metadata={"protocol_number": protocol_number},
        )
        await self.db.flush()

        logger.info(f"Batch {batch.batch_number} submitted (protocol {protocol_number or '-'})")
        return await self.get_batch(clinic_id, batch.id, with_details=True)

    async def list_batches(
        self,
        clinic_id: int,
        statuses: Optional[List[str]] = None,
        insurance_company_id: Optional[int] = None,
        reference_month: Optional[int] = None,
        reference_year: Optional[int] = None,
    ) -> List[TISSBatch]:
        query = select(TISSBatch).where(TISSBatch.clinic_id == clinic_id)
        if statuses:
            query = query.where(TISSBatch.status.in_([s.strip().upper() for s in statuses if s.strip()]))
        if insurance_company_id:
            query = query.where(TISSBatch.insurance_company_id == insurance_company_id)
        if reference_month:
            query = query.where(TISSBatch.reference_month == reference_month)
        if reference_year:
            query = query.where(TISSBatch.reference_year == reference_year)

        query = query.order_by(
            TISSBatch.reference_year.desc(),
            TISSBatch.reference_month.desc(),
            TISSBatch.id.desc(),
        )
        return list((await self.db.execute(query)).scalars().all())

    async def get_batch(self, clinic_id: int, batch_id: int, with_details: bool = False) -> TISSBatch:
        query = select(TISSBatch).where(TISSBatch.id == batch_id, TISSBatch.clinic_id == clinic_id)
        if with_details:
            query = query.options(
                selectinload(TISSBatch.guides).selectinload(TISSGuide.procedures),
                selectinload(TISSBatch.guides).selectinload(TISSGuide.patient_insurance),
                selectinload(TISSBatch.events),
            )
        query = query.execution_options(populate_existing=True)

        batch = (await self.db.execute(query)).scalar_one_or_none()
        if not batch:
            raise NotFoundException("Lote não encontrado")
        return batch

    async def _find_existing(self, clinic_id: int, operator_id: int, month: int, year: int) -> Optional[int]:
        result = await self.db.execute(
            select(TISSBatch.id).where(
                TISSBatch.clinic_id == clinic_id,
                TISSBatch.insurance_company_id == operator_id,
                TISSBatch.reference_month == month,
                TISSBatch.reference_year == year,
            )
        )
        return result.scalar_one_or_none()

    async def _insert_batch(self, batch: TISSBatch) -> None:
        """Insert, translating a lost check-then-insert race into a conflict"""
        self.db.add(batch)
        try:
            await self.db.flush()
        except IntegrityError as e:
            logger.warning(f"Unique violation inserting batch {batch.batch_number}: {e.orig}")
            raise ConflictException(BATCH_EXISTS_MESSAGE) from e
