"""
TISS Return Processor
Ingests insurer return files and reconciles guide and batch outcomes
"""

import base64
import binascii
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.error_handling import AppException, ConflictException, NotFoundException, ValidationException
from app.models.tiss import (
    BatchEventType,
    BatchStatus,
    GlosaType,
    GuideStatus,
    ReturnProcessingStatus,
    TISSBatch,
    TISSGlosa,
    TISSGuide,
    TISSReturn,
)
from app.schemas.tiss import ReturnUpload
from app.services.storage_service import StorageService
from app.services.tiss.batch_generator import add_batch_event
from app.services.tiss.money import ZERO, format_money, sum_money, to_money
from app.services.tiss.parsers import denial_interpreter, return_parser
from app.services.tiss.parsers.return_parser import SEVERITY_ERROR, SEVERITY_WARNING, ParsedGuideReturn
from app.services.tiss.validations.batch_integrity_validator import effective_guide_total
from app.services.tiss.xml_reader import decode_document, parse_insurer_text

logger = logging.getLogger(__name__)

RETURN_UPLOAD_STATUSES = (BatchStatus.SENT.value, BatchStatus.PROCESSING.value)
# Reconciled batches still accept returns while some guide has no outcome
RECONCILED_STATUSES = (BatchStatus.APPROVED.value, BatchStatus.DENIED.value, BatchStatus.PARTIAL.value)
CLAIMABLE_STATUSES = (ReturnProcessingStatus.PENDING.value, ReturnProcessingStatus.ERROR.value)
MAX_ERROR_LENGTH = 2000


def derive_batch_status(approved: int, denied: int, partial: int) -> BatchStatus:
    """APPROVED when every guide was approved, DENIED when every guide was denied, else PARTIAL"""
    total = approved + denied + partial
    if total <= 0:
        raise ValueError("At least one guide outcome is required")
    if approved == total:
        return BatchStatus.APPROVED
    if denied == total:
        return BatchStatus.DENIED
    return BatchStatus.PARTIAL


def resolve_partial_glosa(parsed: ParsedGuideReturn, original: Decimal) -> Optional[Decimal]:
    """Denied amount of a partially paid guide, from the most specific data the insurer sent"""
    if parsed.amount_denied is not None:
        return to_money(parsed.amount_denied)
    if parsed.amount_requested is not None and parsed.amount_released is not None:
        return to_money(parsed.amount_requested - parsed.amount_released)
    if parsed.amount_released is not None:
        return to_money(original - parsed.amount_released)
    return None


class ReturnProcessor:
    """Service for insurer return ingestion and reconciliation"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def register_return(
        self,
        clinic_id: int,
        data: ReturnUpload,
        storage: StorageService,
        user_id: Optional[int] = None,
    ) -> TISSReturn:
        """
        Store an insurer return file for a submitted batch

        Args:
            clinic_id: Clinic ID
            data: Upload payload with base64 file content
            storage: Object storage collaborator
            user_id: Uploader

        Returns:
            The PENDING TISSReturn
        """
        batch = (await self.db.execute(
            select(TISSBatch).where(TISSBatch.id == data.batch_id, TISSBatch.clinic_id == clinic_id)
        )).scalar_one_or_none()
        if not batch:
            raise NotFoundException("Lote não encontrado")
        if batch.status not in RETURN_UPLOAD_STATUSES and not (
            batch.status in RECONCILED_STATUSES and await self._has_pending_guides(batch.id)
        ):
            raise ValidationException("Retorno só pode ser enviado para lotes já enviados à operadora")
        if not data.file_name.lower().endswith(".xml"):
            raise ValidationException("Apenas arquivos XML são aceitos")

        try:
            content = base64.b64decode(data.file_content, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValidationException("Conteúdo do arquivo inválido (base64)") from e

        raw_content = decode_document(content)
        # Reject unreadable files at upload time instead of at processing
        parse_insurer_text(raw_content)

        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        path = f"tiss-returns/{clinic_id}/{batch.batch_number}_{timestamp}.xml"
        file_url = await storage.upload(path, content, content_type="application/xml", upsert=False)

        tiss_return = TISSReturn(
            clinic_id=clinic_id,
            batch_id=batch.id,
            uploaded_by=user_id,
            file_name=data.file_name,
            file_url=file_url,
            file_size=len(content),
            raw_content=raw_content,
            processing_status=ReturnProcessingStatus.PENDING.value,
        )
        self.db.add(tiss_return)
        batch.status = BatchStatus.PROCESSING.value
        await self.db.flush()

        add_batch_event(
            self.db,
            batch.id,
            BatchEventType.RETURN_UPLOADED,
            user_id=user_id,
            description=f"Retorno {data.file_name} recebido",
            metadata={"return_id": tiss_return.id, "file_name": data.file_name, "file_size": len(content)},
        )
        await self.db.flush()
        await self.db.refresh(tiss_return)

        logger.info(f"Registered return {tiss_return.id} for batch {batch.batch_number}")
        return tiss_return

    async def get_return(self, clinic_id: int, return_id: int) -> TISSReturn:
        result = await self.db.execute(
            select(TISSReturn)
            .where(TISSReturn.id == return_id, TISSReturn.clinic_id == clinic_id)
            .execution_options(populate_existing=True)
        )
        tiss_return = result.scalar_one_or_none()
        if not tiss_return:
            raise NotFoundException("Retorno não encontrado")
        return tiss_return

    async def process_return(self, clinic_id: int, return_id: int, user_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Reconcile a stored return against its batch

        The reconciliation runs in one transaction. On failure it is rolled
        back and the return is marked ERROR in a separate commit.

        Returns:
            Aggregate counts and amounts plus warnings
        """
        await self.get_return(clinic_id, return_id)
        await self._claim(return_id)
        tiss_return = await self.get_return(clinic_id, return_id)

        try:
            result = await self._reconcile(tiss_return, user_id)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            message = getattr(e, "message", None) or str(e) or type(e).__name__
            logger.error(f"Error processing return {return_id}: {message}", exc_info=True)
            await self._mark_error(return_id, message)
            raise AppException(
                f"Erro ao processar retorno: {message}",
                status_code=500,
                details={"return_id": return_id},
            ) from e

        logger.info(
            f"Processed return {return_id}: {result['total_approved']} approved, "
            f"{result['total_denied']} denied, {result['total_partial']} partial"
        )
        return result

    async def _claim(self, return_id: int) -> None:
        """Move the return to PROCESSING only if nobody else holds or finished it"""
        result = await self.db.execute(
            update(TISSReturn)
            .where(
                TISSReturn.id == return_id,
                TISSReturn.processing_status.in_(CLAIMABLE_STATUSES),
            )
            .values(processing_status=ReturnProcessingStatus.PROCESSING.value, processing_error=None)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            current = (await self.db.execute(
                select(TISSReturn.processing_status).where(TISSReturn.id == return_id)
            )).scalar_one()
            logger.info(f"Return {return_id} not claimed; status is {current}")
            if current == ReturnProcessingStatus.COMPLETED.value:
                raise ConflictException("Retorno já processado")
            raise ConflictException("Retorno em processamento")
        await self.db.commit()

    async def _has_pending_guides(self, batch_id: int) -> bool:
        result = await self.db.execute(
            select(TISSGuide.id)
            .where(TISSGuide.batch_id == batch_id, TISSGuide.status == GuideStatus.PENDING.value)
            .limit(1)
        )
        return result.first() is not None

    async def _mark_error(self, return_id: int, message: str) -> None:
        await self.db.execute(
            update(TISSReturn)
            .where(TISSReturn.id == return_id)
            .values(
                processing_status=ReturnProcessingStatus.ERROR.value,
                processing_error=message[:MAX_ERROR_LENGTH],
                processed_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

    async def _reconcile(self, tiss_return: TISSReturn, user_id: Optional[int]) -> Dict[str, Any]:
        batch = (await self.db.execute(
            select(TISSBatch)
            .options(selectinload(TISSBatch.guides).selectinload(TISSGuide.procedures))
            .where(TISSBatch.id == tiss_return.batch_id)
            .execution_options(populate_existing=True)
        )).scalar_one()

        parsed = return_parser.parse(parse_insurer_text(tiss_return.raw_content))
        if not parsed.guides:
            errors = [i.message for i in parsed.issues if i.severity == SEVERITY_ERROR]
            raise ValidationException(errors[0] if errors else "Nenhuma guia encontrada no arquivo de retorno")

        warnings = [
            f"Guia {i.guide_number}: {i.message}" if i.guide_number else i.message
            for i in parsed.issues
            if i.severity in (SEVERITY_ERROR, SEVERITY_WARNING)
        ]

        guides_by_number = {g.guide_number: g for g in batch.guides}
        now = datetime.now(timezone.utc)
        counts = {GuideStatus.APPROVED: 0, GuideStatus.DENIED: 0, GuideStatus.PARTIAL: 0}
        requested: List[Decimal] = []
        approved: List[Decimal] = []
        denied: List[Decimal] = []
        glosas_created = 0
        matched = set()

        for entry in parsed.guides:
            guide = guides_by_number.get(entry.guide_number)
            if guide is None:
                warnings.append(f"Guia {entry.guide_number} do retorno não pertence ao lote {batch.batch_number}")
                continue
            if guide.status != GuideStatus.PENDING.value:
                warnings.append(f"Guia {entry.guide_number} já processada ({guide.status}); ignorada")
                continue

            original = effective_guide_total(guide)
            outcome, glosa_amount = self._resolve_outcome(entry, original)

            guide.total_value = original
            guide.status = outcome.value
            guide.glosa_value = glosa_amount
            guide.processed_at = now

            if outcome != GuideStatus.APPROVED:
                self.db.add(self._build_glosa(tiss_return, guide, entry, outcome, original, glosa_amount))
                glosas_created += 1

            counts[outcome] += 1
            requested.append(original)
            approved.append(original - glosa_amount)
            denied.append(glosa_amount)
            matched.add(guide.guide_number)

        if not matched:
            raise ValidationException("Nenhuma guia do retorno corresponde a guias pendentes do lote")

        for number, guide in guides_by_number.items():
            if number not in matched and guide.status == GuideStatus.PENDING.value:
                warnings.append(f"Guia {number} não consta no retorno; mantida como pendente")
        for warning in warnings:
            logger.warning(f"Return {tiss_return.id}: {warning}")

        # Earlier returns may already have settled other guides of the batch
        batch_counts = {
            status: sum(1 for g in batch.guides if g.status == status.value)
            for status in (GuideStatus.APPROVED, GuideStatus.DENIED, GuideStatus.PARTIAL)
        }
        batch_status = derive_batch_status(
            batch_counts[GuideStatus.APPROVED], batch_counts[GuideStatus.DENIED], batch_counts[GuideStatus.PARTIAL]
        )
        batch.status = batch_status.value
        batch.return_processed_at = now
        if parsed.protocol_number and not batch.protocol_number:
            batch.protocol_number = parsed.protocol_number

        parsed_data = parsed.to_dict()
        parsed_data["warnings"] = warnings

        tiss_return.processing_status = ReturnProcessingStatus.COMPLETED.value
        tiss_return.processing_error = None
        tiss_return.processed_at = now
        tiss_return.total_guides_processed = len(matched)
        tiss_return.total_approved = counts[GuideStatus.APPROVED]
        tiss_return.total_denied = counts[GuideStatus.DENIED]
        tiss_return.total_partial = counts[GuideStatus.PARTIAL]
        tiss_return.amount_requested = sum_money(requested)
        tiss_return.amount_approved = sum_money(approved)
        tiss_return.amount_denied = sum_money(denied)
        tiss_return.parsed_data = parsed_data

        add_batch_event(
            self.db,
            batch.id,
            BatchEventType.RETURN_PROCESSED,
            user_id=user_id,
            description=f"Retorno processado: lote {batch_status.value}",
            metadata={
                "return_id": tiss_return.id,
                "approved": counts[GuideStatus.APPROVED],
                "denied": counts[GuideStatus.DENIED],
                "partial": counts[GuideStatus.PARTIAL],
                "amount_approved": format_money(tiss_return.amount_approved),
                "amount_denied": format_money(tiss_return.amount_denied),
            },
        )
        await self.db.flush()

        return {
            "return_id": tiss_return.id,
            "batch_id": batch.id,
            "batch_status": batch.status,
            "total_guides_processed": tiss_return.total_guides_processed,
            "total_approved": tiss_return.total_approved,
            "total_denied": tiss_return.total_denied,
            "total_partial": tiss_return.total_partial,
            "amount_requested": tiss_return.amount_requested,
            "amount_approved": tiss_return.amount_approved,
            "amount_denied": tiss_return.amount_denied,
            "glosas_created": glosas_created,
            "warnings": warnings,
        }

    def _resolve_outcome(self, entry: ParsedGuideReturn, original: Decimal) -> Tuple[GuideStatus, Decimal]:
        outcome = GuideStatus(entry.outcome)
        if outcome == GuideStatus.APPROVED:
            return outcome, ZERO
        if outcome == GuideStatus.DENIED:
            return outcome, original

        glosa_amount = resolve_partial_glosa(entry, original)
        if glosa_amount is None:
            raise ValidationException(f"Guia {entry.guide_number}: glosa parcial sem valor informado")
        if not ZERO < glosa_amount < original:
            raise ValidationException(
                f"Guia {entry.guide_number}: valor glosado {format_money(glosa_amount)} "
                f"fora do intervalo do valor da guia {format_money(original)}"
            )
        return outcome, glosa_amount

    def _build_glosa(
        self,
        tiss_return: TISSReturn,
        guide: TISSGuide,
        entry: ParsedGuideReturn,
        outcome: GuideStatus,
        original: Decimal,
        glosa_amount: Decimal,
    ) -> TISSGlosa:
        """One glosa per guide; several insurer reasons are folded into the description"""
        reasons = entry.glosas
        code = reasons[0].code if reasons else "SEM_CODIGO"
        description = "; ".join(r.description for r in reasons) if reasons else (entry.observation or None)
        interpretation = denial_interpreter.interpret_denial(code, description)

        return TISSGlosa(
            clinic_id=guide.clinic_id,
            guide_id=guide.id,
            batch_id=guide.batch_id,
            return_id=tiss_return.id,
            glosa_type=(GlosaType.TOTAL if outcome == GuideStatus.DENIED else GlosaType.PARTIAL).value,
            glosa_code=code[:20],
            glosa_description=interpretation["description"] or (
                "Glosa total" if outcome == GuideStatus.DENIED else "Glosa parcial"
            ),
            category=interpretation["category"],
            glosa_value=glosa_amount,
            original_value=original,
            approved_value=original - glosa_amount,
            can_appeal=interpretation["can_appeal"],
        )
