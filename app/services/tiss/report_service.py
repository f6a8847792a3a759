"""
TISS Report Service
Financial loss (glosa) analysis over processed guides and dashboard figures
"""

import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.error_handling import ValidationException
from app.models.tiss import BatchStatus, GuideStatus, TISSBatch, TISSGlosa, TISSGuide
from app.services.tiss.batch_generator import previous_month
from app.services.tiss.money import ZERO, sum_money, to_money
from app.services.tiss.validations.batch_integrity_validator import effective_guide_total

logger = logging.getLogger(__name__)

TOP_LIMIT = 5
PROCESSED_STATUSES = [GuideStatus.APPROVED.value, GuideStatus.DENIED.value, GuideStatus.PARTIAL.value]
ACTIVE_BATCH_STATUSES = [
    BatchStatus.DRAFT.value,
    BatchStatus.VALID.value,
    BatchStatus.SENT.value,
    BatchStatus.PROCESSING.value,
]
RECENT_BATCHES_LIMIT = 5
AWAITING_RETURN_DAYS = 30


def glosa_rate(billed: Decimal, glosa: Decimal) -> Decimal:
    """Percentage of the billed value lost to glosas"""
    if billed <= 0:
        return ZERO
    return to_money(glosa * 100 / billed)


class TISSReportService:
    """Service for TISS financial reports"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def loss_analysis(
        self,
        clinic_id: int,
        start_date: Optional[date],
        end_date: Optional[date],
        operator_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Billed, received and glosa totals for guides executed in a period

        Args:
            clinic_id: Clinic ID
            start_date: First execution date (inclusive)
            end_date: Last execution date (inclusive)
            operator_id: Restrict to one insurer

        Returns:
            Dictionary with period, summary, by_insurance, top_categories and top_codes
        """
        if not start_date or not end_date:
            raise ValidationException("start_date e end_date obrigatórios")
        if start_date > end_date:
            raise ValidationException("start_date deve ser anterior a end_date")

        filters = [
            TISSGuide.clinic_id == clinic_id,
            TISSGuide.batch_id.isnot(None),
            TISSGuide.execution_date >= start_date,
            TISSGuide.execution_date <= end_date,
        ]
        if operator_id:
            filters.append(TISSGuide.operator_id == operator_id)

        guides = (await self.db.execute(
            select(TISSGuide)
            .options(selectinload(TISSGuide.procedures), selectinload(TISSGuide.operator))
            .where(*filters)
        )).scalars().all()

        processed = [g for g in guides if g.status in PROCESSED_STATUSES]
        pending = [g for g in guides if g.status == GuideStatus.PENDING.value]

        billed = sum_money(effective_guide_total(g) for g in processed)
        glosa = sum_money(g.glosa_value for g in processed)

        by_insurance: Dict[int, Dict[str, Any]] = {}
        for guide in processed:
            bucket = by_insurance.setdefault(guide.operator_id, {
                "operator_id": guide.operator_id,
                "name": guide.operator.name if guide.operator else "Não informado",
                "billed": ZERO,
                "approved": ZERO,
                "glosa": ZERO,
                "count": 0,
            })
            total = effective_guide_total(guide)
            guide_glosa = to_money(guide.glosa_value)
            bucket["billed"] += total
            bucket["glosa"] += guide_glosa
            bucket["approved"] += total - guide_glosa
            bucket["count"] += 1

        insurers = list(by_insurance.values())
        for bucket in insurers:
            bucket["glosa_rate"] = glosa_rate(bucket["billed"], bucket["glosa"])
        insurers.sort(key=lambda b: b["glosa_rate"], reverse=True)

        top_categories = await self._top_glosas(TISSGlosa.category, filters)
        top_codes = await self._top_glosas(TISSGlosa.glosa_code, filters)

        logger.info(f"Loss analysis for clinic {clinic_id} {start_date}..{end_date}: {len(processed)} processed guides")

        return {
            "period": {"start": start_date.isoformat(), "end": end_date.isoformat()},
            "summary": {
                "billed_value": billed,
                "received_value": billed - glosa,
                "glosa_value": glosa,
                "glosa_rate": glosa_rate(billed, glosa),
                "total_guides": len(processed),
                "pending_guides": len(pending),
                "pending_value": sum_money(effective_guide_total(g) for g in pending),
            },
            "by_insurance": insurers,
            "top_categories": [{"category": key, **values} for key, values in top_categories],
            "top_codes": [{"code": key, **values} for key, values in top_codes],
        }

    async def _top_glosas(self, column, filters: List) -> List:
        total = func.sum(TISSGlosa.glosa_value)
        rows = (await self.db.execute(
            select(column, func.count(TISSGlosa.id), total)
            .select_from(TISSGlosa)
            .join(TISSGuide, TISSGuide.id == TISSGlosa.guide_id)
            .where(*filters)
            .group_by(column)
            .order_by(total.desc())
            .limit(TOP_LIMIT)
        )).all()
        return [(key, {"count": count, "value": to_money(value)}) for key, count, value in rows]

    async def dashboard_stats(self, clinic_id: int, today: Optional[date] = None) -> Dict[str, Any]:
        """
        Consolidated figures for the TISS dashboard

        Billed and glosa values refer to the batches whose reference month is
        the current one; growth compares them with the previous month.
        """
        today = today or date.today()
        last_month, last_year = previous_month(today)

        batch_counts = dict((await self.db.execute(
            select(TISSBatch.status, func.count(TISSBatch.id))
            .where(TISSBatch.clinic_id == clinic_id)
            .group_by(TISSBatch.status)
        )).all())
        guide_counts = dict((await self.db.execute(
            select(TISSGuide.status, func.count(TISSGuide.id))
            .where(TISSGuide.clinic_id == clinic_id)
            .group_by(TISSGuide.status)
        )).all())

        billed = await self._billed_in_month(clinic_id, today.month, today.year)
        last_billed = await self._billed_in_month(clinic_id, last_month, last_year)
        glosa = to_money((await self.db.execute(
            select(func.sum(TISSGuide.glosa_value))
            .join(TISSBatch, TISSBatch.id == TISSGuide.batch_id)
            .where(
                TISSBatch.clinic_id == clinic_id,
                TISSBatch.reference_month == today.month,
                TISSBatch.reference_year == today.year,
            )
        )).scalar())

        total_guides = sum(guide_counts.values())
        approved_guides = guide_counts.get(GuideStatus.APPROVED.value, 0)

        return {
            "active_batches": sum(batch_counts.get(s, 0) for s in ACTIVE_BATCH_STATUSES),
            "draft_batches": batch_counts.get(BatchStatus.DRAFT.value, 0),
            "current_month_billed": billed,
            "current_month_glosa": glosa,
            "approved_guides": approved_guides,
            "approval_rate": round(approved_guides * 100 / total_guides) if total_guides else 0,
            "glosa_rate": glosa_rate(billed, glosa),
            "growth_percentage": to_money((billed - last_billed) * 100 / last_billed) if last_billed > 0 else None,
            "recent_batches": await self._recent_batches(clinic_id),
            "alerts": await self._alerts(clinic_id, batch_counts),
        }

    async def _billed_in_month(self, clinic_id: int, month: int, year: int) -> Decimal:
        total = (await self.db.execute(
            select(func.sum(TISSBatch.total_value)).where(
                TISSBatch.clinic_id == clinic_id,
                TISSBatch.reference_month == month,
                TISSBatch.reference_year == year,
            )
        )).scalar()
        return to_money(total)

    async def _recent_batches(self, clinic_id: int) -> List[Dict[str, Any]]:
        batches = (await self.db.execute(
            select(TISSBatch)
            .options(selectinload(TISSBatch.operator))
            .where(TISSBatch.clinic_id == clinic_id)
            .order_by(TISSBatch.created_at.desc(), TISSBatch.id.desc())
            .limit(RECENT_BATCHES_LIMIT)
        )).scalars().all()
        return [
            {
                "id": b.id,
                "batch_number": b.batch_number,
                "insurance_company_name": b.operator.name if b.operator else None,
                "total_guides": b.total_guides,
                "total_value": to_money(b.total_value),
                "status": b.status,
            }
            for b in batches
        ]

    async def _alerts(self, clinic_id: int, batch_counts: Dict[str, int]) -> List[Dict[str, str]]:
        alerts = []

        invalid = batch_counts.get(BatchStatus.INVALID.value, 0)
        if invalid:
            alerts.append({
                "title": f"{invalid} lote(s) com erros de validação",
                "description": "Corrija os erros antes de gerar o XML",
                "action": "Corrigir",
            })

        cutoff = datetime.now(timezone.utc) - timedelta(days=AWAITING_RETURN_DAYS)
        overdue = (await self.db.execute(
            select(func.count(TISSBatch.id)).where(
                TISSBatch.clinic_id == clinic_id,
                TISSBatch.status == BatchStatus.SENT.value,
                TISSBatch.submitted_at < cutoff,
            )
        )).scalar()
        if overdue:
            alerts.append({
                "title": f"{overdue} lote(s) aguardando retorno há mais de {AWAITING_RETURN_DAYS} dias",
                "description": "Entre em contato com a operadora",
                "action": "Ver Lotes",
            })

        return alerts
