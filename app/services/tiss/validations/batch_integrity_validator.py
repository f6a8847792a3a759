"""
Batch Integrity Validator
Validates batch integrity and consistency before XML generation and submission
"""

import logging
from decimal import Decimal
from typing import Dict, List

from app.models.tiss import TISSBatch, TISSGuide
from app.services.tiss.money import sum_money, to_money

logger = logging.getLogger(__name__)

MAX_GUIDES_PER_BATCH = 1000


def effective_guide_total(guide: TISSGuide) -> Decimal:
    """Stored total when aggregated, otherwise the sum of the procedure lines"""
    if guide.total_value is not None:
        return to_money(guide.total_value)
    return sum_money(p.total_price for p in guide.procedures)


class BatchIntegrityValidator:
    """Validator for batch integrity; expects guides, procedures and cards loaded"""

    def validate_batch_integrity(self, batch: TISSBatch) -> Dict:
        """
        Validate batch integrity

        Args:
            batch: Batch with guides (procedures, patient_insurance) loaded

        Returns:
            Dictionary with validation result
        """
        errors: List[str] = []
        warnings: List[str] = []
        guides = list(batch.guides)

        if not guides:
            errors.append("Lote sem guias")
        if len(guides) > MAX_GUIDES_PER_BATCH:
            errors.append(f"Lote excede o limite de {MAX_GUIDES_PER_BATCH} guias")

        errors.extend(self._validate_batch_totals(batch, guides))

        for guide in guides:
            guide_errors, guide_warnings = self._validate_guide(guide)
            errors.extend(guide_errors)
            warnings.extend(guide_warnings)

        if errors:
            logger.info(f"Batch {batch.batch_number} failed integrity check with {len(errors)} errors")

        return {
            'is_valid': len(errors) == 0,
            'errors': errors,
            'warnings': warnings,
            'batch_id': batch.id,
            'batch_number': batch.batch_number,
        }

    def _validate_batch_totals(self, batch: TISSBatch, guides: List[TISSGuide]) -> List[str]:
        """Validate batch totals match sum of guides"""
        errors = []

        if (batch.total_guides or 0) != len(guides):
            errors.append(
                f"Quantidade de guias do lote ({batch.total_guides}) difere das guias vinculadas ({len(guides)})"
            )

        calculated_total = sum_money(effective_guide_total(g) for g in guides)
        if to_money(batch.total_value) != calculated_total:
            errors.append(
                f"Valor total do lote ({to_money(batch.total_value)}) difere da soma das guias ({calculated_total})"
            )

        return errors

    def _validate_guide(self, guide: TISSGuide):
        errors = []
        warnings = []
        label = guide.guide_number or f"id {guide.id}"

        if not guide.guide_number:
            errors.append(f"Guia {label}: número da guia ausente")

        card = guide.patient_insurance
        if card is None or not card.card_number:
            errors.append(f"Guia {label}: número da carteira do beneficiário ausente")

        if not guide.procedures:
            errors.append(f"Guia {label}: nenhum procedimento informado")
        elif guide.total_value is not None:
            procedures_total = sum_money(p.total_price for p in guide.procedures)
            if to_money(guide.total_value) != procedures_total:
                errors.append(
                    f"Guia {label}: valor total ({to_money(guide.total_value)}) difere da soma dos procedimentos ({procedures_total})"
                )

        if not guide.cid_primary:
            warnings.append(f"Guia {label}: CID principal não informado")

        return errors, warnings


batch_integrity_validator = BatchIntegrityValidator()
