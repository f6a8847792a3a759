"""
TISS XML Generator
Serializes a batch and its guides into the ANS TISS message format

generate_batch_xml is pure: no database or network access. BatchXMLExporter
loads the batch, stores the generated file and updates the batch.
"""

import hashlib
import logging
import re
import secrets
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config import settings
from app.core.error_handling import NotFoundException, ValidationException
from app.models.tiss import BatchEventType, BatchStatus, TISSBatch, TISSGuide
from app.services.storage_service import StorageError, StorageService
from app.services.tiss.batch_generator import add_batch_event
from app.services.tiss.money import format_money, sum_money

logger = logging.getLogger(__name__)

ANS_NAMESPACE = "http://www.ans.gov.br/padroes/tiss/schemas"
XSI_NAMESPACE = "http://www.w3.org/2001/XMLSchema-instance"
DEFAULT_VERSION = "4.02.00"
TRANSACTION_TYPE = "ENVIO_LOTE_GUIAS"
TUSS_TABLE_CODE = "22"

_NON_DIGITS = re.compile(r"\D")

_ESCAPES = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&apos;"),
)


def escape_xml(value: Any) -> str:
    """Escape the five XML special characters, & first"""
    if value is None:
        return ""
    text = str(value)
    for char, entity in _ESCAPES:
        text = text.replace(char, entity)
    return text


def digits_only(value: Optional[str]) -> str:
    return _NON_DIGITS.sub("", value or "")


def format_date(value) -> str:
    if isinstance(value, datetime):
        value = value.date()
    return value.strftime("%Y-%m-%d")


def generate_transaction_id(now: datetime) -> str:
    return f"{int(now.timestamp() * 1000)}{secrets.randbelow(10000):04d}"


def _guide_xml(guide: Any) -> List[str]:
    lines = []
    indent = "    "

    emission = getattr(guide, "created_at", None) or guide.execution_date
    card = getattr(guide, "patient_insurance", None)
    patient = getattr(guide, "patient", None)

    lines.append(f'{indent}<ans:guia tipoGuia="{escape_xml(guide.guide_type)}">')
    lines.append(f"{indent}  <ans:numeroGuiaPrestador>{escape_xml(guide.guide_number)}</ans:numeroGuiaPrestador>")
    lines.append(f"{indent}  <ans:dataEmissao>{format_date(emission)}</ans:dataEmissao>")

    # Beneficiário
    lines.append(f"{indent}  <ans:beneficiario>")
    lines.append(f"{indent}    <ans:numeroCarteira>{escape_xml(card.card_number if card else '')}</ans:numeroCarteira>")
    lines.append(f"{indent}    <ans:nomeBeneficiario>{escape_xml(patient.full_name if patient else '')}</ans:nomeBeneficiario>")
    cpf = digits_only(getattr(patient, "cpf", None))
    if cpf:
        lines.append(f"{indent}    <ans:cpf>{cpf}</ans:cpf>")
    lines.append(f"{indent}  </ans:beneficiario>")

    # Procedimentos
    lines.append(f"{indent}  <ans:procedimentos>")
    for procedure in guide.procedures:
        lines.append(f"{indent}    <ans:procedimento>")
        lines.append(f"{indent}      <ans:codigoTabela>{TUSS_TABLE_CODE}</ans:codigoTabela>")
        lines.append(f"{indent}      <ans:codigoProcedimento>{escape_xml(procedure.procedure_code)}</ans:codigoProcedimento>")
        lines.append(f"{indent}      <ans:descricaoProcedimento>{escape_xml(procedure.description)}</ans:descricaoProcedimento>")
        lines.append(f"{indent}      <ans:quantidadeExecutada>{int(procedure.quantity)}</ans:quantidadeExecutada>")
        lines.append(f"{indent}      <ans:valorUnitario>{format_money(procedure.unit_price)}</ans:valorUnitario>")
        lines.append(f"{indent}      <ans:valorTotal>{format_money(procedure.total_price)}</ans:valorTotal>")
        lines.append(f"{indent}    </ans:procedimento>")
    lines.append(f"{indent}  </ans:procedimentos>")

    if guide.cid_primary:
        lines.append(f"{indent}  <ans:diagnostico>")
        lines.append(f"{indent}    <ans:CID>{escape_xml(guide.cid_primary)}</ans:CID>")
        lines.append(f"{indent}  </ans:diagnostico>")

    if guide.authorization_number:
        lines.append(f"{indent}  <ans:numeroAutorizacao>{escape_xml(guide.authorization_number)}</ans:numeroAutorizacao>")

    observation = getattr(guide, "observation", None)
    if observation:
        lines.append(f"{indent}  <ans:observacao>{escape_xml(observation)}</ans:observacao>")

    lines.append(f"{indent}</ans:guia>")
    return lines


def generate_batch_xml(
    batch: Any,
    guides: Sequence[Any],
    clinic: Any,
    operator: Any,
    version: str = DEFAULT_VERSION,
    include_declaration: bool = True,
    now: Optional[datetime] = None,
    transaction_id: Optional[str] = None,
) -> str:
    """
    Generate the TISS message for a batch

    Args:
        batch: Object with batch_number
        guides: Guides with procedures, patient and patient_insurance loaded
        clinic: Object with name, cnpj and cnes_code
        operator: Object with name, ans_code and provider_code
        version: Standard version written in the header
        include_declaration: Emit the <?xml ...?> line
        now: Send timestamp (defaults to the current time)
        transaction_id: Transaction identifier (generated when omitted)

    Returns:
        XML document as a string
    """
    now = now or datetime.now()
    transaction_id = transaction_id or generate_transaction_id(now)
    provider_code = getattr(operator, "provider_code", None) or getattr(clinic, "cnes_code", None) or "000000"

    xml = []
    if include_declaration:
        xml.append('<?xml version="1.0" encoding="UTF-8"?>')

    xml.append(f'<ans:mensagemTISS xmlns:ans="{ANS_NAMESPACE}" xmlns:xsi="{XSI_NAMESPACE}">')

    # Cabeçalho
    xml.append("  <ans:cabecalho>")
    xml.append(f"    <ans:identificadorTransacao>{escape_xml(transaction_id)}</ans:identificadorTransacao>")
    xml.append(f"    <ans:tipoTransacao>{TRANSACTION_TYPE}</ans:tipoTransacao>")
    xml.append(f"    <ans:sequencialTransacao>{escape_xml(batch.batch_number)}</ans:sequencialTransacao>")
    xml.append(f"    <ans:dataEnvio>{now.strftime('%Y-%m-%d')}</ans:dataEnvio>")
    xml.append(f"    <ans:horaEnvio>{now.strftime('%H:%M:%S')}</ans:horaEnvio>")
    xml.append(f"    <ans:Padrao>{escape_xml(version)}</ans:Padrao>")

    xml.append("    <ans:prestador>")
    xml.append(f"      <ans:codigoPrestadorNaOperadora>{escape_xml(provider_code)}</ans:codigoPrestadorNaOperadora>")
    xml.append(f"      <ans:nomeContratado>{escape_xml(clinic.name)}</ans:nomeContratado>")
    xml.append(f"      <ans:CNPJContratado>{digits_only(clinic.cnpj) or '00000000000000'}</ans:CNPJContratado>")
    xml.append("    </ans:prestador>")

    xml.append("    <ans:operadora>")
    xml.append(f"      <ans:codigoOperadoraANS>{escape_xml(operator.ans_code or '000000')}</ans:codigoOperadoraANS>")
    xml.append(f"      <ans:nomeOperadora>{escape_xml(operator.name)}</ans:nomeOperadora>")
    xml.append("    </ans:operadora>")
    xml.append("  </ans:cabecalho>")

    # Lote de guias
    xml.append("  <ans:loteGuias>")
    xml.append(f"    <ans:numeroLote>{escape_xml(batch.batch_number)}</ans:numeroLote>")
    for guide in guides:
        xml.extend(_guide_xml(guide))
    xml.append("  </ans:loteGuias>")

    xml.append("</ans:mensagemTISS>")
    return "\n".join(xml)


class BatchXMLExporter:
    """Generates, stores and records the XML artifact of a batch"""

    def __init__(self, db: AsyncSession, storage: StorageService):
        self.db = db
        self.storage = storage

    @staticmethod
    def resolve_version(
        forced: Optional[str] = None,
        operator_version: Optional[str] = None,
        clinic_version: Optional[str] = None,
    ) -> str:
        """First supported of: forced, operator, clinic; else the default version"""
        supported = settings.tiss_supported_versions
        for candidate in (forced, operator_version, clinic_version):
            if candidate and candidate in supported:
                return candidate
        return settings.TISS_DEFAULT_VERSION

    async def export(
        self,
        clinic_id: int,
        batch_id: int,
        user_id: Optional[int] = None,
        forced_version: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Generate the batch XML and upload it

        Returns:
            Dictionary with xml_url, file_size, guide_count, generated_at and tiss_version
        """
        batch = await self._load_batch(clinic_id, batch_id)

        if batch.status == BatchStatus.INVALID.value:
            raise ValidationException(
                "Lote inválido; corrija os erros antes de gerar o XML",
                details={"validation_errors": batch.validation_errors or []},
            )
        if batch.status not in (BatchStatus.DRAFT.value, BatchStatus.VALID.value):
            raise ValidationException(f"XML não pode ser gerado para lote com status {batch.status}")
        guides = list(batch.guides)
        if not guides:
            raise ValidationException("Lote não possui guias")

        if forced_version and forced_version not in settings.tiss_supported_versions:
            raise ValidationException(
                f"Versão TISS não suportada: {forced_version}",
                details={"supported_versions": settings.tiss_supported_versions},
            )
        version = self.resolve_version(forced_version, batch.operator.tiss_version, batch.clinic.tiss_version)

        generated_at = datetime.now(timezone.utc)
        xml_content = generate_batch_xml(batch, guides, batch.clinic, batch.operator, version=version)
        data = xml_content.encode("utf-8")
        path = f"batches/{clinic_id}/tiss_{batch.batch_number}_v{version}.xml"

        try:
            xml_url = await self.storage.upload(path, data, content_type="application/xml", upsert=True)
        except StorageError as e:
            logger.error(f"Failed to store XML for batch {batch.batch_number}: {e.message}")
            raise StorageError("Erro ao salvar arquivo XML") from e

        for guide in guides:
            guide.total_value = sum_money(p.total_price for p in guide.procedures)
        batch.total_guides = len(guides)
        batch.total_value = sum_money(g.total_value for g in guides)
        batch.xml_file_url = xml_url
        batch.xml_file_size = len(data)
        batch.xml_generated_at = generated_at
        batch.tiss_version_used = version
        batch.status = BatchStatus.VALID.value
        batch.validation_errors = None

        add_batch_event(
            self.db,
            batch.id,
            BatchEventType.XML_GENERATED,
            user_id=user_id,
            description=f"XML TISS {version} gerado com {len(guides)} guias",
            metadata={
                "xml_url": xml_url,
                "file_size": len(data),
                "tiss_version": version,
                "sha256": hashlib.sha256(data).hexdigest(),
            },
        )
        await self.db.flush()

        logger.info(f"Generated XML for batch {batch.batch_number} ({len(data)} bytes, TISS {version})")
        return {
            "xml_url": xml_url,
            "file_size": len(data),
            "guide_count": len(guides),
            "generated_at": generated_at,
            "tiss_version": version,
        }

    async def _load_batch(self, clinic_id: int, batch_id: int) -> TISSBatch:
        result = await self.db.execute(
            select(TISSBatch)
            .options(
                selectinload(TISSBatch.clinic),
                selectinload(TISSBatch.operator),
                selectinload(TISSBatch.guides).selectinload(TISSGuide.procedures),
                selectinload(TISSBatch.guides).selectinload(TISSGuide.patient),
                selectinload(TISSBatch.guides).selectinload(TISSGuide.patient_insurance),
            )
            .where(TISSBatch.id == batch_id, TISSBatch.clinic_id == clinic_id)
            .execution_options(populate_existing=True)
        )
        batch = result.scalar_one_or_none()
        if not batch:
            raise NotFoundException("Lote não encontrado")
        return batch
