"""
TISS Return Parser
Extracts per-guide outcomes from insurer return files of any layout
"""

import logging
import re
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from app.models.tiss import GuideStatus
from app.services.tiss import deep_search as ds

logger = logging.getLogger(__name__)

GUIDE_ENTRY_KEYS = ["guiaRetorno", "demonstrativoGuia", "relacaoGuias", "guia"]
GUIDE_NUMBER_KEYS = ["numeroGuiaPrestador", "numeroGuia", "numeroGuiaNoReembolso"]
REQUESTED_KEYS = ["valorInformadoGuia", "valorTotalGuia", "valorApresentado", "valorInformado", "valorTotal"]
RELEASED_KEYS = ["valorLiberadoGuia", "valorLiberado", "valorPago"]
DENIED_KEYS = ["valorGlosaGuia", "valorTotalGlosa", "valorGlosado"]
STATUS_KEYS = ["statusProcessamento", "codigoStatus", "situacaoGuia", "situacao"]
GLOSA_ENTRY_KEYS = ["motivoGlosa", "glosaGuia", "glosaItem", "glosa"]

# Guides can sit deep inside demonstrativo layouts
ENTRY_SEARCH_DEPTH = 20

SEVERITY_ERROR = "ERROR"
SEVERITY_WARNING = "WARNING"

# "NAO PAGO", "NÃO LIBERADA"
_NEGATION = re.compile(r"\bN[AÃ]O\b")


@dataclass
class ParsedGlosa:
    code: str
    description: str
    value: Optional[Decimal] = None


@dataclass
class ParsedGuideReturn:
    guide_number: str
    outcome: str
    operator_guide_number: Optional[str] = None
    authorization_password: Optional[str] = None
    amount_requested: Optional[Decimal] = None
    amount_released: Optional[Decimal] = None
    amount_denied: Optional[Decimal] = None
    glosas: List[ParsedGlosa] = field(default_factory=list)
    observation: Optional[str] = None


@dataclass
class ParseIssue:
    severity: str
    message: str
    guide_number: Optional[str] = None


@dataclass
class ParsedReturn:
    guides: List[ParsedGuideReturn] = field(default_factory=list)
    protocol_number: Optional[str] = None
    batch_number: Optional[str] = None
    tiss_version: Optional[str] = None
    issues: List[ParseIssue] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(issue.severity == SEVERITY_ERROR for issue in self.issues)

    def stats(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in GuideStatus if status != GuideStatus.PENDING}
        for guide in self.guides:
            counts[guide.outcome] = counts.get(guide.outcome, 0) + 1
        counts["total"] = len(self.guides)
        return counts

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe audit payload"""
        def convert(value):
            if isinstance(value, Decimal):
                return f"{value:.2f}"
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            if isinstance(value, list):
                return [convert(v) for v in value]
            return value

        return convert({
            "protocol_number": self.protocol_number,
            "batch_number": self.batch_number,
            "tiss_version": self.tiss_version,
            "guides": [asdict(g) for g in self.guides],
            "issues": [asdict(i) for i in self.issues],
            "stats": self.stats(),
            "parsed_at": datetime.now(timezone.utc).isoformat(),
        })


class TISSReturnParser:
    """Parser for insurer return documents (dict trees from the XML reader or JSON)"""

    def parse(self, document: Dict[str, Any]) -> ParsedReturn:
        result = ParsedReturn(
            protocol_number=ds.find_text(document, ["numeroProtocolo", "protocolo"]),
            batch_number=ds.find_text(document, ["numeroLote", "numeroLotePrestador"]),
            tiss_version=ds.find_text(document, ["versaoPadrao", "Padrao", "padrao"]),
        )

        entries = self._find_guide_entries(document)
        if not entries:
            result.issues.append(ParseIssue(SEVERITY_ERROR, "Nenhuma guia encontrada no arquivo de retorno"))
            return result

        seen = set()
        for entry in entries:
            guide = self._parse_guide(entry, result)
            if guide is None:
                continue
            if guide.guide_number in seen:
                result.issues.append(ParseIssue(
                    SEVERITY_WARNING, "Guia repetida no retorno; mantida a primeira ocorrência", guide.guide_number
                ))
                continue
            seen.add(guide.guide_number)
            result.guides.append(guide)

        logger.info(
            f"Parsed return for batch {result.batch_number or '-'}: "
            f"{len(result.guides)} guides, {len(result.issues)} issues"
        )
        return result

    def _find_guide_entries(self, document: Dict[str, Any]) -> List[Dict[str, Any]]:
        for key in GUIDE_ENTRY_KEYS:
            entries = []
            for match in ds.find_all_keys(document, key, max_depth=ENTRY_SEARCH_DEPTH):
                for item in ds.normalize_array(match):
                    if isinstance(item, dict) and ds.find_first_key(item, GUIDE_NUMBER_KEYS) is not None:
                        entries.append(item)
            if entries:
                return entries
        return []

    def _parse_guide(self, entry: Dict[str, Any], result: ParsedReturn) -> Optional[ParsedGuideReturn]:
        guide_number = ds.find_text(entry, GUIDE_NUMBER_KEYS)
        if not guide_number:
            result.issues.append(ParseIssue(SEVERITY_ERROR, "Guia sem número no retorno; ignorada"))
            return None

        requested = ds.find_number(entry, REQUESTED_KEYS)
        released = ds.find_number(entry, RELEASED_KEYS)
        glosas = self._parse_glosas(entry)

        denied = ds.find_number(entry, DENIED_KEYS)
        if denied is None:
            # Guide-level valorGlosa only; item-level values are summed below
            denied = ds.extract_number(ds.find_key_in_object(entry, "valorGlosa", max_depth=0))
        if denied is None and glosas and all(g.value is not None for g in glosas):
            denied = sum((g.value for g in glosas), Decimal("0"))

        status_text = ds.find_text(entry, STATUS_KEYS)
        outcome = self._resolve_outcome(status_text, requested, released, denied, guide_number, result)
        if outcome is None:
            result.issues.append(ParseIssue(
                SEVERITY_ERROR, "Guia sem status nem valores; resultado não determinado", guide_number
            ))
            return None

        return ParsedGuideReturn(
            guide_number=guide_number,
            outcome=outcome,
            operator_guide_number=ds.find_text(entry, ["numeroGuiaOperadora"]),
            authorization_password=ds.find_text(entry, ["senhaAutorizacao", "senha"]),
            amount_requested=requested,
            amount_released=released,
            amount_denied=denied,
            glosas=glosas,
            observation=ds.find_text(entry, ["observacao", "mensagemRetorno"]),
        )

    def _parse_glosas(self, entry: Dict[str, Any]) -> List[ParsedGlosa]:
        for key in GLOSA_ENTRY_KEYS:
            glosas = []
            for match in ds.find_all_keys(entry, key):
                for item in ds.normalize_array(match):
                    if isinstance(item, dict):
                        code = ds.find_text(item, ["codigoGlosa", "codigo", "tipoGlosa"])
                        description = ds.find_text(item, ["descricaoGlosa", "justificativa", "descricao"])
                        value = ds.find_number(item, ["valorGlosa", "valorGlosado", "valor"])
                    else:
                        # <motivoGlosa>1705</motivoGlosa>
                        code, description, value = ds.extract_text(item), None, None
                    if code is None and description is None and value is None:
                        continue
                    glosas.append(ParsedGlosa(
                        code=code or "SEM_CODIGO",
                        description=description or "Sem descrição",
                        value=value,
                    ))
            if glosas:
                return glosas
        return []

    def _resolve_outcome(
        self,
        status_text: Optional[str],
        requested: Optional[Decimal],
        released: Optional[Decimal],
        denied: Optional[Decimal],
        guide_number: str,
        result: ParsedReturn,
    ) -> Optional[str]:
        """Outcome from the status text, else from the amounts; None when neither says anything"""
        status = (status_text or "").strip().upper()

        if status == "2" or "NEG" in status or "RECUS" in status or _NEGATION.search(status):
            return GuideStatus.DENIED.value
        if status == "3" or "PARC" in status:
            return GuideStatus.PARTIAL.value
        if status == "1" or "APROV" in status or "LIBER" in status or "PAG" in status:
            if denied is not None and denied > 0:
                result.issues.append(ParseIssue(
                    SEVERITY_WARNING, "Guia aprovada com valor glosado; tratada como parcial", guide_number
                ))
                return GuideStatus.PARTIAL.value
            return GuideStatus.APPROVED.value
        if status:
            result.issues.append(ParseIssue(
                SEVERITY_WARNING, f"Status '{status_text}' desconhecido; resultado inferido pelos valores", guide_number
            ))

        if released is None and requested is None and denied is None:
            return None
        if requested is not None and requested > 0 and released is not None and released == 0:
            return GuideStatus.DENIED.value
        if denied is not None and denied > 0:
            if requested is not None and denied >= requested:
                return GuideStatus.DENIED.value
            return GuideStatus.PARTIAL.value
        return GuideStatus.APPROVED.value


return_parser = TISSReturnParser()
