"""
TISS Denial Interpreter
Interprets and categorizes glosas reported by operators
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional

from app.models.tiss import GlosaCategory

logger = logging.getLogger(__name__)


class DenialInterpreter:
    """Interpreter for TISS glosa codes (ANS messages table)"""

    # Known codes from the ANS glosa/negative messages table
    DENIAL_CODES = {
        '1001': {'category': GlosaCategory.ELIGIBILITY, 'description': 'Número da carteira inválido'},
        '1005': {'category': GlosaCategory.ELIGIBILITY, 'description': 'Atendimento anterior à inclusão do beneficiário'},
        '1006': {'category': GlosaCategory.ELIGIBILITY, 'description': 'Atendimento após o desligamento do beneficiário'},
        '1013': {'category': GlosaCategory.ELIGIBILITY, 'description': 'Cadastro do beneficiário com problemas'},
        '1705': {'category': GlosaCategory.PRICING, 'description': 'Valor apresentado a maior'},
        '1801': {'category': GlosaCategory.CODING, 'description': 'Procedimento inválido'},
        '1802': {'category': GlosaCategory.CODING, 'description': 'Procedimento incompatível com o sexo do beneficiário'},
        '1803': {'category': GlosaCategory.CODING, 'description': 'Idade do beneficiário incompatível com o procedimento'},
    }

    # Message groups of the same table, by code prefix
    CODE_PREFIXES = {
        '10': GlosaCategory.ELIGIBILITY,
        '17': GlosaCategory.PRICING,
        '18': GlosaCategory.CODING,
    }

    KEYWORDS = [
        (GlosaCategory.TECHNICAL, ['xml', 'xsd', 'schema', 'layout', 'formato']),
        (GlosaCategory.AUTHORIZATION, ['autoriza', 'senha', 'liminar']),
        (GlosaCategory.ELIGIBILITY, ['carteira', 'beneficiário', 'beneficiario', 'carência', 'carencia', 'cobertura', 'elegib']),
        (GlosaCategory.DOCUMENTATION, ['document', 'assinatura', 'laudo', 'relatório', 'relatorio', 'justificativa']),
        (GlosaCategory.PRICING, ['valor', 'preço', 'preco', 'tabela', 'quantidade', 'a maior']),
        (GlosaCategory.CODING, ['procedimento', 'código', 'codigo', 'cid', 'tuss']),
    ]

    # Glosas that are fixed by resubmission or are not contestable
    NON_APPEALABLE = {GlosaCategory.TECHNICAL, GlosaCategory.ELIGIBILITY}

    def interpret_denial(self, denial_code: Optional[str], denial_message: Optional[str] = None) -> Dict:
        """
        Interpret a glosa code and its message

        Args:
            denial_code: Code reported by the operator
            denial_message: Optional free-text reason

        Returns:
            Dictionary with category, description and appeal eligibility
        """
        code = (denial_code or '').strip()
        code_info = self.DENIAL_CODES.get(code)

        if code_info:
            category = code_info['category']
            description = denial_message or code_info['description']
        else:
            category = self._infer_category(code, denial_message)
            description = denial_message

        interpretation = {
            'code': code or None,
            'category': category.value,
            'description': description,
            'can_appeal': category not in self.NON_APPEALABLE,
            'known_code': code_info is not None,
        }

        logger.debug(f"Interpreted glosa {code or '-'} as {category.value}")
        return interpretation

    def _infer_category(self, code: str, message: Optional[str]) -> GlosaCategory:
        if message:
            message_lower = message.lower()
            for category, words in self.KEYWORDS:
                if any(word in message_lower for word in words):
                    return category
        if len(code) == 4 and code.isdigit():
            return self.CODE_PREFIXES.get(code[:2], GlosaCategory.OTHER)
        return GlosaCategory.OTHER

    def interpret_multiple_denials(self, denials: List[Dict]) -> Dict:
        """
        Interpret several glosas and summarize them

        Args:
            denials: List of dictionaries with 'code', optional 'message' and optional 'value'

        Returns:
            Dictionary with interpreted denials and summary
        """
        interpreted = []
        categories: Dict[str, Dict] = {}

        for denial in denials:
            interpretation = self.interpret_denial(denial.get('code'), denial.get('message'))
            value = denial.get('value') or Decimal('0')
            interpretation['value'] = value
            interpreted.append(interpretation)

            bucket = categories.setdefault(interpretation['category'], {'count': 0, 'value': Decimal('0')})
            bucket['count'] += 1
            bucket['value'] += value

        summary = {
            'total_denials': len(denials),
            'categories': categories,
            'can_appeal_any': any(d['can_appeal'] for d in interpreted),
        }

        return {
            'denials': interpreted,
            'summary': summary,
        }


denial_interpreter = DenialInterpreter()
