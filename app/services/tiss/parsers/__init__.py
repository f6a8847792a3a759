"""
TISS Parsers
Parsers for processing TISS responses from operators
"""

from .return_parser import TISSReturnParser, ParsedReturn, ParsedGuideReturn, return_parser
from .denial_interpreter import DenialInterpreter, denial_interpreter

__all__ = [
    'TISSReturnParser',
    'ParsedReturn',
    'ParsedGuideReturn',
    'return_parser',
    'DenialInterpreter',
    'denial_interpreter',
]
