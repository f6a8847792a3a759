"""
TISS Database Models
SQLAlchemy models for TISS module tables
"""

from .operator import InsuranceOperator, PatientInsurance
from .guide import TISSGuide, TISSGuideProcedure, GuideType, GuideStatus
from .batch import TISSBatch, TISSBatchEvent, BatchStatus, BatchEventType
from .glosa import TISSGlosa, GlosaType, GlosaCategory
from .tiss_return import TISSReturn, ReturnProcessingStatus
from .sequence import TISSSequence

__all__ = [
    'InsuranceOperator',
    'PatientInsurance',
    'TISSGuide',
    'TISSGuideProcedure',
    'GuideType',
    'GuideStatus',
    'TISSBatch',
    'TISSBatchEvent',
    'BatchStatus',
    'BatchEventType',
    'TISSGlosa',
    'GlosaType',
    'GlosaCategory',
    'TISSReturn',
    'ReturnProcessingStatus',
    'TISSSequence',
]
