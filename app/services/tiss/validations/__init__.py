"""
TISS Validation Services
"""

from .batch_integrity_validator import BatchIntegrityValidator, batch_integrity_validator

__all__ = [
    'BatchIntegrityValidator',
    'batch_integrity_validator',
]
