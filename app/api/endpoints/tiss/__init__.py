"""
TISS API Endpoints
"""

from .guides import router as guides_router
from .batches import router as batches_router
from .returns import router as returns_router
from .reports import router as reports_router
from .cron import router as cron_router
from .operators import router as operators_router
from .patient_insurance import router as patient_insurance_router
from .dashboard import router as dashboard_router

__all__ = [
    'guides_router',
    'batches_router',
    'returns_router',
    'reports_router',
    'cron_router',
    'operators_router',
    'patient_insurance_router',
    'dashboard_router',
]
