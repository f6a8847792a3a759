"""
TISS Services
Guide aggregation, batch building, XML generation and return processing
"""

from .guide_service import GuideService
from .numbering import NumberingService
from .batch_generator import BatchGeneratorService, BatchJobReport
from .xml_generator import BatchXMLExporter, generate_batch_xml
from .return_processor import ReturnProcessor, derive_batch_status
from .report_service import TISSReportService

__all__ = [
    'GuideService',
    'NumberingService',
    'BatchGeneratorService',
    'BatchJobReport',
    'BatchXMLExporter',
    'generate_batch_xml',
    'ReturnProcessor',
    'derive_batch_status',
    'TISSReportService',
]
