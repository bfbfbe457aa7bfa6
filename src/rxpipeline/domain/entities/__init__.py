"""
Domain entities package.
"""

from .analysis import AnalysisResult, MedicationAnalysis
from .extraction import NOT_SPECIFIED, ExtractionResult, MedicationLine, StructuredExtraction
from .prescription import Prescription

__all__ = [
    "AnalysisResult",
    "MedicationAnalysis",
    "NOT_SPECIFIED",
    "ExtractionResult",
    "MedicationLine",
    "StructuredExtraction",
    "Prescription",
]
