"""
Rx-Pipeline: prescription image analysis pipeline

Stores photographed prescriptions, recognizes their text with an OCR engine,
parses medication lines and asks a language model to review them, moving each
record through a small status state machine driven by background workers.
"""

__version__ = "0.1.0"
__author__ = "Rx-Pipeline Team"
__description__ = "Prescription OCR and medication analysis pipeline"
