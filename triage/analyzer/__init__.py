"""
Deep analyzers behind the scan pipeline
"""

from .base import Analyzer, AnalyzerError, AnalyzerTimeoutError, AnalysisCancelled
from .llm_client import LLMAnalyzer

__all__ = [
    "Analyzer",
    "AnalyzerError",
    "AnalyzerTimeoutError",
    "AnalysisCancelled",
    "LLMAnalyzer",
]
