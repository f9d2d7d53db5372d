"""Vision pipeline components for maintenance photo analysis."""

from .analyzer import AnalysisRequest, AnalysisResult, OpenAIVisionAnalyzer, VisionAnalyzer
from .dispatcher import AnalysisDispatcher

__all__ = [
    "AnalysisRequest",
    "AnalysisResult",
    "OpenAIVisionAnalyzer",
    "VisionAnalyzer",
    "AnalysisDispatcher",
]
