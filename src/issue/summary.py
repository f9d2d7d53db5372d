"""Issue summary assembly from transcript, notes and image analysis."""

from dataclasses import asdict, dataclass
from typing import Any, Optional

from ..vision.analyzer import AnalysisResult
from .classifier import priority

UNKNOWN_ESTIMATE = "Unknown"


@dataclass(frozen=True)
class IssueSummary:
    """Formatted issue report with its suggested triage values."""
    text: str
    suggested_priority: str
    estimated_time: str
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def build_summary(
    title: str,
    transcript: str,
    voice_notes: str = "",
    analysis: Optional[AnalysisResult] = None,
    fallback_confidence: float = 0.0,
) -> IssueSummary:
    """
    Build an issue summary.

    Args:
        title: Short issue title
        transcript: Finalized voice description, may be empty
        voice_notes: Additional dictated notes, may be empty
        analysis: Optional image analysis; its triage values take precedence
        fallback_confidence: Classifier confidence of the most recent capture

    Returns:
        IssueSummary with text and priority/estimate/confidence
    """
    text = f"Issue: {title}\n\n"

    if transcript:
        text += f"Description: {transcript}\n\n"

    if voice_notes:
        text += f"Additional Notes: {voice_notes}\n\n"

    if analysis is not None:
        text += f"AI Visual Analysis: {analysis.description}\n\n"
        text += "Recommendations:\n"
        for recommendation in analysis.recommendations:
            text += f"• {recommendation}\n"
        text += f"\nEstimated Time: {analysis.estimated_time}\n"
        text += f"Priority: {analysis.priority}"

        return IssueSummary(
            text=text,
            suggested_priority=analysis.priority,
            estimated_time=analysis.estimated_time,
            confidence=analysis.confidence,
        )

    return IssueSummary(
        text=text,
        suggested_priority=priority(transcript),
        estimated_time=UNKNOWN_ESTIMATE,
        confidence=fallback_confidence,
    )
