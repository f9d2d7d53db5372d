"""Issue triage: keyword classification and summary assembly."""

from .classifier import ClassificationResult, classify, priority
from .summary import IssueSummary, build_summary

__all__ = ["ClassificationResult", "classify", "priority", "IssueSummary", "build_summary"]
