"""Keyword rules mapping an issue description to a category and priority."""

from dataclasses import dataclass


@dataclass(frozen=True)
class ClassificationResult:
    """Outcome of classifying a transcript. Confidence is fixed per rule."""
    description: str
    confidence: float
    category: str = "general"


@dataclass(frozen=True)
class KeywordRule:
    """Matches when any keyword occurs in the lower-cased text."""
    keywords: tuple[str, ...]
    result: ClassificationResult

    def matches(self, text: str) -> bool:
        return any(keyword in text for keyword in self.keywords)


CLASSIFICATION_RULES: tuple[KeywordRule, ...] = (
    KeywordRule(
        ("door", "hinge"),
        ClassificationResult(
            "Based on your description, this appears to be a door mechanism issue. "
            "Likely causes include hinge wear, alignment problems, or hardware failure. "
            "Recommend immediate inspection.",
            0.87,
            "door",
        ),
    ),
    KeywordRule(
        ("wall", "paint"),
        ClassificationResult(
            "This sounds like a wall surface issue. Could involve paint damage, "
            "drywall repair, or structural concerns. Assess extent of damage before proceeding.",
            0.74,
            "wall",
        ),
    ),
    KeywordRule(
        ("electrical", "outlet", "light"),
        ClassificationResult(
            "Electrical issue detected. Safety priority - recommend immediate professional "
            "inspection. Do not attempt repairs without qualified technician.",
            0.91,
            "electrical",
        ),
    ),
    KeywordRule(
        ("water", "leak", "plumbing"),
        ClassificationResult(
            "Plumbing-related issue identified. Check for water damage and source of problem. "
            "May require immediate attention to prevent further damage.",
            0.83,
            "plumbing",
        ),
    ),
)

DEFAULT_CLASSIFICATION = ClassificationResult(
    "General maintenance issue detected. Recommend on-site inspection to determine "
    "appropriate repair approach and priority level.",
    0.65,
    "general",
)

# Checked in order, first match wins
PRIORITY_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("urgent", "emergency", "electrical", "water", "leak"), "Urgent"),
    (("door", "safety", "broken"), "High"),
    (("paint", "cosmetic"), "Low"),
)

DEFAULT_PRIORITY = "Normal"


def classify(text: str) -> ClassificationResult:
    """Return the first matching rule's result, or the general default."""
    lowered = text.lower()
    for rule in CLASSIFICATION_RULES:
        if rule.matches(lowered):
            return rule.result
    return DEFAULT_CLASSIFICATION


def priority(text: str) -> str:
    """Return the priority label of the first matching rule."""
    lowered = text.lower()
    for keywords, label in PRIORITY_RULES:
        if any(keyword in lowered for keyword in keywords):
            return label
    return DEFAULT_PRIORITY
