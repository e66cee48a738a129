# Complaint analysis: deterministic keyword rules behind a swappable interface

from typing import Any, Dict, List, Protocol, Union
from enum import Enum

NEGATIVE_MARKERS = ("delay", "problem")

PRIORITY_SCORES = {"Critical": 0.9, "High": 0.7, "Medium": 0.5, "Low": 0.3}
DEFAULT_PRIORITY_SCORE = 0.3

SUGGESTED_ACTION = "Investigate and respond within 48 hours"
CONFIDENCE = 0.85
KEYWORDS: List[str] = ["government", "service", "issue"]


class ComplaintAnalyzer(Protocol):
    """Anything that turns complaint text into an ``ai_analysis`` record.

    Implementations must be pure: the same inputs always give the same
    record, and nothing outside the return value is touched.
    """

    def analyze(self, description: str, *, category: str,
                priority: Union[str, Enum]) -> Dict[str, Any]:
        ...


class KeywordComplaintAnalyzer:
    def sentiment(self, description: str) -> str:
        if any(marker in description for marker in NEGATIVE_MARKERS):
            return "negative"
        return "neutral"

    @staticmethod
    def priority_score(priority: Union[str, Enum]) -> float:
        key = priority.value if isinstance(priority, Enum) else str(priority)
        return PRIORITY_SCORES.get(key, DEFAULT_PRIORITY_SCORE)

    def analyze(self, description: str, *, category: str,
                priority: Union[str, Enum]) -> Dict[str, Any]:
        return {
            "sentiment": self.sentiment(description),
            "category_prediction": category,
            "priority_score": self.priority_score(priority),
            "suggested_action": SUGGESTED_ACTION,
            "confidence": CONFIDENCE,
            "keywords": list(KEYWORDS),
        }
