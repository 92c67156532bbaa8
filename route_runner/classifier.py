"""Keyword-based failure classification."""
from __future__ import annotations

from typing import Optional, Sequence, Tuple

from .models import FailureCategory

# Order matters: first match wins, so categories are exclusive by position.
CLASSIFICATION_RULES: Sequence[Tuple[FailureCategory, Tuple[str, ...]]] = (
    (FailureCategory.ELEMENT_ISSUE, ("not found", "not visible", "not attached", "not an")),
    (FailureCategory.NAVIGATION_ISSUE, ("timeout", "navigation", "url", "page")),
    (FailureCategory.ASSERTION_FAILURE, ("expected", "assertion", "should", "to be")),
)


def classify(error_text: Optional[str]) -> FailureCategory:
    """Map an error message to a failure category. Never raises."""
    text = (error_text or "").lower()
    for category, keywords in CLASSIFICATION_RULES:
        if any(keyword in text for keyword in keywords):
            return category
    return FailureCategory.UNKNOWN_ERROR
