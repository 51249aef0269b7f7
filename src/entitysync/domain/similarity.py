"""Duplicate-candidate similarity scoring.

Score = 0.4 * email match + 0.3 * phone match + 0.3 * name similarity, where
name similarity is (max_len - edit_distance) / max_len over normalized names.

Thresholds:
    score > 0.8         -> duplicate (auto-merge)
    0.5 <= score <= 0.8 -> review (manual)
    score < 0.5         -> new entity

Every component is symmetric, so similarity(a, b) == similarity(b, a).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

EMAIL_WEIGHT = 0.4
PHONE_WEIGHT = 0.3
NAME_WEIGHT = 0.3

DUPLICATE_THRESHOLD = 0.8
REVIEW_THRESHOLD = 0.5

# Phone numbers compare on their trailing national digits
PHONE_SIGNIFICANT_DIGITS = 10


class MatchLevel(Enum):
    """Classification of a similarity score."""

    DUPLICATE = "duplicate"
    REVIEW = "review"
    NEW = "new"


@dataclass(frozen=True)
class ScoreBreakdown:
    """Per-component similarity contributions."""

    email: float
    phone: float
    name: float

    @property
    def total(self) -> float:
        return round(self.email + self.phone + self.name, 4)


def normalize_email(value: Any) -> str | None:
    if value is None:
        return None
    email = str(value).strip().lower()
    return email or None


def normalize_phone(value: Any) -> str | None:
    if value is None:
        return None
    digits = re.sub(r"\D", "", str(value))
    if not digits:
        return None
    return digits[-PHONE_SIGNIFICANT_DIGITS:]


def normalize_name(value: Any) -> str | None:
    if value is None:
        return None
    name = re.sub(r"\s+", " ", str(value)).strip().lower()
    return name or None


def extract_name(fields: dict[str, Any]) -> str | None:
    """Get a normalized full name from `name` or `first_name`/`last_name`."""
    if fields.get("name"):
        return normalize_name(fields["name"])
    parts = [fields.get("first_name"), fields.get("last_name")]
    joined = " ".join(str(p) for p in parts if p)
    return normalize_name(joined)


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance between two strings."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(
                min(
                    previous[j] + 1,  # deletion
                    current[j - 1] + 1,  # insertion
                    previous[j - 1] + cost,  # substitution
                )
            )
        previous = current
    return previous[-1]


def name_similarity(a: str | None, b: str | None) -> float:
    """Return (max_len - edit_distance) / max_len, or 0.0 if either is missing."""
    if not a or not b:
        return 0.0
    max_len = max(len(a), len(b))
    return (max_len - edit_distance(a, b)) / max_len


def score_breakdown(a: dict[str, Any], b: dict[str, Any]) -> ScoreBreakdown:
    """Compute per-component similarity between two field maps."""
    email_a = normalize_email(a.get("email"))
    email_b = normalize_email(b.get("email"))
    phone_a = normalize_phone(a.get("phone"))
    phone_b = normalize_phone(b.get("phone"))

    email = EMAIL_WEIGHT if email_a and email_a == email_b else 0.0
    phone = PHONE_WEIGHT if phone_a and phone_a == phone_b else 0.0
    name = NAME_WEIGHT * name_similarity(extract_name(a), extract_name(b))
    return ScoreBreakdown(email=email, phone=phone, name=name)


def similarity(a: dict[str, Any], b: dict[str, Any]) -> float:
    """Similarity score in [0, 1] between two entities' fields."""
    return score_breakdown(a, b).total


def classify(score: float) -> MatchLevel:
    if score > DUPLICATE_THRESHOLD:
        return MatchLevel.DUPLICATE
    if score >= REVIEW_THRESHOLD:
        return MatchLevel.REVIEW
    return MatchLevel.NEW
