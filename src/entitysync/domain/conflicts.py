"""Conflict detection outcomes.

The detector never modifies anything; it only classifies an incoming change:
- CLEAN: nobody else touched the entity since last sync
- CONFLICT: some fields were changed on both sides
- DUPLICATE_CANDIDATE: no mapping, and a very similar entity already exists
- REVIEW_CANDIDATE: no mapping, and a somewhat similar entity exists
- NEW_ENTITY: no mapping and nothing similar
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any


class DetectionOutcome(Enum):
    """Result of conflict detection."""

    CLEAN = auto()
    CONFLICT = auto()
    DUPLICATE_CANDIDATE = auto()
    REVIEW_CANDIDATE = auto()
    NEW_ENTITY = auto()


@dataclass(frozen=True)
class Candidate:
    """An existing local entity offered for duplicate matching."""

    local_id: str
    fields: dict[str, Any]
    created_at: float = 0.0


@dataclass
class Detection:
    """Everything the resolver needs to know about an incoming change.

    Attributes:
        outcome: Classification of the change.
        conflict_fields: Fields changed on both sides to different values.
        changed_fields: Incoming fields that differ from the last-synced snapshot.
        snapshot: Field values at last successful sync.
        counterpart: Current values on the other side (if known).
        match: Best duplicate candidate (duplicate/review outcomes only).
        score: Similarity score of the match.
    """

    outcome: DetectionOutcome
    conflict_fields: list[str] = field(default_factory=list)
    changed_fields: dict[str, Any] = field(default_factory=dict)
    snapshot: dict[str, Any] = field(default_factory=dict)
    counterpart: dict[str, Any] | None = None
    match: Candidate | None = None
    score: float = 0.0

    @property
    def is_clean(self) -> bool:
        return self.outcome == DetectionOutcome.CLEAN

    @property
    def has_conflicts(self) -> bool:
        return self.outcome == DetectionOutcome.CONFLICT
