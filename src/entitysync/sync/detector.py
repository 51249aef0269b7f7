"""Conflict detection.

With a mapping, an incoming change is compared with the last-synced snapshot
and with the other side's current values. Without one, existing entities are
scored for duplicates. Detection never writes anything.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from entitysync.domain.conflicts import Candidate, Detection, DetectionOutcome
from entitysync.domain.similarity import MatchLevel, classify, similarity

if TYPE_CHECKING:
    from entitysync.server.models import EntityMapping
    from entitysync.sync.types import ChangeIntent

logger = logging.getLogger(__name__)

_MISSING = object()


def changed_fields(fields: dict[str, Any], snapshot: dict[str, Any]) -> dict[str, Any]:
    """Fields whose value differs from the snapshot (or that it lacks)."""
    return {
        name: value
        for name, value in fields.items()
        if snapshot.get(name, _MISSING) != value
    }


def best_match(
    fields: dict[str, Any], candidates: Sequence[Candidate]
) -> tuple[Candidate | None, float]:
    """Highest-scoring candidate; ties go to the oldest entity."""
    best: Candidate | None = None
    best_score = 0.0
    for candidate in sorted(candidates, key=lambda c: (c.created_at, c.local_id)):
        score = similarity(fields, candidate.fields)
        if score > best_score:
            best, best_score = candidate, score
    return best, best_score


class ConflictDetector:
    """Classifies incoming changes as clean, conflicting or duplicate."""

    def check(
        self,
        incoming: ChangeIntent,
        mapping: EntityMapping | None,
        counterpart: dict[str, Any] | None = None,
        candidates: Sequence[Candidate] = (),
    ) -> Detection:
        """Classify an incoming change.

        Args:
            incoming: The change being applied.
            mapping: Mapping of the entity, or None if it was never synced.
            counterpart: Current canonical fields on the other side, if known.
            candidates: Existing entities to score when there is no mapping.

        Returns:
            Detection describing the outcome.
        """
        if mapping is None:
            return self._check_duplicates(incoming, candidates)

        snapshot = dict(mapping.last_synced_snapshot or {})
        changed = changed_fields(incoming.payload, snapshot)

        if mapping.last_synced_hash and incoming.pre_image_hash == mapping.last_synced_hash:
            return Detection(
                outcome=DetectionOutcome.CLEAN,
                changed_fields=changed,
                snapshot=snapshot,
                counterpart=counterpart,
            )

        conflicts: list[str] = []
        if counterpart is not None:
            for name, value in changed.items():
                base = snapshot.get(name)
                current = counterpart.get(name, base)
                if current != base and current != value:
                    conflicts.append(name)

        if conflicts:
            logger.info(
                "Conflict on %s/%s: %s",
                incoming.entity_type,
                mapping.local_id,
                ", ".join(sorted(conflicts)),
            )
        return Detection(
            outcome=DetectionOutcome.CONFLICT if conflicts else DetectionOutcome.CLEAN,
            conflict_fields=sorted(conflicts),
            changed_fields=changed,
            snapshot=snapshot,
            counterpart=counterpart,
        )

    def _check_duplicates(
        self, incoming: ChangeIntent, candidates: Sequence[Candidate]
    ) -> Detection:
        changed = dict(incoming.payload)
        match, score = best_match(incoming.payload, candidates)
        if match is None:
            return Detection(outcome=DetectionOutcome.NEW_ENTITY, changed_fields=changed)

        level = classify(score)
        if level == MatchLevel.NEW:
            return Detection(outcome=DetectionOutcome.NEW_ENTITY, changed_fields=changed)

        outcome = (
            DetectionOutcome.DUPLICATE_CANDIDATE
            if level == MatchLevel.DUPLICATE
            else DetectionOutcome.REVIEW_CANDIDATE
        )
        logger.info(
            "%s candidate for %s: local=%s score=%.4f",
            level.value.capitalize(),
            incoming.entity_type,
            match.local_id,
            score,
        )
        return Detection(
            outcome=outcome,
            changed_fields=changed,
            match=match,
            score=score,
        )
