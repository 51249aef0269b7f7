"""Lifecycle ranking for workflow status fields.

Values later in the lifecycle outrank earlier ones regardless of which side
changed them more recently. Unknown values rank below every known value.
"""

from __future__ import annotations

DEFAULT_LIFECYCLE: tuple[str, ...] = (
    "new",
    "contacted",
    "qualified",
    "tour_scheduled",
    "toured",
    "application",
    "approved",
    "leased",
)


class LifecycleRanking:
    """Ordered lifecycle table used by highest_priority_wins."""

    def __init__(self, stages: tuple[str, ...] | list[str] = DEFAULT_LIFECYCLE) -> None:
        self._stages = tuple(stages)
        self._ranks = {stage: index for index, stage in enumerate(self._stages)}

    @property
    def stages(self) -> tuple[str, ...]:
        return self._stages

    def rank(self, value: object) -> int:
        """Get rank of a value (-1 if unknown or None)."""
        if value is None:
            return -1
        return self._ranks.get(str(value), -1)

    def higher(self, a: object, b: object) -> object:
        """Return the higher-ranked of two values.

        Ties (including two unknown values) are broken on the string form so
        the result never depends on argument order.
        """
        rank_a = self.rank(a)
        rank_b = self.rank(b)
        if rank_a != rank_b:
            return a if rank_a > rank_b else b
        if a is None:
            return b
        if b is None:
            return a
        return a if str(a) >= str(b) else b
