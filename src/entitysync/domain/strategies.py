"""Conflict resolution strategies and per-entity-type policy.

Strategies:
- AuthorityWins(side): the configured side's value is kept
- FieldMerge(rule): named merge function combines both values
- HighestPriorityWins(ranking): lifecycle rank decides, regardless of recency
- ManualReview: no value chosen, a human must decide

All strategies are pure: the same (local, remote, strategy) always yields the
same outcome.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from entitysync.core.types import Severity, Side
from entitysync.domain.priorities import LifecycleRanking

MergeRule = Callable[[Any, Any], Any]


@dataclass(frozen=True)
class StrategyOutcome:
    """Value chosen by a strategy, or a request for human review."""

    value: Any = None
    needs_review: bool = False


class Strategy(Protocol):
    """Protocol for resolution strategies."""

    name: str

    def choose(self, local_value: Any, remote_value: Any) -> StrategyOutcome:
        ...


# === Merge rules ===


def _range_bounds(value: Any) -> tuple[Any, Any]:
    if isinstance(value, dict):
        return value.get("min"), value.get("max")
    if isinstance(value, list | tuple) and len(value) == 2:
        return value[0], value[1]
    raise ValueError(f"Not a range: {value!r}")


def range_union(local_value: Any, remote_value: Any) -> Any:
    """Widen two numeric ranges to their union.

    Ranges are `[low, high]` pairs or `{"min": .., "max": ..}` dicts; the
    local value's shape is kept.
    """
    if local_value is None:
        return remote_value
    if remote_value is None:
        return local_value

    low_a, high_a = _range_bounds(local_value)
    low_b, high_b = _range_bounds(remote_value)
    lows = [v for v in (low_a, low_b) if v is not None]
    highs = [v for v in (high_a, high_b) if v is not None]
    low = min(lows) if lows else None
    high = max(highs) if highs else None

    if isinstance(local_value, dict):
        return {"min": low, "max": high}
    return [low, high]


def prefer_non_null(local_value: Any, remote_value: Any) -> Any:
    """Keep whichever value is set; local wins when both are."""
    if local_value is None or local_value == "":
        return remote_value
    return local_value


def list_union(local_value: Any, remote_value: Any) -> list[Any]:
    """Set union with de-duplication, local items first, order preserved."""
    merged: list[Any] = []
    seen: set[str] = set()
    for items in (local_value or [], remote_value or []):
        for item in items:
            key = json.dumps(item, sort_keys=True, default=str)
            if key not in seen:
                seen.add(key)
                merged.append(item)
    return merged


MERGE_RULES: dict[str, MergeRule] = {
    "range_union": range_union,
    "prefer_non_null": prefer_non_null,
    "list_union": list_union,
}


def register_merge_rule(name: str, rule: MergeRule) -> None:
    """Register a custom field merge rule under a name usable in config."""
    MERGE_RULES[name] = rule


# === Strategies ===


@dataclass(frozen=True)
class AuthorityWins:
    side: Side
    name: str = "authority_wins"

    def choose(self, local_value: Any, remote_value: Any) -> StrategyOutcome:
        return StrategyOutcome(local_value if self.side == Side.LOCAL else remote_value)


@dataclass(frozen=True)
class FieldMerge:
    rule: str
    name: str = "field_merge"

    def __post_init__(self) -> None:
        if self.rule not in MERGE_RULES:
            raise ValueError(f"Unknown merge rule: {self.rule}")

    def choose(self, local_value: Any, remote_value: Any) -> StrategyOutcome:
        return StrategyOutcome(MERGE_RULES[self.rule](local_value, remote_value))


@dataclass(frozen=True)
class HighestPriorityWins:
    ranking: LifecycleRanking = field(default_factory=LifecycleRanking)
    name: str = "highest_priority_wins"

    def choose(self, local_value: Any, remote_value: Any) -> StrategyOutcome:
        return StrategyOutcome(self.ranking.higher(local_value, remote_value))


@dataclass(frozen=True)
class ManualReview:
    name: str = "manual_review"

    def choose(self, local_value: Any, remote_value: Any) -> StrategyOutcome:
        return StrategyOutcome(needs_review=True)


def describe(strategy: Strategy) -> str:
    """Short label stored on conflict records, e.g. 'authority_wins:remote'."""
    if isinstance(strategy, AuthorityWins):
        return f"{strategy.name}:{strategy.side.value}"
    if isinstance(strategy, FieldMerge):
        return f"{strategy.name}:{strategy.rule}"
    return strategy.name


def parse_strategy(spec: str, ranking: LifecycleRanking | None = None) -> Strategy:
    """Parse a strategy label such as 'field_merge:list_union'.

    Raises:
        ValueError: If the label is not recognised.
    """
    name, _, arg = spec.partition(":")
    if name == "authority_wins":
        return AuthorityWins(Side(arg or Side.REMOTE.value))
    if name == "field_merge":
        return FieldMerge(arg)
    if name == "highest_priority_wins":
        return HighestPriorityWins(ranking or LifecycleRanking())
    if name == "manual_review":
        return ManualReview()
    raise ValueError(f"Unknown resolution strategy: {spec}")


# === Policy ===

DEFAULT_LIFECYCLE_FIELDS = frozenset({"status", "lifecycle_stage"})
DEFAULT_ENRICHMENT_FIELDS = frozenset({"summary", "score", "lead_score"})
DEFAULT_IDENTITY_FIELDS = frozenset({"email", "phone"})


@dataclass
class ResolutionPolicy:
    """Strategy selection for one entity type.

    Precedence: explicit per-field strategy, then lifecycle fields
    (highest_priority_wins), then enrichment fields (local authority),
    then the default (remote authority).
    """

    field_strategies: dict[str, Strategy] = field(default_factory=dict)
    lifecycle_fields: frozenset[str] = DEFAULT_LIFECYCLE_FIELDS
    enrichment_fields: frozenset[str] = DEFAULT_ENRICHMENT_FIELDS
    identity_fields: frozenset[str] = DEFAULT_IDENTITY_FIELDS
    ranking: LifecycleRanking = field(default_factory=LifecycleRanking)
    default: Strategy = field(default_factory=lambda: AuthorityWins(Side.REMOTE))

    def strategy_for(self, field_name: str) -> Strategy:
        if field_name in self.field_strategies:
            return self.field_strategies[field_name]
        if field_name in self.lifecycle_fields:
            return HighestPriorityWins(self.ranking)
        if field_name in self.enrichment_fields:
            return AuthorityWins(Side.LOCAL)
        return self.default

    def severity_for(self, field_name: str, local_value: Any, remote_value: Any) -> Severity:
        """Severity is informational; it never changes which value wins."""
        if field_name in self.identity_fields:
            return Severity.CRITICAL
        if field_name in self.lifecycle_fields:
            return Severity.HIGH
        if local_value is None or remote_value is None:
            return Severity.LOW
        return Severity.MEDIUM

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResolutionPolicy:
        ranking = LifecycleRanking(data["lifecycle"]) if "lifecycle" in data else LifecycleRanking()
        policy = cls(
            field_strategies={
                name: parse_strategy(spec, ranking)
                for name, spec in data.get("fields", {}).items()
            },
            ranking=ranking,
        )
        if "lifecycle_fields" in data:
            policy.lifecycle_fields = frozenset(data["lifecycle_fields"])
        if "enrichment_fields" in data:
            policy.enrichment_fields = frozenset(data["enrichment_fields"])
        if "default" in data:
            policy.default = parse_strategy(data["default"], ranking)
        return policy
