"""Tests for resolution strategies and policies."""

from __future__ import annotations

import pytest

from entitysync.core.types import Severity, Side
from entitysync.domain.priorities import LifecycleRanking
from entitysync.domain.strategies import (
    AuthorityWins,
    FieldMerge,
    HighestPriorityWins,
    ManualReview,
    ResolutionPolicy,
    describe,
    list_union,
    parse_strategy,
    range_union,
    register_merge_rule,
)


class TestHighestPriorityWins:
    """Tests for lifecycle-ranked resolution."""

    def test_later_stage_wins(self) -> None:
        strategy = HighestPriorityWins()
        assert strategy.choose("qualified", "tour_scheduled").value == "tour_scheduled"
        assert strategy.choose("tour_scheduled", "qualified").value == "tour_scheduled"

    def test_known_beats_unknown(self) -> None:
        assert HighestPriorityWins().choose("mystery", "new").value == "new"

    def test_order_independent_for_unknowns(self) -> None:
        strategy = HighestPriorityWins()
        assert strategy.choose("x", "y").value == strategy.choose("y", "x").value

    def test_custom_ranking(self) -> None:
        strategy = HighestPriorityWins(LifecycleRanking(["draft", "final"]))
        assert strategy.choose("final", "draft").value == "final"


class TestAuthorityWins:
    """Tests for side-authority resolution."""

    def test_remote_authority(self) -> None:
        assert AuthorityWins(Side.REMOTE).choose("a", "b").value == "b"

    def test_local_authority(self) -> None:
        assert AuthorityWins(Side.LOCAL).choose("a", "b").value == "a"


class TestFieldMerge:
    """Tests for merge rules."""

    def test_range_union_lists(self) -> None:
        assert range_union([1000, 1500], [1200, 2000]) == [1000, 2000]

    def test_range_union_dicts(self) -> None:
        assert range_union({"min": 2, "max": 3}, [1, 2]) == {"min": 1, "max": 3}

    def test_list_union_dedupes(self) -> None:
        assert list_union(["pool", "gym"], ["gym", "parking"]) == ["pool", "gym", "parking"]

    def test_prefer_non_null(self) -> None:
        assert FieldMerge("prefer_non_null").choose(None, "x").value == "x"
        assert FieldMerge("prefer_non_null").choose("a", "x").value == "a"

    def test_unknown_rule(self) -> None:
        with pytest.raises(ValueError):
            FieldMerge("does_not_exist")

    def test_register_custom_rule(self) -> None:
        register_merge_rule("concat", lambda a, b: f"{a}{b}")
        assert FieldMerge("concat").choose("a", "b").value == "ab"


class TestManualReview:
    """Tests for manual review."""

    def test_needs_review(self) -> None:
        outcome = ManualReview().choose("a", "b")
        assert outcome.needs_review is True
        assert outcome.value is None


class TestParseStrategy:
    """Tests for strategy labels."""

    @pytest.mark.parametrize(
        "label",
        [
            "authority_wins:local",
            "authority_wins:remote",
            "field_merge:list_union",
            "highest_priority_wins",
            "manual_review",
        ],
    )
    def test_round_trip_label(self, label: str) -> None:
        assert describe(parse_strategy(label)) == label

    def test_unknown_label(self) -> None:
        with pytest.raises(ValueError):
            parse_strategy("coin_flip")


class TestResolutionPolicy:
    """Tests for per-field strategy selection."""

    def test_defaults(self) -> None:
        policy = ResolutionPolicy()
        assert isinstance(policy.strategy_for("status"), HighestPriorityWins)
        assert policy.strategy_for("summary") == AuthorityWins(Side.LOCAL)
        assert policy.strategy_for("first_name") == AuthorityWins(Side.REMOTE)

    def test_explicit_field_strategy_first(self) -> None:
        policy = ResolutionPolicy(field_strategies={"status": ManualReview()})
        assert isinstance(policy.strategy_for("status"), ManualReview)

    def test_severity_is_informational(self) -> None:
        policy = ResolutionPolicy()
        assert policy.severity_for("email", "a", "b") == Severity.CRITICAL
        assert policy.severity_for("status", "leased", "new") == Severity.HIGH
        # Lifecycle rank still decides the value
        assert policy.strategy_for("status").choose("leased", "new").value == "leased"

    def test_from_dict(self) -> None:
        policy = ResolutionPolicy.from_dict({
            "default": "authority_wins:local",
            "fields": {"budget": "field_merge:range_union"},
            "lifecycle": ["open", "won"],
        })
        assert policy.strategy_for("anything") == AuthorityWins(Side.LOCAL)
        assert policy.strategy_for("budget") == FieldMerge("range_union")
        assert policy.strategy_for("status").choose("won", "open").value == "won"
