"""Domain modules for sync business rules.

This package centralizes business logic for the sync engine:
- conflicts: Detection outcome types
- priorities: Lifecycle ranking for workflow status fields
- similarity: Duplicate-candidate scoring
- strategies: Resolution strategies and policy
- transitions: Queue item and webhook state machines

Architecture:
    domain/ contains pure business logic without I/O.
    Persistence and remote calls stay in entitysync.sync.
"""

from entitysync.domain.conflicts import Candidate, Detection, DetectionOutcome
from entitysync.domain.priorities import DEFAULT_LIFECYCLE, LifecycleRanking
from entitysync.domain.similarity import (
    MatchLevel,
    ScoreBreakdown,
    classify,
    edit_distance,
    name_similarity,
    score_breakdown,
    similarity,
)
from entitysync.domain.strategies import (
    MERGE_RULES,
    AuthorityWins,
    FieldMerge,
    HighestPriorityWins,
    ManualReview,
    ResolutionPolicy,
    Strategy,
    StrategyOutcome,
    describe,
    parse_strategy,
    register_merge_rule,
)
from entitysync.domain.transitions import (
    QUEUE_TRANSITIONS,
    WEBHOOK_TRANSITIONS,
    WebhookState,
    check_queue_transition,
    check_webhook_transition,
)

__all__ = [
    # conflicts
    "Candidate",
    "Detection",
    "DetectionOutcome",
    # priorities
    "DEFAULT_LIFECYCLE",
    "LifecycleRanking",
    # similarity
    "MatchLevel",
    "ScoreBreakdown",
    "classify",
    "edit_distance",
    "name_similarity",
    "score_breakdown",
    "similarity",
    # strategies
    "MERGE_RULES",
    "AuthorityWins",
    "FieldMerge",
    "HighestPriorityWins",
    "ManualReview",
    "ResolutionPolicy",
    "Strategy",
    "StrategyOutcome",
    "describe",
    "parse_strategy",
    "register_merge_rule",
    # transitions
    "QUEUE_TRANSITIONS",
    "WEBHOOK_TRANSITIONS",
    "WebhookState",
    "check_queue_transition",
    "check_webhook_transition",
]
