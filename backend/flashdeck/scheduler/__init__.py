from flashdeck.scheduler.memory_model import MemoryModel, elapsed_days, evaluate, review
from flashdeck.scheduler.models import (
    CandidateOutcome,
    Rating,
    ReviewLogEntry,
    SchedulingSnapshot,
    State,
    as_utc,
)
from flashdeck.scheduler.parameters import DEFAULT_WEIGHTS, SchedulerParameters
from flashdeck.scheduler.state_machine import (
    LEGAL_TRANSITIONS,
    Transition,
    transition,
    validate_transition,
)

__all__ = [
    "CandidateOutcome",
    "DEFAULT_WEIGHTS",
    "LEGAL_TRANSITIONS",
    "MemoryModel",
    "Rating",
    "ReviewLogEntry",
    "SchedulerParameters",
    "SchedulingSnapshot",
    "State",
    "Transition",
    "as_utc",
    "elapsed_days",
    "evaluate",
    "review",
    "transition",
    "validate_transition",
]
