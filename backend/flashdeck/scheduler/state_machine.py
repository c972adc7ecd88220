"""
Card state machine.

    New ──► Learning ──► Review ◄──► Relearning
     └──────────────────►┘

Learning never reaches Relearning and nothing returns to New. A card has no
terminal state. Every review counts as a repetition; a lapse is an Again on a
card that had already graduated (Review or Relearning).
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from flashdeck.errors import InvariantViolationError
from flashdeck.scheduler.models import Rating, SchedulingSnapshot, State
from flashdeck.scheduler.parameters import SchedulerParameters

LEGAL_TRANSITIONS: dict[State, frozenset[State]] = {
    State.NEW: frozenset({State.LEARNING, State.REVIEW}),
    State.LEARNING: frozenset({State.LEARNING, State.REVIEW}),
    State.REVIEW: frozenset({State.REVIEW, State.RELEARNING}),
    State.RELEARNING: frozenset({State.RELEARNING, State.REVIEW}),
}

LAPSE_STATES = frozenset({State.REVIEW, State.RELEARNING})


@dataclass(frozen=True)
class Transition:
    state: State
    learning_steps: int
    reps: int
    lapses: int


def steps_for(state: State, parameters: SchedulerParameters) -> tuple[timedelta, ...]:
    """Sub-day step schedule that applies to a card in ``state``."""
    if state is State.RELEARNING:
        return parameters.relearning_steps
    return parameters.learning_steps


def is_lapse(state: State, rating: Rating) -> bool:
    return rating is Rating.AGAIN and state in LAPSE_STATES


def transition(
    snapshot: SchedulingSnapshot, rating: Rating, parameters: SchedulerParameters
) -> Transition:
    """Target state and counters for reviewing ``snapshot`` with ``rating``."""
    reps = snapshot.reps + 1
    lapses = snapshot.lapses + 1 if is_lapse(snapshot.state, rating) else snapshot.lapses

    def to(state: State, learning_steps: int = 0) -> Transition:
        return Transition(state, learning_steps, reps, lapses)

    if snapshot.state is State.NEW:
        steps = parameters.learning_steps
        completed = 1 if rating is Rating.GOOD else 0
        if rating is Rating.EASY or completed >= len(steps):
            return to(State.REVIEW)
        return to(State.LEARNING, completed)

    if snapshot.state is State.REVIEW:
        if rating is Rating.AGAIN and parameters.relearning_steps:
            return to(State.RELEARNING)
        return to(State.REVIEW)

    # Learning / Relearning
    steps = steps_for(snapshot.state, parameters)
    if rating is Rating.EASY or not steps:
        return to(State.REVIEW)
    completed = snapshot.learning_steps + 1
    if rating is Rating.GOOD and completed >= len(steps):
        return to(State.REVIEW)
    return to(snapshot.state, completed)


def validate_transition(
    before: SchedulingSnapshot, after: SchedulingSnapshot, rating: Rating
) -> None:
    """Re-check a computed review against the transition rules.

    Cannot fail for snapshots produced by ``transition``; it guards against
    corrupted stored state.
    """
    if after.state not in LEGAL_TRANSITIONS[before.state]:
        raise InvariantViolationError(
            f"illegal transition {before.state.value} -> {after.state.value} on {rating.value}"
        )
    if after.reps != before.reps + 1:
        raise InvariantViolationError(
            f"reps must advance by one (was {before.reps}, got {after.reps})"
        )
    expected_lapses = before.lapses + (1 if is_lapse(before.state, rating) else 0)
    if after.lapses != expected_lapses:
        raise InvariantViolationError(
            f"lapses must be {expected_lapses} after {rating.value} on "
            f"{before.state.value}, got {after.lapses}"
        )
    if after.state is State.REVIEW and after.learning_steps != 0:
        raise InvariantViolationError("learning steps must reset on graduating to Review")
    if after.learning_steps < 0 or after.elapsed_days < 0 or after.scheduled_days < 0:
        raise InvariantViolationError("scheduling counters must be non-negative")
