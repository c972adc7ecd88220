"""
FSRS-6 memory model.

Turns a card's scheduling snapshot and the review time into the candidate
snapshot for each of the four ratings. Pure and deterministic: no I/O, no
interval fuzz.

    R(t, S) = (1 + factor * t / S) ** decay        forgetting curve
    I(S)    = S / factor * (r ** (1 / decay) - 1)  interval for retention r

Stability (S) is in days; difficulty (D) lives in [1, 10].
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta

from flashdeck.errors import InvariantViolationError
from flashdeck.scheduler.models import (
    CandidateOutcome,
    Rating,
    ReviewLogEntry,
    SchedulingSnapshot,
    State,
    as_utc,
)
from flashdeck.scheduler.parameters import D_MAX, D_MIN, S_MIN, SchedulerParameters
from flashdeck.scheduler.state_machine import (
    Transition,
    steps_for,
    transition,
    validate_transition,
)

logger = logging.getLogger(__name__)


def elapsed_days(last_review: datetime | None, now: datetime) -> int:
    """Whole days between the last review and ``now``; 0 if never reviewed."""
    if last_review is None:
        return 0
    return max(0, (as_utc(now) - as_utc(last_review)).days)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class MemoryModel:
    def __init__(self, parameters: SchedulerParameters | None = None) -> None:
        self.parameters = parameters or SchedulerParameters()
        self.w = self.parameters.weights

    # --- Public API ---

    def evaluate(
        self, snapshot: SchedulingSnapshot, now: datetime
    ) -> dict[Rating, CandidateOutcome]:
        """Candidate outcome for every rating, keyed by rating."""
        now = as_utc(now)
        elapsed = elapsed_days(snapshot.last_review, now)
        outcomes = {
            rating: self._outcome(snapshot, now, elapsed, rating) for rating in Rating
        }
        outcomes = self._order_review_intervals(outcomes, now)
        for rating, outcome in outcomes.items():
            self._check(snapshot, outcome, now, rating)
        return outcomes

    def retrievability(self, elapsed: float, stability: float) -> float:
        p = self.parameters
        return math.pow(1.0 + p.factor * elapsed / stability, p.decay)

    def next_interval(self, stability: float) -> int:
        p = self.parameters
        raw = stability / p.factor * (math.pow(p.desired_retention, 1.0 / p.decay) - 1.0)
        return int(_clamp(round(raw), 1, p.maximum_interval))

    # --- Formulas ---

    def initial_stability(self, grade: int) -> float:
        return max(self.w[grade - 1], 0.1)

    def _raw_initial_difficulty(self, grade: int) -> float:
        return self.w[4] - math.exp(self.w[5] * (grade - 1)) + 1.0

    def initial_difficulty(self, grade: int) -> float:
        return _clamp(self._raw_initial_difficulty(grade), D_MIN, D_MAX)

    def next_difficulty(self, difficulty: float, grade: int) -> float:
        w = self.w
        delta = -w[6] * (grade - 3)
        # Linear damping: steps shrink as D approaches the upper bound
        damped = difficulty + delta * (10.0 - difficulty) / 9.0
        reverted = w[7] * self._raw_initial_difficulty(4) + (1.0 - w[7]) * damped
        return _clamp(reverted, D_MIN, D_MAX)

    def recall_stability(
        self, difficulty: float, stability: float, retrievability: float, rating: Rating
    ) -> float:
        w = self.w
        hard_penalty = w[15] if rating is Rating.HARD else 1.0
        easy_bonus = w[16] if rating is Rating.EASY else 1.0
        growth = (
            math.exp(w[8])
            * (11.0 - difficulty)
            * math.pow(stability, -w[9])
            * (math.exp((1.0 - retrievability) * w[10]) - 1.0)
            * hard_penalty
            * easy_bonus
        )
        return stability * (1.0 + growth)

    def forget_stability(
        self, difficulty: float, stability: float, retrievability: float
    ) -> float:
        w = self.w
        long_term = (
            w[11]
            * math.pow(difficulty, -w[12])
            * (math.pow(stability + 1.0, w[13]) - 1.0)
            * math.exp((1.0 - retrievability) * w[14])
        )
        # Post-lapse stability never exceeds what a same-day Again would leave
        return min(long_term, stability / math.exp(w[17] * w[18]))

    def short_term_stability(self, stability: float, grade: int) -> float:
        w = self.w
        increase = math.exp(w[17] * (grade - 3 + w[18])) * math.pow(stability, -w[19])
        if grade >= 3:
            increase = max(increase, 1.0)
        return stability * increase

    # --- Internals ---

    def _memory_state(
        self, snapshot: SchedulingSnapshot, elapsed: int, rating: Rating
    ) -> tuple[float, float]:
        grade = rating.grade
        if snapshot.state is State.NEW:
            return self.initial_stability(grade), self.initial_difficulty(grade)

        stability = max(snapshot.stability, S_MIN)
        difficulty = _clamp(snapshot.difficulty, D_MIN, D_MAX)
        if elapsed < 1:
            next_s = self.short_term_stability(stability, grade)
        else:
            r = self.retrievability(elapsed, stability)
            if rating is Rating.AGAIN:
                next_s = self.forget_stability(difficulty, stability, r)
            else:
                next_s = self.recall_stability(difficulty, stability, r, rating)
        return self._clamp_stability(next_s), self.next_difficulty(difficulty, grade)

    def _clamp_stability(self, value: float) -> float:
        if math.isnan(value) or value <= 0.0:
            logger.warning("Computed stability %r is not positive; using floor %s", value, S_MIN)
            return S_MIN
        if math.isinf(value):
            logger.warning("Computed stability is infinite; capping at maximum interval")
        return _clamp(value, S_MIN, float(self.parameters.maximum_interval))

    def _step_delay(
        self, snapshot: SchedulingSnapshot, move: Transition, rating: Rating
    ) -> timedelta:
        steps = steps_for(move.state, self.parameters)
        if rating is Rating.AGAIN:
            return steps[0]
        if rating is Rating.HARD:
            current = snapshot.learning_steps if snapshot.state is move.state else 0
            index = min(current, len(steps) - 1)
            if index > 0:
                return steps[index]
            if len(steps) > 1:
                return (steps[0] + steps[1]) / 2
            return min(steps[0] * 1.5, steps[0] + timedelta(days=1))
        return steps[min(move.learning_steps, len(steps) - 1)]

    def _outcome(
        self, snapshot: SchedulingSnapshot, now: datetime, elapsed: int, rating: Rating
    ) -> CandidateOutcome:
        move = transition(snapshot, rating, self.parameters)
        stability, difficulty = self._memory_state(snapshot, elapsed, rating)
        if move.state is State.REVIEW:
            interval = self.next_interval(stability)
            due = now + timedelta(days=interval)
        else:
            delay = self._step_delay(snapshot, move, rating)
            interval = delay.days
            due = now + delay
        next_snapshot = SchedulingSnapshot(
            due=due,
            stability=stability,
            difficulty=difficulty,
            elapsed_days=elapsed,
            scheduled_days=interval,
            learning_steps=move.learning_steps,
            reps=move.reps,
            lapses=move.lapses,
            state=move.state,
            last_review=now,
        )
        return CandidateOutcome(snapshot=next_snapshot, interval_days=interval)

    def _order_review_intervals(
        self, outcomes: dict[Rating, CandidateOutcome], now: datetime
    ) -> dict[Rating, CandidateOutcome]:
        """Keep hard <= good < easy among outcomes that schedule a Review."""
        in_review = {
            rating
            for rating, outcome in outcomes.items()
            if outcome.snapshot.state is State.REVIEW
        }
        intervals = {rating: o.interval_days for rating, o in outcomes.items()}
        if {Rating.HARD, Rating.GOOD} <= in_review:
            intervals[Rating.HARD] = min(intervals[Rating.HARD], intervals[Rating.GOOD])
            intervals[Rating.GOOD] = max(intervals[Rating.GOOD], intervals[Rating.HARD] + 1)
        if {Rating.GOOD, Rating.EASY} <= in_review:
            intervals[Rating.EASY] = max(intervals[Rating.EASY], intervals[Rating.GOOD] + 1)

        ordered = {}
        for rating, outcome in outcomes.items():
            interval = min(intervals[rating], self.parameters.maximum_interval)
            if rating in in_review and interval != outcome.interval_days:
                outcome = CandidateOutcome(
                    snapshot=outcome.snapshot.evolve(
                        due=now + timedelta(days=interval), scheduled_days=interval
                    ),
                    interval_days=interval,
                )
            ordered[rating] = outcome
        return ordered

    def _check(
        self,
        before: SchedulingSnapshot,
        outcome: CandidateOutcome,
        now: datetime,
        rating: Rating,
    ) -> None:
        after = outcome.snapshot
        if not (math.isfinite(after.stability) and after.stability > 0.0):
            raise InvariantViolationError(
                f"{rating.value}: stability must be positive, got {after.stability!r}"
            )
        if not D_MIN <= after.difficulty <= D_MAX:
            raise InvariantViolationError(
                f"{rating.value}: difficulty {after.difficulty!r} outside [{D_MIN}, {D_MAX}]"
            )
        if after.due <= now:
            raise InvariantViolationError(f"{rating.value}: due {after.due} is not after {now}")
        if after.reps < before.reps or after.scheduled_days != outcome.interval_days:
            raise InvariantViolationError(f"{rating.value}: inconsistent counters")


def evaluate(
    snapshot: SchedulingSnapshot,
    now: datetime,
    parameters: SchedulerParameters | None = None,
) -> dict[Rating, CandidateOutcome]:
    return MemoryModel(parameters).evaluate(snapshot, now)


def review(
    snapshot: SchedulingSnapshot,
    rating: Rating,
    now: datetime,
    parameters: SchedulerParameters | None = None,
    last_elapsed_days: int = 0,
) -> tuple[CandidateOutcome, ReviewLogEntry]:
    """Apply ``rating`` to ``snapshot`` at ``now``.

    Returns the selected outcome and the log entry recording the pre-review
    snapshot. ``last_elapsed_days`` is carried over from the card's previous
    log entry. Nothing is persisted here.
    """
    now = as_utc(now)
    outcome = evaluate(snapshot, now, parameters)[rating]
    validate_transition(snapshot, outcome.snapshot, rating)
    return outcome, ReviewLogEntry.from_review(
        snapshot, rating, now, outcome, last_elapsed_days
    )
