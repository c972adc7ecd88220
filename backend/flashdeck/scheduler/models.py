from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum


class State(str, Enum):
    NEW = "New"
    LEARNING = "Learning"
    REVIEW = "Review"
    RELEARNING = "Relearning"


class Rating(str, Enum):
    AGAIN = "Again"
    HARD = "Hard"
    GOOD = "Good"
    EASY = "Easy"

    @property
    def grade(self) -> int:
        """Numeric grade used by the memory model formulas (Again=1 .. Easy=4)."""
        return _GRADES[self]

    @classmethod
    def from_grade(cls, grade: int) -> Rating:
        for rating, value in _GRADES.items():
            if value == grade:
                return rating
        raise ValueError(f"grade must be 1, 2, 3 or 4, got {grade!r}")


_GRADES = {Rating.AGAIN: 1, Rating.HARD: 2, Rating.GOOD: 3, Rating.EASY: 4}


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class SchedulingSnapshot:
    due: datetime
    stability: float
    difficulty: float
    elapsed_days: int
    scheduled_days: int
    learning_steps: int
    reps: int
    lapses: int
    state: State
    last_review: datetime | None = None

    @classmethod
    def new(cls, now: datetime) -> SchedulingSnapshot:
        """Snapshot of a card that has never been reviewed, due immediately."""
        return cls(
            due=as_utc(now),
            stability=0.0,
            difficulty=0.0,
            elapsed_days=0,
            scheduled_days=0,
            learning_steps=0,
            reps=0,
            lapses=0,
            state=State.NEW,
            last_review=None,
        )

    def evolve(self, **changes) -> SchedulingSnapshot:
        return replace(self, **changes)


@dataclass(frozen=True)
class CandidateOutcome:
    snapshot: SchedulingSnapshot
    interval_days: int


@dataclass(frozen=True)
class ReviewLogEntry:
    """Audit record of one review. Snapshot fields are the pre-review values."""

    rating: Rating
    state: State
    due: datetime
    stability: float
    difficulty: float
    elapsed_days: int  # pre-review
    last_elapsed_days: int  # elapsed_days recorded by the card's previous log entry
    scheduled_days: int  # interval scheduled by this review
    learning_steps: int
    review: datetime

    @classmethod
    def from_review(
        cls,
        before: SchedulingSnapshot,
        rating: Rating,
        review: datetime,
        outcome: CandidateOutcome,
        last_elapsed_days: int = 0,
    ) -> ReviewLogEntry:
        return cls(
            rating=rating,
            state=before.state,
            due=before.due,
            stability=before.stability,
            difficulty=before.difficulty,
            elapsed_days=before.elapsed_days,
            last_elapsed_days=last_elapsed_days,
            scheduled_days=outcome.interval_days,
            learning_steps=before.learning_steps,
            review=as_utc(review),
        )
