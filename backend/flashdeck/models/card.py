from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from flashdeck.scheduler import SchedulingSnapshot, State


class FsrsSnapshot(BaseModel):
    """Wire form of a card's scheduling state."""

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
    def from_snapshot(cls, snapshot: SchedulingSnapshot) -> FsrsSnapshot:
        return cls(
            due=snapshot.due,
            stability=snapshot.stability,
            difficulty=snapshot.difficulty,
            elapsed_days=snapshot.elapsed_days,
            scheduled_days=snapshot.scheduled_days,
            learning_steps=snapshot.learning_steps,
            reps=snapshot.reps,
            lapses=snapshot.lapses,
            state=snapshot.state,
            last_review=snapshot.last_review,
        )


class SnapshotOverride(BaseModel):
    """Partial snapshot accepted when importing a card with existing history."""

    due: datetime | None = None
    stability: float | None = Field(default=None, gt=0)
    difficulty: float | None = Field(default=None, ge=1, le=10)
    elapsed_days: int | None = Field(default=None, ge=0)
    scheduled_days: int | None = Field(default=None, ge=0)
    learning_steps: int | None = Field(default=None, ge=0)
    reps: int | None = Field(default=None, ge=0)
    lapses: int | None = Field(default=None, ge=0)
    state: State | None = None
    last_review: datetime | None = None


class Card(BaseModel):
    id: str
    deck_id: str
    user_id: str
    data: dict[str, Any]  # caller-supplied payload, never inspected
    fsrs: FsrsSnapshot
    created_at: str
    updated_at: str


class CardList(BaseModel):
    items: list[Card]


class CardCreate(BaseModel):
    data: dict[str, Any]
    fsrs: SnapshotOverride | None = None


class CardUpdate(BaseModel):
    data: dict[str, Any]


class CardPatch(BaseModel):
    data: dict[str, Any] | None = None
