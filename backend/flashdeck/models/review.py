from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, StrictInt, StrictStr

from flashdeck.models.card import Card, FsrsSnapshot
from flashdeck.scheduler import Rating, State


class ReviewRequest(BaseModel):
    rating: StrictStr | StrictInt  # name ("Good") or grade 1-4, never bool or float
    review_date: datetime | None = None  # defaults to now on the server


class ReviewLog(BaseModel):
    id: str
    card_id: str
    user_id: str
    rating: Rating
    state: State           # state before the review
    due: datetime          # due before the review
    stability: float       # pre-review
    difficulty: float      # pre-review
    elapsed_days: int      # pre-review
    last_elapsed_days: int # elapsed_days of the previous log entry
    scheduled_days: int    # interval scheduled by this review
    learning_steps: int    # pre-review
    review: datetime       # when the review happened


class ReviewLogList(BaseModel):
    items: list[ReviewLog]


class ReviewResult(BaseModel):
    card: Card
    log: ReviewLog


class PreviewOutcome(BaseModel):
    interval_days: int
    fsrs: FsrsSnapshot


class ReviewPreview(BaseModel):
    card_id: str
    review: datetime
    outcomes: dict[Rating, PreviewOutcome]
