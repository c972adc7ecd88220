"""
Review transaction.

Loads a card's snapshot, runs the memory model for the chosen rating and
persists the new snapshot together with its review log row, all inside one
``BEGIN IMMEDIATE`` transaction. Either both rows are written or neither is.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

import aiosqlite

from flashdeck.config import settings
from flashdeck.db.sqlite import (
    get_card,
    get_card_row,
    get_review_log,
    last_logged_elapsed_days,
    row_to_snapshot,
    save_review,
    transaction,
)
from flashdeck.errors import (
    CardNotFoundError,
    InvalidRatingError,
    InvalidReviewTimeError,
    PersistenceConflictError,
)
from flashdeck.models.card import Card
from flashdeck.models.review import ReviewLog
from flashdeck.scheduler import (
    CandidateOutcome,
    MemoryModel,
    Rating,
    SchedulerParameters,
    SchedulingSnapshot,
    as_utc,
    review,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReviewOutcome:
    card: Card
    log: ReviewLog


def default_parameters() -> SchedulerParameters:
    return SchedulerParameters.from_settings(settings)


def coerce_rating(value: object) -> Rating:
    """Accept a ``Rating``, its name ("Good", case-insensitive) or its grade (1-4)."""
    if isinstance(value, Rating):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        try:
            return Rating.from_grade(value)
        except ValueError:
            pass
    elif isinstance(value, str):
        for rating in Rating:
            if value.strip().lower() == rating.value.lower():
                return rating
    raise InvalidRatingError(f"Invalid rating value: {value!r}")


def _resolve_review_time(
    review_time: datetime | None, snapshot: SchedulingSnapshot
) -> datetime:
    now = as_utc(review_time) if review_time is not None else datetime.now(timezone.utc)
    if snapshot.last_review is not None and now < snapshot.last_review:
        raise InvalidReviewTimeError(
            f"Review time {now.isoformat()} is earlier than the last review "
            f"({snapshot.last_review.isoformat()})"
        )
    return now


async def apply_review(
    db: aiosqlite.Connection,
    user_id: str,
    deck_id: str,
    card_id: str,
    rating: Rating | str | int,
    review_time: datetime | None = None,
    parameters: SchedulerParameters | None = None,
) -> ReviewOutcome:
    """Apply one rating to a card and record it in the review log."""
    rating = coerce_rating(rating)
    parameters = parameters or default_parameters()

    async with transaction(db):
        row = await get_card_row(db, user_id, deck_id, card_id)
        if row is None:
            raise CardNotFoundError(f"Card with id {card_id} not found")
        before = row_to_snapshot(row)
        now = _resolve_review_time(review_time, before)

        last_elapsed = await last_logged_elapsed_days(db, card_id)
        outcome, entry = review(before, rating, now, parameters, last_elapsed)
        log_id = await save_review(db, card_id, user_id, before, outcome.snapshot, entry)

        card = await get_card(db, user_id, deck_id, card_id)
        log = await get_review_log(db, log_id)

    logger.debug(
        "Card %s reviewed %s: %s -> %s, due %s",
        card_id,
        rating.value,
        before.state.value,
        outcome.snapshot.state.value,
        outcome.snapshot.due.isoformat(),
    )
    return ReviewOutcome(card=card, log=log)  # type: ignore[arg-type]


async def apply_review_with_retry(
    db: aiosqlite.Connection,
    user_id: str,
    deck_id: str,
    card_id: str,
    rating: Rating | str | int,
    review_time: datetime | None = None,
    parameters: SchedulerParameters | None = None,
) -> ReviewOutcome:
    """``apply_review``, re-run from the start on persistence conflicts."""
    attempts = max(1, settings.review_max_attempts)
    for attempt in range(1, attempts):
        try:
            return await apply_review(
                db, user_id, deck_id, card_id, rating, review_time, parameters
            )
        except PersistenceConflictError:
            logger.warning(
                "Review of card %s hit a write conflict (attempt %d/%d), retrying",
                card_id,
                attempt,
                attempts,
            )
            await asyncio.sleep(settings.review_retry_backoff * attempt)
    # Last attempt: a conflict here propagates to the caller
    return await apply_review(db, user_id, deck_id, card_id, rating, review_time, parameters)


async def preview_review(
    db: aiosqlite.Connection,
    user_id: str,
    deck_id: str,
    card_id: str,
    review_time: datetime | None = None,
    parameters: SchedulerParameters | None = None,
) -> tuple[datetime, dict[Rating, CandidateOutcome]]:
    """All four candidate outcomes for reviewing the card now. Writes nothing."""
    row = await get_card_row(db, user_id, deck_id, card_id)
    if row is None:
        raise CardNotFoundError(f"Card with id {card_id} not found")
    before = row_to_snapshot(row)
    now = _resolve_review_time(review_time, before)
    return now, MemoryModel(parameters or default_parameters()).evaluate(before, now)
