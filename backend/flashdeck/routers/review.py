"""
Review routes, mounted under /users/{user_id}/decks/{deck_id}/cards.

Endpoints:
  POST /{card_id}/review    apply a rating, returns the updated card and its log row
  GET  /{card_id}/preview   the four candidate outcomes, nothing persisted
  GET  /{card_id}/logs      review history, oldest first
"""
from __future__ import annotations

from datetime import datetime

import aiosqlite
from fastapi import APIRouter, Depends, Query

from flashdeck.db.sqlite import get_card, get_db, list_review_logs
from flashdeck.errors import CardNotFoundError
from flashdeck.models.card import FsrsSnapshot
from flashdeck.models.review import (
    PreviewOutcome,
    ReviewLogList,
    ReviewPreview,
    ReviewRequest,
    ReviewResult,
)
from flashdeck.services.review import apply_review_with_retry, preview_review

router = APIRouter()


@router.post("/{card_id}/review", response_model=ReviewResult)
async def review_card(
    user_id: str,
    deck_id: str,
    card_id: str,
    body: ReviewRequest,
    db: aiosqlite.Connection = Depends(get_db),
) -> ReviewResult:
    outcome = await apply_review_with_retry(
        db, user_id, deck_id, card_id, body.rating, body.review_date
    )
    return ReviewResult(card=outcome.card, log=outcome.log)


@router.get("/{card_id}/preview", response_model=ReviewPreview)
async def preview_card(
    user_id: str,
    deck_id: str,
    card_id: str,
    at: datetime | None = Query(default=None),
    db: aiosqlite.Connection = Depends(get_db),
) -> ReviewPreview:
    review_time, outcomes = await preview_review(db, user_id, deck_id, card_id, at)
    return ReviewPreview(
        card_id=card_id,
        review=review_time,
        outcomes={
            rating: PreviewOutcome(
                interval_days=outcome.interval_days,
                fsrs=FsrsSnapshot.from_snapshot(outcome.snapshot),
            )
            for rating, outcome in outcomes.items()
        },
    )


@router.get("/{card_id}/logs", response_model=ReviewLogList)
async def card_logs(
    user_id: str, deck_id: str, card_id: str, db: aiosqlite.Connection = Depends(get_db)
) -> ReviewLogList:
    if not await get_card(db, user_id, deck_id, card_id):
        raise CardNotFoundError(f"Card with id {card_id} not found")
    return ReviewLogList(items=await list_review_logs(db, card_id))
