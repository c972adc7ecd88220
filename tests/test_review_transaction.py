import asyncio
import sqlite3
from datetime import timedelta

import pytest

import flashdeck.services.review as review_service
from conftest import T0
from flashdeck.db.sqlite import (
    connect,
    delete_card,
    get_card,
    list_due_cards,
    list_review_logs,
    save_review,
    transaction,
)
from flashdeck.errors import (
    CardNotFoundError,
    InvalidRatingError,
    InvalidReviewTimeError,
    PersistenceConflictError,
)
from flashdeck.scheduler import Rating, State, review
from flashdeck.services.cards import initial_snapshot
from flashdeck.services.review import (
    apply_review,
    apply_review_with_retry,
    coerce_rating,
    preview_review,
)


async def _reload(db, card):
    return await get_card(db, card.user_id, card.deck_id, card.id)


@pytest.mark.asyncio
async def test_new_card_through_learning_into_review(db, new_card):
    c = new_card

    first = await apply_review(db, c.user_id, c.deck_id, c.id, Rating.GOOD, T0)
    assert first.card.fsrs.state is State.LEARNING
    assert first.card.fsrs.due > T0
    assert first.card.fsrs.learning_steps == 1
    assert first.card.fsrs.due == T0 + timedelta(minutes=10)

    second = await apply_review(
        db, c.user_id, c.deck_id, c.id, Rating.GOOD, T0 + timedelta(days=3)
    )
    assert second.card.fsrs.state is State.REVIEW
    assert second.card.fsrs.learning_steps == 0
    assert second.card.fsrs.scheduled_days >= 1
    assert second.card.fsrs.due > first.card.fsrs.due

    third = await apply_review(
        db, c.user_id, c.deck_id, c.id, Rating.GOOD, T0 + timedelta(days=6)
    )
    assert third.card.fsrs.state is State.REVIEW
    assert third.card.fsrs.reps == 3
    assert third.card.fsrs.due > second.card.fsrs.due
    assert third.card.fsrs.stability > second.card.fsrs.stability
    assert [r.card.fsrs.lapses for r in (first, second, third)] == [0, 0, 0]


@pytest.mark.asyncio
async def test_logs_record_pre_review_snapshots_in_order(db, new_card):
    c = new_card
    schedule = ((0, Rating.GOOD), (3, Rating.GOOD), (6, Rating.AGAIN), (7, Rating.GOOD))
    results = []
    for days, rating in schedule:
        results.append(
            await apply_review(
                db, c.user_id, c.deck_id, c.id, rating, T0 + timedelta(days=days)
            )
        )

    logs = await list_review_logs(db, c.id)
    assert [log.rating for log in logs] == [r for _, r in schedule]
    assert [log.state for log in logs] == [
        State.NEW,
        State.LEARNING,
        State.REVIEW,
        State.RELEARNING,
    ]
    assert [log.review for log in logs] == [T0 + timedelta(days=d) for d, _ in schedule]
    assert [log.elapsed_days for log in logs] == [0, 0, 3, 3]
    assert [log.last_elapsed_days for log in logs] == [0, 0, 0, 3]
    assert [log.learning_steps for log in logs] == [0, 1, 0, 0]
    assert logs[0].due == T0
    assert logs[2].scheduled_days == 0

    # Each entry holds the snapshot the previous review produced
    for log, previous in zip(logs[1:], results):
        assert log.due == previous.card.fsrs.due
        assert log.stability == previous.card.fsrs.stability
        assert log.elapsed_days == previous.card.fsrs.elapsed_days

    card = await _reload(db, c)
    assert card.fsrs.state is State.REVIEW
    assert card.fsrs.lapses == 1
    assert card.fsrs.reps == 4


@pytest.mark.asyncio
async def test_log_returned_matches_stored_row(db, new_card):
    c = new_card
    outcome = await apply_review(db, c.user_id, c.deck_id, c.id, "easy", T0)

    [stored] = await list_review_logs(db, c.id)
    assert outcome.log == stored
    assert outcome.log.rating is Rating.EASY
    assert outcome.log.scheduled_days == outcome.card.fsrs.scheduled_days == 8


@pytest.mark.asyncio
async def test_invalid_rating_changes_nothing(db, new_card):
    c = new_card

    with pytest.raises(InvalidRatingError):
        await apply_review(db, c.user_id, c.deck_id, c.id, "Perfect", T0)

    assert await _reload(db, c) == c
    assert await list_review_logs(db, c.id) == []


@pytest.mark.parametrize("value, expected", [
    ("Good", Rating.GOOD),
    (" again ", Rating.AGAIN),
    (2, Rating.HARD),
    (Rating.EASY, Rating.EASY),
])
def test_coerce_rating_accepts_names_and_grades(value, expected):
    assert coerce_rating(value) is expected


@pytest.mark.parametrize("value", [0, 5, True, "", "Perfect", 3.0, None])
def test_coerce_rating_rejects_everything_else(value):
    with pytest.raises(InvalidRatingError):
        coerce_rating(value)


@pytest.mark.asyncio
async def test_unknown_card(db, deck_ids, new_card):
    user_id, deck_id = deck_ids

    with pytest.raises(CardNotFoundError):
        await apply_review(db, user_id, deck_id, "missing", Rating.GOOD, T0)
    with pytest.raises(CardNotFoundError):
        await apply_review(db, user_id, "other-deck", new_card.id, Rating.GOOD, T0)
    with pytest.raises(CardNotFoundError):
        await apply_review(db, "user-2", deck_id, new_card.id, Rating.GOOD, T0)


@pytest.mark.asyncio
async def test_review_earlier_than_last_review_is_rejected(db, new_card):
    c = new_card
    await apply_review(db, c.user_id, c.deck_id, c.id, Rating.GOOD, T0 + timedelta(days=1))

    with pytest.raises(InvalidReviewTimeError):
        await apply_review(db, c.user_id, c.deck_id, c.id, Rating.GOOD, T0)

    card = await _reload(db, c)
    assert card.fsrs.reps == 1
    assert len(await list_review_logs(db, c.id)) == 1


@pytest.mark.asyncio
async def test_concurrent_reviews_are_serialized(db, new_card):
    c = new_card
    conn_a, conn_b = await connect(), await connect()
    try:
        results = await asyncio.gather(
            apply_review(conn_a, c.user_id, c.deck_id, c.id, Rating.GOOD, T0),
            apply_review(conn_b, c.user_id, c.deck_id, c.id, Rating.GOOD, T0),
        )
    finally:
        await conn_a.close()
        await conn_b.close()

    assert sorted(r.card.fsrs.reps for r in results) == [1, 2]
    card = await _reload(db, c)
    assert card.fsrs.reps == 2
    logs = await list_review_logs(db, c.id)
    assert [log.state for log in logs] == [State.NEW, State.LEARNING]
    first = next(r for r in results if r.card.fsrs.reps == 1).card.fsrs
    second_log = logs[1]
    assert second_log.due == first.due
    assert second_log.stability == first.stability
    assert second_log.difficulty == first.difficulty
    assert second_log.learning_steps == first.learning_steps
    assert second_log.elapsed_days == first.elapsed_days


@pytest.mark.asyncio
async def test_stale_snapshot_is_a_conflict(db, new_card):
    c = new_card
    first = await apply_review(db, c.user_id, c.deck_id, c.id, Rating.GOOD, T0)

    # Computed against the card as it was before the first review
    stale = initial_snapshot(now=T0)
    outcome, entry = review(stale, Rating.EASY, T0)
    with pytest.raises(PersistenceConflictError):
        async with transaction(db):
            await save_review(db, c.id, c.user_id, stale, outcome.snapshot, entry)

    card = await _reload(db, c)
    assert card == first.card
    assert len(await list_review_logs(db, c.id)) == 1


@pytest.mark.asyncio
async def test_failure_after_write_rolls_back_both_rows(db, new_card, monkeypatch):
    c = new_card

    async def save_then_fail(*args, **kwargs):
        await save_review(*args, **kwargs)
        raise RuntimeError("disk went away")

    monkeypatch.setattr(review_service, "save_review", save_then_fail)

    with pytest.raises(RuntimeError):
        await apply_review(db, c.user_id, c.deck_id, c.id, Rating.GOOD, T0)

    assert await _reload(db, c) == c
    assert await list_review_logs(db, c.id) == []


@pytest.mark.asyncio
async def test_conflict_is_retried(db, new_card, monkeypatch):
    c = new_card
    real_apply = review_service.apply_review
    calls = []

    async def flaky(*args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            raise PersistenceConflictError("simulated")
        return await real_apply(*args, **kwargs)

    monkeypatch.setattr(review_service, "apply_review", flaky)

    outcome = await apply_review_with_retry(db, c.user_id, c.deck_id, c.id, Rating.GOOD, T0)

    assert len(calls) == 2
    assert outcome.card.fsrs.reps == 1


@pytest.mark.asyncio
async def test_retries_give_up_after_max_attempts(db, new_card, monkeypatch):
    c = new_card
    calls = []

    async def always_conflict(*args, **kwargs):
        calls.append(args)
        raise PersistenceConflictError("simulated")

    monkeypatch.setattr(review_service, "apply_review", always_conflict)

    with pytest.raises(PersistenceConflictError):
        await apply_review_with_retry(db, c.user_id, c.deck_id, c.id, Rating.GOOD, T0)
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_other_errors_are_not_retried(db, new_card):
    c = new_card
    with pytest.raises(CardNotFoundError):
        await apply_review_with_retry(db, c.user_id, c.deck_id, "missing", Rating.GOOD, T0)


@pytest.mark.asyncio
async def test_preview_writes_nothing(db, new_card):
    c = new_card
    review_time, outcomes = await preview_review(db, c.user_id, c.deck_id, c.id, T0)

    assert review_time == T0
    assert set(outcomes) == set(Rating)
    assert outcomes[Rating.EASY].snapshot.state is State.REVIEW
    assert await _reload(db, c) == c
    assert await list_review_logs(db, c.id) == []


@pytest.mark.asyncio
async def test_review_logs_are_append_only(db, new_card):
    c = new_card
    await apply_review(db, c.user_id, c.deck_id, c.id, Rating.GOOD, T0)

    with pytest.raises(sqlite3.DatabaseError, match="append-only"):
        await db.execute("UPDATE review_logs SET rating = 'Easy'")
    await db.rollback()

    [log] = await list_review_logs(db, c.id)
    assert log.rating is Rating.GOOD


@pytest.mark.asyncio
async def test_deleting_card_removes_its_history(db, new_card):
    c = new_card
    await apply_review(db, c.user_id, c.deck_id, c.id, Rating.GOOD, T0)

    assert await delete_card(db, c.user_id, c.deck_id, c.id)
    assert await list_review_logs(db, c.id) == []


@pytest.mark.asyncio
async def test_due_cards_follow_the_schedule(db, new_card):
    c = new_card
    assert [card.id for card in await list_due_cards(db, c.user_id, c.deck_id, T0)] == [c.id]

    await apply_review(db, c.user_id, c.deck_id, c.id, Rating.GOOD, T0)

    later = T0 + timedelta(minutes=5)
    assert await list_due_cards(db, c.user_id, c.deck_id, later) == []
    much_later = T0 + timedelta(minutes=11)
    assert len(await list_due_cards(db, c.user_id, c.deck_id, much_later)) == 1
