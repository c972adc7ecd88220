from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from flashdeck import create_app
from flashdeck.config import settings
from flashdeck.db.sqlite import connect, create_card, create_deck, init_sqlite
from flashdeck.models.deck import DeckCreate
from flashdeck.scheduler import SchedulingSnapshot, State
from flashdeck.services.cards import initial_snapshot

API_KEY = "test-api-key"
T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def parse_dt(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def review_snapshot(
    stability: float = 10.0,
    difficulty: float = 5.0,
    elapsed: int = 10,
    now: datetime = T0,
    state: State = State.REVIEW,
    learning_steps: int = 0,
    reps: int = 5,
    lapses: int = 0,
) -> SchedulingSnapshot:
    """A reviewed card whose last review was ``elapsed`` days before ``now``."""
    last = now - timedelta(days=elapsed)
    return SchedulingSnapshot(
        due=last + timedelta(days=max(1, round(stability))),
        stability=stability,
        difficulty=difficulty,
        elapsed_days=3,
        scheduled_days=max(1, round(stability)),
        learning_steps=learning_steps,
        reps=reps,
        lapses=lapses,
        state=state,
        last_review=last,
    )


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "data_dir", tmp_path)
    monkeypatch.setattr(settings, "api_key", API_KEY)
    monkeypatch.setattr(settings, "review_retry_backoff", 0.0)
    return tmp_path


@pytest.fixture
def client(data_dir):
    with TestClient(create_app(), headers={"X-API-Key": API_KEY}) as c:
        yield c


@pytest_asyncio.fixture
async def db(data_dir):
    await init_sqlite(data_dir)
    conn = await connect()
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def deck_ids(db):
    deck = await create_deck(db, "user-1", DeckCreate(name="Japanese N5"))
    return deck.user_id, deck.id


@pytest_asyncio.fixture
async def new_card(db, deck_ids):
    user_id, deck_id = deck_ids
    return await create_card(
        db, user_id, deck_id, {"front": "猫", "back": "cat"}, initial_snapshot(now=T0)
    )
