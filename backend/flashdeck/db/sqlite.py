import json
import logging
import sqlite3
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite

from flashdeck.config import settings
from flashdeck.errors import PersistenceConflictError
from flashdeck.models.card import Card, FsrsSnapshot
from flashdeck.models.deck import Deck, DeckCreate, DeckUpdate
from flashdeck.models.review import ReviewLog
from flashdeck.scheduler import ReviewLogEntry, SchedulingSnapshot, State, as_utc

logger = logging.getLogger(__name__)

_db_path: Path | None = None

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA foreign_keys=ON;

CREATE TABLE IF NOT EXISTS users (
    id          TEXT PRIMARY KEY,
    email       TEXT UNIQUE,
    created_at  TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at  TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS decks (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    name        TEXT NOT NULL,
    description TEXT,
    created_at  TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at  TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_decks_user_name ON decks(user_id, name);

CREATE TABLE IF NOT EXISTS cards (
    id             TEXT PRIMARY KEY,
    deck_id        TEXT NOT NULL REFERENCES decks(id) ON DELETE CASCADE,
    user_id        TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    data           TEXT NOT NULL DEFAULT '{}',
    due            TEXT NOT NULL,
    stability      REAL NOT NULL,
    difficulty     REAL NOT NULL,
    elapsed_days   INTEGER NOT NULL DEFAULT 0,
    scheduled_days INTEGER NOT NULL DEFAULT 0,
    learning_steps INTEGER NOT NULL DEFAULT 0,
    reps           INTEGER NOT NULL DEFAULT 0,
    lapses         INTEGER NOT NULL DEFAULT 0,
    state          TEXT NOT NULL
                   CHECK (state IN ('New', 'Learning', 'Review', 'Relearning')),
    last_review    TEXT,
    created_at     TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at     TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_cards_due ON cards(user_id, due);
CREATE INDEX IF NOT EXISTS idx_cards_deck_state ON cards(deck_id, state);

CREATE TABLE IF NOT EXISTS review_logs (
    id                TEXT PRIMARY KEY,
    card_id           TEXT NOT NULL REFERENCES cards(id) ON DELETE CASCADE,
    user_id           TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    rating            TEXT NOT NULL
                      CHECK (rating IN ('Again', 'Hard', 'Good', 'Easy')),
    state             TEXT NOT NULL
                      CHECK (state IN ('New', 'Learning', 'Review', 'Relearning')),
    due               TEXT NOT NULL,
    stability         REAL NOT NULL,
    difficulty        REAL NOT NULL,
    elapsed_days      INTEGER NOT NULL,
    last_elapsed_days INTEGER NOT NULL,
    scheduled_days    INTEGER NOT NULL,
    learning_steps    INTEGER NOT NULL,
    review            TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_review_card_date ON review_logs(card_id, review);
CREATE INDEX IF NOT EXISTS idx_review_user_date ON review_logs(user_id, review);

CREATE TRIGGER IF NOT EXISTS review_logs_append_only
BEFORE UPDATE ON review_logs
BEGIN
    SELECT RAISE(ABORT, 'review_logs is append-only');
END;

CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);
INSERT OR IGNORE INTO schema_version(version) VALUES (1);
"""


async def init_sqlite(data_dir: Path) -> None:
    global _db_path
    _db_path = data_dir / settings.sqlite_filename
    async with aiosqlite.connect(_db_path) as db:
        await db.executescript(SCHEMA_SQL)
        await db.commit()
    logger.info("SQLite ready at %s", _db_path)


async def connect() -> aiosqlite.Connection:
    """Open a connection with row access by name and foreign keys enforced."""
    assert _db_path is not None, "SQLite not initialized"
    db = await aiosqlite.connect(_db_path, timeout=settings.sqlite_busy_timeout)
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA foreign_keys=ON")
    return db


async def get_db() -> AsyncIterator[aiosqlite.Connection]:
    db = await connect()
    try:
        yield db
    finally:
        await db.close()


def _is_lock_error(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message


@asynccontextmanager
async def transaction(db: aiosqlite.Connection) -> AsyncIterator[aiosqlite.Connection]:
    """Run the block under ``BEGIN IMMEDIATE``; commit on success, roll back on error.

    The write lock is taken before the first read, so concurrent writers are
    serialized. Lock timeouts surface as ``PersistenceConflictError``.
    """
    try:
        await db.execute("BEGIN IMMEDIATE")
    except sqlite3.OperationalError as exc:
        if _is_lock_error(exc):
            raise PersistenceConflictError(f"Could not acquire write lock: {exc}") from exc
        raise
    try:
        yield db
        await db.commit()
    except sqlite3.OperationalError as exc:
        await db.rollback()
        if _is_lock_error(exc):
            raise PersistenceConflictError(f"Write conflict: {exc}") from exc
        raise
    except BaseException:
        await db.rollback()
        raise


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def _ts(value: datetime) -> str:
    # Fixed-width UTC ISO-8601 so text comparison matches time order
    return as_utc(value).isoformat(timespec="microseconds")


def _parse_ts(value: str | None) -> datetime | None:
    if value is None:
        return None
    return as_utc(datetime.fromisoformat(value))


# --- Users ---


async def ensure_user(db: aiosqlite.Connection, user_id: str) -> None:
    await db.execute(
        "INSERT INTO users(id, created_at, updated_at) VALUES (?, ?, ?) "
        "ON CONFLICT(id) DO NOTHING",
        (user_id, _now(), _now()),
    )


# --- Decks ---


def _row_to_deck(row: aiosqlite.Row) -> Deck:
    return Deck(**dict(row))


async def create_deck(db: aiosqlite.Connection, user_id: str, deck: DeckCreate) -> Deck:
    deck_id = str(uuid.uuid4())
    now = _now()
    await ensure_user(db, user_id)
    await db.execute(
        """INSERT INTO decks (id, user_id, name, description, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (deck_id, user_id, deck.name, deck.description, now, now),
    )
    await db.commit()
    return await get_deck(db, user_id, deck_id)  # type: ignore[return-value]


async def get_deck(db: aiosqlite.Connection, user_id: str, deck_id: str) -> Deck | None:
    cursor = await db.execute(
        "SELECT * FROM decks WHERE id = ? AND user_id = ?", (deck_id, user_id)
    )
    row = await cursor.fetchone()
    return _row_to_deck(row) if row else None


async def list_decks(db: aiosqlite.Connection, user_id: str) -> list[Deck]:
    cursor = await db.execute(
        "SELECT * FROM decks WHERE user_id = ? ORDER BY created_at ASC, name ASC",
        (user_id,),
    )
    rows = await cursor.fetchall()
    return [_row_to_deck(r) for r in rows]


async def update_deck(
    db: aiosqlite.Connection, user_id: str, deck_id: str, updates: DeckUpdate
) -> Deck | None:
    fields = updates.model_dump(exclude_unset=True)
    if fields.get("name") is None:
        fields.pop("name", None)
    if not fields:
        return await get_deck(db, user_id, deck_id)

    fields["updated_at"] = _now()
    set_clause = ", ".join(f"{k} = ?" for k in fields)
    values = list(fields.values()) + [deck_id, user_id]

    cursor = await db.execute(
        f"UPDATE decks SET {set_clause} WHERE id = ? AND user_id = ?",  # noqa: S608
        values,
    )
    await db.commit()
    if cursor.rowcount == 0:
        return None
    return await get_deck(db, user_id, deck_id)


async def delete_deck(db: aiosqlite.Connection, user_id: str, deck_id: str) -> bool:
    cursor = await db.execute(
        "DELETE FROM decks WHERE id = ? AND user_id = ?", (deck_id, user_id)
    )
    await db.commit()
    return (cursor.rowcount or 0) > 0


# --- Cards ---


def row_to_snapshot(row: aiosqlite.Row) -> SchedulingSnapshot:
    return SchedulingSnapshot(
        due=_parse_ts(row["due"]),  # type: ignore[arg-type]
        stability=float(row["stability"]),
        difficulty=float(row["difficulty"]),
        elapsed_days=row["elapsed_days"],
        scheduled_days=row["scheduled_days"],
        learning_steps=row["learning_steps"],
        reps=row["reps"],
        lapses=row["lapses"],
        state=State(row["state"]),
        last_review=_parse_ts(row["last_review"]),
    )


def _row_to_card(row: aiosqlite.Row) -> Card:
    return Card(
        id=row["id"],
        deck_id=row["deck_id"],
        user_id=row["user_id"],
        data=json.loads(row["data"]),
        fsrs=FsrsSnapshot.from_snapshot(row_to_snapshot(row)),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _snapshot_params(snapshot: SchedulingSnapshot) -> tuple[Any, ...]:
    return (
        _ts(snapshot.due),
        snapshot.stability,
        snapshot.difficulty,
        snapshot.elapsed_days,
        snapshot.scheduled_days,
        snapshot.learning_steps,
        snapshot.reps,
        snapshot.lapses,
        snapshot.state.value,
        _ts(snapshot.last_review) if snapshot.last_review else None,
    )


async def create_card(
    db: aiosqlite.Connection,
    user_id: str,
    deck_id: str,
    data: dict[str, Any],
    snapshot: SchedulingSnapshot,
) -> Card:
    card_id = str(uuid.uuid4())
    now = _now()
    await db.execute(
        """INSERT INTO cards
           (id, deck_id, user_id, data, due, stability, difficulty, elapsed_days,
            scheduled_days, learning_steps, reps, lapses, state, last_review,
            created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (card_id, deck_id, user_id, json.dumps(data), *_snapshot_params(snapshot), now, now),
    )
    await db.commit()
    return await get_card(db, user_id, deck_id, card_id)  # type: ignore[return-value]


async def get_card_row(
    db: aiosqlite.Connection, user_id: str, deck_id: str, card_id: str
) -> aiosqlite.Row | None:
    cursor = await db.execute(
        "SELECT * FROM cards WHERE id = ? AND deck_id = ? AND user_id = ?",
        (card_id, deck_id, user_id),
    )
    return await cursor.fetchone()


async def get_card(
    db: aiosqlite.Connection, user_id: str, deck_id: str, card_id: str
) -> Card | None:
    row = await get_card_row(db, user_id, deck_id, card_id)
    return _row_to_card(row) if row else None


async def list_cards(db: aiosqlite.Connection, user_id: str, deck_id: str) -> list[Card]:
    cursor = await db.execute(
        "SELECT * FROM cards WHERE deck_id = ? AND user_id = ? ORDER BY created_at ASC",
        (deck_id, user_id),
    )
    rows = await cursor.fetchall()
    return [_row_to_card(r) for r in rows]


async def list_due_cards(
    db: aiosqlite.Connection,
    user_id: str,
    deck_id: str,
    now: datetime,
    limit: int = 20,
) -> list[Card]:
    """Cards whose due time has passed, most overdue first."""
    cursor = await db.execute(
        """SELECT * FROM cards
           WHERE deck_id = ? AND user_id = ? AND due <= ?
           ORDER BY due ASC
           LIMIT ?""",
        (deck_id, user_id, _ts(now), limit),
    )
    rows = await cursor.fetchall()
    return [_row_to_card(r) for r in rows]


async def update_card_data(
    db: aiosqlite.Connection,
    user_id: str,
    deck_id: str,
    card_id: str,
    data: dict[str, Any],
) -> Card | None:
    """Replace the card payload. The scheduling snapshot is never touched here."""
    cursor = await db.execute(
        """UPDATE cards SET data = ?, updated_at = ?
           WHERE id = ? AND deck_id = ? AND user_id = ?""",
        (json.dumps(data), _now(), card_id, deck_id, user_id),
    )
    await db.commit()
    if cursor.rowcount == 0:
        return None
    return await get_card(db, user_id, deck_id, card_id)


async def delete_card(
    db: aiosqlite.Connection, user_id: str, deck_id: str, card_id: str
) -> bool:
    cursor = await db.execute(
        "DELETE FROM cards WHERE id = ? AND deck_id = ? AND user_id = ?",
        (card_id, deck_id, user_id),
    )
    await db.commit()
    return (cursor.rowcount or 0) > 0


# --- Reviews ---


async def save_review(
    db: aiosqlite.Connection,
    card_id: str,
    user_id: str,
    before: SchedulingSnapshot,
    after: SchedulingSnapshot,
    entry: ReviewLogEntry,
) -> str:
    """Write the post-review snapshot and append its log row. Returns the log id.

    Must run inside ``transaction``; nothing is committed here. The card update
    only applies if the stored snapshot still matches ``before``.
    """
    cursor = await db.execute(
        """UPDATE cards
           SET due = ?, stability = ?, difficulty = ?, elapsed_days = ?,
               scheduled_days = ?, learning_steps = ?, reps = ?, lapses = ?,
               state = ?, last_review = ?, updated_at = ?
           WHERE id = ? AND reps = ? AND last_review IS ?""",
        (
            *_snapshot_params(after),
            _now(),
            card_id,
            before.reps,
            _ts(before.last_review) if before.last_review else None,
        ),
    )
    if cursor.rowcount != 1:
        raise PersistenceConflictError(
            f"Card {card_id} changed while its review was being computed"
        )

    log_id = str(uuid.uuid4())
    await db.execute(
        """INSERT INTO review_logs
           (id, card_id, user_id, rating, state, due, stability, difficulty,
            elapsed_days, last_elapsed_days, scheduled_days, learning_steps, review)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            log_id,
            card_id,
            user_id,
            entry.rating.value,
            entry.state.value,
            _ts(entry.due),
            entry.stability,
            entry.difficulty,
            entry.elapsed_days,
            entry.last_elapsed_days,
            entry.scheduled_days,
            entry.learning_steps,
            _ts(entry.review),
        ),
    )
    return log_id


def _row_to_review_log(row: aiosqlite.Row) -> ReviewLog:
    d = dict(row)
    d["due"] = _parse_ts(d["due"])
    d["review"] = _parse_ts(d["review"])
    return ReviewLog(**d)


async def get_review_log(db: aiosqlite.Connection, log_id: str) -> ReviewLog | None:
    cursor = await db.execute("SELECT * FROM review_logs WHERE id = ?", (log_id,))
    row = await cursor.fetchone()
    return _row_to_review_log(row) if row else None


async def last_logged_elapsed_days(db: aiosqlite.Connection, card_id: str) -> int:
    """``elapsed_days`` of the card's most recent log entry, 0 if it has none."""
    cursor = await db.execute(
        """SELECT elapsed_days FROM review_logs WHERE card_id = ?
           ORDER BY review DESC, rowid DESC LIMIT 1""",
        (card_id,),
    )
    row = await cursor.fetchone()
    return row["elapsed_days"] if row else 0


async def list_review_logs(db: aiosqlite.Connection, card_id: str) -> list[ReviewLog]:
    cursor = await db.execute(
        "SELECT * FROM review_logs WHERE card_id = ? ORDER BY review ASC, rowid ASC",
        (card_id,),
    )
    rows = await cursor.fetchall()
    return [_row_to_review_log(r) for r in rows]
