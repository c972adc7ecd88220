from __future__ import annotations

from datetime import datetime, timezone

from flashdeck.errors import InvalidSnapshotError
from flashdeck.models.card import SnapshotOverride
from flashdeck.scheduler import SchedulingSnapshot, State, as_utc
from flashdeck.scheduler.parameters import D_MAX, D_MIN


def initial_snapshot(
    override: SnapshotOverride | None = None, now: datetime | None = None
) -> SchedulingSnapshot:
    """Snapshot for a newly created card.

    Without an override this is a fresh New card due immediately. An override
    imports history from elsewhere; it must describe a state the scheduler
    could have produced.
    """
    now = as_utc(now) if now is not None else datetime.now(timezone.utc)
    snapshot = SchedulingSnapshot.new(now)
    if override is None:
        return snapshot

    changes = override.model_dump(exclude_none=True)
    for key in ("due", "last_review"):
        if key in changes:
            changes[key] = as_utc(changes[key])
    snapshot = snapshot.evolve(**changes)
    _check_imported(snapshot)
    return snapshot


def _check_imported(snapshot: SchedulingSnapshot) -> None:
    if snapshot.state is State.NEW:
        if snapshot.reps != 0 or snapshot.lapses != 0 or snapshot.last_review is not None:
            raise InvalidSnapshotError("A New card cannot have reviews, lapses or a last review")
        return

    if snapshot.last_review is None:
        raise InvalidSnapshotError(f"A {snapshot.state.value} card needs last_review")
    if snapshot.reps < 1:
        raise InvalidSnapshotError(f"A {snapshot.state.value} card needs reps >= 1")
    if snapshot.lapses > snapshot.reps:
        raise InvalidSnapshotError("lapses cannot exceed reps")
    if not snapshot.stability > 0:
        raise InvalidSnapshotError("stability must be positive once a card has been reviewed")
    if not D_MIN <= snapshot.difficulty <= D_MAX:
        raise InvalidSnapshotError(f"difficulty must be within [{D_MIN:g}, {D_MAX:g}]")
    if snapshot.due < snapshot.last_review:
        raise InvalidSnapshotError("due cannot be earlier than last_review")
    if snapshot.state is State.REVIEW and snapshot.learning_steps != 0:
        raise InvalidSnapshotError("A Review card has no pending learning steps")
