"""
Card routes, mounted under /users/{user_id}/decks/{deck_id}/cards.

Only the card payload is editable here; the scheduling snapshot changes
through the review routes alone.
"""
from __future__ import annotations

from datetime import datetime, timezone

import aiosqlite
from fastapi import APIRouter, Depends, Query

from flashdeck.db.sqlite import (
    create_card,
    delete_card,
    get_card,
    get_db,
    get_deck,
    list_cards,
    list_due_cards,
    update_card_data,
)
from flashdeck.errors import CardNotFoundError, DeckNotFoundError
from flashdeck.models.card import Card, CardCreate, CardList, CardPatch, CardUpdate
from flashdeck.services.cards import initial_snapshot

router = APIRouter()


def _not_found(card_id: str) -> CardNotFoundError:
    return CardNotFoundError(f"Card with id {card_id} not found")


@router.get("", response_model=CardList)
async def list_deck_cards(
    user_id: str, deck_id: str, db: aiosqlite.Connection = Depends(get_db)
) -> CardList:
    return CardList(items=await list_cards(db, user_id, deck_id))


@router.post("", response_model=Card, status_code=201)
async def add_card(
    user_id: str,
    deck_id: str,
    body: CardCreate,
    db: aiosqlite.Connection = Depends(get_db),
) -> Card:
    if not await get_deck(db, user_id, deck_id):
        raise DeckNotFoundError(f"Deck with id {deck_id} not found")
    snapshot = initial_snapshot(body.fsrs)
    return await create_card(db, user_id, deck_id, body.data, snapshot)


@router.get("/due", response_model=CardList)
async def due_cards(
    user_id: str,
    deck_id: str,
    limit: int = Query(default=20, ge=1, le=200),
    db: aiosqlite.Connection = Depends(get_db),
) -> CardList:
    """Cards due for review now, most overdue first."""
    items = await list_due_cards(
        db, user_id, deck_id, datetime.now(timezone.utc), limit=limit
    )
    return CardList(items=items)


@router.get("/{card_id}", response_model=Card)
async def get_deck_card(
    user_id: str, deck_id: str, card_id: str, db: aiosqlite.Connection = Depends(get_db)
) -> Card:
    card = await get_card(db, user_id, deck_id, card_id)
    if not card:
        raise _not_found(card_id)
    return card


@router.put("/{card_id}", response_model=Card)
async def replace_card(
    user_id: str,
    deck_id: str,
    card_id: str,
    body: CardUpdate,
    db: aiosqlite.Connection = Depends(get_db),
) -> Card:
    card = await update_card_data(db, user_id, deck_id, card_id, body.data)
    if not card:
        raise _not_found(card_id)
    return card


@router.patch("/{card_id}", response_model=Card)
async def patch_card(
    user_id: str,
    deck_id: str,
    card_id: str,
    body: CardPatch,
    db: aiosqlite.Connection = Depends(get_db),
) -> Card:
    if body.data is None:
        card = await get_card(db, user_id, deck_id, card_id)
    else:
        card = await update_card_data(db, user_id, deck_id, card_id, body.data)
    if not card:
        raise _not_found(card_id)
    return card


@router.delete("/{card_id}", status_code=204)
async def remove_card(
    user_id: str, deck_id: str, card_id: str, db: aiosqlite.Connection = Depends(get_db)
) -> None:
    deleted = await delete_card(db, user_id, deck_id, card_id)
    if not deleted:
        raise _not_found(card_id)
