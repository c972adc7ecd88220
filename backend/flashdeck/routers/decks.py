import aiosqlite
from fastapi import APIRouter, Depends

from flashdeck.db.sqlite import create_deck, delete_deck, get_db, get_deck, list_decks, update_deck
from flashdeck.errors import DeckNotFoundError
from flashdeck.models.deck import Deck, DeckCreate, DeckList, DeckUpdate

router = APIRouter()


@router.get("", response_model=DeckList)
async def list_user_decks(user_id: str, db: aiosqlite.Connection = Depends(get_db)):
    return DeckList(items=await list_decks(db, user_id))


@router.post("", response_model=Deck, status_code=201)
async def create_user_deck(
    user_id: str, body: DeckCreate, db: aiosqlite.Connection = Depends(get_db)
):
    return await create_deck(db, user_id, body)


@router.get("/{deck_id}", response_model=Deck)
async def get_user_deck(
    user_id: str, deck_id: str, db: aiosqlite.Connection = Depends(get_db)
):
    deck = await get_deck(db, user_id, deck_id)
    if not deck:
        raise DeckNotFoundError(f"Deck with id {deck_id} not found")
    return deck


@router.put("/{deck_id}", response_model=Deck)
async def update_user_deck(
    user_id: str,
    deck_id: str,
    body: DeckUpdate,
    db: aiosqlite.Connection = Depends(get_db),
):
    deck = await update_deck(db, user_id, deck_id, body)
    if not deck:
        raise DeckNotFoundError(f"Deck with id {deck_id} not found")
    return deck


@router.delete("/{deck_id}", status_code=204)
async def delete_user_deck(
    user_id: str, deck_id: str, db: aiosqlite.Connection = Depends(get_db)
) -> None:
    deleted = await delete_deck(db, user_id, deck_id)
    if not deleted:
        raise DeckNotFoundError(f"Deck with id {deck_id} not found")
