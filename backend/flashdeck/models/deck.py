from pydantic import BaseModel, Field


class DeckCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None


class DeckUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None


class Deck(BaseModel):
    id: str
    user_id: str
    name: str
    description: str | None
    created_at: str
    updated_at: str


class DeckList(BaseModel):
    items: list[Deck]
