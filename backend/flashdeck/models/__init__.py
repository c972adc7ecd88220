from flashdeck.models.card import (
    Card,
    CardCreate,
    CardList,
    CardPatch,
    CardUpdate,
    FsrsSnapshot,
    SnapshotOverride,
)
from flashdeck.models.deck import Deck, DeckCreate, DeckList, DeckUpdate
from flashdeck.models.review import (
    PreviewOutcome,
    ReviewLog,
    ReviewLogList,
    ReviewPreview,
    ReviewRequest,
    ReviewResult,
)

__all__ = [
    "Card",
    "CardCreate",
    "CardList",
    "CardPatch",
    "CardUpdate",
    "Deck",
    "DeckCreate",
    "DeckList",
    "DeckUpdate",
    "FsrsSnapshot",
    "PreviewOutcome",
    "ReviewLog",
    "ReviewLogList",
    "ReviewPreview",
    "ReviewRequest",
    "ReviewResult",
    "SnapshotOverride",
]
