from fastapi import APIRouter

from flashdeck.version import VERSION

router = APIRouter()


@router.get("/health")
async def health() -> dict:
    return {"status": "ok", "version": VERSION}
