import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from flashdeck.config import settings
from flashdeck.db import init_all_databases
from flashdeck.version import VERSION

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_all_databases(settings.data_dir)
    if settings.api_key is None:
        logger.warning("FLASHDECK_API_KEY is not set; API key checks are disabled")
    logger.info(
        "FlashDeck %s started (retention=%.2f, learning steps=%s min, relearning steps=%s min)",
        VERSION,
        settings.desired_retention,
        settings.learning_steps_minutes,
        settings.relearning_steps_minutes,
    )
    yield


def create_app() -> FastAPI:
    application = FastAPI(title="FlashDeck", version=VERSION, lifespan=lifespan)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from flashdeck.auth import require_api_key
    from flashdeck.errors import register_error_handlers
    from flashdeck.routers import cards, decks, health, review

    register_error_handlers(application)

    protected = [Depends(require_api_key)]
    application.include_router(health.router, tags=["health"])
    application.include_router(
        decks.router,
        prefix="/users/{user_id}/decks",
        tags=["decks"],
        dependencies=protected,
    )
    application.include_router(
        cards.router,
        prefix="/users/{user_id}/decks/{deck_id}/cards",
        tags=["cards"],
        dependencies=protected,
    )
    application.include_router(
        review.router,
        prefix="/users/{user_id}/decks/{deck_id}/cards",
        tags=["review"],
        dependencies=protected,
    )

    return application


app = create_app()
