"""Buck memory & learning service: FastAPI application."""

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI

from buck.api.v1.router import api_router
from buck.config import get_settings
from buck.core.logging import get_logger, setup_logging
from buck.core.middleware import ObservabilityMiddleware
from buck.core.sweeper import ExpirySweeper
from buck.services.conversation_memory import ConversationMemory
from buck.services.data_store import SqlDataStore
from buck.services.extraction import OpenAIExtractionOracle
from buck.services.pattern_learner import PatternLearner

logger = get_logger(__name__)


def expiry_job(memory: ConversationMemory, learner: PatternLearner) -> Callable[[], Awaitable[int]]:
    """One sweep over both stores. Returns the number of removed entries."""

    async def clean_expired_data() -> int:
        return memory.clean_expired_data() + await learner.clean_expired_data()

    return clean_expired_data


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    from buck.database import async_session_maker, engine

    settings = get_settings()
    memory = ConversationMemory()
    app.state.memory = memory
    learner = PatternLearner(
        memory,
        SqlDataStore(async_session_maker),
        oracle=OpenAIExtractionOracle(settings),
    )
    app.state.learner = learner

    sweeper = ExpirySweeper(
        expiry_job(memory, learner),
        interval=settings.memory_sweep_interval_seconds,
    )
    sweeper.start()
    logger.info("app_started", sweep_interval=settings.memory_sweep_interval_seconds)
    try:
        yield
    finally:
        await sweeper.stop()
        await engine.dispose()
        logger.info("app_stopped", sweeps=sweeper.runs)


def create_app() -> FastAPI:
    setup_logging()
    settings = get_settings()

    app = FastAPI(title=settings.assistant_name, debug=settings.debug, lifespan=lifespan)
    app.add_middleware(ObservabilityMiddleware)
    app.include_router(api_router, prefix="/api/v1")

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
