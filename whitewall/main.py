"""FastAPI application entry point."""

import asyncio
import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from whitewall.config import settings
from whitewall.middleware import BodySizeLimitMiddleware, SecurityHeadersMiddleware
from whitewall.routers import feed, generate, simulate

logger = logging.getLogger(__name__)

SHUTDOWN_DRAIN_SECONDS = 30


async def _drain_live_runs(timeout: float = SHUTDOWN_DRAIN_SECONDS) -> None:
    """Give in-flight live runs a chance to record their decisions before exit."""
    from whitewall.services.orchestrator import _background_tasks

    pending = [t for t in _background_tasks if not t.done()]
    if not pending:
        return
    logger.info("Waiting for %d live run(s) to finish", len(pending))
    done, still_pending = await asyncio.wait(pending, timeout=timeout)
    for task in still_pending:
        task.cancel()
    if still_pending:
        logger.warning("Cancelled %d live run(s) at shutdown", len(still_pending))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown."""
    yield

    # Cleanup
    await _drain_live_runs()
    from whitewall.redis import redis_pool
    await redis_pool.disconnect()


app = FastAPI(
    title="Whitewall Verification Demo",
    description="Agent identity verification pipeline: simulated storylines, live runs, public feed",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS - restrict to configured origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Middleware (the last one added runs outermost)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(BodySizeLimitMiddleware, max_bytes=1_048_576)

# Routers
app.include_router(simulate.router)
app.include_router(generate.router)
app.include_router(feed.router)


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}
