"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
lifespan events for database and board initialization, and the v1 API router.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.dealboard.api.middleware import LoggingMiddleware, configure_structlog
from src.dealboard.api.v1.router import router as v1_router
from src.dealboard.board import SQLStageStore, StageBoard
from src.dealboard.board.presets import build_board_config, build_hooks
from src.dealboard.config import Settings, get_settings
from src.dealboard.core.database import close_db, get_session, init_db
from src.dealboard.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry

log = structlog.get_logger(__name__)


async def build_boards(settings: Settings) -> dict[str, StageBoard]:
    """Create and load every enabled board.

    Each board is initialized independently: an unknown preset name or a
    failed initial load is logged and that board is skipped, so one broken
    board does not keep the others from serving.
    """
    boards: dict[str, StageBoard] = {}
    for name in settings.enabled_boards():
        try:
            config = build_board_config(name, settings)
            board = StageBoard(
                config,
                SQLStageStore(get_session, stage_field=config.stage_field),
                hooks=build_hooks(config, get_session),
            )
            await board.refresh()
            boards[name] = board
            log.info("boards.initialized", board=name, deals=len(board.state.snapshot))
        except Exception:
            log.warning("boards.init_failed", board=name, exc_info=True)
    return boards


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry and boards on startup, close on shutdown."""
    settings = get_settings()
    configure_structlog()
    await init_db()

    # Initialize Sentry if DSN is configured
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    app.state.boards = await build_boards(settings)

    yield

    # Let in-flight audit and notification tasks finish before the engine goes
    for name, board in app.state.boards.items():
        try:
            await board.aclose()
        except Exception:
            log.warning("boards.close_failed", board=name, exc_info=True)

    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Deal Board API",
        version="0.1.0",
        description="Kanban stage boards for partner deals with optimistic drag-and-drop",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
