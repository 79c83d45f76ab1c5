"""Leave Ledger — FastAPI Application Factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Query, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

import leave_ledger.models  # noqa: F401  (register every table on Base.metadata)
from leave_ledger.auth.service import TokenError, decode_access_token
from leave_ledger.common.events import notifier
from leave_ledger.common.exceptions import register_exception_handlers
from leave_ledger.common.rate_limit import limiter
from leave_ledger.config import settings
from leave_ledger.employees.router import router as employees_router
from leave_ledger.ledger.router import router as ledger_router
from leave_ledger.ledger.status import on_leave_cache
from leave_ledger.rollover.router import router as rollover_router

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    logger.info("Leave ledger started (%s)", settings.ENVIRONMENT)
    yield
    logger.info("Leave ledger stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging()

    app = FastAPI(
        title="Leave Ledger",
        description="Annual leave balances, history and leave-year rollover",
        version="1.0.0",
        docs_url="/api/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/api/redoc" if settings.ENVIRONMENT != "production" else None,
        lifespan=lifespan,
    )

    # Exception handlers (RFC 7807)
    register_exception_handlers(app)

    # Rate limiting (slowapi)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # On-leave cache follows every published change
    notifier.subscribe(on_leave_cache.handle_event)

    # Health check (no auth)
    @app.get("/api/v1/health", tags=["system"])
    async def health_check():
        return {
            "status": "healthy",
            "version": "1.0.0",
            "environment": settings.ENVIRONMENT,
        }

    # Change events
    @app.websocket("/api/v1/ws")
    async def change_events(websocket: WebSocket, token: str = Query(...)) -> None:
        """Push ``{channel, action, data}`` events to authenticated clients."""
        try:
            decode_access_token(token)
        except TokenError:
            await websocket.close(
                code=status.WS_1008_POLICY_VIOLATION,
                reason="Invalid or expired token",
            )
            return

        await notifier.connect(websocket)
        try:
            while True:
                # Clients may ping; nothing is read from them
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            await notifier.disconnect(websocket)

    # Register routers
    app.include_router(employees_router, prefix="/api/v1/employees", tags=["employees"])
    app.include_router(ledger_router, prefix="/api/v1/ledger", tags=["ledger"])
    app.include_router(rollover_router, prefix="/api/v1/rollover", tags=["rollover"])

    return app


app = create_app()
