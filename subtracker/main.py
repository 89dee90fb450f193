"""
FastAPI application factory
"""
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from subtracker.api.v1 import reminders, subscriptions
from subtracker.application.scheduler import shutdown_scheduler, start_scheduler
from subtracker.config import get_settings
from subtracker.container import Container, build_container
from subtracker.domain.subscription import SubscriptionValidationError
from subtracker.infrastructure.db.session import check_db_connection

logger = logging.getLogger(__name__)


class ErrorLoggingMiddleware(BaseHTTPMiddleware):
    """Catches every unhandled exception, including sync routes."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            tb_str = traceback.format_exc()
            logger.error(f"\n{'='*60}\nERROR on {request.method} {request.url.path}\n{tb_str}{'='*60}")
            return Response(content=f"Internal Server Error: {exc}", status_code=500)


def create_app(container: Container | None = None, start_background: bool = True) -> FastAPI:
    """
    Application factory

    Args:
        container: pre-built container (tests); built from settings otherwise
        start_background: start the APScheduler jobs in the lifespan

    Returns:
        Настроенный FastAPI app
    """
    if container is None:
        settings = get_settings()
        logging.basicConfig(level=settings.LOG_LEVEL)
        container = build_container(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        container.store.load()
        if start_background:
            start_scheduler(container.scheduler, container.store, container.settings)
        try:
            yield
        finally:
            if start_background:
                shutdown_scheduler(container.scheduler)

    app = FastAPI(
        title="SubTracker",
        debug=container.settings.DEBUG,
        lifespan=lifespan,
    )
    app.state.container = container

    app.add_middleware(ErrorLoggingMiddleware)

    @app.exception_handler(SubscriptionValidationError)
    async def validation_error_handler(request: Request, exc: SubscriptionValidationError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    app.include_router(subscriptions.router)
    app.include_router(reminders.router)

    # Health checks
    @app.get("/health", response_class=PlainTextResponse, tags=["system"])
    def health():
        """Health check endpoint"""
        return "ok"

    @app.get("/ready", response_class=PlainTextResponse, tags=["system"])
    def ready():
        """Readiness check endpoint (проверяет доступность основной БД)"""
        check_db_connection(container.primary_engine)
        return "ok"

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "subtracker.main:create_app",
        factory=True,
        host="127.0.0.1",
        port=8000,
    )
