"""Teamtask Core FastAPI application."""
import asyncio
import logging
from contextlib import asynccontextmanager
from http import HTTPStatus
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from ..activity import ActivityRecorder, purge_expired_activities
from ..config import Settings, get_settings
from ..database import build_engine, build_session_factory
from ..errors import DomainError
from ..mailer import EmailSender, LoggingEmailSender
from ..realtime import RealtimeHub
from .routers import activities, auth, projects, realtime, tasks, teams

logger = logging.getLogger("teamtask-core")


def _error_body(message: str, error: str, **extra) -> dict:
    return {"success": False, "message": message, "error": error, **extra}


def _purge_once(app: FastAPI) -> int:
    db = app.state.session_factory()
    try:
        return purge_expired_activities(db, app.state.settings.activity_retention_days)
    finally:
        db.close()


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Periodically delete activities past the retention window."""
    while True:
        await asyncio.sleep(interval)
        try:
            await run_in_threadpool(_purge_once, app)
        except Exception as e:
            logger.error(f"Activity purge failed: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    interval = app.state.settings.activity_purge_interval_seconds
    purge_task = None
    if interval > 0:
        purge_task = asyncio.create_task(_purge_loop(app, interval))
        logger.info(f"Activity purge scheduled every {interval}s")
    try:
        yield
    finally:
        if purge_task:
            purge_task.cancel()
            try:
                await purge_task
            except asyncio.CancelledError:
                pass


def register_exception_handlers(app: FastAPI) -> None:
    """Render every error as ``{"success": false, "message", "error"}``."""

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError):
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message, exc.error))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        try:
            phrase = HTTPStatus(exc.status_code).phrase
        except ValueError:
            phrase = "Error"
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(str(exc.detail), phrase),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")),
                "message": err.get("msg", "Invalid value"),
            }
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=422,
            content=_error_body("Validation error", "Validation Error", errors=errors),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(status_code=500, content=_error_body("Internal server error", "Internal Server Error"))


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    email_sender: Optional[EmailSender] = None,
) -> FastAPI:
    """
    Build the application and its shared services.

    Args:
        settings: Configuration (default: loaded from the environment)
        session_factory: Session factory (default: built from ``settings.database_url``)
        email_sender: Outgoing email collaborator (default: log only)

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()

    logging.basicConfig(
        level=settings.log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if settings.uses_placeholder_secrets:
        logger.warning(
            "JWT secrets are set to their placeholder defaults; "
            "set TEAMTASK_JWT_SECRET and TEAMTASK_JWT_REFRESH_SECRET before deploying"
        )

    if session_factory is None:
        engine = build_engine(settings.database_url, echo=settings.database_echo)
        session_factory = build_session_factory(engine)

    app = FastAPI(
        title="Teamtask Core API",
        description="Teams, projects and tasks with activity audit and realtime updates",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Shared services, created once before any request is handled
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.activity_recorder = ActivityRecorder(session_factory)
    app.state.realtime_hub = RealtimeHub()
    app.state.email_sender = email_sender or LoggingEmailSender()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Include all business logic routers with /api/v1 prefix
    app.include_router(auth.router, prefix="/api/v1/auth")
    app.include_router(teams.router, prefix="/api/v1/teams")
    app.include_router(projects.router, prefix="/api/v1/projects")
    app.include_router(tasks.router, prefix="/api/v1/tasks")
    app.include_router(activities.router, prefix="/api/v1/activities")
    app.include_router(realtime.router)

    @app.get("/")
    def root():
        """Root endpoint with server info."""
        return {
            "name": "Teamtask Core API",
            "version": __version__,
            "docs": "/docs",
            "realtime": "/ws",
        }

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    logger.info("Teamtask Core API initialized")
    return app


def run() -> None:
    """Console entry point: serve the application with uvicorn."""
    import uvicorn

    uvicorn.run("teamtask_core.api.main:create_app", factory=True, host="0.0.0.0", port=8000)
