"""Karma Training CMS - admin backend API."""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import sessionmaker

from karma_cms.api import admin_pages, auth, content
from karma_cms.clock import Clock, utcnow
from karma_cms.config import Settings, get_settings
from karma_cms.errors import SecurityRejection, security_rejection_handler, unhandled_exception_handler
from karma_cms.middleware.admin_gate import AdminGateMiddleware
from karma_cms.middleware.security_headers import SecurityHeadersMiddleware

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def run_startup_tasks(app: FastAPI) -> None:
    """Create tables, sweep expired security state and seed the first admin."""
    from karma_cms.database import Base, get_db_context

    # Import all models so they're registered with Base
    from karma_cms import models  # noqa: F401
    from karma_cms.services.credentials import ensure_bootstrap_admin
    from karma_cms.services.lockout import purge_stale_counters
    from karma_cms.services.rate_limiter import purge_expired_buckets
    from karma_cms.services.sessions import purge_expired_sessions

    settings = app.state.settings
    now = app.state.clock()

    with get_db_context(app.state.session_factory) as db:
        Base.metadata.create_all(bind=db.get_bind())
        purge_expired_sessions(db, now)
        purge_stale_counters(db, now, settings.failed_attempt_window_seconds)
        purge_expired_buckets(db, now)
        ensure_bootstrap_admin(
            db,
            settings.bootstrap_admin_username,
            settings.bootstrap_admin_email,
            settings.bootstrap_admin_password,
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    run_startup_tasks(app)
    logger.info(f"{app.state.settings.app_name} started ({app.state.settings.environment})")
    yield


def create_app(
    settings: Settings | None = None,
    session_factory: sessionmaker | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    """Build the application.

    Tests pass their own settings, session factory and clock; production uses
    the environment, the configured database and the wall clock.
    """
    settings = settings or get_settings()
    if session_factory is None:
        from karma_cms.database import SessionLocal

        session_factory = SessionLocal

    configure_logging(settings.log_level)

    app = FastAPI(
        title=settings.app_name,
        description="Content management backend for the Karma Training website",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.clock = clock or utcnow

    # Innermost first: the gate runs inside the header middleware
    app.add_middleware(AdminGateMiddleware, settings=settings)
    app.add_middleware(
        SecurityHeadersMiddleware,
        settings=settings,
        path_prefixes=(settings.admin_path, "/api/admin"),
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(SecurityRejection, security_rejection_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "app": settings.app_name}

    app.add_api_route(settings.admin_login_path, admin_pages.login_page, methods=["GET"], tags=["admin-pages"])
    app.include_router(admin_pages.router, prefix=settings.admin_path.rstrip("/"))
    app.include_router(auth.router, prefix="/api")
    app.include_router(content.router, prefix="/api")

    return app


app = create_app()
