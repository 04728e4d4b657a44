"""Shared request dependencies."""
from collections.abc import Generator
from datetime import datetime
import logging

from fastapi import Depends, Request, Response, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from karma_cms.clock import Clock
from karma_cms.config import Settings
from karma_cms.errors import SecurityRejection, not_authenticated
from karma_cms.middleware.admin_gate import renewal_headers
from karma_cms.services.client_info import ClientInfo, client_info_from_request
from karma_cms.services.csrf import validate_token
from karma_cms.services.rate_limiter import apply_progressive_rate_limit, rate_limit_headers
from karma_cms.services.sessions import STORE_ERROR, AuthContext, validate_session

logger = logging.getLogger(__name__)

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def get_settings(request: Request) -> Settings:
    """Settings the running app was built with."""
    return request.app.state.settings


def get_db(request: Request) -> Generator[Session, None, None]:
    """Dependency that provides a database session."""
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_clock(request: Request) -> Clock:
    return request.app.state.clock


def get_now(clock: Clock = Depends(get_clock)) -> datetime:
    """One timestamp per request."""
    return clock()


def get_client_info(request: Request, settings: Settings = Depends(get_settings)) -> ClientInfo:
    return client_info_from_request(request, settings)


def enforce_rate_limit(
    db: Session,
    response: Response,
    client: ClientInfo,
    route_class: str,
    now: datetime,
    prior_failed_attempts: int = 0,
) -> None:
    """Consume one request for ``route_class`` or raise 429."""
    result = apply_progressive_rate_limit(db, client.ip_address, prior_failed_attempts, route_class, now)
    db.commit()
    headers = rate_limit_headers(result)
    if result.limited:
        raise SecurityRejection(
            status.HTTP_429_TOO_MANY_REQUESTS,
            "Too many requests",
            extra={"retryAfter": result.retry_after},
            headers=headers,
        )
    response.headers.update(headers)


def get_auth_context(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    client: ClientInfo = Depends(get_client_info),
    now: datetime = Depends(get_now),
) -> AuthContext:
    """Validate the admin session cookie once per request.

    Reuses the context the admin gate already attached, if any.
    """
    existing = getattr(request.state, "auth_context", None)
    if existing is not None:
        return existing

    token = request.cookies.get(settings.session_cookie_name)
    try:
        validation = validate_session(db, token, client, settings, now)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.error(
            f"{STORE_ERROR}: session validation failed for {request.url.path} from {client.ip_address}"
        )
        raise

    if not validation.valid:
        stale_cookie = (settings.session_cookie_name, settings.session_cookie_path) if token else None
        raise not_authenticated(clear_cookie=stale_cookie)

    enforce_rate_limit(db, response, client, "admin_api", now)
    response.headers.update(renewal_headers(validation))

    context = validation.to_context(client)
    request.state.auth_context = context
    return context


def require_csrf(
    request: Request,
    context: AuthContext = Depends(get_auth_context),
    settings: Settings = Depends(get_settings),
    now: datetime = Depends(get_now),
) -> AuthContext:
    """Authenticated context, plus a valid CSRF header on state-changing calls."""
    if request.method in SAFE_METHODS:
        return context

    token = request.headers.get(settings.csrf_header_name)
    if not validate_token(
        context.session_id,
        token,
        now,
        max_age_seconds=settings.csrf_token_ttl_seconds,
        secret_key=settings.secret_key,
    ):
        logger.warning(
            f"CSRF validation failed for {request.method} {request.url.path} "
            f"(user_id={context.user_id}, ip={context.client.ip_address})"
        )
        raise SecurityRejection(status.HTTP_403_FORBIDDEN, "Invalid CSRF token")
    return context
