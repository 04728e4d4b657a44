"""Admin namespace gate.

Every request under the admin page namespace, except the login page, is
evaluated into exactly one decision:

- ``Redirect``: no cookie, or the session failed validation (stale cookie is
  deleted); no session-bearing headers are emitted
- ``Reject``: the session store failed; fail closed with a generic 500
- ``Allow``: the request proceeds with an ``AuthContext`` attached to
  ``request.state`` and hardening (plus renewal hint) headers on the response
"""
from dataclasses import dataclass, field
from datetime import datetime
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.types import ASGIApp

from karma_cms.api.cookies import clear_session_cookie
from karma_cms.config import Settings
from karma_cms.middleware.security_headers import security_headers
from karma_cms.services.client_info import client_info_from_request
from karma_cms.services.sessions import (
    NO_TOKEN,
    STORE_ERROR,
    AuthContext,
    SessionValidation,
    validate_session,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Allow:
    context: AuthContext
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Redirect:
    location: str
    reason: str
    clear_cookie: bool = False


@dataclass(frozen=True)
class Reject:
    status_code: int
    error: str
    reason: str


GateDecision = Allow | Redirect | Reject


def renewal_headers(validation: SessionValidation) -> dict[str, str]:
    """Hint headers telling the client to refresh its session silently."""
    if not validation.needs_renewal:
        return {}
    return {
        "X-Session-Renewal-Needed": "true",
        "X-Session-Time-Left": str(max(0, int(validation.time_left))),
    }


def evaluate_admin_request(db: Session, request: Request, settings: Settings, now: datetime) -> GateDecision:
    """Decide what happens to one admin-namespace request."""
    client = client_info_from_request(request, settings)
    path = request.url.path
    token = request.cookies.get(settings.session_cookie_name)

    if not token:
        logger.warning(f"Admin gate: no session cookie for {path} from {client.ip_address}")
        return Redirect(location=settings.admin_login_path, reason=NO_TOKEN)

    try:
        validation = validate_session(db, token, client, settings, now)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"Admin gate: session store error for {path} from {client.ip_address}")
        return Reject(status_code=500, error="Authentication service error", reason=STORE_ERROR)

    if not validation.valid:
        logger.warning(f"Admin gate: session rejected ({validation.reason}) for {path} from {client.ip_address}")
        return Redirect(location=settings.admin_login_path, reason=validation.reason, clear_cookie=True)

    logger.info(
        f"Admin gate: session valid for {path} from {client.ip_address} "
        f"(user_id={validation.user.id}, security={validation.security_level})"
    )
    return Allow(
        context=validation.to_context(client),
        headers={**security_headers(settings), **renewal_headers(validation)},
    )


class AdminGateMiddleware(BaseHTTPMiddleware):
    """Apply ``evaluate_admin_request`` to the admin page namespace.

    Reads the session factory and clock from ``app.state``.

    Usage:
        app.add_middleware(AdminGateMiddleware, settings=settings)
    """

    def __init__(self, app: ASGIApp, settings: Settings):
        super().__init__(app)
        self.settings = settings

    def is_gated(self, path: str) -> bool:
        admin_path = self.settings.admin_path.rstrip("/")
        if path == self.settings.admin_login_path:
            return False
        return path == admin_path or path.startswith(admin_path + "/")

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self.is_gated(request.url.path):
            return await call_next(request)

        state = request.app.state
        now = state.clock()

        def evaluate() -> GateDecision:
            db = state.session_factory()
            try:
                return evaluate_admin_request(db, request, self.settings, now)
            finally:
                db.close()

        decision = await run_in_threadpool(evaluate)

        if isinstance(decision, Redirect):
            response = RedirectResponse(decision.location, status_code=303)
            if decision.clear_cookie:
                clear_session_cookie(response, self.settings)
            return response

        if isinstance(decision, Reject):
            return JSONResponse({"error": decision.error}, status_code=decision.status_code)

        request.state.auth_context = decision.context
        response = await call_next(request)
        for name, value in decision.headers.items():
            response.headers[name] = value
        return response
