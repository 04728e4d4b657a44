"""Admin authentication API endpoints."""
from datetime import datetime
import logging

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from karma_cms.api.cookies import clear_session_cookie, set_session_cookie
from karma_cms.api.deps import (
    get_auth_context,
    get_client_info,
    get_db,
    get_now,
    get_settings,
    require_csrf,
)
from karma_cms.clock import to_iso
from karma_cms.config import Settings
from karma_cms.errors import INVALID_CREDENTIALS, SecurityRejection, not_authenticated
from karma_cms.models.auth import AdminSession
from karma_cms.schemas.auth import (
    AdminLogin,
    AdminUserResponse,
    CsrfTokenResponse,
    LoginResponse,
    MessageResponse,
    SessionInfo,
    SessionList,
    SessionRenewed,
    SessionsTerminated,
    SessionStatus,
)
from karma_cms.services.client_info import ClientInfo
from karma_cms.services.credentials import account_identifier, authenticate, record_login
from karma_cms.services.csrf import generate_token, validate_token
from karma_cms.services.lockout import (
    ACCOUNT_SCOPE,
    IP_SCOPE,
    LockoutStatus,
    check_lockout,
    policy_for,
    record_failed_attempt,
    reset_failed_attempts,
)
from karma_cms.services.rate_limiter import apply_progressive_rate_limit, rate_limit_headers
from karma_cms.services.sessions import (
    AuthContext,
    create_session,
    list_user_sessions,
    renew_session,
    revoke_session,
    terminate_other_sessions,
    terminate_session,
    validate_session,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin-auth"])

RENEWAL_HEADERS = ("X-Session-Renewal-Needed", "X-Session-Time-Left")


def _locked_out(lockout: LockoutStatus) -> SecurityRejection:
    return SecurityRejection(
        status.HTTP_429_TOO_MANY_REQUESTS,
        "Too many failed login attempts. Please try again later.",
        extra={"lockoutUntil": to_iso(lockout.lockout_until)},
        headers={"Retry-After": str(lockout.remaining_seconds)},
    )


@router.post("/login", response_model=LoginResponse)
def login(
    credentials: AdminLogin,
    response: Response,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    client: ClientInfo = Depends(get_client_info),
    now: datetime = Depends(get_now),
):
    """Log in an admin and set the session cookie.

    Order: IP lockout, account lockout, progressive rate limit, credentials.
    Every failure path answers with the same body regardless of whether the
    username exists.
    """
    ip = client.ip_address
    username = credentials.username
    # Username and email share one account counter
    account = account_identifier(db, username)
    ip_policy = policy_for(IP_SCOPE, settings)
    account_policy = policy_for(ACCOUNT_SCOPE, settings)

    ip_lockout = check_lockout(db, IP_SCOPE, ip, ip_policy, now)
    if ip_lockout.locked:
        logger.warning(f"Login blocked: IP {ip} locked until {to_iso(ip_lockout.lockout_until)}")
        raise _locked_out(ip_lockout)

    account_lockout = check_lockout(db, ACCOUNT_SCOPE, account, account_policy, now)
    if account_lockout.locked:
        logger.warning(f"Login blocked: account {account} locked (attempt from {ip})")
        raise _locked_out(account_lockout)

    prior_failures = max(ip_lockout.failed_attempts, account_lockout.failed_attempts)
    rate = apply_progressive_rate_limit(db, ip, prior_failures, "login", now)
    db.commit()
    headers = rate_limit_headers(rate)
    if rate.limited:
        raise SecurityRejection(
            status.HTTP_429_TOO_MANY_REQUESTS,
            "Too many login attempts. Please try again later.",
            extra={"retryAfter": rate.retry_after},
            headers=headers,
        )

    user = authenticate(db, username, credentials.password)
    if user is None:
        record_failed_attempt(db, ACCOUNT_SCOPE, account, account_policy, now)
        record_failed_attempt(db, IP_SCOPE, ip, ip_policy, now)
        db.commit()
        logger.warning(f"Failed login for {username} from {ip}")
        raise SecurityRejection(status.HTTP_401_UNAUTHORIZED, INVALID_CREDENTIALS, headers=headers)

    reset_failed_attempts(db, ACCOUNT_SCOPE, user.username)
    reset_failed_attempts(db, IP_SCOPE, ip)
    issued = create_session(db, user, client, settings, now)
    record_login(user, now)
    db.commit()

    set_session_cookie(response, issued.token, issued.max_age, settings)
    response.headers.update(headers)
    logger.info(f"Admin {user.username} logged in from {ip}")

    return LoginResponse(user=AdminUserResponse.model_validate(user))


@router.post("/logout", response_model=MessageResponse)
def logout(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    client: ClientInfo = Depends(get_client_info),
    now: datetime = Depends(get_now),
):
    """Revoke the current session and clear the cookie.

    A live session must present its CSRF token. Without one there is nothing
    to revoke and the cookie is simply cleared.
    """
    token = request.cookies.get(settings.session_cookie_name)
    validation = validate_session(db, token, client, settings, now)

    if validation.valid:
        csrf_token = request.headers.get(settings.csrf_header_name)
        if not validate_token(
            validation.session.id,
            csrf_token,
            now,
            max_age_seconds=settings.csrf_token_ttl_seconds,
            secret_key=settings.secret_key,
        ):
            db.rollback()
            logger.warning(f"Logout refused: invalid CSRF token from {client.ip_address}")
            raise SecurityRejection(status.HTTP_403_FORBIDDEN, "Invalid CSRF token")
        revoke_session(db, token)
        logger.info(f"Admin {validation.user.username} logged out from {client.ip_address}")

    db.commit()
    clear_session_cookie(response, settings)
    return MessageResponse(message="Successfully logged out")


@router.get("/session", response_model=SessionStatus)
def session_status(context: AuthContext = Depends(get_auth_context)):
    """Who is logged in and how long the session has left."""
    return SessionStatus(
        user=AdminUserResponse(id=context.user_id, username=context.username, email=context.email),
        expiresAt=to_iso(context.expires_at),
        timeLeft=int(context.time_left),
        needsRenewal=context.needs_renewal,
        securityLevel=context.security_level,
    )


@router.post("/session/renew", response_model=SessionRenewed)
def renew(
    response: Response,
    context: AuthContext = Depends(require_csrf),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    now: datetime = Depends(get_now),
):
    """Rotate the session token and extend its expiry."""
    record = db.get(AdminSession, context.session_id)
    if record is None:
        raise not_authenticated(clear_cookie=(settings.session_cookie_name, settings.session_cookie_path))

    issued = renew_session(db, record, context.client, settings, now)
    db.commit()

    set_session_cookie(response, issued.token, issued.max_age, settings)
    for name in RENEWAL_HEADERS:
        if name in response.headers:
            del response.headers[name]

    return SessionRenewed(expiresAt=to_iso(issued.expires_at), maxAge=issued.max_age)


@router.get("/csrf-token", response_model=CsrfTokenResponse)
def csrf_token(
    context: AuthContext = Depends(get_auth_context),
    settings: Settings = Depends(get_settings),
    now: datetime = Depends(get_now),
):
    """Issue a CSRF token bound to the current session."""
    return CsrfTokenResponse(csrfToken=generate_token(context.session_id, now, secret_key=settings.secret_key))


@router.get("/sessions", response_model=SessionList)
def list_sessions(
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    """The current admin's sessions; ``current`` marks this one."""
    sessions = list_user_sessions(db, context.user_id)
    return SessionList(
        sessions=[
            SessionInfo(
                id=record.id,
                createdAt=record.created_at,
                expiresAt=record.expires_at,
                lastActivity=record.last_activity_at,
                ipAddress=record.ip_address,
                userAgent=record.user_agent,
                current=record.id == context.session_id,
            )
            for record in sessions
        ]
    )


@router.delete("/sessions", response_model=SessionsTerminated)
def end_other_sessions(
    context: AuthContext = Depends(require_csrf),
    db: Session = Depends(get_db),
):
    """End every session of the current admin except this one."""
    count = terminate_other_sessions(db, context.user_id, context.session_id)
    db.commit()
    return SessionsTerminated(terminatedCount=count)


@router.delete("/sessions/{session_id}", response_model=SessionsTerminated)
def end_session(
    session_id: str,
    response: Response,
    context: AuthContext = Depends(require_csrf),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """End one of the current admin's sessions.

    Ids that are unknown or belong to someone else end nothing and report a
    count of zero.
    """
    count = terminate_session(db, session_id, context.user_id)
    db.commit()
    if count and session_id == context.session_id:
        clear_session_cookie(response, settings)
    return SessionsTerminated(terminatedCount=count)
