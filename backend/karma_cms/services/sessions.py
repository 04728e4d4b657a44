"""Server-side admin sessions bound to signed bearer tokens.

Session lifecycle:
- Create: revoke every session of the user, then issue one new token and
  record (single active session per user)
- Validate: verify the token, then always confirm the backing record exists,
  has not expired and still matches the caller's IP/device binding
- Renew: rotate the token and extend expiry, capped by the maximum session age
- Revoke: delete records; revoking something already gone is a no-op
- Manage: a user can list their sessions and end any of them, or all but the
  current one

Expected failures come back as a negative ``SessionValidation`` with a reason
code. Store errors (``SQLAlchemyError``) propagate to the caller.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
import hmac
import logging
import uuid

from sqlalchemy.orm import Session

from karma_cms.clock import from_iso, to_iso
from karma_cms.config import Settings
from karma_cms.models.auth import AdminSession
from karma_cms.models.user import AdminUser
from karma_cms.services.client_info import ClientInfo
from karma_cms.services.tokens import (
    TokenError,
    decode_session_token,
    encode_session_token,
    hash_token,
    ip_binding,
)

logger = logging.getLogger(__name__)

NO_TOKEN = "no_token"
MALFORMED = "malformed"
EXPIRED = "expired"
IP_MISMATCH = "ip_mismatch"
DEVICE_MISMATCH = "device_mismatch"
REVOKED = "revoked"
NOT_FOUND = "not_found"
STORE_ERROR = "store_error"


@dataclass
class IssuedSession:
    token: str
    max_age: int
    expires_at: datetime
    session: AdminSession


@dataclass
class SessionValidation:
    valid: bool
    reason: str | None = None
    session: AdminSession | None = None
    user: AdminUser | None = None
    needs_renewal: bool = False
    time_left: float = 0.0
    security_level: str | None = None

    def to_context(self, client: ClientInfo) -> "AuthContext":
        return AuthContext(
            user_id=self.user.id,
            username=self.user.username,
            email=self.user.email,
            session_id=self.session.id,
            expires_at=from_iso(self.session.expires_at),
            time_left=self.time_left,
            needs_renewal=self.needs_renewal,
            security_level=self.security_level,
            client=client,
        )


@dataclass(frozen=True)
class AuthContext:
    """Who is making an admin request, derived once from a validated session."""

    user_id: str
    username: str
    email: str
    session_id: str
    expires_at: datetime
    time_left: float
    needs_renewal: bool
    security_level: str | None
    client: ClientInfo


def _rejected(reason: str, client: ClientInfo | None = None, user_id: str | None = None) -> SessionValidation:
    ip = client.ip_address if client else "unknown"
    logger.warning(f"Session validation failed: {reason} (ip={ip}, user_id={user_id})")
    return SessionValidation(valid=False, reason=reason)


def revoke_all_for_user(db: Session, user_id: str) -> int:
    """Delete every session of a user. Caller commits."""
    removed = db.query(AdminSession).filter(
        AdminSession.user_id == user_id
    ).delete(synchronize_session="fetch")
    if removed:
        logger.info(f"Revoked {removed} session(s) for user {user_id}")
    return removed


def revoke_session(db: Session, token: str | None) -> int:
    """Delete the session behind a token, if any. Caller commits."""
    if not token:
        return 0
    removed = db.query(AdminSession).filter(
        AdminSession.token_hash == hash_token(token)
    ).delete(synchronize_session="fetch")
    if removed:
        logger.info("Revoked session by token")
    return removed


def list_user_sessions(db: Session, user_id: str) -> list[AdminSession]:
    """A user's sessions, most recently active first."""
    return (
        db.query(AdminSession)
        .filter(AdminSession.user_id == user_id)
        .order_by(AdminSession.last_activity_at.desc())
        .all()
    )


def terminate_session(db: Session, session_id: str, user_id: str) -> int:
    """Delete one session if it belongs to ``user_id``. Caller commits."""
    removed = db.query(AdminSession).filter(
        AdminSession.id == session_id,
        AdminSession.user_id == user_id,
    ).delete(synchronize_session="fetch")
    if removed:
        logger.info(f"Session {session_id} terminated by user {user_id}")
    elif db.get(AdminSession, session_id) is not None:
        logger.warning(f"User {user_id} tried to terminate session {session_id} of another user")
    return removed


def terminate_other_sessions(db: Session, user_id: str, current_session_id: str) -> int:
    """Delete every session of a user except the current one. Caller commits."""
    removed = db.query(AdminSession).filter(
        AdminSession.user_id == user_id,
        AdminSession.id != current_session_id,
    ).delete(synchronize_session="fetch")
    if removed:
        logger.info(f"Terminated {removed} other session(s) for user {user_id}")
    return removed


def create_session(
    db: Session,
    user: AdminUser,
    client: ClientInfo,
    settings: Settings,
    now: datetime,
) -> IssuedSession:
    """Issue a new session, replacing any the user already has.

    The delete and insert share the caller's transaction; the caller commits
    both at once.
    """
    revoke_all_for_user(db, user.id)

    session_id = str(uuid.uuid4())
    expires_at = now + timedelta(seconds=settings.session_ttl_seconds)
    token = encode_session_token(
        settings,
        user_id=user.id,
        session_id=session_id,
        ip_address=client.ip_address,
        device_fingerprint=client.device_fingerprint,
        issued_at=now,
        expires_at=expires_at,
    )

    record = AdminSession(
        id=session_id,
        user_id=user.id,
        token_hash=hash_token(token),
        created_at=to_iso(now),
        expires_at=to_iso(expires_at),
        last_activity_at=to_iso(now),
        ip_address=client.ip_address,
        user_agent=client.user_agent,
        device_fingerprint=client.device_fingerprint,
        security_level=settings.session_security_level,
    )
    db.add(record)
    db.flush()

    logger.info(f"Session created for user {user.id} ({user.username}) from {client.ip_address}")
    return IssuedSession(
        token=token,
        max_age=settings.session_ttl_seconds,
        expires_at=expires_at,
        session=record,
    )


def _binding_mismatch(claims, client: ClientInfo, settings: Settings) -> str | None:
    """Return a mismatch reason, or None when the binding holds."""
    level = settings.session_security_level
    if level == "strict":
        expected_ip = ip_binding(client.ip_address, settings.secret_key)
        if not hmac.compare_digest(claims.ip_hash.encode("utf-8"), expected_ip.encode("utf-8")):
            return IP_MISMATCH
    if level in ("strict", "standard"):
        if not hmac.compare_digest(
            claims.device_fingerprint.encode("utf-8"),
            client.device_fingerprint.encode("utf-8"),
        ):
            return DEVICE_MISMATCH
    return None


def validate_session(
    db: Session,
    token: str | None,
    client: ClientInfo,
    settings: Settings,
    now: datetime,
) -> SessionValidation:
    """Validate a bearer token against its signature and the session store."""
    if not token:
        return SessionValidation(valid=False, reason=NO_TOKEN)

    try:
        claims = decode_session_token(token, settings, now)
    except TokenError as exc:
        return _rejected(exc.reason, client)

    record = db.query(AdminSession).filter(
        AdminSession.token_hash == hash_token(token)
    ).first()
    if record is None:
        return _rejected(REVOKED, client, claims.user_id)
    if record.id != claims.session_id or record.user_id != claims.user_id:
        return _rejected(MALFORMED, client, claims.user_id)

    expires_at = from_iso(record.expires_at)
    created_at = from_iso(record.created_at)
    if now >= expires_at:
        return _rejected(EXPIRED, client, record.user_id)
    if now - created_at > timedelta(seconds=settings.session_max_age_seconds):
        return _rejected(EXPIRED, client, record.user_id)

    mismatch = _binding_mismatch(claims, client, settings)
    if mismatch:
        return _rejected(mismatch, client, record.user_id)

    user = db.get(AdminUser, record.user_id)
    if user is None:
        return _rejected(NOT_FOUND, client, record.user_id)

    time_left = (expires_at - now).total_seconds()
    record.last_activity_at = to_iso(now)
    db.flush()

    return SessionValidation(
        valid=True,
        session=record,
        user=user,
        needs_renewal=time_left < settings.session_renew_threshold_seconds,
        time_left=time_left,
        security_level=settings.session_security_level,
    )


def renew_session(
    db: Session,
    record: AdminSession,
    client: ClientInfo,
    settings: Settings,
    now: datetime,
) -> IssuedSession:
    """Rotate a live session's token and push back its expiry. Caller commits."""
    created_at = from_iso(record.created_at)
    hard_limit = created_at + timedelta(seconds=settings.session_max_age_seconds)
    expires_at = min(now + timedelta(seconds=settings.session_ttl_seconds), hard_limit)

    token = encode_session_token(
        settings,
        user_id=record.user_id,
        session_id=record.id,
        ip_address=client.ip_address,
        device_fingerprint=client.device_fingerprint,
        issued_at=now,
        expires_at=expires_at,
    )
    record.token_hash = hash_token(token)
    record.expires_at = to_iso(expires_at)
    record.last_activity_at = to_iso(now)
    record.ip_address = client.ip_address
    record.user_agent = client.user_agent
    record.device_fingerprint = client.device_fingerprint
    db.flush()

    logger.info(f"Session renewed for user {record.user_id} from {client.ip_address}")
    return IssuedSession(
        token=token,
        max_age=max(0, int((expires_at - now).total_seconds())),
        expires_at=expires_at,
        session=record,
    )


def purge_expired_sessions(db: Session, now: datetime) -> int:
    """Expiry sweep: delete sessions past their expiry. Caller commits."""
    removed = db.query(AdminSession).filter(
        AdminSession.expires_at <= to_iso(now)
    ).delete(synchronize_session=False)
    if removed:
        logger.info(f"Purged {removed} expired session(s)")
    return removed
