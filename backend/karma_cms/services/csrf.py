"""Anti-forgery tokens bound to an admin session.

Token format: ``<nonce>.<issued epoch seconds>.<hex HMAC-SHA256>`` where the
HMAC covers the session id, the nonce and the issue time. Nothing is stored;
a token is only valid together with the session id it was minted for.
"""
from datetime import datetime
import hashlib
import hmac
import secrets

from karma_cms.clock import to_epoch_seconds
from karma_cms.config import get_settings


def _signing_key(secret_key: str) -> bytes:
    # Separate key so a CSRF token can never double as a session signature
    return hmac.new(secret_key.encode("utf-8"), b"karma-cms/csrf", hashlib.sha256).digest()


def _signature(key: bytes, session_id: str, nonce: str, issued: int) -> str:
    message = f"{session_id}\x00{nonce}\x00{issued}".encode("utf-8")
    return hmac.new(key, message, hashlib.sha256).hexdigest()


def generate_token(session_id: str, now: datetime, secret_key: str | None = None) -> str:
    """Issue a CSRF token for ``session_id``."""
    key = _signing_key(secret_key or get_settings().secret_key)
    nonce = secrets.token_hex(16)
    issued = to_epoch_seconds(now)
    return f"{nonce}.{issued}.{_signature(key, str(session_id), nonce, issued)}"


def validate_token(
    session_id: str,
    token: str | None,
    now: datetime,
    max_age_seconds: int | None = None,
    secret_key: str | None = None,
) -> bool:
    """Check a submitted token against the session it claims to belong to."""
    if not session_id or not token:
        return False

    parts = token.split(".")
    if len(parts) != 3:
        return False
    nonce, issued_raw, submitted = parts
    try:
        issued = int(issued_raw)
    except ValueError:
        return False

    if secret_key is None or max_age_seconds is None:
        settings = get_settings()
        secret_key = secret_key or settings.secret_key
        max_age_seconds = settings.csrf_token_ttl_seconds if max_age_seconds is None else max_age_seconds

    expected = _signature(_signing_key(secret_key), str(session_id), nonce, issued)
    if not hmac.compare_digest(expected.encode("utf-8"), submitted.encode("utf-8")):
        return False

    age = to_epoch_seconds(now) - issued
    return 0 <= age <= max_age_seconds
