"""Signed admin session tokens (HS256 JWT).

The token names its session and user and carries an HMAC of the client IP and
the device fingerprint, so signature, expiry and binding can be checked before
the session store is consulted.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
import hashlib
import hmac
import uuid

from jose import JWTError, jwt

from karma_cms.config import Settings


class TokenError(Exception):
    """Token failed verification; ``reason`` is a validation code."""

    reason = "malformed"


class TokenExpired(TokenError):
    reason = "expired"


class TokenMalformed(TokenError):
    reason = "malformed"


@dataclass(frozen=True)
class SessionClaims:
    user_id: str
    session_id: str
    token_id: str
    ip_hash: str
    device_fingerprint: str
    expires_at: datetime


def ip_binding(ip_address: str, secret_key: str) -> str:
    """Keyed hash of the client IP; the raw address never enters the token."""
    return hmac.new(secret_key.encode("utf-8"), ip_address.encode("utf-8"), hashlib.sha256).hexdigest()[:32]


def hash_token(token: str) -> str:
    """Hash a session token before persisting or looking it up."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def encode_session_token(
    settings: Settings,
    user_id: str,
    session_id: str,
    ip_address: str,
    device_fingerprint: str,
    issued_at: datetime,
    expires_at: datetime,
) -> str:
    """Create a signed session token."""
    claims = {
        "sub": user_id,
        "sid": session_id,
        "jti": str(uuid.uuid4()),
        "iss": settings.token_issuer,
        "aud": settings.token_audience,
        "iat": issued_at,
        "exp": expires_at,
        "iph": ip_binding(ip_address, settings.secret_key),
        "dfp": device_fingerprint,
        "type": "admin_session",
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def decode_session_token(token: str, settings: Settings, now: datetime) -> SessionClaims:
    """Verify signature, issuer, audience and expiry against ``now``.

    Raises TokenExpired or TokenMalformed.
    """
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
            audience=settings.token_audience,
            issuer=settings.token_issuer,
            # Expiry is checked below against the injected clock
            options={"verify_exp": False},
        )
    except JWTError as exc:
        raise TokenMalformed(str(exc)) from exc

    if payload.get("type") != "admin_session":
        raise TokenMalformed("Invalid token type")

    user_id = payload.get("sub")
    session_id = payload.get("sid")
    exp = payload.get("exp")
    if not user_id or not session_id or not isinstance(exp, int):
        raise TokenMalformed("Missing required claims")

    expires_at = datetime.fromtimestamp(exp, timezone.utc).replace(tzinfo=None)
    if now >= expires_at:
        raise TokenExpired("Token expired")

    return SessionClaims(
        user_id=user_id,
        session_id=session_id,
        token_id=payload.get("jti", ""),
        ip_hash=payload.get("iph", ""),
        device_fingerprint=payload.get("dfp", ""),
        expires_at=expires_at,
    )
