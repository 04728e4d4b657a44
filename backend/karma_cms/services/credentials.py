"""Credential store: admin user lookup and password verification."""
from datetime import datetime
from functools import lru_cache
import logging
import secrets

import bcrypt
from sqlalchemy.orm import Session

from karma_cms.clock import to_iso
from karma_cms.models.user import AdminUser

logger = logging.getLogger(__name__)

BCRYPT_MAX_PASSWORD_BYTES = 72


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    password_bytes = plain_password.encode("utf-8")
    if len(password_bytes) > BCRYPT_MAX_PASSWORD_BYTES:
        # bcrypt only reads 72 bytes; longer input never matches a stored hash
        logger.warning("Password longer than 72 bytes rejected")
        return False
    try:
        return bcrypt.checkpw(password_bytes, hashed_password.encode("utf-8"))
    except ValueError:
        # Corrupt or non-bcrypt hash in the store
        logger.error("Stored password hash is not a valid bcrypt hash")
        return False


def get_password_hash(password: str) -> str:
    """Hash a password."""
    return bcrypt.hashpw(
        password.encode("utf-8"),
        bcrypt.gensalt(),
    ).decode("utf-8")


@lru_cache
def _dummy_hash() -> str:
    return get_password_hash(secrets.token_urlsafe(16))


def get_user_by_login(db: Session, login: str) -> AdminUser | None:
    """Find an admin by username or email."""
    return db.query(AdminUser).filter(
        (AdminUser.username == login) | (AdminUser.email == login)
    ).first()


def account_identifier(db: Session, login: str) -> str:
    """Lockout key for a login name: the username when the account exists."""
    user = get_user_by_login(db, login)
    return user.username if user else login


def authenticate(db: Session, username: str, password: str) -> AdminUser | None:
    """Return the user if the credentials match, otherwise None.

    A missing user still costs one bcrypt check so response timing does not
    reveal which usernames exist.
    """
    user = get_user_by_login(db, username)
    if user is None:
        verify_password(password, _dummy_hash())
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


def record_login(user: AdminUser, now: datetime) -> None:
    user.last_login_at = to_iso(now)


def create_admin_user(db: Session, username: str, email: str, password: str) -> AdminUser:
    """Provision an admin account. Caller commits."""
    user = AdminUser(
        username=username,
        email=email,
        password_hash=get_password_hash(password),
    )
    db.add(user)
    db.flush()
    logger.info(f"Created admin user {username}")
    return user


def ensure_bootstrap_admin(db: Session, username: str | None, email: str | None, password: str | None) -> AdminUser | None:
    """Create the first admin from settings if no admin exists yet."""
    if not (username and email and password):
        return None
    if db.query(AdminUser).first() is not None:
        return None
    return create_admin_user(db, username, email, password)
