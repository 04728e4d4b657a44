"""Authentication/session and request-security models."""
import uuid

from sqlalchemy import Column, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from karma_cms.database import Base


class AdminSession(Base):
    """Server-side record backing a signed admin session token."""

    __tablename__ = "admin_sessions"
    __table_args__ = (
        Index("ix_admin_sessions_expires_at", "expires_at"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("admin_users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    created_at = Column(String(26), nullable=False)
    expires_at = Column(String(26), nullable=False)
    last_activity_at = Column(String(26))
    ip_address = Column(String(45))
    user_agent = Column(String(255))
    device_fingerprint = Column(String(64))
    security_level = Column(String(20), nullable=False, default="strict")

    user = relationship("AdminUser", back_populates="sessions")


class LoginCounter(Base):
    """Failed-login counter for one account or one client IP."""

    __tablename__ = "failed_login_counters"

    # "<scope>:<identifier>", e.g. "account:admin" or "ip:203.0.113.9"
    key = Column(String(300), primary_key=True)
    count = Column(Integer, nullable=False, default=0)
    lockout_count = Column(Integer, nullable=False, default=0)
    first_failure_at = Column(String(26))
    last_failure_at = Column(String(26))
    locked_until = Column(String(26))


class RateLimitBucket(Base):
    """Fixed-window request counter for one IP and route class."""

    __tablename__ = "rate_limit_buckets"

    # "<route_class>:<ip>"
    key = Column(String(300), primary_key=True)
    window_start = Column(String(26))
    count = Column(Integer, nullable=False, default=0)
    # Rule in force when the window opened
    request_limit = Column(Integer)
    window_seconds = Column(Integer)
