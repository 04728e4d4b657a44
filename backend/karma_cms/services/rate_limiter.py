"""Progressive, database-backed request throttling.

Buckets are fixed windows keyed by route class and client IP. They live in the
database rather than process memory so every app instance sees the same
counts. The allowed count shrinks as the caller's recent failed logins grow.
The limit is chosen when a window opens and stays put until it closes.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
import math

from sqlalchemy.orm import Session

from karma_cms.clock import from_iso, to_epoch_seconds, to_iso, utcnow
from karma_cms.database import get_for_update
from karma_cms.models.auth import RateLimitBucket

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitRule:
    limit: int
    window_seconds: int
    description: str


RATE_LIMIT_RULES: dict[str, RateLimitRule] = {
    "login": RateLimitRule(5, 60 * 60, "Login attempts"),
    "password_reset": RateLimitRule(3, 60 * 60, "Password reset requests"),
    "admin_api": RateLimitRule(100, 60 * 60, "Admin API requests"),
    "public_api": RateLimitRule(60, 60, "Public API requests"),
    "contact_form": RateLimitRule(5, 60 * 60, "Contact form submissions"),
    "default": RateLimitRule(30, 60, "Default rate limit"),
}


@dataclass(frozen=True)
class RateLimitResult:
    limited: bool
    limit: int
    remaining: int
    reset_time: datetime
    retry_after: int = 0
    route_class: str = "default"


def get_rule(route_class: str) -> RateLimitRule:
    return RATE_LIMIT_RULES.get(route_class, RATE_LIMIT_RULES["default"])


def progressive_rule(rule: RateLimitRule, prior_failed_attempts: int) -> RateLimitRule:
    """Tighten a rule for callers with recent failures.

    Never increases the limit: 1-2 failures halve it (floor 2), 3 or more
    quarter it (floor 1) and double the window.
    """
    if prior_failed_attempts >= 3:
        return RateLimitRule(
            limit=min(rule.limit, max(1, rule.limit // 4)),
            window_seconds=rule.window_seconds * 2,
            description=f"Progressive {rule.description}",
        )
    if prior_failed_attempts >= 1:
        return RateLimitRule(
            limit=min(rule.limit, max(2, rule.limit // 2)),
            window_seconds=rule.window_seconds,
            description=f"Progressive {rule.description}",
        )
    return rule


def bucket_key(route_class: str, ip: str) -> str:
    return f"{route_class}:{ip}"


def apply_progressive_rate_limit(
    db: Session,
    ip: str,
    prior_failed_attempts: int = 0,
    route_class: str = "login",
    now: datetime | None = None,
) -> RateLimitResult:
    """Consume one request from the caller's bucket. Caller commits.

    Going over the limit is a normal outcome reported through ``limited``.
    """
    if now is None:
        now = utcnow()

    bucket = get_for_update(db, RateLimitBucket, bucket_key(route_class, ip), count=0)
    window_start = from_iso(bucket.window_start)
    if (
        window_start is None
        or bucket.request_limit is None
        or now >= window_start + timedelta(seconds=bucket.window_seconds)
    ):
        # The penalty is fixed when a window opens and holds until it closes
        rule = progressive_rule(get_rule(route_class), prior_failed_attempts)
        window_start = now
        bucket.window_start = to_iso(now)
        bucket.count = 0
        bucket.request_limit = rule.limit
        bucket.window_seconds = rule.window_seconds

    limit = bucket.request_limit
    reset_time = window_start + timedelta(seconds=bucket.window_seconds)

    if bucket.count >= limit:
        db.flush()
        retry_after = max(1, math.ceil((reset_time - now).total_seconds()))
        logger.warning(f"Rate limit hit for {ip} on {route_class}: {bucket.count}/{limit}, retry in {retry_after}s")
        return RateLimitResult(
            limited=True,
            limit=limit,
            remaining=0,
            reset_time=reset_time,
            retry_after=retry_after,
            route_class=route_class,
        )

    bucket.count += 1
    db.flush()
    return RateLimitResult(
        limited=False,
        limit=limit,
        remaining=limit - bucket.count,
        reset_time=reset_time,
        route_class=route_class,
    )


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(to_epoch_seconds(result.reset_time)),
    }
    if result.limited:
        headers["Retry-After"] = str(result.retry_after)
    return headers


def reset_rate_limit(db: Session, ip: str, route_class: str = "default") -> None:
    db.query(RateLimitBucket).filter(
        RateLimitBucket.key == bucket_key(route_class, ip)
    ).delete(synchronize_session=False)


def purge_expired_buckets(db: Session, now: datetime) -> int:
    """Delete buckets whose window ended at least one longest window ago."""
    longest = max(rule.window_seconds for rule in RATE_LIMIT_RULES.values()) * 2
    cutoff = to_iso(now - timedelta(seconds=longest))
    return db.query(RateLimitBucket).filter(
        RateLimitBucket.window_start < cutoff
    ).delete(synchronize_session=False)
