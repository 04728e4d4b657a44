"""Account and IP lockout bookkeeping.

Two independent counters share one algorithm: one keyed by username (account
lockout) and one keyed by client IP (IP lockout), so a single IP spraying many
usernames trips the IP counter even when no account counter does.

- A failed attempt increments the counter. Reaching the threshold locks the
  key for ``base_seconds``, doubling with each repeat lockout up to
  ``max_seconds``.
- A counter that is not locked and whose first failure is older than the
  attempt window starts over.
- Expiry is lazy: a key is locked only while ``locked_until > now``.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
import math

from sqlalchemy import or_
from sqlalchemy.orm import Session

from karma_cms.clock import from_iso, to_iso
from karma_cms.config import Settings
from karma_cms.database import get_for_update
from karma_cms.models.auth import LoginCounter

logger = logging.getLogger(__name__)

ACCOUNT_SCOPE = "account"
IP_SCOPE = "ip"


@dataclass(frozen=True)
class LockoutPolicy:
    threshold: int
    base_seconds: int = 15 * 60
    max_seconds: int = 24 * 60 * 60
    window_seconds: int = 60 * 60

    def lockout_duration(self, lockout_count: int) -> timedelta:
        seconds = self.base_seconds * (2 ** max(lockout_count - 1, 0))
        return timedelta(seconds=min(seconds, self.max_seconds))


@dataclass(frozen=True)
class LockoutStatus:
    locked: bool
    failed_attempts: int = 0
    lockout_until: datetime | None = None
    remaining_seconds: int = 0


def policy_for(scope: str, settings: Settings) -> LockoutPolicy:
    threshold = settings.account_lockout_threshold if scope == ACCOUNT_SCOPE else settings.ip_lockout_threshold
    return LockoutPolicy(
        threshold=threshold,
        base_seconds=settings.lockout_base_seconds,
        max_seconds=settings.lockout_max_seconds,
        window_seconds=settings.failed_attempt_window_seconds,
    )


def counter_key(scope: str, identifier: str) -> str:
    if scope == ACCOUNT_SCOPE:
        identifier = identifier.strip().lower()
    return f"{scope}:{identifier}"


def _window_lapsed(counter: LoginCounter, policy: LockoutPolicy, now: datetime) -> bool:
    first_failure = from_iso(counter.first_failure_at)
    return first_failure is None or now - first_failure > timedelta(seconds=policy.window_seconds)


def _status(counter: LoginCounter | None, policy: LockoutPolicy, now: datetime) -> LockoutStatus:
    if counter is None:
        return LockoutStatus(locked=False)

    locked_until = from_iso(counter.locked_until)
    if locked_until is not None and locked_until > now:
        remaining = (locked_until - now).total_seconds()
        return LockoutStatus(
            locked=True,
            failed_attempts=counter.count,
            lockout_until=locked_until,
            remaining_seconds=math.ceil(remaining),
        )

    failed_attempts = 0 if _window_lapsed(counter, policy, now) else counter.count
    return LockoutStatus(locked=False, failed_attempts=failed_attempts)


def check_lockout(db: Session, scope: str, identifier: str, policy: LockoutPolicy, now: datetime) -> LockoutStatus:
    """Read-only lockout check for one key."""
    counter = db.get(LoginCounter, counter_key(scope, identifier))
    status = _status(counter, policy, now)
    if status.locked:
        logger.warning(
            f"{scope} lockout active for {identifier}: {status.failed_attempts} failures, "
            f"{status.remaining_seconds}s remaining"
        )
    return status


def record_failed_attempt(db: Session, scope: str, identifier: str, policy: LockoutPolicy, now: datetime) -> LockoutStatus:
    """Count one failed login against a key. Caller commits."""
    counter = get_for_update(db, LoginCounter, counter_key(scope, identifier), count=0, lockout_count=0)

    locked_until = from_iso(counter.locked_until)
    currently_locked = locked_until is not None and locked_until > now

    if not currently_locked and _window_lapsed(counter, policy, now):
        counter.count = 0
        counter.lockout_count = 0
        counter.first_failure_at = to_iso(now)
        counter.locked_until = None

    counter.count += 1
    counter.last_failure_at = to_iso(now)

    if counter.count >= policy.threshold and not currently_locked:
        counter.lockout_count += 1
        until = now + policy.lockout_duration(counter.lockout_count)
        counter.locked_until = to_iso(until)
        logger.warning(
            f"Locking {scope} {identifier} until {counter.locked_until} "
            f"after {counter.count} failed attempts (lockout #{counter.lockout_count})"
        )

    db.flush()
    return _status(counter, policy, now)


def reset_failed_attempts(db: Session, scope: str, identifier: str) -> None:
    """Clear the counter for a key after a successful login. Caller commits."""
    removed = db.query(LoginCounter).filter(
        LoginCounter.key == counter_key(scope, identifier)
    ).delete(synchronize_session=False)
    if removed:
        logger.info(f"Reset failed login attempts for {scope} {identifier}")


def purge_stale_counters(db: Session, now: datetime, window_seconds: int) -> int:
    """Delete unlocked counters with no failure inside the window."""
    cutoff = to_iso(now - timedelta(seconds=window_seconds))
    now_iso = to_iso(now)
    removed = db.query(LoginCounter).filter(
        LoginCounter.last_failure_at < cutoff,
        or_(LoginCounter.locked_until.is_(None), LoginCounter.locked_until <= now_iso),
    ).delete(synchronize_session=False)
    if removed:
        logger.info(f"Purged {removed} stale failed-login counters")
    return removed
