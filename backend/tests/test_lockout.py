from datetime import timedelta

from karma_cms.models.auth import LoginCounter
from karma_cms.services.lockout import (
    ACCOUNT_SCOPE,
    IP_SCOPE,
    LockoutPolicy,
    check_lockout,
    purge_stale_counters,
    record_failed_attempt,
    reset_failed_attempts,
)

POLICY = LockoutPolicy(threshold=5, base_seconds=900, max_seconds=86400, window_seconds=3600)


def _fail(db, identifier, now, times=1, scope=ACCOUNT_SCOPE, policy=POLICY):
    status = None
    for _ in range(times):
        status = record_failed_attempt(db, scope, identifier, policy, now)
    db.commit()
    return status


def test_fifth_failure_locks_fourth_does_not(db, clock):
    fourth = _fail(db, "alice", clock(), times=4)
    assert fourth.locked is False
    assert fourth.failed_attempts == 4

    fifth = _fail(db, "alice", clock())
    assert fifth.locked is True
    assert fifth.failed_attempts == 5
    assert fifth.remaining_seconds == 900
    assert fifth.lockout_until == clock() + timedelta(seconds=900)


def test_lock_expires_exactly_at_lockout_until(db, clock):
    status = _fail(db, "alice", clock(), times=5)
    locked_until = status.lockout_until

    assert check_lockout(db, ACCOUNT_SCOPE, "alice", POLICY, locked_until - timedelta(milliseconds=1)).locked is True
    assert check_lockout(db, ACCOUNT_SCOPE, "alice", POLICY, locked_until).locked is False


def test_repeat_lockout_doubles_duration(db, clock):
    _fail(db, "alice", clock(), times=5)
    clock.advance(900)

    status = _fail(db, "alice", clock())

    assert status.locked is True
    assert status.remaining_seconds == 1800


def test_failures_while_locked_do_not_extend_lock(db, clock):
    first = _fail(db, "alice", clock(), times=5)
    clock.advance(60)

    again = _fail(db, "alice", clock(), times=3)

    assert again.lockout_until == first.lockout_until
    assert again.failed_attempts == 8


def test_lockout_duration_is_capped():
    assert POLICY.lockout_duration(1) == timedelta(seconds=900)
    assert POLICY.lockout_duration(3) == timedelta(seconds=3600)
    assert POLICY.lockout_duration(30) == timedelta(seconds=86400)


def test_counter_decays_after_window(db, clock):
    _fail(db, "alice", clock(), times=4)
    clock.advance(3601)

    assert check_lockout(db, ACCOUNT_SCOPE, "alice", POLICY, clock()).failed_attempts == 0

    status = _fail(db, "alice", clock())
    assert status.locked is False
    assert status.failed_attempts == 1


def test_reset_clears_counter(db, clock):
    _fail(db, "alice", clock(), times=5)

    reset_failed_attempts(db, ACCOUNT_SCOPE, "alice")
    db.commit()

    status = check_lockout(db, ACCOUNT_SCOPE, "alice", POLICY, clock())
    assert status.locked is False
    assert status.failed_attempts == 0


def test_ip_counter_trips_while_accounts_stay_open(db, clock):
    ip_policy = LockoutPolicy(threshold=20, base_seconds=900, max_seconds=86400, window_seconds=3600)
    now = clock()
    for index in range(20):
        record_failed_attempt(db, ACCOUNT_SCOPE, f"user{index}", POLICY, now)
        record_failed_attempt(db, IP_SCOPE, "198.51.100.7", ip_policy, now)
    db.commit()

    assert check_lockout(db, IP_SCOPE, "198.51.100.7", ip_policy, now).locked is True
    assert not any(
        check_lockout(db, ACCOUNT_SCOPE, f"user{index}", POLICY, now).locked for index in range(20)
    )


def test_unknown_key_is_unlocked(db, clock):
    status = check_lockout(db, IP_SCOPE, "192.0.2.1", POLICY, clock())

    assert status.locked is False
    assert status.failed_attempts == 0
    assert db.query(LoginCounter).count() == 0


def test_purge_keeps_locked_and_recent_counters(db, clock):
    _fail(db, "stale", clock(), times=1)
    long_policy = LockoutPolicy(threshold=5, base_seconds=7200, max_seconds=86400, window_seconds=3600)
    _fail(db, "locked", clock(), times=5, policy=long_policy)
    clock.advance(3601)
    _fail(db, "recent", clock(), times=1)

    removed = purge_stale_counters(db, clock(), 3600)
    db.commit()

    assert removed == 1
    remaining = {counter.key for counter in db.query(LoginCounter).all()}
    assert remaining == {"account:locked", "account:recent"}
