from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from karma_cms import models  # noqa: F401
from karma_cms.database import Base
from karma_cms.models.auth import LoginCounter, RateLimitBucket
from karma_cms.services.lockout import ACCOUNT_SCOPE, LockoutPolicy, record_failed_attempt
from karma_cms.services.rate_limiter import apply_progressive_rate_limit

NOW = datetime(2026, 1, 5, 9, 0, 0)
IP = "203.0.113.10"
WORKERS = 8


@pytest.fixture
def file_session_factory(tmp_path):
    """Separate connections per thread against one on-disk database."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'counters.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


def _run_concurrently(session_factory, calls, operation):
    def worker(_):
        db = session_factory()
        try:
            result = operation(db)
            db.commit()
            return result
        finally:
            db.close()

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        return list(pool.map(worker, range(calls)))


def test_concurrent_failed_attempts_are_all_counted(file_session_factory):
    policy = LockoutPolicy(threshold=1000)

    _run_concurrently(
        file_session_factory,
        40,
        lambda db: record_failed_attempt(db, ACCOUNT_SCOPE, "admin", policy, NOW),
    )

    db = file_session_factory()
    try:
        assert db.get(LoginCounter, "account:admin").count == 40
    finally:
        db.close()


def test_concurrent_lockout_trips_exactly_once(file_session_factory):
    policy = LockoutPolicy(threshold=5)

    _run_concurrently(
        file_session_factory,
        12,
        lambda db: record_failed_attempt(db, ACCOUNT_SCOPE, "admin", policy, NOW),
    )

    db = file_session_factory()
    try:
        counter = db.get(LoginCounter, "account:admin")
        assert counter.count == 12
        assert counter.lockout_count == 1
    finally:
        db.close()


def test_concurrent_requests_are_all_counted(file_session_factory):
    results = _run_concurrently(
        file_session_factory,
        30,
        lambda db: apply_progressive_rate_limit(db, IP, 0, "admin_api", NOW),
    )

    assert not any(result.limited for result in results)
    db = file_session_factory()
    try:
        assert db.get(RateLimitBucket, f"admin_api:{IP}").count == 30
    finally:
        db.close()


def test_concurrent_requests_never_exceed_the_limit(file_session_factory):
    results = _run_concurrently(
        file_session_factory,
        20,
        lambda db: apply_progressive_rate_limit(db, IP, 0, "login", NOW),
    )

    assert sum(not result.limited for result in results) == 5
    db = file_session_factory()
    try:
        assert db.get(RateLimitBucket, f"login:{IP}").count == 5
    finally:
        db.close()
