"""
Verification status (90-day window) and recording checks.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from src.db.memory import MemoryRepository
from src.errors import QueryValidationError
from src.query.verification import record_verification, verification_status

NOW = datetime(2026, 6, 1, tzinfo=timezone.utc)


def test_unverified_place():
    repo = MemoryRepository()
    repo.seed_place(id=1)
    status = verification_status(repo, 1, now=NOW)
    assert status.model_dump() == {
        "id": 1,
        "is_recently_verified": False,
        "last_verified_at": None,
        "verification_count": 0,
    }


def test_window_drives_status_count_is_lifetime():
    repo = MemoryRepository()
    repo.seed_place(id=1)
    record_verification(repo, 1, verified_at=NOW - timedelta(days=200))
    record_verification(repo, 1, verified_at=NOW - timedelta(days=30))
    record_verification(repo, 1, verified_at=NOW - timedelta(days=2))

    status = verification_status(repo, 1, now=NOW)
    assert status.is_recently_verified is True
    assert status.verification_count == 3
    assert status.last_verified_at == NOW - timedelta(days=2)


def test_only_old_checks_are_not_recent():
    repo = MemoryRepository()
    repo.seed_place(id=1)
    record_verification(repo, 1, verified_at=NOW - timedelta(days=91))
    status = verification_status(repo, 1, now=NOW)
    assert status.is_recently_verified is False
    assert status.verification_count == 1
    assert status.last_verified_at is None


def test_record_verification_advances_last_verified_at():
    repo = MemoryRepository()
    repo.seed_place(id=1)
    record_verification(repo, 1, verified_at=NOW - timedelta(days=1))
    assert repo.get_place(1).last_verified_at == NOW - timedelta(days=1)

    # an older check never moves it backwards
    record_verification(repo, 1, verified_at=NOW - timedelta(days=50))
    assert repo.get_place(1).last_verified_at == NOW - timedelta(days=1)


@pytest.mark.parametrize("bad", [0, -3, "abc", None, "1.5"])
def test_invalid_id(bad):
    with pytest.raises(QueryValidationError):
        verification_status(MemoryRepository(), bad)


def test_count_includes_checks_outside_window():
    repo = MemoryRepository()
    repo.seed_place(id=1)
    record_verification(repo, 1, verified_at=NOW - timedelta(days=200))
    record_verification(repo, 1, verified_at=NOW - timedelta(days=2))

    status = verification_status(repo, 1, now=NOW)
    assert status.verification_count == 2
    assert status.last_verified_at == NOW - timedelta(days=2)


def test_checks_on_other_places_are_not_counted():
    repo = MemoryRepository()
    repo.seed_place(id=1)
    repo.seed_place(id=2)
    record_verification(repo, 2, verified_at=NOW - timedelta(days=1))
    assert verification_status(repo, 1, now=NOW).verification_count == 0
