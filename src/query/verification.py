from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import BaseModel

from ..db.repository import Repository
from ..errors import QueryFailedError, QueryValidationError
from ..models import VerificationCheck

logger = logging.getLogger(__name__)

RECENT_WINDOW_DAYS = 90


class VerificationStatus(BaseModel):
    id: int
    is_recently_verified: bool
    last_verified_at: Optional[datetime] = None
    verification_count: int = 0


def _place_id(value: Any) -> int:
    try:
        pid = int(value)
    except (TypeError, ValueError) as e:
        raise QueryValidationError("id must be a positive integer") from e
    if pid <= 0:
        raise QueryValidationError("id must be a positive integer")
    return pid


def verification_status(
    repo: Repository,
    place_id: Any,
    *,
    now: Optional[datetime] = None,
) -> VerificationStatus:
    """
    Recently verified = at least one check in the last 90 days;
    last_verified_at is the newest such check. verification_count counts
    every check ever recorded for the place.
    """
    pid = _place_id(place_id)
    now = now or datetime.now(timezone.utc)
    try:
        count, latest = repo.verification_summary(pid, since=now - timedelta(days=RECENT_WINDOW_DAYS))
    except Exception as e:
        logger.error("[verification] storage failure id=%s: %s: %s", pid, type(e).__name__, e)
        raise QueryFailedError() from e
    return VerificationStatus(
        id=pid,
        is_recently_verified=latest is not None,
        last_verified_at=latest,
        verification_count=count,
    )


def record_verification(
    repo: Repository,
    place_id: Any,
    *,
    verified_at: Optional[datetime] = None,
    notes: Optional[str] = None,
) -> VerificationCheck:
    """Append a check; the place's last_verified_at moves forward with it."""
    pid = _place_id(place_id)
    check = VerificationCheck(
        place_id=pid,
        verified_at=verified_at or datetime.now(timezone.utc),
        notes=notes,
    )
    return repo.add_verification(check)
