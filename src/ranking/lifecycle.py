# src/ranking/lifecycle.py
"""
Record lifecycle batches.

  auto-promote     pending records from a trusted source -> approved + active
  auto-deactivate  active records past their category TTL -> inactive

Untrusted pending records stay pending for manual review. Deactivated
records keep review_status=approved, so promotion never reactivates them.
Both batches are idempotent.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, FrozenSet, Optional

from ..config import DEFAULT_TRUSTED_SOURCES, Settings
from ..db.collection_logs import CollectorCounters, run_row, write_collection_log
from ..db.repository import Repository
from ..models import REVIEW_APPROVED, REVIEW_PENDING, Place

logger = logging.getLogger(__name__)

PROMOTE_COLLECTOR = "auto-promote"
DEACTIVATE_COLLECTOR = "auto-deactivate"

DEFAULT_TTL_DAYS = 180

CATEGORY_TTL_DAYS: Dict[str, int] = {
    "놀이": 90,
    "공원/놀이터": 180,
    "전시/체험": 180,
    "공연": 90,
    "동물/자연": 180,
    "식당/카페": 120,
    "도서관": 365,
    "수영/물놀이": 180,
    "문화행사": 90,
    "편의시설": 365,
}


@dataclass(frozen=True)
class LifecyclePolicy:
    trusted_sources: FrozenSet[str] = DEFAULT_TRUSTED_SOURCES
    ttl_days: Dict[str, int] = field(default_factory=lambda: dict(CATEGORY_TTL_DAYS))
    default_ttl_days: int = DEFAULT_TTL_DAYS
    places_per_district_top_n: int = 20

    @classmethod
    def from_settings(cls, settings: Settings) -> "LifecyclePolicy":
        return cls(
            trusted_sources=settings.trusted_sources,
            places_per_district_top_n=settings.places_per_district_top_n,
            default_ttl_days=settings.default_ttl_days,
        )

    def ttl_for(self, category: Optional[str]) -> int:
        return self.ttl_days.get(category or "", self.default_ttl_days)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _ms_since(t0: float) -> int:
    return int((time.monotonic() - t0) * 1000)


def is_expired(place: Place, policy: LifecyclePolicy, now: datetime) -> bool:
    """Expired once more than ttl days have passed since the last verification."""
    ref = place.last_verified_at or place.created_at
    if ref.tzinfo is None:
        ref = ref.replace(tzinfo=timezone.utc)
    return now - ref > timedelta(days=policy.ttl_for(place.category))


def run_auto_promotion(
    repo: Repository,
    policy: LifecyclePolicy,
    *,
    dry_run: bool = False,
) -> CollectorCounters:
    """
    results_count = pending records scanned, new_events = promoted,
    duplicates = left pending (untrusted source).
    """
    t0 = time.monotonic()
    counters = CollectorCounters()

    for p in repo.scan_places(review_status=REVIEW_PENDING):
        counters.results_count += 1
        if p.source not in policy.trusted_sources:
            counters.duplicates += 1
            continue
        if dry_run:
            counters.new_events += 1
            continue
        try:
            repo.update_place(p.id, {"review_status": REVIEW_APPROVED, "is_active": True})
            counters.new_events += 1
        except Exception as e:
            counters.errors += 1
            logger.error("[lifecycle] promote failed id=%s: %s: %s", p.id, type(e).__name__, e)

    logger.info(
        "[lifecycle] auto-promote scanned=%d promoted=%d left_pending=%d errors=%d dry_run=%s",
        counters.results_count, counters.new_events, counters.duplicates, counters.errors, dry_run,
    )
    if not dry_run:
        write_collection_log(repo, run_row(PROMOTE_COLLECTOR, counters, _ms_since(t0)))
    return counters


def run_auto_deactivation(
    repo: Repository,
    policy: LifecyclePolicy,
    *,
    now: Optional[datetime] = None,
    dry_run: bool = False,
) -> CollectorCounters:
    """results_count = active records scanned, new_events = deactivated."""
    t0 = time.monotonic()
    now = now or _utc_now()
    counters = CollectorCounters()

    for p in repo.scan_places(active=True):
        counters.results_count += 1
        if not is_expired(p, policy, now):
            continue
        if dry_run:
            counters.new_events += 1
            continue
        try:
            repo.update_place(p.id, {"is_active": False})
            counters.new_events += 1
        except Exception as e:
            counters.errors += 1
            logger.error("[lifecycle] deactivate failed id=%s: %s: %s", p.id, type(e).__name__, e)

    logger.info(
        "[lifecycle] auto-deactivate scanned=%d deactivated=%d errors=%d dry_run=%s",
        counters.results_count, counters.new_events, counters.errors, dry_run,
    )
    if not dry_run:
        write_collection_log(repo, run_row(DEACTIVATE_COLLECTOR, counters, _ms_since(t0)))
    return counters
