# src/ranking/scoring.py
"""
Popularity score (v1).

Composite of four components, each in [0, 1]:

  mention       0.35  log-normalized mention count, Bayesian-smoothed toward 0.5
  diversity     0.25  distinct mention sources, capped at 4
  recency       0.25  exp(-days_since_latest_mention / 180)
  completeness  0.15  share of informative fields present

Stored as places.popularity_score = round(100 * composite, 4), range 0–100.
Written only by this module.
"""
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from datetime import date, datetime, time as dtime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from ..db.repository import Repository
from ..models import Mention, Place

logger = logging.getLogger(__name__)

WEIGHT_MENTION = 0.35
WEIGHT_DIVERSITY = 0.25
WEIGHT_RECENCY = 0.25
WEIGHT_COMPLETENESS = 0.15
WEIGHTS = (WEIGHT_MENTION, WEIGHT_DIVERSITY, WEIGHT_RECENCY, WEIGHT_COMPLETENESS)

NEUTRAL_PRIOR = 0.5
BAYES_PERCENTILE = 0.25
DIVERSITY_CAP = 4
RECENCY_HALF_SCALE_DAYS = 180.0

COMPLETENESS_FIELDS = ("name", "address", "phone", "tags", "description")


@dataclass(frozen=True)
class MentionStats:
    count: int
    distinct_sources: int
    latest: Optional[datetime]


@dataclass
class ScoringResult:
    places_count: int = 0
    updated: int = 0
    min_score: float = 0.0
    max_score: float = 0.0
    avg_score: float = 0.0
    bayesian_constant: int = 1
    duration_ms: int = 0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | date) -> datetime:
    if not isinstance(value, datetime):
        value = datetime.combine(value, dtime.min)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


# ============================================================
# Components
# ============================================================

def bayesian_constant(counts: Sequence[int]) -> int:
    """Mention count at index floor(N * 0.25) of the sorted population; 1 if empty."""
    if not counts:
        return 1
    ordered = sorted(counts)
    idx = min(len(ordered) - 1, max(0, math.floor(len(ordered) * BAYES_PERCENTILE)))
    return ordered[idx]


def mention_component(n: int, max_n: int, c: int) -> float:
    if n + c == 0:
        return 0.0
    norm = math.log1p(n) / math.log1p(max_n) if max_n > 0 else 0.0
    return (norm * n + NEUTRAL_PRIOR * c) / (n + c)


def diversity_component(distinct_sources: int) -> float:
    return min(max(distinct_sources, 0), DIVERSITY_CAP) / DIVERSITY_CAP


def recency_component(latest: Optional[datetime], now: datetime) -> float:
    if latest is None:
        return 0.0
    days = max(0.0, (now - _as_utc(latest)).total_seconds() / 86400.0)
    return math.exp(-days / RECENCY_HALF_SCALE_DAYS)


def completeness_component(place: Place) -> float:
    present = 0
    for name in COMPLETENESS_FIELDS:
        value = getattr(place, name, None)
        if isinstance(value, str):
            present += 1 if value.strip() else 0
        elif value:
            present += 1
    return present / len(COMPLETENESS_FIELDS)


def composite_score(
    *,
    mention: float,
    diversity: float,
    recency: float,
    completeness: float,
) -> float:
    """Weighted composite on the stored 0–100 scale."""
    raw = (
        WEIGHT_MENTION * mention
        + WEIGHT_DIVERSITY * diversity
        + WEIGHT_RECENCY * recency
        + WEIGHT_COMPLETENESS * completeness
    )
    return round(100.0 * raw, 4)


# ============================================================
# Aggregation
# ============================================================

def aggregate_mentions(mentions: Iterable[Mention]) -> Dict[int, MentionStats]:
    """
    Per-place count / distinct source_type / latest mention time.
    A mention's time is its post_date when known, else collected_at.
    """
    counts: Dict[int, int] = {}
    sources: Dict[int, set] = {}
    latest: Dict[int, datetime] = {}
    for m in mentions:
        counts[m.place_id] = counts.get(m.place_id, 0) + 1
        sources.setdefault(m.place_id, set()).add(m.source_type)
        ts = _as_utc(m.post_date) if m.post_date else _as_utc(m.collected_at)
        if m.place_id not in latest or ts > latest[m.place_id]:
            latest[m.place_id] = ts
    return {
        pid: MentionStats(count=counts[pid], distinct_sources=len(sources[pid]), latest=latest[pid])
        for pid in counts
    }


def stats_for(place: Place, aggregated: Dict[int, MentionStats]) -> MentionStats:
    """Mention rows win; places without rows keep their stored aggregates."""
    s = aggregated.get(place.id)
    if s is not None:
        return s
    return MentionStats(
        count=place.mention_count,
        distinct_sources=place.source_count,
        latest=place.last_mentioned_at,
    )


def score_places(
    places: Sequence[Place],
    aggregated: Dict[int, MentionStats],
    *,
    now: datetime,
) -> tuple[Dict[int, float], int]:
    """Score a population. Returns ({place_id: score}, bayesian_constant)."""
    stats = {p.id: stats_for(p, aggregated) for p in places}
    counts = [s.count for s in stats.values()]
    c = bayesian_constant(counts)
    max_n = max(counts) if counts else 0

    scores: Dict[int, float] = {}
    for p in places:
        s = stats[p.id]
        scores[p.id] = composite_score(
            mention=mention_component(s.count, max_n, c),
            diversity=diversity_component(s.distinct_sources),
            recency=recency_component(s.latest or p.created_at, now),
            completeness=completeness_component(p),
        )
    return scores, c


# ============================================================
# Batch
# ============================================================

def run_scoring(
    repo: Repository,
    *,
    now: Optional[datetime] = None,
    dry_run: bool = False,
) -> ScoringResult:
    """
    Recompute popularity_score for every active place.

    Only changed scores are written; re-running on unchanged inputs writes
    nothing. One scoring_logs row per (non-dry) run.
    """
    t0 = time.monotonic()
    now = now or _utc_now()

    places = repo.scan_places(active=True)
    aggregated = aggregate_mentions(repo.list_mentions())
    scores, c = score_places(places, aggregated, now=now)

    updated = 0
    for p in places:
        new_score = scores[p.id]
        if new_score == p.popularity_score:
            continue
        updated += 1
        if dry_run:
            continue
        repo.update_place(p.id, {"popularity_score": new_score})

    values: List[float] = list(scores.values())
    result = ScoringResult(
        places_count=len(places),
        updated=updated,
        min_score=min(values) if values else 0.0,
        max_score=max(values) if values else 0.0,
        avg_score=round(sum(values) / len(values), 4) if values else 0.0,
        bayesian_constant=c,
        duration_ms=int((time.monotonic() - t0) * 1000),
    )

    logger.info(
        "[scoring] places=%d updated=%d min=%.4f max=%.4f avg=%.4f C=%d dry_run=%s",
        result.places_count, result.updated, result.min_score,
        result.max_score, result.avg_score, c, dry_run,
    )

    if not dry_run:
        repo.insert_scoring_log({
            "places_count": result.places_count,
            "min_score": result.min_score,
            "max_score": result.max_score,
            "avg_score": result.avg_score,
            "bayesian_constant": result.bayesian_constant,
            "duration_ms": result.duration_ms,
        })

    return result
