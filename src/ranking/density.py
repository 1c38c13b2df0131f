# src/ranking/density.py
"""
Per-district display cap.

Within each district_code the top N active places by (score desc, id desc)
are display-eligible; the rest are hidden at low zoom. Places without a
district are never capped.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..db.collection_logs import CollectorCounters, run_row, write_collection_log
from ..db.repository import Repository
from ..models import Place

logger = logging.getLogger(__name__)

COLLECTOR = "density-control"
DEFAULT_TOP_N = 20


@dataclass
class DensityResult:
    places_count: int = 0
    districts: int = 0
    changed: int = 0
    eligible: int = 0


def eligibility_flags(places: List[Place], top_n: int) -> Dict[int, bool]:
    """{place_id: is_display_eligible} for the given active places."""
    groups: Dict[Optional[str], List[Place]] = {}
    for p in places:
        groups.setdefault(p.district_code or None, []).append(p)

    flags: Dict[int, bool] = {}
    for district, members in groups.items():
        if district is None:
            for p in members:
                flags[p.id] = True
            continue
        members.sort(key=lambda p: (p.popularity_score, p.id), reverse=True)
        for rank, p in enumerate(members):
            flags[p.id] = rank < top_n
    return flags


def run_density_control(
    repo: Repository,
    *,
    top_n: int = DEFAULT_TOP_N,
    dry_run: bool = False,
) -> DensityResult:
    t0 = time.monotonic()
    places = repo.scan_places(active=True)
    flags = eligibility_flags(places, top_n)

    counters = CollectorCounters(results_count=len(places))
    changed = 0
    for p in places:
        want = flags[p.id]
        if p.is_display_eligible == want:
            continue
        changed += 1
        if dry_run:
            continue
        try:
            repo.update_place(p.id, {"is_display_eligible": want})
            counters.new_events += 1
        except Exception as e:
            counters.errors += 1
            logger.error("[density] update failed id=%s: %s: %s", p.id, type(e).__name__, e)

    result = DensityResult(
        places_count=len(places),
        districts=len({p.district_code for p in places if p.district_code}),
        changed=changed,
        eligible=sum(1 for v in flags.values() if v),
    )
    logger.info(
        "[density] places=%d districts=%d eligible=%d changed=%d top_n=%d dry_run=%s",
        result.places_count, result.districts, result.eligible, changed, top_n, dry_run,
    )
    if not dry_run:
        write_collection_log(
            repo, run_row(COLLECTOR, counters, int((time.monotonic() - t0) * 1000))
        )
    return result
