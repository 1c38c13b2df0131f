"""
Scheduled entry point.

  python -m src.run collect [--collector tour-api]   ingest one or all sources
  python -m src.run collect --collector blog-mentions  reverse-search blog mentions
  python -m src.run score                             promote, deactivate, score, density
  python -m src.run all                               collect + score

--dry-run: collectors write into an in-memory repository (nothing persisted);
batches compute changes against the database without writing.
"""
from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from .config import Settings
from .db.memory import MemoryRepository
from .db.repository import Repository
from .db.supabase_client import get_supabase_client
from .db.supabase_repository import SupabaseRepository
from .errors import ConfigError
from .mentions import COLLECTOR as MENTIONS_COLLECTOR, run_mention_collector
from .pipeline import run_collectors
from .ranking.density import run_density_control
from .ranking.lifecycle import LifecyclePolicy, run_auto_deactivation, run_auto_promotion
from .ranking.scoring import run_scoring
from .sources.registry import ADAPTERS, get_adapter

logger = logging.getLogger(__name__)


def _collect(settings: Settings, repo: Repository, names: List[str]) -> int:
    adapters = [get_adapter(n, settings) for n in names if n != MENTIONS_COLLECTOR]
    results = list(run_collectors(adapters, repo, settings).values())
    # mentions attach to stored places, so they run after the place sources
    if MENTIONS_COLLECTOR in names:
        results.append(run_mention_collector(repo, settings))
    return sum(1 for r in results if r.status == "error")


def _score(settings: Settings, repo: Repository, *, dry_run: bool) -> int:
    policy = LifecyclePolicy.from_settings(settings)
    promoted = run_auto_promotion(repo, policy, dry_run=dry_run)
    deactivated = run_auto_deactivation(repo, policy, dry_run=dry_run)
    scoring = run_scoring(repo, dry_run=dry_run)
    density = run_density_control(
        repo, top_n=policy.places_per_district_top_n, dry_run=dry_run
    )

    print(
        f"[run][summary] promoted={promoted.new_events}"
        f" deactivated={deactivated.new_events}"
        f" scored={scoring.places_count}"
        f" score_updates={scoring.updated}"
        f" density_changes={density.changed}"
        f" dry_run={dry_run}"
    )
    return promoted.errors + deactivated.errors


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Family places collectors and batches.")
    parser.add_argument("command", choices=["collect", "score", "all"])
    parser.add_argument(
        "--collector",
        choices=sorted([*ADAPTERS, MENTIONS_COLLECTOR]),
        help="Run a single collector (default: all).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Do not persist anything.",
    )
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    try:
        settings = Settings.from_env()
    except ConfigError as e:
        logger.error("[run] config error: %s", e)
        return 2

    names = [args.collector] if args.collector else [*ADAPTERS, MENTIONS_COLLECTOR]
    mode = "DRY RUN" if args.dry_run else "LIVE"
    print(f"[run] command={args.command} mode={mode}")

    def _db() -> Repository:
        return SupabaseRepository(get_supabase_client(settings))

    try:
        failures = 0
        if args.command in ("collect", "all"):
            collect_repo: Repository = MemoryRepository() if args.dry_run else _db()
            failures += _collect(settings, collect_repo, names)
        if args.command in ("score", "all"):
            failures += _score(settings, _db(), dry_run=args.dry_run)
    except ConfigError as e:
        logger.error("[run] config error: %s", e)
        return 2

    return 0 if failures == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
