from __future__ import annotations

import logging
import random
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, TypeVar

from .config import Settings
from .db.collection_logs import (
    CollectorCounters,
    error_row,
    run_row,
    write_collection_log,
)
from .db.repository import Repository
from .errors import ConfigError, DuplicateKeyError, SourceFetchError
from .models import PlaceRecord
from .sources.base import BaseAdapter
from .sources.types import FetchedPage, Partition

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CollectorResult:
    collector: str
    status: str
    counters: CollectorCounters
    duration_ms: int
    error: Optional[str] = None


def _ms_since(t0: float) -> int:
    return int((time.monotonic() - t0) * 1000)


def fetch_with_retry(
    adapter: BaseAdapter,
    partition: Partition,
    page_token: Any,
    *,
    tries: int,
    base_sleep: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
) -> FetchedPage:
    """
    Upstream APIs time out and 5xx under load.
    Wrap fetch_page with retry + exponential backoff.
    """
    return retry_fetch(
        lambda: adapter.fetch_page(partition, page_token),
        label=f"[{adapter.collector}] partition={partition.key} token={page_token}",
        tries=tries,
        base_sleep=base_sleep,
        sleep=sleep,
    )


def retry_fetch(
    fn: Callable[[], T],
    *,
    label: str,
    tries: int,
    base_sleep: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call fn, retrying SourceFetchError with exponential backoff."""
    last: Optional[SourceFetchError] = None
    for attempt in range(tries):
        try:
            return fn()
        except SourceFetchError as e:
            last = e
            if attempt + 1 >= tries:
                break
            delay = base_sleep * (2 ** attempt) + random.random() * 0.25
            logger.warning(
                "%s fetch failed attempt=%d/%d sleep=%.2fs: %s",
                label, attempt + 1, tries, delay, e,
            )
            sleep(delay)
    raise last  # type: ignore[misc]


def store_item(repo: Repository, record: PlaceRecord, counters: CollectorCounters) -> None:
    """Dedupe by natural key, insert if new. Never raises."""
    try:
        if repo.find_by_natural_key(record.source, record.source_id) is not None:
            counters.duplicates += 1
            return
        repo.insert_place(record)
        counters.new_events += 1
    except DuplicateKeyError:
        # concurrent insert won the race on the unique index
        counters.duplicates += 1
    except Exception as e:
        counters.errors += 1
        logger.error(
            "[pipeline] INSERT_ERROR source=%s source_id=%s | %s: %s",
            record.source, record.source_id, type(e).__name__, e,
        )


def scan_partition(
    adapter: BaseAdapter,
    partition: Partition,
    repo: Repository,
    settings: Settings,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> CollectorCounters:
    """
    Page through one partition. Page N+1 is fetched only after page N is
    stored. A page that still fails after retries ends the partition with
    one counted error; rows already stored stay stored.
    """
    counters = CollectorCounters()
    token = adapter.first_token
    pages = 0

    while True:
        try:
            page = fetch_with_retry(
                adapter, partition, token, tries=settings.fetch_retries, sleep=sleep
            )
        except SourceFetchError as e:
            counters.errors += 1
            counters.partitions_failed += 1
            logger.error(
                "[%s] partition failed partition=%s token=%s: %s",
                adapter.collector, partition.key, token, e,
            )
            return counters

        pages += 1
        counters.raw_rows += page.raw_count
        for record in page.items:
            if not record.source_id:
                logger.warning("[%s] skipping item without source_id: %r", adapter.collector, record.name)
                continue
            counters.results_count += 1
            store_item(repo, record, counters)

        if not page.has_more or page.next_token is None:
            break
        token = page.next_token

    logger.info(
        "[%s] partition done partition=%s pages=%d raw=%d fetched=%d new=%d dup=%d errors=%d",
        adapter.collector, partition.key, pages, counters.raw_rows, counters.results_count,
        counters.new_events, counters.duplicates, counters.errors,
    )
    return counters


def run_collector(
    adapter: BaseAdapter,
    repo: Repository,
    settings: Settings,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> CollectorResult:
    """
    Drive one adapter across all partitions and write one collection_logs row.

    With collect_max_workers > 1 partitions run on a bounded thread pool; each
    partition owns its counters and they are merged afterwards.
    """
    t0 = time.monotonic()
    collector = adapter.collector

    try:
        adapter.check_config()
        partitions = adapter.partitions()
    except ConfigError as e:
        duration_ms = _ms_since(t0)
        logger.error("[%s] config error: %s", collector, e)
        write_collection_log(repo, error_row(collector, str(e), duration_ms))
        return CollectorResult(
            collector=collector,
            status="error",
            counters=CollectorCounters(),
            duration_ms=duration_ms,
            error=str(e),
        )

    def _scan(p: Partition) -> CollectorCounters:
        return scan_partition(adapter, p, repo, settings, sleep=sleep)

    workers = max(1, min(settings.collect_max_workers, len(partitions) or 1))
    if workers == 1:
        per_partition: List[CollectorCounters] = [_scan(p) for p in partitions]
    else:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            per_partition = list(pool.map(_scan, partitions))

    total = CollectorCounters()
    for c in per_partition:
        total.merge(c)

    duration_ms = _ms_since(t0)
    write_collection_log(repo, run_row(collector, total, duration_ms))

    print(
        f"[collector][summary] collector={collector}"
        f" partitions={len(partitions)}"
        f" partitions_failed={total.partitions_failed}"
        f" raw={total.raw_rows}"
        f" fetched={total.results_count}"
        f" new={total.new_events}"
        f" duplicates={total.duplicates}"
        f" errors={total.errors}"
        f" status={total.status}"
        f" duration_ms={duration_ms}"
    )

    return CollectorResult(
        collector=collector,
        status=total.status,
        counters=total,
        duration_ms=duration_ms,
    )


def run_collectors(
    adapters: List[BaseAdapter],
    repo: Repository,
    settings: Settings,
) -> Dict[str, CollectorResult]:
    return {a.collector: run_collector(a, repo, settings) for a in adapters}
