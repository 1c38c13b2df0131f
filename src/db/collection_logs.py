# src/db/collection_logs.py
"""
One row per collector run in public.collection_logs, plus the batch-job
rows (auto-promote, auto-deactivate, density-control) that reuse the table.

Pure observability: a failed log write is logged and never changes the
outcome of the run that produced it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict

from ..models import CollectionLogRow
from .repository import Repository

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_PARTIAL = "partial"
STATUS_ERROR = "error"


@dataclass
class CollectorCounters:
    results_count: int = 0
    new_events: int = 0
    duplicates: int = 0
    errors: int = 0
    # run-summary only, not persisted
    raw_rows: int = 0
    partitions_failed: int = 0

    def merge(self, other: "CollectorCounters") -> None:
        self.results_count += other.results_count
        self.raw_rows += other.raw_rows
        self.partitions_failed += other.partitions_failed
        self.new_events += other.new_events
        self.duplicates += other.duplicates
        self.errors += other.errors

    @property
    def status(self) -> str:
        return STATUS_PARTIAL if self.errors else STATUS_SUCCESS


def run_row(collector: str, counters: CollectorCounters, duration_ms: int) -> Dict[str, Any]:
    return CollectionLogRow(
        collector=collector,
        status=counters.status,
        results_count=counters.results_count,
        new_events=counters.new_events,
        duplicates=counters.duplicates,
        errors=counters.errors,
        duration_ms=duration_ms,
    ).to_row()


def error_row(collector: str, error: str, duration_ms: int) -> Dict[str, Any]:
    return CollectionLogRow(
        collector=collector,
        status=STATUS_ERROR,
        error=error,
        duration_ms=duration_ms,
    ).to_row()


def write_collection_log(repo: Repository, row: Dict[str, Any]) -> bool:
    """Insert the row. Returns False (and logs) on failure instead of raising."""
    try:
        repo.insert_collection_log(row)
        return True
    except Exception as e:
        logger.error(
            "[collection_logs] write failed collector=%s: %s: %s",
            row.get("collector"), type(e).__name__, e,
        )
        return False
