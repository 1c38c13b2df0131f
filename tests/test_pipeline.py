"""
Ingestion coordinator.

Verifies:
  1. New items are inserted inactive + pending; re-runs are idempotent.
  2. A unique-index race on insert counts as a duplicate, not an error.
  3. A page failing after all retries fails only its partition.
  4. A missing credential writes a single status=error log row.
  5. Parallel partitions produce the same totals as sequential ones.
  6. The [collector][summary] line is printed once per run.
"""
from __future__ import annotations

import threading
from typing import Any, Dict, List

import pytest

from src.config import Settings
from src.db.memory import MemoryRepository
from src.errors import ConfigError, DuplicateKeyError, SourceFetchError
from src.models import PlaceRecord
from src.pipeline import fetch_with_retry, run_collector
from src.sources.base import BaseAdapter
from src.sources.types import FetchedPage, Partition


def _rec(source_id: str) -> PlaceRecord:
    return PlaceRecord(source="fake", source_id=source_id, name=f"item {source_id}", category="놀이")


class FakeAdapter(BaseAdapter):
    """
    Scripted adapter: script[partition_key][token] is a list of item ids, or
    an exception (raised on every attempt), or a list of outcomes consumed
    one per attempt when wrapped in a tuple.
    """

    collector = "fake"
    source = "fake"

    def __init__(self, settings: Settings, script: Dict[str, Dict[int, Any]], *, config_error: bool = False):
        super().__init__(settings)
        self.script = script
        self.config_error = config_error
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def check_config(self) -> None:
        if self.config_error:
            raise ConfigError("Missing env: FAKE_API_KEY")

    def partitions(self) -> List[Partition]:
        return [Partition(key=k) for k in self.script]

    def fetch_page(self, partition: Partition, page_token: Any) -> FetchedPage:
        with self._lock:
            self.calls.append((partition.key, page_token))
        pages = self.script[partition.key]
        outcome = pages[page_token]
        if isinstance(outcome, tuple):
            # one outcome per attempt
            outcome, rest = outcome[0], outcome[1:]
            pages[page_token] = rest if len(rest) > 1 else rest[0]
        if isinstance(outcome, Exception):
            raise outcome
        has_more = page_token + 1 in pages
        return FetchedPage(
            items=[_rec(i) for i in outcome],
            has_more=has_more,
            next_token=page_token + 1 if has_more else None,
            raw_count=len(outcome),
        )


def _no_sleep(_: float) -> None:
    return None


def _settings(**kw) -> Settings:
    kw.setdefault("fetch_retries", 3)
    return Settings(**kw)


def test_insert_then_rerun_is_idempotent():
    repo = MemoryRepository()
    script = {"p1": {1: ["a", "b"], 2: ["c"]}, "p2": {1: ["d"]}}

    first = run_collector(FakeAdapter(_settings(), {k: dict(v) for k, v in script.items()}), repo, _settings(), sleep=_no_sleep)
    assert first.counters.new_events == 4
    assert first.counters.duplicates == 0
    assert first.status == "success"

    inserted = repo.scan_places()
    assert len(inserted) == 4
    assert all(p.is_active is False and p.review_status == "pending" for p in inserted)
    assert all(p.popularity_score == 0.0 for p in inserted)

    second = run_collector(FakeAdapter(_settings(), {k: dict(v) for k, v in script.items()}), repo, _settings(), sleep=_no_sleep)
    assert second.counters.new_events == 0
    assert second.counters.duplicates == 4
    assert second.counters.results_count == 4
    assert len(repo.scan_places()) == 4

    assert [row["collector"] for row in repo.collection_logs] == ["fake", "fake"]
    assert repo.collection_logs[1]["new_events"] == 0
    assert repo.collection_logs[1]["duplicates"] == 4


def test_insert_race_counts_as_duplicate():
    repo = MemoryRepository()
    original_insert = repo.insert_place

    def racing_insert(record):
        # another worker inserted the same key between lookup and insert
        original_insert(record)
        raise DuplicateKeyError(record.source, record.source_id)

    repo.insert_place = racing_insert  # type: ignore[method-assign]
    result = run_collector(FakeAdapter(_settings(), {"p": {1: ["x"]}}), repo, _settings(), sleep=_no_sleep)

    assert result.counters.duplicates == 1
    assert result.counters.errors == 0
    assert result.status == "success"


def test_item_insert_error_is_counted_and_processing_continues():
    repo = MemoryRepository()
    original_insert = repo.insert_place

    def flaky_insert(record):
        if record.source_id == "bad":
            raise RuntimeError("boom")
        return original_insert(record)

    repo.insert_place = flaky_insert  # type: ignore[method-assign]
    result = run_collector(FakeAdapter(_settings(), {"p": {1: ["a", "bad", "c"]}}), repo, _settings(), sleep=_no_sleep)

    assert result.counters.new_events == 2
    assert result.counters.errors == 1
    # item errors do not fail the partition
    assert result.counters.partitions_failed == 0
    assert result.status == "partial"


def test_transient_fetch_error_is_retried():
    repo = MemoryRepository()
    script = {"p": {1: (SourceFetchError("503"), ["a"])}}
    adapter = FakeAdapter(_settings(), script)

    result = run_collector(adapter, repo, _settings(), sleep=_no_sleep)

    assert result.counters.new_events == 1
    assert result.counters.errors == 0
    assert adapter.calls == [("p", 1), ("p", 1)]


def test_fetch_with_retry_gives_up_after_tries():
    adapter = FakeAdapter(_settings(), {"p": {1: SourceFetchError("down")}})
    sleeps: List[float] = []
    with pytest.raises(SourceFetchError):
        fetch_with_retry(adapter, Partition(key="p"), 1, tries=3, sleep=sleeps.append)
    assert len(adapter.calls) == 3
    assert len(sleeps) == 2
    assert sleeps[1] > sleeps[0]


def test_failed_partition_does_not_stop_others():
    repo = MemoryRepository()
    script = {
        "broken": {1: ["b1"], 2: SourceFetchError("timeout")},
        "healthy": {1: ["h1", "h2"]},
    }
    result = run_collector(FakeAdapter(_settings(), script), repo, _settings(), sleep=_no_sleep)

    # rows stored before the failing page stay stored
    assert {p.source_id for p in repo.scan_places()} == {"b1", "h1", "h2"}
    assert result.counters.errors == 1
    assert result.counters.partitions_failed == 1
    assert result.status == "partial"
    assert repo.collection_logs[-1]["status"] == "partial"


def test_config_error_writes_single_error_row():
    repo = MemoryRepository()
    adapter = FakeAdapter(_settings(), {"p": {1: ["a"]}}, config_error=True)

    result = run_collector(adapter, repo, _settings(), sleep=_no_sleep)

    assert result.status == "error"
    assert adapter.calls == []
    assert len(repo.collection_logs) == 1
    row = repo.collection_logs[0]
    assert row["status"] == "error"
    assert row["error"] == "Missing env: FAKE_API_KEY"
    assert "duration_ms" in row
    assert "new_events" not in row


def test_parallel_partitions_match_sequential_totals():
    script = {f"p{i}": {1: [f"{i}-a", f"{i}-b"], 2: [f"{i}-c"]} for i in range(6)}

    seq_repo = MemoryRepository()
    seq = run_collector(
        FakeAdapter(_settings(), {k: dict(v) for k, v in script.items()}),
        seq_repo, _settings(collect_max_workers=1), sleep=_no_sleep,
    )
    par_repo = MemoryRepository()
    par = run_collector(
        FakeAdapter(_settings(), {k: dict(v) for k, v in script.items()}),
        par_repo, _settings(collect_max_workers=4), sleep=_no_sleep,
    )

    assert seq.counters == par.counters
    assert par.counters.new_events == 18
    assert len(par_repo.scan_places()) == 18


def test_summary_line_printed(capsys: pytest.CaptureFixture[str]):
    run_collector(FakeAdapter(_settings(), {"p": {1: ["a"]}}), MemoryRepository(), _settings(), sleep=_no_sleep)
    out = capsys.readouterr().out
    lines = [l for l in out.splitlines() if l.startswith("[collector][summary]")]
    assert len(lines) == 1
    assert "collector=fake" in lines[0]
    assert "new=1" in lines[0]


def test_log_write_failure_does_not_fail_run():
    repo = MemoryRepository()

    def broken_log(row):
        raise RuntimeError("logs table missing")

    repo.insert_collection_log = broken_log  # type: ignore[method-assign]
    result = run_collector(FakeAdapter(_settings(), {"p": {1: ["a"]}}), repo, _settings(), sleep=_no_sleep)
    assert result.counters.new_events == 1


class DroppingAdapter(FakeAdapter):
    """Reports more provider rows than usable records, like a feed with untitled rows."""

    def fetch_page(self, partition: Partition, page_token: Any) -> FetchedPage:
        page = super().fetch_page(partition, page_token)
        page.raw_count += 2
        return page


def test_summary_reports_raw_rows_and_failed_partitions(capsys: pytest.CaptureFixture[str]):
    script = {
        "ok": {1: ["a", "b"]},
        "down": {1: SourceFetchError("timeout")},
    }
    result = run_collector(DroppingAdapter(_settings(), script), MemoryRepository(), _settings(), sleep=_no_sleep)

    assert result.counters.raw_rows == 4
    assert result.counters.results_count == 2
    line = next(l for l in capsys.readouterr().out.splitlines() if l.startswith("[collector][summary]"))
    assert "partitions=2" in line
    assert "partitions_failed=1" in line
    assert "raw=4" in line
    assert "fetched=2" in line
