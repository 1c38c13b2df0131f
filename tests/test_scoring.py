"""
Popularity score components, composite and the scoring batch.
"""
from __future__ import annotations

import math
from datetime import date, datetime, timedelta, timezone

import pytest

from src.db.memory import MemoryRepository
from src.models import Mention
from src.ranking.scoring import (
    WEIGHTS,
    aggregate_mentions,
    bayesian_constant,
    completeness_component,
    composite_score,
    diversity_component,
    mention_component,
    recency_component,
    run_scoring,
)

NOW = datetime(2026, 6, 1, tzinfo=timezone.utc)


def test_weights_sum_to_one():
    assert math.fsum(WEIGHTS) == 1.0


def test_bayesian_constant_is_25th_percentile():
    assert bayesian_constant([1, 5, 10, 15, 20, 25, 30, 35, 40]) == 10
    assert bayesian_constant([40, 1, 35, 5, 30, 10, 25, 15, 20]) == 10


def test_bayesian_constant_edges():
    assert bayesian_constant([]) == 1
    assert bayesian_constant([7]) == 7
    assert bayesian_constant([0, 0, 0]) == 0


def test_mention_component_smoothing():
    # n=0 collapses to the neutral prior when C > 0
    assert mention_component(0, 40, 10) == pytest.approx(0.5)
    # the population max with a large sample approaches 1
    assert mention_component(40, 40, 10) == pytest.approx((1.0 * 40 + 0.5 * 10) / 50)
    assert mention_component(0, 0, 0) == 0.0


def test_mention_component_is_monotonic_in_count():
    values = [mention_component(n, 40, 10) for n in (1, 5, 10, 20, 40)]
    assert values == sorted(values)


def test_diversity_component_caps_at_four():
    assert diversity_component(0) == 0.0
    assert diversity_component(2) == 0.5
    assert diversity_component(4) == 1.0
    assert diversity_component(9) == 1.0


def test_recency_component():
    assert recency_component(NOW, NOW) == pytest.approx(1.0)
    assert recency_component(NOW - timedelta(days=180), NOW) == pytest.approx(math.exp(-1))
    assert recency_component(NOW - timedelta(days=360), NOW) == pytest.approx(math.exp(-2))
    assert recency_component(None, NOW) == 0.0


def test_recency_future_timestamp_clamps_to_now():
    assert recency_component(NOW + timedelta(days=3), NOW) == pytest.approx(1.0)


def test_completeness_component():
    repo = MemoryRepository()
    bare = repo.seed_place(name="x")
    full = repo.seed_place(
        name="x", address="서울 어딘가", phone="02-000-0000", tags=["수유실"], description="d"
    )
    blank = repo.seed_place(name="x", address="   ", tags=[])
    assert completeness_component(bare) == pytest.approx(0.2)
    assert completeness_component(full) == pytest.approx(1.0)
    assert completeness_component(blank) == pytest.approx(0.2)


def test_composite_score_is_on_0_100_scale():
    assert composite_score(mention=1, diversity=1, recency=1, completeness=1) == 100.0
    assert composite_score(mention=0, diversity=0, recency=0, completeness=0) == 0.0
    assert composite_score(mention=0.5, diversity=0.5, recency=0.5, completeness=0.5) == 50.0


def test_aggregate_mentions_prefers_post_date():
    ms = [
        Mention(place_id=1, source_type="naver_blog", collected_at=NOW, post_date=date(2026, 1, 1)),
        Mention(place_id=1, source_type="naver_cafe", collected_at=NOW - timedelta(days=200)),
        Mention(place_id=1, source_type="naver_blog", collected_at=NOW),
        Mention(place_id=2, source_type="tistory", collected_at=NOW),
    ]
    agg = aggregate_mentions(ms)
    assert agg[1].count == 3
    assert agg[1].distinct_sources == 2
    assert agg[1].latest == NOW
    assert agg[2].count == 1


def _seeded_repo() -> MemoryRepository:
    repo = MemoryRepository(clock=lambda: NOW - timedelta(days=30))
    for i, n in enumerate([0, 1, 3, 8], start=1):
        repo.seed_place(id=i, is_active=True, review_status="approved", name=f"p{i}", address="a")
        for j in range(n):
            repo.add_mention(
                Mention(place_id=i, source_type=f"s{j % 3}", collected_at=NOW - timedelta(days=j))
            )
    repo.seed_place(id=99, is_active=False, name="inactive")
    return repo


def test_run_scoring_updates_active_places_and_logs():
    repo = _seeded_repo()
    result = run_scoring(repo, now=NOW)

    assert result.places_count == 4
    assert result.updated == 4
    assert len(repo.scoring_logs) == 1
    row = repo.scoring_logs[0]
    assert row["places_count"] == 4
    assert row["bayesian_constant"] == 1
    assert 0.0 <= row["min_score"] <= row["avg_score"] <= row["max_score"] <= 100.0

    scores = {pid: repo.get_place(pid).popularity_score for pid in (1, 2, 3, 4)}
    assert scores[4] > scores[3] > scores[2] > scores[1]
    assert repo.get_place(99).popularity_score == 0.0


def test_run_scoring_is_idempotent():
    repo = _seeded_repo()
    run_scoring(repo, now=NOW)
    second = run_scoring(repo, now=NOW)
    assert second.updated == 0


def test_run_scoring_dry_run_writes_nothing():
    repo = _seeded_repo()
    result = run_scoring(repo, now=NOW, dry_run=True)
    assert result.updated == 4
    assert repo.scoring_logs == []
    assert all(p.popularity_score == 0.0 for p in repo.scan_places())


def test_place_without_mention_rows_uses_stored_aggregates():
    repo = MemoryRepository(clock=lambda: NOW)
    repo.seed_place(
        id=1, is_active=True, mention_count=5, source_count=2,
        last_mentioned_at=NOW - timedelta(days=10),
    )
    repo.seed_place(id=2, is_active=True, mention_count=0, source_count=0)
    run_scoring(repo, now=NOW)
    assert repo.get_place(1).popularity_score > repo.get_place(2).popularity_score
