"""
Great-circle distance and the nearest-facility query.
"""
from __future__ import annotations

import pytest

from src.db.memory import MemoryRepository
from src.errors import QueryFailedError, QueryValidationError
from src.geo import EARTH_RADIUS_M, BBox, great_circle_m
from src.query.nearest import MAX_RESULTS, nearest_facilities


def test_zero_distance():
    assert great_circle_m(37.5665, 126.978, 37.5665, 126.978) == 0.0


def test_one_degree_of_latitude():
    expected = EARTH_RADIUS_M * 3.141592653589793 / 180
    assert great_circle_m(37.0, 127.0, 38.0, 127.0) == pytest.approx(expected, rel=1e-9)


def test_seoul_to_busan_is_about_325km():
    d = great_circle_m(37.5665, 126.9780, 35.1796, 129.0756)
    assert 320_000 < d < 330_000


def test_symmetric():
    a = great_circle_m(37.5, 127.0, 37.6, 127.1)
    b = great_circle_m(37.6, 127.1, 37.5, 127.0)
    assert a == pytest.approx(b)


def test_bbox_around_and_contains():
    box = BBox.around(37.5, 127.0, 0.03)
    assert box.contains(37.52, 127.02)
    assert not box.contains(37.54, 127.0)
    assert not box.contains(None, 127.0)


def _repo() -> MemoryRepository:
    repo = MemoryRepository()
    base = dict(is_active=True, category="편의시설")
    repo.seed_place(id=1, lat=37.5010, lng=127.0000, tags=["수유실"], **base)
    repo.seed_place(id=2, lat=37.5020, lng=127.0000, tags=["기저귀교환대"], **base)
    repo.seed_place(id=3, lat=37.5005, lng=127.0000, tags=["주차"], **base)
    repo.seed_place(id=4, lat=37.5001, lng=127.0000, tags=["수유실"], is_active=False)
    repo.seed_place(id=5, lat=37.6000, lng=127.0000, tags=["수유실"], **base)  # outside ±0.03°
    for i in range(10, 20):
        repo.seed_place(id=i, lat=37.51 + (i - 10) * 0.001, lng=127.0, tags=["수유실", "기저귀교환대"], **base)
    return repo


def test_nearest_sorted_and_capped():
    items = nearest_facilities(_repo(), 37.5, 127.0)
    assert len(items) == MAX_RESULTS
    assert [i.id for i in items[:2]] == [1, 2]
    distances = [i.distance_m for i in items]
    assert distances == sorted(distances)


def test_nearest_by_type():
    items = nearest_facilities(_repo(), 37.5, 127.0, "diaper_station")
    assert items[0].id == 2
    assert all("기저귀교환대" in i.tags for i in items)


def test_nearest_excludes_inactive_and_untagged():
    ids = {i.id for i in nearest_facilities(_repo(), 37.5, 127.0)}
    assert 3 not in ids
    assert 4 not in ids
    assert 5 not in ids


def test_nearest_validation():
    repo = MemoryRepository()
    with pytest.raises(QueryValidationError):
        nearest_facilities(repo, None, 127.0)
    with pytest.raises(QueryValidationError):
        nearest_facilities(repo, 95.0, 127.0)
    with pytest.raises(QueryValidationError, match="type"):
        nearest_facilities(repo, 37.5, 127.0, "sandbox")


def test_nearest_storage_failure():
    repo = MemoryRepository()

    def broken(query):
        raise RuntimeError("boom")

    repo.list_places = broken  # type: ignore[method-assign]
    with pytest.raises(QueryFailedError):
        nearest_facilities(repo, 37.5, 127.0)
