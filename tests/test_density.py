"""
Per-district display cap.
"""
from __future__ import annotations

from src.db.memory import MemoryRepository
from src.ranking.density import COLLECTOR, eligibility_flags, run_density_control
from src.sources.adapters.kopis import parse_venue_district
from src.sources.adapters.seoul_events import row_to_record as seoul_row_to_record
from src.sources.adapters.tour_api import item_to_record as tour_item_to_record


def _repo_with_district(n: int, district: str = "서울특별시 강남구", start_id: int = 1) -> MemoryRepository:
    repo = MemoryRepository()
    for i in range(n):
        repo.seed_place(
            id=start_id + i,
            is_active=True,
            district_code=district,
            popularity_score=float(i % 7),
        )
    return repo


def test_at_most_top_n_per_district():
    repo = _repo_with_district(30)
    for i in range(5):
        repo.seed_place(id=100 + i, is_active=True, district_code="서울특별시 마포구", popularity_score=1.0)

    run_density_control(repo, top_n=20)

    eligible_gangnam = [p for p in repo.scan_places() if p.district_code.endswith("강남구") and p.is_display_eligible]
    eligible_mapo = [p for p in repo.scan_places() if p.district_code.endswith("마포구") and p.is_display_eligible]
    assert len(eligible_gangnam) == 20
    assert len(eligible_mapo) == 5


def test_cap_keeps_highest_score_then_highest_id():
    repo = MemoryRepository()
    repo.seed_place(id=1, is_active=True, district_code="d", popularity_score=10.0)
    repo.seed_place(id=2, is_active=True, district_code="d", popularity_score=10.0)
    repo.seed_place(id=3, is_active=True, district_code="d", popularity_score=50.0)

    flags = eligibility_flags(repo.scan_places(), top_n=2)
    assert flags == {3: True, 2: True, 1: False}


def test_places_without_district_stay_eligible():
    repo = MemoryRepository()
    for i in range(1, 6):
        repo.seed_place(id=i, is_active=True, district_code=None, popularity_score=0.0)
    flags = eligibility_flags(repo.scan_places(), top_n=1)
    assert all(flags.values())


def test_only_changed_flags_are_written_and_rerun_is_noop():
    repo = _repo_with_district(25)
    first = run_density_control(repo, top_n=20)
    assert first.changed == 5

    writes = []
    original = repo.update_place
    repo.update_place = lambda pid, fields: (writes.append(pid), original(pid, fields))  # type: ignore[method-assign]
    second = run_density_control(repo, top_n=20)
    assert second.changed == 0
    assert writes == []


def test_inactive_places_are_ignored():
    repo = _repo_with_district(3)
    repo.seed_place(id=50, is_active=False, district_code="서울특별시 강남구", popularity_score=99.0)
    run_density_control(repo, top_n=3)
    assert all(p.is_display_eligible for p in repo.scan_places(active=True))


def test_writes_density_log_row():
    repo = _repo_with_district(22)
    run_density_control(repo, top_n=20)
    assert repo.collection_logs[-1]["collector"] == COLLECTOR
    assert repo.collection_logs[-1]["new_events"] == 2
    assert repo.collection_logs[-1]["status"] == "success"


def test_dry_run_writes_nothing():
    repo = _repo_with_district(22)
    result = run_density_control(repo, top_n=20, dry_run=True)
    assert result.changed == 2
    assert repo.collection_logs == []
    assert all(p.is_display_eligible for p in repo.scan_places())


def test_same_district_from_different_sources_shares_one_cap():
    tour = tour_item_to_record(
        {"contentid": "1", "title": "t", "areacode": "1", "sigungucode": "1", "addr1": "서울특별시 강남구 삼성로 1"},
        12,
    )
    seoul = seoul_row_to_record({"TITLE": "s", "GUNAME": "강남구", "DATE": "2026-05-01"})
    kopis = parse_venue_district(
        "<dbs><db><fcltynm>강남 어린이극장</fcltynm><sidonm>서울</sidonm><gugunnm>강남구</gugunnm></db></dbs>",
        "강남 어린이극장",
    )
    assert tour.district_code == seoul.district_code == kopis == "서울특별시 강남구"

    repo = MemoryRepository()
    for i, district in enumerate([tour.district_code] * 25 + [seoul.district_code] * 25 + [kopis] * 25):
        repo.seed_place(id=i + 1, is_active=True, district_code=district, popularity_score=float(i))

    flags = eligibility_flags(repo.scan_places(active=True), top_n=20)
    assert sum(flags.values()) == 20
    # the 20 highest scores win regardless of source
    assert {pid for pid, ok in flags.items() if ok} == set(range(56, 76))
