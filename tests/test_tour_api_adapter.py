"""
Tour API adapter: category mapping, item normalization, page parsing.
"""
from __future__ import annotations

from unittest.mock import patch

import pytest

from src.config import Settings
from src.errors import ConfigError, SourceFetchError
from src.sources.adapters.tour_api import (
    TourApiAdapter,
    item_to_record,
    map_tour_category,
)
from src.sources.types import Partition


def _adapter(**kw) -> TourApiAdapter:
    return TourApiAdapter(Settings(tour_api_key="k", **kw))


def _partition(ct: int = 12, ac: int = 1) -> Partition:
    return Partition(key=f"contentTypeId={ct},areaCode={ac}", params={"contentTypeId": ct, "areaCode": ac})


def _item(**overrides) -> dict:
    item = {
        "contentid": "126508",
        "contenttypeid": "12",
        "title": "서울숲",
        "addr1": "서울특별시 성동구 뚝섬로 273",
        "areacode": "1",
        "sigungucode": "16",
        "mapx": "127.0374",
        "mapy": "37.5444",
        "cat1": "A01",
        "tel": "02-460-2905",
        "firstimage": "http://img/1.jpg",
    }
    item.update(overrides)
    return item


def _payload(items, total: int, code: str = "0000") -> dict:
    return {
        "response": {
            "header": {"resultCode": code, "resultMsg": "OK"},
            "body": {"items": {"item": items} if items is not None else "", "totalCount": total},
        }
    }


@pytest.mark.parametrize(
    "ct, cat1, expected",
    [
        (12, "A01", "동물/자연"),
        (12, "A02", "전시/체험"),
        (12, "A03", "놀이"),
        (12, "B02", "공원/놀이터"),
        ("14", None, "전시/체험"),
        (15, "A02", "문화행사"),
        (39, None, "식당/카페"),
        (99, None, "기타/행사"),
        (None, None, "기타/행사"),
    ],
)
def test_map_tour_category(ct, cat1, expected):
    assert map_tour_category(ct, cat1) == expected


def test_item_to_record_normalizes_fields():
    rec = item_to_record(_item(), 12)
    assert rec is not None
    assert rec.source == "tour_api"
    assert rec.source_id == "126508"
    assert rec.category == "동물/자연"
    assert rec.district_code == "서울특별시 성동구"
    assert rec.lat == pytest.approx(37.5444)
    assert rec.lng == pytest.approx(127.0374)
    assert rec.phone == "02-460-2905"
    assert rec.poster_url == "http://img/1.jpg"


def test_item_to_record_district_falls_back_to_address():
    rec = item_to_record(_item(areacode="", sigungucode=""), 12)
    assert rec.district_code == "서울특별시 성동구"


@pytest.mark.parametrize(
    "areacode, sigungucode, addr1, expected",
    [
        ("1", "1", "서울특별시 강남구 삼성로 1", "서울특별시 강남구"),
        ("31", "2", "경기도 고양시 일산동구 호수로 595", "경기도 고양시"),
        ("1", "99", "서울 마포구 월드컵로 240", "서울특별시 마포구"),
        ("39", "1", "제주특별자치도 제주시 1100로", "제주특별자치도 제주시"),
    ],
)
def test_item_to_record_district_uses_names_not_codes(areacode, sigungucode, addr1, expected):
    rec = item_to_record(_item(areacode=areacode, sigungucode=sigungucode, addr1=addr1), 12)
    assert rec.district_code == expected


def test_item_to_record_bad_dates_become_none():
    rec = item_to_record(_item(contenttypeid="15", eventstartdate="2026013", eventenddate="20260230"), 15)
    assert rec.start_date is None
    assert rec.end_date is None


def test_item_without_id_is_skipped():
    assert item_to_record(_item(contentid=""), 12) is None
    assert item_to_record(_item(title=None), 12) is None


def test_parse_page_has_more_until_total_count():
    a = _adapter()
    page = a.parse_page(_payload([_item()], total=250), _partition(), 2)
    assert page.has_more is True
    assert page.next_token == 3

    last = a.parse_page(_payload([_item()], total=250), _partition(), 3)
    assert last.has_more is False
    assert last.next_token is None


def test_parse_page_single_item_dict():
    page = _adapter().parse_page(_payload(_item(), total=1), _partition(), 1)
    assert len(page.items) == 1
    assert page.raw_count == 1


def test_parse_page_empty_items():
    page = _adapter().parse_page(_payload(None, total=0), _partition(), 1)
    assert page.items == []
    assert page.has_more is False


def test_parse_page_skips_invalid_items_but_counts_raw():
    page = _adapter().parse_page(_payload([_item(), _item(contentid="")], total=2), _partition(), 1)
    assert len(page.items) == 1
    assert page.raw_count == 2


def test_parse_page_error_code_raises():
    with pytest.raises(SourceFetchError):
        _adapter().parse_page(_payload([], total=0, code="30"), _partition(), 1)


def test_parse_page_malformed_raises():
    with pytest.raises(SourceFetchError):
        _adapter().parse_page({"oops": True}, _partition(), 1)


def test_partitions_cover_content_types_and_areas():
    keys = [p.key for p in _adapter().partitions()]
    assert len(keys) == 6
    assert "contentTypeId=12,areaCode=1" in keys
    assert "contentTypeId=15,areaCode=31" in keys


def test_check_config_requires_key():
    with pytest.raises(ConfigError, match="TOUR_API_KEY"):
        TourApiAdapter(Settings()).check_config()


def test_fetch_page_sends_paging_params():
    a = _adapter(http_timeout_s=3.0)
    with patch("src.sources.adapters.tour_api.http_get_json", return_value=_payload([_item()], total=1)) as m:
        page = a.fetch_page(_partition(14, 31), 1)

    _, kwargs = m.call_args
    assert kwargs["params"]["numOfRows"] == 100
    assert kwargs["params"]["pageNo"] == 1
    assert kwargs["params"]["contentTypeId"] == 14
    assert kwargs["timeout_s"] == 3.0
    assert page.items[0].source_id == "126508"
