from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from ...errors import SourceFetchError
from ...models import PlaceRecord
from ...normalize import (
    clean_text,
    district_from_address,
    district_key,
    parse_lat,
    parse_lng,
    parse_yyyymmdd,
)
from ...taxonomy import DEFAULT_CATEGORY
from ..base import BaseAdapter
from ..http import http_get_json
from ..types import FetchedPage, Partition

logger = logging.getLogger(__name__)

TOUR_API_BASE = "http://apis.data.go.kr/B551011/KorService1/areaBasedList1"
PAGE_SIZE = 100  # provider maximum for numOfRows

CONTENT_TYPES = (12, 14, 15)  # 관광지, 문화시설, 축제
AREA_CODES = (1, 31)  # Seoul, Gyeonggi

# (contentTypeId, cat1) -> canonical category. cat1=None is the per-type default.
CATEGORY_TABLE: Dict[Tuple[int, Optional[str]], str] = {
    (12, "A01"): "동물/자연",
    (12, "A02"): "전시/체험",
    (12, "A03"): "놀이",
    (12, None): "공원/놀이터",
    (14, None): "전시/체험",
    (15, None): "문화행사",
    (28, None): "놀이",
    (39, None): "식당/카페",
}

CONTENT_TYPE_NAMES: Dict[int, str] = {
    12: "관광지",
    14: "문화시설",
    15: "축제",
    28: "레포츠",
    39: "음식점",
}

AREA_NAMES: Dict[int, str] = {1: "서울특별시", 31: "경기도"}

# areaBasedList sigungucode -> 시군구, per areacode
SIGUNGU_NAMES: Dict[int, Tuple[str, ...]] = {
    1: (
        "강남구", "강동구", "강북구", "강서구", "관악구", "광진구", "구로구",
        "금천구", "노원구", "도봉구", "동대문구", "동작구", "마포구", "서대문구",
        "서초구", "성동구", "성북구", "송파구", "양천구", "영등포구", "용산구",
        "은평구", "종로구", "중구", "중랑구",
    ),
    31: (
        "가평군", "고양시", "과천시", "광명시", "광주시", "구리시", "군포시",
        "김포시", "남양주시", "동두천시", "부천시", "성남시", "수원시", "시흥시",
        "안산시", "안성시", "안양시", "양주시", "양평군", "여주시", "연천군",
        "오산시", "용인시", "의왕시", "의정부시", "이천시", "파주시", "평택시",
        "포천시", "하남시", "화성시",
    ),
}


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def map_tour_category(content_type: Any, cat1: Any) -> str:
    ct = _as_int(content_type)
    if ct is None:
        return DEFAULT_CATEGORY
    c1 = clean_text(cat1)
    return CATEGORY_TABLE.get((ct, c1)) or CATEGORY_TABLE.get((ct, None)) or DEFAULT_CATEGORY


def _district_code(item: Dict[str, Any]) -> Optional[str]:
    """Area / sigungu codes first, address prefix when the codes are unknown."""
    area = _as_int(item.get("areacode"))
    sigungu = _as_int(item.get("sigungucode"))
    names = SIGUNGU_NAMES.get(area or 0, ())
    if sigungu is not None and 1 <= sigungu <= len(names):
        return district_key(AREA_NAMES[area], names[sigungu - 1])
    return district_from_address(item.get("addr1"))


def item_to_record(item: Dict[str, Any], content_type_id: int) -> Optional[PlaceRecord]:
    """Tour API item -> PlaceRecord. None when the item has no id or title."""
    content_id = clean_text(item.get("contentid"))
    title = clean_text(item.get("title"))
    if not content_id or not title:
        return None

    content_type = item.get("contenttypeid") or content_type_id
    homepage = clean_text(item.get("eventhomepage"))

    return PlaceRecord(
        source="tour_api",
        source_id=content_id,
        name=title,
        category=map_tour_category(content_type, item.get("cat1")),
        sub_category=CONTENT_TYPE_NAMES.get(_as_int(content_type) or 0),
        address=clean_text(item.get("addr1")),
        district_code=_district_code(item),
        lat=parse_lat(item.get("mapy")),
        lng=parse_lng(item.get("mapx")),
        phone=clean_text(item.get("tel")),
        description=clean_text(item.get("overview")),
        start_date=parse_yyyymmdd(item.get("eventstartdate")),
        end_date=parse_yyyymmdd(item.get("eventenddate")),
        source_url=homepage,
        poster_url=clean_text(item.get("firstimage")) or clean_text(item.get("image")),
    )


class TourApiAdapter(BaseAdapter):
    """
    Korea Tourism Organization area-based list.

    Partition = contentTypeId x areaCode. Page token = 1-based pageNo.
    """

    collector = "tour-api"
    source = "tour_api"
    page_size = PAGE_SIZE
    first_token = 1

    def check_config(self) -> None:
        self._require(self.settings.tour_api_key, "TOUR_API_KEY")

    def partitions(self) -> List[Partition]:
        return [
            Partition(
                key=f"contentTypeId={ct},areaCode={ac}",
                params={"contentTypeId": ct, "areaCode": ac},
            )
            for ct in CONTENT_TYPES
            for ac in AREA_CODES
        ]

    def fetch_page(self, partition: Partition, page_token: Any) -> FetchedPage:
        page_no = int(page_token)
        params = {
            "serviceKey": self.settings.tour_api_key,
            "contentTypeId": partition.params["contentTypeId"],
            "areaCode": partition.params["areaCode"],
            "numOfRows": self.page_size,
            "pageNo": page_no,
            "MobileOS": "ETC",
            "MobileApp": "BabyPlace",
            "_type": "json",
        }
        payload = http_get_json(TOUR_API_BASE, params=params, timeout_s=self.settings.http_timeout_s)
        return self.parse_page(payload, partition, page_no)

    def parse_page(self, payload: Any, partition: Partition, page_no: int) -> FetchedPage:
        if not isinstance(payload, dict) or not isinstance(payload.get("response"), dict):
            raise SourceFetchError(f"[tour_api] malformed payload for {partition.key} page={page_no}")

        response = payload["response"]
        header = response.get("header") or {}
        code = str(header.get("resultCode", "0000"))
        if code not in ("0000", "00"):
            raise SourceFetchError(
                f"[tour_api] resultCode={code} msg={header.get('resultMsg')!r} for {partition.key}"
            )

        body = response.get("body") or {}
        items_block = body.get("items")
        raw_items: Any = items_block.get("item") if isinstance(items_block, dict) else None
        if raw_items is None:
            logger.info("[tour_api] no items for %s page=%s", partition.key, page_no)
            return FetchedPage(items=[], has_more=False, raw_count=0)

        if isinstance(raw_items, dict):
            raw_items = [raw_items]

        content_type_id = int(partition.params["contentTypeId"])
        records: List[PlaceRecord] = []
        for raw in raw_items:
            rec = item_to_record(raw, content_type_id) if isinstance(raw, dict) else None
            if rec is None:
                logger.warning("[tour_api] skipping item without contentid/title: %r", raw)
                continue
            records.append(rec)

        total_count = _as_int(body.get("totalCount")) or 0
        has_more = page_no * self.page_size < total_count
        return FetchedPage(
            items=records,
            has_more=has_more,
            next_token=page_no + 1 if has_more else None,
            raw_count=len(raw_items),
        )
