from __future__ import annotations

import hashlib
import logging
from typing import Any, Dict, List, Optional, Tuple

from ...errors import SourceFetchError
from ...models import PlaceRecord
from ...normalize import clean_text, district_key, parse_date_range, parse_lat, parse_lng
from ...taxonomy import DEFAULT_CATEGORY
from ..base import BaseAdapter
from ..http import http_get_json
from ..types import FetchedPage, Partition

logger = logging.getLogger(__name__)

SEOUL_API_BASE = "http://openapi.seoul.go.kr:8088"
SEOUL_SERVICE = "culturalEventInfo"
PAGE_SIZE = 1000  # provider maximum rows per index range

# "INFO-200" = no data for the requested range
_NO_DATA_CODES = frozenset({"INFO-200"})

CODENAME_TABLE: Dict[str, str] = {
    "교육/체험": "전시/체험",
    "전시/미술": "전시/체험",
    "뮤지컬/오페라": "공연",
    "연극": "공연",
    "무용": "공연",
    "클래식": "공연",
    "국악": "공연",
    "콘서트": "공연",
    "독주/독창회": "공연",
    "영화": "문화행사",
}


def map_seoul_codename(codename: Optional[str]) -> str:
    c = clean_text(codename)
    if not c:
        return DEFAULT_CATEGORY
    if c in CODENAME_TABLE:
        return CODENAME_TABLE[c]
    if c.startswith("축제"):
        return "문화행사"
    return DEFAULT_CATEGORY


def make_source_id(title: str, date_raw: Optional[str], place: Optional[str]) -> str:
    """
    The Seoul feed has no stable row id; derive one from
    normalized title + date text + venue.
    """
    seed = "|".join(
        " ".join((s or "").strip().lower().split()) for s in (title, date_raw, place)
    )
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()


def _coords(row: Dict[str, Any]) -> Tuple[Optional[float], Optional[float]]:
    lat_raw, lng_raw = row.get("LAT"), row.get("LOT")
    lat, lng = parse_lat(lat_raw), parse_lng(lng_raw)
    if lat is None and lng is not None:
        # feed occasionally swaps LAT/LOT
        swapped_lat, swapped_lng = parse_lat(lng_raw), parse_lng(lat_raw)
        if swapped_lat is not None and swapped_lng is not None:
            return swapped_lat, swapped_lng
    return lat, lng


def row_to_record(row: Dict[str, Any]) -> Optional[PlaceRecord]:
    title = clean_text(row.get("TITLE"))
    if not title:
        return None

    date_raw = clean_text(row.get("DATE"))
    place = clean_text(row.get("PLACE"))
    start_date, end_date = parse_date_range(date_raw)
    guname = clean_text(row.get("GUNAME"))
    lat, lng = _coords(row)
    is_free = clean_text(row.get("IS_FREE"))

    return PlaceRecord(
        source="seoul_gov",
        source_id=make_source_id(title, date_raw, place),
        name=title,
        category=map_seoul_codename(row.get("CODENAME")),
        sub_category=clean_text(row.get("CODENAME")),
        address=place,
        district_code=district_key("서울특별시", guname),
        lat=lat,
        lng=lng,
        start_date=start_date,
        end_date=end_date,
        price_info=clean_text(row.get("USE_FEE")) or is_free,
        age_range=clean_text(row.get("USE_TRGT")),
        source_url=clean_text(row.get("ORG_LINK")) or clean_text(row.get("HMPG_ADDR")),
        poster_url=clean_text(row.get("MAIN_IMG")),
    )


class SeoulEventsAdapter(BaseAdapter):
    """
    Seoul Open Data cultural events.

    Single partition; page token = 1-based start index of the row range.
    """

    collector = "seoul-events"
    source = "seoul_gov"
    page_size = PAGE_SIZE
    first_token = 1

    def check_config(self) -> None:
        self._require(self.settings.seoul_api_key, "SEOUL_API_KEY")

    def partitions(self) -> List[Partition]:
        return [Partition(key=SEOUL_SERVICE)]

    def fetch_page(self, partition: Partition, page_token: Any) -> FetchedPage:
        start = int(page_token)
        end = start + self.page_size - 1
        url = f"{SEOUL_API_BASE}/{self.settings.seoul_api_key}/json/{SEOUL_SERVICE}/{start}/{end}/"
        payload = http_get_json(url, timeout_s=self.settings.http_timeout_s)
        return self.parse_page(payload, start)

    def parse_page(self, payload: Any, start: int) -> FetchedPage:
        if not isinstance(payload, dict):
            raise SourceFetchError(f"[seoul-events] malformed payload at start={start}")

        block = payload.get(SEOUL_SERVICE)
        if not isinstance(block, dict):
            result = payload.get("RESULT") or {}
            code = str(result.get("CODE", ""))
            if code in _NO_DATA_CODES:
                return FetchedPage(items=[], has_more=False, raw_count=0)
            raise SourceFetchError(
                f"[seoul-events] error code={code or '?'} msg={result.get('MESSAGE')!r} start={start}"
            )

        rows = block.get("row") or []
        if isinstance(rows, dict):
            rows = [rows]

        records: List[PlaceRecord] = []
        for row in rows:
            rec = row_to_record(row) if isinstance(row, dict) else None
            if rec is None:
                logger.warning("[seoul-events] skipping row without TITLE")
                continue
            records.append(rec)

        try:
            total = int(block.get("list_total_count") or 0)
        except (TypeError, ValueError):
            total = 0
        end = start + self.page_size - 1
        has_more = bool(rows) and end < total
        return FetchedPage(
            items=records,
            has_more=has_more,
            next_token=end + 1 if has_more else None,
            raw_count=len(rows),
        )
