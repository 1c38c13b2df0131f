from __future__ import annotations

import logging
import re
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup

from ...config import Settings
from ...errors import SourceFetchError
from ...models import PlaceRecord
from ...normalize import clean_text, district_key, parse_dotted_date
from ...taxonomy import DEFAULT_CATEGORY
from ..base import BaseAdapter
from ..http import http_get
from ..types import FetchedPage, Partition

logger = logging.getLogger(__name__)

KOPIS_API_BASE = "http://www.kopis.or.kr/openApi/restful/pblprfr"
KOPIS_VENUE_BASE = "http://www.kopis.or.kr/openApi/restful/prfplc"
VENUE_SEARCH_ROWS = 5
PAGE_SIZE = 100
DAYS_LOOKBACK = 7
DAYS_LOOKAHEAD = 90

# KOPIS genrenm -> canonical category
GENRE_TABLE: Dict[str, str] = {
    "연극": "공연",
    "뮤지컬": "공연",
    "무용": "공연",
    "대중무용": "공연",
    "서양음악(클래식)": "공연",
    "한국음악(국악)": "공연",
    "대중음악": "공연",
    "서커스/마술": "공연",
    "복합": "문화행사",
}

# trailing hall / stage qualifier on fcltynm
_HALL_SUFFIX_RE = re.compile(r"\s*\([^)]*\)\s*$")

# substring fallback for genre names outside the table
_GENRE_KEYWORDS: tuple[tuple[str, str], ...] = (
    ("뮤지컬", "공연"),
    ("연극", "공연"),
    ("인형", "공연"),
    ("마술", "공연"),
    ("음악", "공연"),
    ("무용", "공연"),
    ("콘서트", "공연"),
)


def map_kopis_genre(genre: Optional[str]) -> str:
    g = clean_text(genre)
    if not g:
        return DEFAULT_CATEGORY
    if g in GENRE_TABLE:
        return GENRE_TABLE[g]
    for needle, category in _GENRE_KEYWORDS:
        if needle in g:
            return category
    return DEFAULT_CATEGORY


def _tag_text(node: Any, name: str) -> Optional[str]:
    el = node.find(name)
    return clean_text(el.get_text()) if el is not None else None


def _yyyymmdd(d: date) -> str:
    return d.strftime("%Y%m%d")


def venue_search_name(fcltynm: Optional[str]) -> Optional[str]:
    """'대학로 어린이극장 (1관)' -> '대학로 어린이극장'"""
    s = clean_text(fcltynm)
    if not s:
        return None
    return clean_text(_HALL_SUFFIX_RE.sub("", s)) or s


def parse_venue_district(xml: str, venue: str) -> Optional[str]:
    """
    District of the venue from a prfplc search result. An exact name match
    wins over the first hit.
    """
    soup = BeautifulSoup(xml or "", "html.parser")
    hits = soup.find_all("db")
    if not hits:
        return None
    chosen = next((h for h in hits if _tag_text(h, "fcltynm") == venue), hits[0])
    return district_key(_tag_text(chosen, "sidonm"), _tag_text(chosen, "gugunnm"))


def row_to_record(node: Any) -> Optional[PlaceRecord]:
    perf_id = _tag_text(node, "mt10id")
    name = _tag_text(node, "prfnm")
    if not perf_id or not name:
        return None

    genre = _tag_text(node, "genrenm")
    return PlaceRecord(
        source="kopis",
        source_id=perf_id,
        name=name,
        category=map_kopis_genre(genre),
        sub_category=genre,
        address=_tag_text(node, "fcltynm"),
        start_date=parse_dotted_date(_tag_text(node, "prfpdfrom")),
        end_date=parse_dotted_date(_tag_text(node, "prfpdto")),
        age_range="kids",
        is_indoor=True,
        poster_url=_tag_text(node, "poster"),
        source_url=f"http://www.kopis.or.kr/por/db/pblprfr/pblprfrView.do?menuId=MNU_00020&mt20Id={perf_id}",
    )


class KopisAdapter(BaseAdapter):
    """
    KOPIS children's performances (kidstate=Y), XML.

    One partition per run covering [today - 7d, today + 90d].
    Page token = 1-based cpage.

    The list feed carries only the venue name; the district comes from a
    facility search (prfplc), looked up once per venue per run.
    """

    collector = "kopis"
    source = "kopis"
    page_size = PAGE_SIZE
    first_token = 1

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self._venue_districts: Dict[str, Optional[str]] = {}

    def check_config(self) -> None:
        self._require(self.settings.kopis_api_key, "KOPIS_API_KEY")

    def partitions(self) -> List[Partition]:
        today = self.local_today()
        stdate = _yyyymmdd(today - timedelta(days=DAYS_LOOKBACK))
        eddate = _yyyymmdd(today + timedelta(days=DAYS_LOOKAHEAD))
        return [
            Partition(
                key=f"kidstate=Y,{stdate}-{eddate}",
                params={"stdate": stdate, "eddate": eddate},
            )
        ]

    def fetch_page(self, partition: Partition, page_token: Any) -> FetchedPage:
        cpage = int(page_token)
        params = {
            "service": self.settings.kopis_api_key,
            "stdate": partition.params["stdate"],
            "eddate": partition.params["eddate"],
            "cpage": cpage,
            "rows": self.page_size,
            "kidstate": "Y",
        }
        res = http_get(KOPIS_API_BASE, params=params, timeout_s=self.settings.http_timeout_s)
        page = self.parse_page(res.text, partition, cpage)
        page.items = [
            rec.model_copy(update={"district_code": self.venue_district(rec.address)})
            for rec in page.items
        ]
        return page

    def venue_district(self, fcltynm: Optional[str]) -> Optional[str]:
        """District key for a venue name; None when the search finds nothing."""
        venue = venue_search_name(fcltynm)
        if not venue:
            return None
        if venue in self._venue_districts:
            return self._venue_districts[venue]

        params = {
            "service": self.settings.kopis_api_key,
            "cpage": 1,
            "rows": VENUE_SEARCH_ROWS,
            "shprfnmfct": venue,
        }
        try:
            res = http_get(KOPIS_VENUE_BASE, params=params, timeout_s=self.settings.http_timeout_s)
            district = parse_venue_district(res.text, venue)
        except SourceFetchError as e:
            # the performance is stored without a district
            logger.warning("[kopis] venue lookup failed venue=%r: %s", venue, e)
            district = None
        self._venue_districts[venue] = district
        return district

    def parse_page(self, xml: str, partition: Partition, cpage: int) -> FetchedPage:
        soup = BeautifulSoup(xml or "", "html.parser")
        root = soup.find("dbs")
        if root is None:
            raise SourceFetchError(f"[kopis] malformed XML for {partition.key} cpage={cpage}")

        rows = root.find_all("db")
        records: List[PlaceRecord] = []
        for node in rows:
            rec = row_to_record(node)
            if rec is None:
                logger.warning("[kopis] skipping row without mt10id/prfnm")
                continue
            records.append(rec)

        has_more = len(rows) >= self.page_size
        return FetchedPage(
            items=records,
            has_more=has_more,
            next_token=cpage + 1 if has_more else None,
            raw_count=len(rows),
        )
