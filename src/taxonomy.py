# src/taxonomy.py
"""
Canonical category vocabulary and facility-type tags.

Every adapter maps its provider codes onto CANONICAL_CATEGORIES; anything it
cannot map lands in DEFAULT_CATEGORY.
"""
from __future__ import annotations

CANONICAL_CATEGORIES: tuple[str, ...] = (
    "놀이",
    "공원/놀이터",
    "전시/체험",
    "공연",
    "동물/자연",
    "식당/카페",
    "도서관",
    "수영/물놀이",
    "문화행사",
    "편의시설",
)

DEFAULT_CATEGORY = "기타/행사"

# nearest-facility query: type param -> required tag
FACILITY_TYPE_TAGS: dict[str, str] = {
    "nursing_room": "수유실",
    "diaper_station": "기저귀교환대",
}


def canonical_category(value: str | None) -> str:
    """Return value if it is canonical, else the fallback category."""
    v = (value or "").strip()
    return v if v in CANONICAL_CATEGORIES else DEFAULT_CATEGORY
