# src/query/pagination.py
"""
Keyset-paginated listing of places inside a map viewport.

Sorts:
  popularity  (popularity_score desc, id desc)   cursor {type: popularity, score, id}
  recent      (created_at desc, id desc)         cursor {type: recent, created_at, id}
  distance    storage order = popularity, page re-sorted by great-circle
              distance from (lat, lng); cursor {type: id, id}

For popularity and recent, following next_cursor from the first page visits
every matching row exactly once (given no concurrent writes). Distance
paging continues on id only and is an approximation.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..db.repository import ORDER_POPULARITY, ORDER_RECENT, PlaceQuery, Repository
from ..errors import QueryFailedError, QueryValidationError
from ..geo import BBox, great_circle_m
from ..models import Place
from .cursor import IdCursor, PopularityCursor, RecentCursor, cursor_for, decode_cursor, encode_cursor

logger = logging.getLogger(__name__)

SORT_POPULARITY = "popularity"
SORT_RECENT = "recent"
SORT_DISTANCE = "distance"
SORTS = (SORT_POPULARITY, SORT_RECENT, SORT_DISTANCE)

DEFAULT_LIMIT = 20
MAX_LIMIT = 100
DEFAULT_ZOOM = 12
# at or above this zoom the per-district display cap no longer applies
DENSITY_MAX_ZOOM = 15

_CURSOR_TYPES = {
    SORT_POPULARITY: PopularityCursor,
    SORT_RECENT: RecentCursor,
    SORT_DISTANCE: IdCursor,
}


class ListedPlace(Place):
    distance_m: Optional[float] = None


@dataclass
class PageRequest:
    sw_lat: Optional[float] = None
    sw_lng: Optional[float] = None
    ne_lat: Optional[float] = None
    ne_lng: Optional[float] = None
    zoom: Optional[int] = None
    categories: Sequence[str] = ()
    tags: Sequence[str] = ()
    indoor: Optional[bool] = None
    query: Optional[str] = None
    sort: str = SORT_POPULARITY
    lat: Optional[float] = None
    lng: Optional[float] = None
    cursor: Optional[str] = None
    limit: Optional[int] = None


@dataclass
class Page:
    items: List[ListedPlace] = field(default_factory=list)
    next_cursor: Optional[str] = None


def score_floor(zoom: int) -> Optional[float]:
    """Minimum popularity_score shown at a zoom level; None = no floor."""
    if zoom <= 9:
        return 50.0
    if zoom <= 11:
        return 20.0
    if zoom <= 13:
        return 5.0
    return None


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_LIMIT
    return max(1, min(MAX_LIMIT, int(limit)))


def _finite(name: str, value: Optional[float]) -> float:
    if value is None:
        raise QueryValidationError(f"{name} is required")
    try:
        v = float(value)
    except (TypeError, ValueError) as e:
        raise QueryValidationError(f"{name} must be a number") from e
    if not math.isfinite(v):
        raise QueryValidationError(f"{name} must be finite")
    return v


def validate_bbox(req: PageRequest) -> BBox:
    sw_lat = _finite("sw_lat", req.sw_lat)
    sw_lng = _finite("sw_lng", req.sw_lng)
    ne_lat = _finite("ne_lat", req.ne_lat)
    ne_lng = _finite("ne_lng", req.ne_lng)

    for name, v in (("sw_lat", sw_lat), ("ne_lat", ne_lat)):
        if not -90.0 <= v <= 90.0:
            raise QueryValidationError(f"{name} out of range")
    for name, v in (("sw_lng", sw_lng), ("ne_lng", ne_lng)):
        if not -180.0 <= v <= 180.0:
            raise QueryValidationError(f"{name} out of range")
    if sw_lat > ne_lat:
        raise QueryValidationError("sw_lat must be <= ne_lat")
    if sw_lng > ne_lng:
        raise QueryValidationError("sw_lng must be <= ne_lng")
    return BBox(sw_lat, sw_lng, ne_lat, ne_lng)


def _origin(req: PageRequest) -> Optional[tuple[float, float]]:
    if req.lat is None and req.lng is None:
        return None
    lat = _finite("lat", req.lat)
    lng = _finite("lng", req.lng)
    if not -90.0 <= lat <= 90.0:
        raise QueryValidationError("lat out of range")
    if not -180.0 <= lng <= 180.0:
        raise QueryValidationError("lng out of range")
    return lat, lng


def build_query(req: PageRequest, bbox: BBox) -> PlaceQuery:
    zoom = DEFAULT_ZOOM if req.zoom is None else int(req.zoom)
    categories = tuple(c for c in req.categories if c)
    tags = tuple(t for t in req.tags if t)
    text = (req.query or "").strip() or None

    cursor = decode_cursor(req.cursor)
    if cursor is not None and not isinstance(cursor, _CURSOR_TYPES[req.sort]):
        cursor = None

    return PlaceQuery(
        bbox=bbox,
        active_only=True,
        categories=categories,
        tags_any=tags,
        is_indoor=req.indoor,
        text=text,
        min_score=score_floor(zoom),
        display_eligible_only=zoom < DENSITY_MAX_ZOOM and not categories and not text,
        order=ORDER_RECENT if req.sort == SORT_RECENT else ORDER_POPULARITY,
        after=cursor,
        limit=clamp_limit(req.limit) + 1,
    )


def list_page(repo: Repository, req: PageRequest) -> Page:
    if req.sort not in SORTS:
        raise QueryValidationError(f"sort must be one of {', '.join(SORTS)}")
    bbox = validate_bbox(req)
    origin = _origin(req)
    query = build_query(req, bbox)
    limit = query.limit - 1

    try:
        rows = repo.list_places(query)
    except Exception as e:
        logger.error("[pagination] storage failure: %s: %s", type(e).__name__, e)
        raise QueryFailedError() from e

    next_cursor = None
    if len(rows) > limit:
        rows = rows[:limit]
        next_cursor = encode_cursor(cursor_for(rows[-1], req.sort))

    items = [ListedPlace(**p.model_dump()) for p in rows]
    if origin is not None:
        for item in items:
            if item.lat is not None and item.lng is not None:
                item.distance_m = great_circle_m(origin[0], origin[1], item.lat, item.lng)
        if req.sort == SORT_DISTANCE:
            items.sort(key=lambda i: (i.distance_m is None, i.distance_m or 0.0, -i.id))

    return Page(items=items, next_cursor=next_cursor)
