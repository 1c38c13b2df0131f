from __future__ import annotations

import logging
from typing import List, Optional

from ..db.repository import PlaceQuery, Repository
from ..errors import QueryFailedError, QueryValidationError
from ..geo import BBox, great_circle_m
from ..taxonomy import FACILITY_TYPE_TAGS
from .pagination import ListedPlace

logger = logging.getLogger(__name__)

SEARCH_RADIUS_DEG = 0.03
MAX_CANDIDATES = 50
MAX_RESULTS = 5


def nearest_facilities(
    repo: Repository,
    lat: Optional[float],
    lng: Optional[float],
    facility_type: Optional[str] = None,
) -> List[ListedPlace]:
    """
    Closest active places carrying a facility tag (e.g. nursing room).

    Candidates come from a ±0.03° box around the point, are ranked by
    great-circle distance and the closest five are returned.
    """
    if lat is None or lng is None:
        raise QueryValidationError("lat and lng are required")
    if not -90.0 <= lat <= 90.0 or not -180.0 <= lng <= 180.0:
        raise QueryValidationError("lat/lng out of range")

    if facility_type:
        tag = FACILITY_TYPE_TAGS.get(facility_type)
        if tag is None:
            raise QueryValidationError(
                f"type must be one of {', '.join(sorted(FACILITY_TYPE_TAGS))}"
            )
        tags = (tag,)
    else:
        tags = tuple(FACILITY_TYPE_TAGS.values())

    query = PlaceQuery(
        bbox=BBox.around(lat, lng, SEARCH_RADIUS_DEG),
        active_only=True,
        tags_any=tags,
        limit=MAX_CANDIDATES,
    )
    try:
        rows = repo.list_places(query)
    except Exception as e:
        logger.error("[nearest] storage failure: %s: %s", type(e).__name__, e)
        raise QueryFailedError() from e

    items: List[ListedPlace] = []
    for p in rows:
        if p.lat is None or p.lng is None:
            continue
        item = ListedPlace(**p.model_dump())
        item.distance_m = great_circle_m(lat, lng, p.lat, p.lng)
        items.append(item)

    items.sort(key=lambda i: (i.distance_m, i.id))
    return items[:MAX_RESULTS]
