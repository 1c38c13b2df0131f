from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .taxonomy import canonical_category

REVIEW_PENDING = "pending"
REVIEW_APPROVED = "approved"
REVIEW_REJECTED = "rejected"


class PlaceRecord(BaseModel):
    """
    Adapter output: one normalized upstream item, not yet persisted.

    (source, source_id) is the natural key used for deduplication.
    """
    source: str
    source_id: str

    name: str
    category: str
    sub_category: Optional[str] = None

    address: Optional[str] = None
    road_address: Optional[str] = None
    district_code: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    phone: Optional[str] = None
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    is_indoor: Optional[bool] = None

    # event metadata (None for venues)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    time_info: Optional[str] = None
    price_info: Optional[str] = None
    age_range: Optional[str] = None
    source_url: Optional[str] = None
    poster_url: Optional[str] = None

    @field_validator("category", mode="before")
    @classmethod
    def _canonical_category(cls, v: Any) -> str:
        return canonical_category(v)


class Place(PlaceRecord):
    """A persisted record (table: places)."""
    id: int

    mention_count: int = 0
    source_count: int = 1
    last_mentioned_at: Optional[datetime] = None
    last_verified_at: Optional[datetime] = None

    popularity_score: float = 0.0
    is_active: bool = False
    is_display_eligible: bool = True
    review_status: str = REVIEW_PENDING

    created_at: datetime
    updated_at: datetime


class Mention(BaseModel):
    """A blog/cafe reference to a place (table: blog_mentions). Immutable."""
    id: Optional[int] = None
    place_id: int
    source_type: str  # naver_blog | daum_blog
    url: Optional[str] = None
    title: Optional[str] = None
    snippet: Optional[str] = None
    post_date: Optional[date] = None
    relevance_score: float = 0.5
    collected_at: datetime


class VerificationCheck(BaseModel):
    """Proof-of-freshness event (table: verification_checks). Append-only."""
    id: Optional[int] = None
    place_id: int
    verified_at: datetime
    notes: Optional[str] = None


class CollectionLogRow(BaseModel):
    """One row per collector / batch run (table: collection_logs). Append-only."""
    collector: str
    status: str  # success | partial | error
    results_count: Optional[int] = None
    new_events: Optional[int] = None
    duplicates: Optional[int] = None
    errors: Optional[int] = None
    error: Optional[str] = None
    duration_ms: int

    def to_row(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
