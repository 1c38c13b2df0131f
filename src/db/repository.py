# src/db/repository.py
"""
Storage boundary.

Every component reaches the database through a Repository. Two
implementations exist:

  SupabaseRepository  production (PostgREST via supabase-py)
  MemoryRepository    in-process, used by tests and dry runs

The read path hands a PlaceQuery to list_places(). The query carries the
keyset continuation predicate so storage does the "(key, id) < cursor"
filtering and the ordering; callers never post-filter rows.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from ..geo import BBox
from ..models import Mention, Place, PlaceRecord, VerificationCheck
from ..query.cursor import IdCursor, PopularityCursor, RecentCursor

ORDER_POPULARITY = "popularity"
ORDER_RECENT = "recent"

AfterCursor = Union[PopularityCursor, RecentCursor, IdCursor]


@dataclass(frozen=True)
class PlaceQuery:
    """
    Filter + order + keyset predicate for one storage round trip.

    order:
      popularity -> (popularity_score desc, id desc)
      recent     -> (created_at desc, id desc)
    after:
      rows strictly after this cursor in the chosen order. An IdCursor
      restricts on id only, regardless of order.
    """
    bbox: Optional[BBox] = None
    active_only: bool = True
    categories: Tuple[str, ...] = ()
    tags_any: Tuple[str, ...] = ()
    is_indoor: Optional[bool] = None
    text: Optional[str] = None
    min_score: Optional[float] = None
    display_eligible_only: bool = False
    order: str = ORDER_POPULARITY
    after: Optional[AfterCursor] = None
    limit: int = 20


class Repository(ABC):
    # ---- places -----------------------------------------------------------

    @abstractmethod
    def find_by_natural_key(self, source: str, source_id: str) -> Optional[Place]:
        ...

    @abstractmethod
    def insert_place(self, record: PlaceRecord) -> Place:
        """
        Insert a new place as inactive + pending review.

        Raises DuplicateKeyError if (source, source_id) already exists.
        """

    @abstractmethod
    def get_place(self, place_id: int) -> Optional[Place]:
        ...

    @abstractmethod
    def list_places(self, query: PlaceQuery) -> List[Place]:
        ...

    @abstractmethod
    def scan_places(
        self,
        *,
        active: Optional[bool] = None,
        review_status: Optional[str] = None,
    ) -> List[Place]:
        """Full scan for batch jobs, optionally filtered."""

    @abstractmethod
    def update_place(self, place_id: int, fields: Dict[str, Any]) -> None:
        """Atomic single-row update."""

    # ---- mentions / verification -------------------------------------------

    @abstractmethod
    def list_mentions(self, place_id: Optional[int] = None) -> List[Mention]:
        ...

    @abstractmethod
    def insert_mention(self, mention: Mention) -> Mention:
        """
        Append a mention.

        Raises DuplicateKeyError if the place already has a mention with the
        same url.
        """

    @abstractmethod
    def add_verification(self, check: VerificationCheck) -> VerificationCheck:
        """Append a check and advance places.last_verified_at if newer."""

    @abstractmethod
    def verification_summary(
        self, place_id: int, *, since: datetime
    ) -> Tuple[int, Optional[datetime]]:
        """(lifetime check count, most recent verified_at on or after since)."""

    # ---- append-only audit -------------------------------------------------

    @abstractmethod
    def insert_collection_log(self, row: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def insert_scoring_log(self, row: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def insert_search_log(self, row: Dict[str, Any]) -> None:
        ...
