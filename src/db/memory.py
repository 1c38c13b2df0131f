# src/db/memory.py
"""
In-process Repository with the same contract as the Supabase one:
unique (source, source_id), keyset ordering, append-only logs.
"""
from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..errors import DuplicateKeyError
from ..models import REVIEW_PENDING, Mention, Place, PlaceRecord, VerificationCheck
from .repository import ORDER_RECENT, PlaceQuery, Repository


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _matches_text(place: Place, needle: str) -> bool:
    n = needle.lower()
    for value in (place.name, place.road_address, place.address):
        if value and n in value.lower():
            return True
    return False


def _matches(place: Place, q: PlaceQuery) -> bool:
    if q.active_only and not place.is_active:
        return False
    if q.bbox is not None and not q.bbox.contains(place.lat, place.lng):
        return False
    if q.categories and place.category not in q.categories:
        return False
    if q.tags_any and not set(q.tags_any) & set(place.tags):
        return False
    if q.is_indoor is not None and place.is_indoor is not q.is_indoor:
        return False
    if q.text and not _matches_text(place, q.text):
        return False
    if q.min_score is not None and place.popularity_score < q.min_score:
        return False
    if q.display_eligible_only and not place.is_display_eligible:
        return False
    if q.after is not None and not q.after.admits(place):
        return False
    return True


class MemoryRepository(Repository):
    def __init__(self, *, clock: Callable[[], datetime] = _utc_now) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._next_id = 1
        self.places: Dict[int, Place] = {}
        self._by_key: Dict[Tuple[str, str], int] = {}
        self.mentions: List[Mention] = []
        self.verifications: List[VerificationCheck] = []
        self.collection_logs: List[Dict[str, Any]] = []
        self.scoring_logs: List[Dict[str, Any]] = []
        self.search_logs: List[Dict[str, Any]] = []

    # ---- test helpers --------------------------------------------------------

    def seed_place(self, **fields: Any) -> Place:
        """Insert a fully specified place, bypassing the ingestion defaults."""
        with self._lock:
            now = self._clock()
            fields.setdefault("id", self._next_id)
            fields.setdefault("source", "test")
            fields.setdefault("source_id", f"seed-{fields['id']}")
            fields.setdefault("name", f"place {fields['id']}")
            fields.setdefault("category", "놀이")
            fields.setdefault("created_at", now)
            fields.setdefault("updated_at", fields["created_at"])
            place = Place(**fields)
            self.places[place.id] = place
            self._by_key[(place.source, place.source_id)] = place.id
            self._next_id = max(self._next_id, place.id + 1)
            return place

    def add_mention(self, mention: Mention) -> None:
        self.mentions.append(mention)

    # ---- places --------------------------------------------------------------

    def find_by_natural_key(self, source: str, source_id: str) -> Optional[Place]:
        pid = self._by_key.get((source, source_id))
        return self.places.get(pid) if pid is not None else None

    def insert_place(self, record: PlaceRecord) -> Place:
        with self._lock:
            key = (record.source, record.source_id)
            if key in self._by_key:
                raise DuplicateKeyError(record.source, record.source_id)
            now = self._clock()
            place = Place(
                **record.model_dump(),
                id=self._next_id,
                is_active=False,
                review_status=REVIEW_PENDING,
                created_at=now,
                updated_at=now,
            )
            self._next_id += 1
            self.places[place.id] = place
            self._by_key[key] = place.id
            return place

    def get_place(self, place_id: int) -> Optional[Place]:
        return self.places.get(place_id)

    def list_places(self, query: PlaceQuery) -> List[Place]:
        rows = [p for p in self.places.values() if _matches(p, query)]
        if query.order == ORDER_RECENT:
            rows.sort(key=lambda p: (p.created_at, p.id), reverse=True)
        else:
            rows.sort(key=lambda p: (p.popularity_score, p.id), reverse=True)
        return rows[: query.limit]

    def scan_places(
        self,
        *,
        active: Optional[bool] = None,
        review_status: Optional[str] = None,
    ) -> List[Place]:
        out = []
        for p in sorted(self.places.values(), key=lambda p: p.id):
            if active is not None and p.is_active is not active:
                continue
            if review_status is not None and p.review_status != review_status:
                continue
            out.append(p)
        return out

    def update_place(self, place_id: int, fields: Dict[str, Any]) -> None:
        with self._lock:
            current = self.places.get(place_id)
            if current is None:
                return
            updated = current.model_copy(update={**fields, "updated_at": self._clock()})
            self.places[place_id] = updated

    # ---- mentions / verification -------------------------------------------

    def list_mentions(self, place_id: Optional[int] = None) -> List[Mention]:
        if place_id is None:
            return list(self.mentions)
        return [m for m in self.mentions if m.place_id == place_id]

    def insert_mention(self, mention: Mention) -> Mention:
        with self._lock:
            if mention.url and any(
                m.place_id == mention.place_id and m.url == mention.url for m in self.mentions
            ):
                raise DuplicateKeyError(f"blog_mentions:{mention.place_id}", mention.url)
            stored = mention.model_copy(update={"id": len(self.mentions) + 1})
            self.mentions.append(stored)
            return stored

    def add_verification(self, check: VerificationCheck) -> VerificationCheck:
        with self._lock:
            stored = check.model_copy(update={"id": len(self.verifications) + 1})
            self.verifications.append(stored)
            place = self.places.get(check.place_id)
            if place is not None and (
                place.last_verified_at is None or place.last_verified_at < check.verified_at
            ):
                self.places[place.id] = place.model_copy(
                    update={"last_verified_at": check.verified_at}
                )
            return stored

    def verification_summary(
        self, place_id: int, *, since: datetime
    ) -> Tuple[int, Optional[datetime]]:
        checks = [v.verified_at for v in self.verifications if v.place_id == place_id]
        recent = [ts for ts in checks if ts >= since]
        return len(checks), (max(recent) if recent else None)

    # ---- append-only audit -------------------------------------------------

    def insert_collection_log(self, row: Dict[str, Any]) -> None:
        self.collection_logs.append(dict(row))

    def insert_scoring_log(self, row: Dict[str, Any]) -> None:
        self.scoring_logs.append(dict(row))

    def insert_search_log(self, row: Dict[str, Any]) -> None:
        self.search_logs.append(dict(row))
