# src/db/supabase_repository.py
"""
Repository backed by Supabase (PostgREST).

Tables: places, blog_mentions, verification_checks, collection_logs,
scoring_logs, search_logs. places carries a unique index on
(source, source_id); a 23505 on insert surfaces as DuplicateKeyError.
"""
from __future__ import annotations

import logging
import random
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from ..errors import DuplicateKeyError
from ..models import REVIEW_PENDING, Mention, Place, PlaceRecord, VerificationCheck
from ..query.cursor import IdCursor, PopularityCursor, RecentCursor
from .repository import ORDER_RECENT, PlaceQuery, Repository

logger = logging.getLogger(__name__)

PLACES = "places"
MENTIONS = "blog_mentions"
VERIFICATIONS = "verification_checks"
COLLECTION_LOGS = "collection_logs"
SCORING_LOGS = "scoring_logs"
SEARCH_LOGS = "search_logs"

SCAN_PAGE_SIZE = 1000

# characters with meaning inside a PostgREST or=(...) expression
_TEXT_UNSAFE = str.maketrans({c: " " for c in ',()%*"\\'})


def execute_with_retry(rb, *, tries: int = 4, base_sleep: float = 0.5):
    """
    PostgREST calls can drop HTTP/2 connections under load.
    Wrap .execute() with retry + exponential backoff.
    """
    last = None
    for attempt in range(tries):
        try:
            return rb.execute()
        except (
            httpx.RemoteProtocolError,
            httpx.ReadTimeout,
            httpx.ConnectError,
            httpx.WriteError,
        ) as e:
            last = e
            sleep = base_sleep * (2 ** attempt) + random.random() * 0.25
            logger.warning(
                "[supabase] transient http error: %s attempt=%d/%d sleep=%.2fs",
                type(e).__name__, attempt + 1, tries, sleep,
            )
            time.sleep(sleep)
    raise last  # type: ignore[misc]


def _is_unique_violation(err: APIError) -> bool:
    if getattr(err, "code", None) == "23505":
        return True
    return "duplicate key value violates unique constraint" in repr(err).lower()


def _iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def _row_to_place(row: Dict[str, Any]) -> Place:
    # NULL array / flag columns fall back to model defaults
    return Place.model_validate({k: v for k, v in row.items() if v is not None})


def _sanitize_text(text: str) -> str:
    return " ".join(text.translate(_TEXT_UNSAFE).split())


def _keyset_expr(after) -> Optional[str]:
    if isinstance(after, PopularityCursor):
        s = repr(float(after.score))
        return f"popularity_score.lt.{s},and(popularity_score.eq.{s},id.lt.{after.id})"
    if isinstance(after, RecentCursor):
        ts = f'"{_iso(after.created_at)}"'
        return f"created_at.lt.{ts},and(created_at.eq.{ts},id.lt.{after.id})"
    return None


def _serialize(fields: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for k, v in fields.items():
        out[k] = _iso(v) if isinstance(v, datetime) else v
    return out


class SupabaseRepository(Repository):
    def __init__(self, supabase: Client) -> None:
        self.sb = supabase

    # ---- places --------------------------------------------------------------

    def find_by_natural_key(self, source: str, source_id: str) -> Optional[Place]:
        res = execute_with_retry(
            self.sb.table(PLACES)
            .select("*")
            .eq("source", source)
            .eq("source_id", source_id)
            .limit(1)
        )
        rows = res.data or []
        return _row_to_place(rows[0]) if rows else None

    def insert_place(self, record: PlaceRecord) -> Place:
        payload = record.model_dump(mode="json")
        payload.update({
            "is_active": False,
            "review_status": REVIEW_PENDING,
            "popularity_score": 0.0,
        })
        try:
            res = execute_with_retry(self.sb.table(PLACES).insert(payload))
        except APIError as e:
            if _is_unique_violation(e):
                raise DuplicateKeyError(record.source, record.source_id) from e
            raise
        return _row_to_place(res.data[0])

    def get_place(self, place_id: int) -> Optional[Place]:
        res = execute_with_retry(
            self.sb.table(PLACES).select("*").eq("id", place_id).limit(1)
        )
        rows = res.data or []
        return _row_to_place(rows[0]) if rows else None

    def list_places(self, query: PlaceQuery) -> List[Place]:
        q = self.sb.table(PLACES).select("*")

        if query.active_only:
            q = q.eq("is_active", True)
        if query.bbox is not None:
            b = query.bbox
            q = (
                q.gte("lat", b.sw_lat)
                .lte("lat", b.ne_lat)
                .gte("lng", b.sw_lng)
                .lte("lng", b.ne_lng)
            )
        if query.categories:
            q = q.in_("category", list(query.categories))
        if query.tags_any:
            q = q.filter("tags", "ov", "{" + ",".join(query.tags_any) + "}")
        if query.is_indoor is not None:
            q = q.eq("is_indoor", query.is_indoor)
        if query.min_score is not None:
            q = q.gte("popularity_score", query.min_score)
        if query.display_eligible_only:
            q = q.eq("is_display_eligible", True)

        or_groups: List[str] = []
        text = _sanitize_text(query.text) if query.text else ""
        if text:
            pattern = f"*{text}*"
            or_groups.append(
                f"name.ilike.{pattern},road_address.ilike.{pattern},address.ilike.{pattern}"
            )
        if isinstance(query.after, IdCursor):
            q = q.lt("id", query.after.id)
        else:
            expr = _keyset_expr(query.after)
            if expr:
                or_groups.append(expr)

        if len(or_groups) == 1:
            q = q.or_(or_groups[0])
        elif len(or_groups) == 2:
            # PostgREST takes one or=() per request; nest both under and()
            q = q.or_(f"and(or({or_groups[0]}),or({or_groups[1]}))")

        if query.order == ORDER_RECENT:
            q = q.order("created_at", desc=True)
        else:
            q = q.order("popularity_score", desc=True)
        q = q.order("id", desc=True).limit(query.limit)

        res = execute_with_retry(q)
        return [_row_to_place(r) for r in (res.data or [])]

    def scan_places(
        self,
        *,
        active: Optional[bool] = None,
        review_status: Optional[str] = None,
    ) -> List[Place]:
        out: List[Place] = []
        offset = 0
        while True:
            q = self.sb.table(PLACES).select("*")
            if active is not None:
                q = q.eq("is_active", active)
            if review_status is not None:
                q = q.eq("review_status", review_status)
            res = execute_with_retry(
                q.order("id").range(offset, offset + SCAN_PAGE_SIZE - 1)
            )
            rows = res.data or []
            out.extend(_row_to_place(r) for r in rows)
            if len(rows) < SCAN_PAGE_SIZE:
                return out
            offset += SCAN_PAGE_SIZE

    def update_place(self, place_id: int, fields: Dict[str, Any]) -> None:
        payload = _serialize(fields)
        payload["updated_at"] = _iso(datetime.now(timezone.utc))
        execute_with_retry(self.sb.table(PLACES).update(payload).eq("id", place_id))

    # ---- mentions / verification -------------------------------------------

    def list_mentions(self, place_id: Optional[int] = None) -> List[Mention]:
        out: List[Mention] = []
        offset = 0
        while True:
            q = self.sb.table(MENTIONS).select(
                "id,place_id,source_type,url,post_date,relevance_score,collected_at"
            )
            if place_id is not None:
                q = q.eq("place_id", place_id)
            res = execute_with_retry(
                q.order("id").range(offset, offset + SCAN_PAGE_SIZE - 1)
            )
            rows = res.data or []
            out.extend(
                Mention.model_validate({k: v for k, v in r.items() if v is not None})
                for r in rows
            )
            if len(rows) < SCAN_PAGE_SIZE:
                return out
            offset += SCAN_PAGE_SIZE

    def insert_mention(self, mention: Mention) -> Mention:
        # blog_mentions carries a unique index on (place_id, url)
        payload = mention.model_dump(mode="json", exclude_none=True)
        try:
            res = execute_with_retry(self.sb.table(MENTIONS).insert(payload))
        except APIError as e:
            if _is_unique_violation(e):
                raise DuplicateKeyError(f"{MENTIONS}:{mention.place_id}", str(mention.url)) from e
            raise
        rows = res.data or []
        return Mention.model_validate({k: v for k, v in rows[0].items() if v is not None}) if rows else mention

    def add_verification(self, check: VerificationCheck) -> VerificationCheck:
        payload = check.model_dump(mode="json", exclude_none=True)
        res = execute_with_retry(self.sb.table(VERIFICATIONS).insert(payload))
        ts = _iso(check.verified_at)
        # conditional so a late-arriving older check never moves the mark backwards
        execute_with_retry(
            self.sb.table(PLACES)
            .update({"last_verified_at": ts})
            .eq("id", check.place_id)
            .or_(f'last_verified_at.is.null,last_verified_at.lt."{ts}"')
        )
        rows = res.data or []
        return VerificationCheck.model_validate(rows[0]) if rows else check

    def verification_summary(
        self, place_id: int, *, since: datetime
    ) -> Tuple[int, Optional[datetime]]:
        total = execute_with_retry(
            self.sb.table(VERIFICATIONS)
            .select("id", count="exact")
            .eq("place_id", place_id)
            .limit(1)
        )
        count = total.count if total.count is not None else len(total.data or [])

        res = execute_with_retry(
            self.sb.table(VERIFICATIONS)
            .select("verified_at")
            .eq("place_id", place_id)
            .gte("verified_at", _iso(since))
            .order("verified_at", desc=True)
            .limit(1)
        )
        rows = res.data or []
        if not rows:
            return count, None
        return count, datetime.fromisoformat(str(rows[0]["verified_at"]).replace("Z", "+00:00"))

    # ---- append-only audit -------------------------------------------------

    def insert_collection_log(self, row: Dict[str, Any]) -> None:
        execute_with_retry(self.sb.table(COLLECTION_LOGS).insert(row))

    def insert_scoring_log(self, row: Dict[str, Any]) -> None:
        execute_with_retry(self.sb.table(SCORING_LOGS).insert(row))

    def insert_search_log(self, row: Dict[str, Any]) -> None:
        execute_with_retry(self.sb.table(SEARCH_LOGS).insert(_serialize(row)))
