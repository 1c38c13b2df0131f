# src/query/cursor.py
"""
Opaque keyset cursors.

Token = unpadded base64url of the compact JSON form of one of:

  {"type": "popularity", "score": <float>, "id": <int>}
  {"type": "recent", "created_at": <iso datetime>, "id": <int>}
  {"type": "id", "id": <int>}

Tokens are versionless. A token that fails to decode or validate is treated
as "no cursor" so a stale client simply restarts from the first page.
"""
from __future__ import annotations

import base64
from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from ..models import Place


class PopularityCursor(BaseModel):
    type: Literal["popularity"] = "popularity"
    score: float
    id: int

    def admits(self, place: Place) -> bool:
        """(score, id) strictly after the cursor in (score desc, id desc) order."""
        return (place.popularity_score, place.id) < (self.score, self.id)


class RecentCursor(BaseModel):
    type: Literal["recent"] = "recent"
    created_at: datetime
    id: int

    def admits(self, place: Place) -> bool:
        return (place.created_at, place.id) < (self.created_at, self.id)


class IdCursor(BaseModel):
    type: Literal["id"] = "id"
    id: int

    def admits(self, place: Place) -> bool:
        return place.id < self.id


Cursor = Annotated[Union[PopularityCursor, RecentCursor, IdCursor], Field(discriminator="type")]

_CURSOR_ADAPTER: TypeAdapter[Cursor] = TypeAdapter(Cursor)


def encode_cursor(cursor: Union[PopularityCursor, RecentCursor, IdCursor]) -> str:
    raw = cursor.model_dump_json().encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def decode_cursor(token: Optional[str]) -> Optional[Union[PopularityCursor, RecentCursor, IdCursor]]:
    if not token:
        return None
    try:
        padded = token + "=" * (-len(token) % 4)
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        return _CURSOR_ADAPTER.validate_json(raw)
    except (ValueError, TypeError):
        # binascii.Error, UnicodeError and pydantic.ValidationError are ValueErrors
        return None


def cursor_for(place: Place, sort: str) -> Union[PopularityCursor, RecentCursor, IdCursor]:
    """Cursor carrying the ordering key(s) of the last returned row."""
    if sort == "popularity":
        return PopularityCursor(score=place.popularity_score, id=place.id)
    if sort == "recent":
        return RecentCursor(created_at=place.created_at, id=place.id)
    return IdCursor(id=place.id)
