from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..models import PlaceRecord


@dataclass(frozen=True)
class Partition:
    """
    Adapter-specific slice of the upstream result set
    (e.g. Tour API content-type x area-code). Scanned page by page.
    """
    key: str
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FetchedPage:
    """
    One upstream page, already normalized.

    raw_count counts provider rows including the ones the adapter could not
    turn into a record (missing id / name); items holds only the usable ones.
    """
    items: List[PlaceRecord]
    has_more: bool
    next_token: Optional[Any] = None
    raw_count: int = 0
