from __future__ import annotations

import logging
from typing import Optional

from ..db.repository import Repository

logger = logging.getLogger(__name__)


def record_search(repo: Repository, query: Optional[str], results_count: int) -> None:
    """Best effort: a failed insert is logged and dropped."""
    q = (query or "").strip()
    if not q:
        return
    try:
        repo.insert_search_log({"query": q, "results_count": results_count})
    except Exception as e:
        logger.warning("[search_log] write failed query=%r: %s: %s", q, type(e).__name__, e)
