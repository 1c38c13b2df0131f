from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from typing import Any, List

import pytz

from ..config import Settings
from ..errors import ConfigError
from .types import FetchedPage, Partition


class BaseAdapter(ABC):
    """
    Stateless per-provider client.

    The coordinator calls check_config() once, then for every partition
    fetch_page(partition, first_token) until has_more is False.
    """

    # collection_logs.collector value, e.g. "tour-api"
    collector: str = ""
    # places.source value, e.g. "tour_api"
    source: str = ""
    page_size: int = 100
    first_token: Any = 1

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    @abstractmethod
    def partitions(self) -> List[Partition]:
        """Return the partitions to scan for one run."""

    @abstractmethod
    def fetch_page(self, partition: Partition, page_token: Any) -> FetchedPage:
        """Fetch and normalize one page. Raises SourceFetchError on failure."""

    def check_config(self) -> None:
        """Raise ConfigError when a required credential is missing."""
        return

    def _require(self, value: str | None, env_name: str) -> str:
        if not value:
            raise ConfigError(f"Missing env: {env_name}")
        return value

    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)

    def local_today(self) -> date:
        """Calendar date in the configured timezone (providers work in KST)."""
        return self.now_utc().astimezone(pytz.timezone(self.settings.timezone)).date()
