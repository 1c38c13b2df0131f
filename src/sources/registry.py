from __future__ import annotations

from typing import Dict, Type

from ..config import Settings
from .base import BaseAdapter
from .adapters.kopis import KopisAdapter
from .adapters.seoul_events import SeoulEventsAdapter
from .adapters.tour_api import TourApiAdapter


ADAPTERS: Dict[str, Type[BaseAdapter]] = {
    "tour-api": TourApiAdapter,
    "kopis": KopisAdapter,
    "seoul-events": SeoulEventsAdapter,
}


def get_adapter(name: str, settings: Settings) -> BaseAdapter:
    cls = ADAPTERS[name]
    return cls(settings)
