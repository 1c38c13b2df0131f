"""
Blog search clients used by the mention collector.

Each client turns one search query into BlogPost rows. Titles and snippets
come back HTML-escaped with <b> highlight tags; both are reduced to plain
text here.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import Any, List, Optional

from bs4 import BeautifulSoup

from ..config import Settings
from ..errors import SourceFetchError
from ..normalize import clean_text, parse_yyyymmdd
from .http import http_get_json

logger = logging.getLogger(__name__)

NAVER_BLOG_URL = "https://openapi.naver.com/v1/search/blog.json"
DAUM_BLOG_URL = "https://dapi.kakao.com/v2/search/blog"
DISPLAY_COUNT = 30
SNIPPET_MAX = 500


@dataclass(frozen=True)
class BlogPost:
    url: str
    title: str
    snippet: str
    post_date: Optional[date] = None


def strip_html(value: Any) -> str:
    s = clean_text(value)
    if not s:
        return ""
    return clean_text(BeautifulSoup(s, "html.parser").get_text()) or ""


class BlogSearcher(ABC):
    # blog_mentions.source_type
    source_type: str = ""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    @abstractmethod
    def is_configured(self) -> bool:
        ...

    @abstractmethod
    def search(self, query: str) -> List[BlogPost]:
        """Newest posts first. Raises SourceFetchError on upstream failure."""


class NaverBlogSearcher(BlogSearcher):
    source_type = "naver_blog"

    def is_configured(self) -> bool:
        return bool(self.settings.naver_client_id and self.settings.naver_client_secret)

    def search(self, query: str) -> List[BlogPost]:
        payload = http_get_json(
            NAVER_BLOG_URL,
            params={"query": query, "display": DISPLAY_COUNT, "sort": "date"},
            headers={
                "X-Naver-Client-Id": self.settings.naver_client_id or "",
                "X-Naver-Client-Secret": self.settings.naver_client_secret or "",
            },
            timeout_s=self.settings.http_timeout_s,
        )
        return self.parse(payload)

    def parse(self, payload: Any) -> List[BlogPost]:
        if not isinstance(payload, dict) or not isinstance(payload.get("items", []), list):
            raise SourceFetchError("[naver_blog] malformed payload")
        posts: List[BlogPost] = []
        for item in payload.get("items") or []:
            url = clean_text(item.get("link")) if isinstance(item, dict) else None
            if not url:
                continue
            date_s = parse_yyyymmdd(item.get("postdate"))
            posts.append(BlogPost(
                url=url,
                title=strip_html(item.get("title")),
                snippet=strip_html(item.get("description"))[:SNIPPET_MAX],
                post_date=date.fromisoformat(date_s) if date_s else None,
            ))
        return posts


class DaumBlogSearcher(BlogSearcher):
    source_type = "daum_blog"

    def is_configured(self) -> bool:
        return bool(self.settings.kakao_rest_key)

    def search(self, query: str) -> List[BlogPost]:
        payload = http_get_json(
            DAUM_BLOG_URL,
            params={"query": query, "size": DISPLAY_COUNT, "sort": "recency"},
            headers={"Authorization": f"KakaoAK {self.settings.kakao_rest_key or ''}"},
            timeout_s=self.settings.http_timeout_s,
        )
        return self.parse(payload)

    def parse(self, payload: Any) -> List[BlogPost]:
        if not isinstance(payload, dict) or not isinstance(payload.get("documents", []), list):
            raise SourceFetchError("[daum_blog] malformed payload")
        posts: List[BlogPost] = []
        for doc in payload.get("documents") or []:
            url = clean_text(doc.get("url")) if isinstance(doc, dict) else None
            if not url:
                continue
            posts.append(BlogPost(
                url=url,
                title=strip_html(doc.get("title")),
                snippet=strip_html(doc.get("contents"))[:SNIPPET_MAX],
                post_date=_iso_day(doc.get("datetime")),
            ))
        return posts


def _iso_day(value: Any) -> Optional[date]:
    """'2024-01-15T12:00:00.000+09:00' -> date(2024, 1, 15). Local date as published."""
    s = clean_text(value)
    if not s:
        return None
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        logger.warning("[daum_blog] invalid datetime: %r", s)
        return None


def default_searchers(settings: Settings) -> List[BlogSearcher]:
    return [NaverBlogSearcher(settings), DaumBlogSearcher(settings)]
