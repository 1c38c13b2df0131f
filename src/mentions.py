"""
Blog mention collector (reverse search: place -> blog posts).

For up to REVERSE_SEARCH_BATCH active places, search every configured blog
provider by "<place name> <district>", keep posts whose relevance is at
least RELEVANCE_MIN, and append them to blog_mentions. A post already
stored for the place (same url) counts as a duplicate. After new mentions
land, the place's mention_count / source_count / last_mentioned_at are
recomputed from its stored mentions, so re-running never double counts.

Target order: places never mentioned first (by id), then the most
mentioned places with the stalest mention.
"""
from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .config import Settings
from .db.collection_logs import CollectorCounters, error_row, run_row, write_collection_log
from .db.repository import Repository
from .errors import ConfigError, DuplicateKeyError, SourceFetchError
from .models import Mention, Place
from .normalize import SIDO_NAMES
from .pipeline import CollectorResult, retry_fetch
from .ranking.scoring import aggregate_mentions
from .sources.blog_search import BlogPost, BlogSearcher, default_searchers

logger = logging.getLogger(__name__)

COLLECTOR = "blog-mentions"
REVERSE_SEARCH_BATCH = 500
RELEVANCE_MIN = 0.3

KID_TERMS = ("아기", "유아", "아이", "키즈", "어린이", "유모차", "수유")


def district_hint(address: Optional[str]) -> str:
    """'서울특별시 강남구 역삼동' -> '강남', '경기 남양주시 와부읍' -> '남양주'."""
    for token in (address or "").split():
        if token in SIDO_NAMES:
            continue
        if len(token) > 2 and token.endswith(("시", "군", "구")):
            return token[:-1]
        break
    return ""


def post_relevance(place_name: str, district: str, title: str, snippet: str) -> float:
    """
    0..1 score of how likely a post is about the place.

      +0.6  full name in title, else +0.4 full name in snippet,
            else +0.2 x share of name words (len >= 2) found
      +0.2  district hint present
      +0.1  kid / baby vocabulary present
    """
    text = f"{title} {snippet}".lower()
    name = place_name.lower()
    score = 0.0

    if name in title.lower():
        score += 0.6
    elif name in text:
        score += 0.4
    else:
        words = [w for w in name.split() if len(w) >= 2]
        hits = [w for w in words if w in text]
        if words and hits:
            score += 0.2 * len(hits) / len(words)

    if district and district.lower() in text:
        score += 0.2
    if any(t in text for t in KID_TERMS):
        score += 0.1
    return min(round(score, 4), 1.0)


def configured_searchers(searchers: List[BlogSearcher]) -> List[BlogSearcher]:
    ready = [s for s in searchers if s.is_configured()]
    if not ready:
        raise ConfigError("Missing env: NAVER_CLIENT_ID/NAVER_CLIENT_SECRET or KAKAO_REST_KEY")
    return ready


def select_targets(places: List[Place], limit: int) -> List[Place]:
    never = sorted((p for p in places if p.last_mentioned_at is None), key=lambda p: p.id)
    seen = [p for p in places if p.last_mentioned_at is not None]
    seen.sort(key=lambda p: (-p.mention_count, p.last_mentioned_at, p.id))
    return (never + seen)[:limit]


def refresh_mention_stats(repo: Repository, place_id: int) -> None:
    """Recompute the place's mention aggregates from its stored mentions."""
    stats = aggregate_mentions(repo.list_mentions(place_id)).get(place_id)
    if stats is None:
        return
    repo.update_place(place_id, {
        "mention_count": stats.count,
        "source_count": stats.distinct_sources,
        "last_mentioned_at": stats.latest,
    })


def store_post(
    repo: Repository,
    place: Place,
    searcher: BlogSearcher,
    post: BlogPost,
    relevance: float,
    counters: CollectorCounters,
    now: datetime,
) -> bool:
    """Insert one mention. True when a new row was written. Never raises."""
    try:
        repo.insert_mention(Mention(
            place_id=place.id,
            source_type=searcher.source_type,
            url=post.url,
            title=post.title or None,
            snippet=post.snippet or None,
            post_date=post.post_date,
            relevance_score=relevance,
            collected_at=now,
        ))
        counters.new_events += 1
        return True
    except DuplicateKeyError:
        counters.duplicates += 1
    except Exception as e:
        counters.errors += 1
        logger.error(
            "[%s] INSERT_ERROR place_id=%s url=%s | %s: %s",
            COLLECTOR, place.id, post.url, type(e).__name__, e,
        )
    return False


def search_place(
    repo: Repository,
    place: Place,
    searchers: List[BlogSearcher],
    settings: Settings,
    counters: CollectorCounters,
    *,
    now: datetime,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Search one place on every provider. Returns the number of new mentions."""
    district = district_hint(place.road_address or place.address)
    query = f"{place.name} {district}" if district else place.name
    new = 0

    for searcher in searchers:
        try:
            posts = retry_fetch(
                lambda: searcher.search(query),
                label=f"[{COLLECTOR}] {searcher.source_type} place_id={place.id}",
                tries=settings.fetch_retries,
                sleep=sleep,
            )
        except SourceFetchError as e:
            counters.errors += 1
            logger.error(
                "[%s] search failed provider=%s place_id=%s: %s",
                COLLECTOR, searcher.source_type, place.id, e,
            )
            continue

        counters.raw_rows += len(posts)
        for post in posts:
            relevance = post_relevance(place.name, district, post.title, post.snippet)
            if relevance < RELEVANCE_MIN:
                continue
            counters.results_count += 1
            if store_post(repo, place, searcher, post, relevance, counters, now):
                new += 1

    if new:
        try:
            refresh_mention_stats(repo, place.id)
        except Exception as e:
            counters.errors += 1
            logger.error(
                "[%s] stats refresh failed place_id=%s: %s: %s",
                COLLECTOR, place.id, type(e).__name__, e,
            )
    return new


def run_mention_collector(
    repo: Repository,
    settings: Settings,
    *,
    searchers: Optional[List[BlogSearcher]] = None,
    batch_size: int = REVERSE_SEARCH_BATCH,
    now: Optional[datetime] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> CollectorResult:
    """One reverse-search pass. Writes one collection_logs row."""
    t0 = time.monotonic()
    now = now or datetime.now(timezone.utc)

    try:
        configured = configured_searchers(
            searchers if searchers is not None else default_searchers(settings)
        )
    except ConfigError as e:
        duration_ms = int((time.monotonic() - t0) * 1000)
        logger.error("[%s] config error: %s", COLLECTOR, e)
        write_collection_log(repo, error_row(COLLECTOR, str(e), duration_ms))
        return CollectorResult(
            collector=COLLECTOR,
            status="error",
            counters=CollectorCounters(),
            duration_ms=duration_ms,
            error=str(e),
        )

    targets = select_targets(repo.scan_places(active=True), batch_size)
    counters = CollectorCounters()
    places_with_new = 0
    for place in targets:
        if search_place(repo, place, configured, settings, counters, now=now, sleep=sleep):
            places_with_new += 1

    duration_ms = int((time.monotonic() - t0) * 1000)
    write_collection_log(repo, run_row(COLLECTOR, counters, duration_ms))

    print(
        f"[collector][summary] collector={COLLECTOR}"
        f" places={len(targets)}"
        f" places_with_new={places_with_new}"
        f" providers={','.join(s.source_type for s in configured)}"
        f" raw={counters.raw_rows}"
        f" fetched={counters.results_count}"
        f" new={counters.new_events}"
        f" duplicates={counters.duplicates}"
        f" errors={counters.errors}"
        f" status={counters.status}"
        f" duration_ms={duration_ms}"
    )

    return CollectorResult(
        collector=COLLECTOR,
        status=counters.status,
        counters=counters,
        duration_ms=duration_ms,
    )
