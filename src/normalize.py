from __future__ import annotations

import logging
import re
from datetime import date, datetime
from typing import Any, Optional, Tuple

import dateparser

logger = logging.getLogger(__name__)

# Provider integer-scaled coordinates (e.g. 1269779692 -> 126.9779692)
COORD_DIVISOR = 10_000_000

_YYYYMMDD_RE = re.compile(r"^\d{8}$")
_DATE_TOKEN_RE = re.compile(r"(\d{4})[.\-/](\d{1,2})[.\-/](\d{1,2})")
_DISTRICT_SUFFIXES = ("구", "시", "군")

_SIDO_FULL = (
    ("서울", "서울특별시"),
    ("부산", "부산광역시"),
    ("대구", "대구광역시"),
    ("인천", "인천광역시"),
    ("광주", "광주광역시"),
    ("대전", "대전광역시"),
    ("울산", "울산광역시"),
    ("세종", "세종특별자치시"),
    ("경기", "경기도"),
    ("강원", "강원특별자치도"),
    ("충북", "충청북도"),
    ("충남", "충청남도"),
    ("전북", "전북특별자치도"),
    ("전남", "전라남도"),
    ("경북", "경상북도"),
    ("경남", "경상남도"),
    ("제주", "제주특별자치도"),
)

# short and full 시도 spellings -> full name
SIDO_NAMES = {short: full for short, full in _SIDO_FULL}
SIDO_NAMES.update({full: full for _, full in _SIDO_FULL})
SIDO_NAMES.update({"강원도": "강원특별자치도", "전라북도": "전북특별자치도", "제주도": "제주특별자치도"})


# ============================================================
# Text helpers
# ============================================================

def clean_text(value: Any) -> Optional[str]:
    """Strip; empty -> None. Non-strings are stringified."""
    if value is None:
        return None
    s = " ".join(str(value).split())
    return s or None


def _safe_date(y: int, m: int, d: int) -> Optional[date]:
    try:
        return date(y, m, d)
    except ValueError:
        return None


# ============================================================
# Dates
# ============================================================

def parse_yyyymmdd(value: Any) -> Optional[str]:
    """
    'YYYYMMDD' -> 'YYYY-MM-DD'.

    Fails closed: anything that is not 8 digits forming a real calendar date
    becomes None. Never raises.
    """
    s = clean_text(value)
    if not s:
        return None
    if not _YYYYMMDD_RE.match(s):
        logger.warning("[normalize] invalid YYYYMMDD date: %r", s)
        return None
    d = _safe_date(int(s[0:4]), int(s[4:6]), int(s[6:8]))
    if d is None:
        logger.warning("[normalize] invalid YYYYMMDD date: %r", s)
        return None
    return d.isoformat()


def parse_dotted_date(value: Any) -> Optional[str]:
    """'YYYY.MM.DD' (KOPIS) -> 'YYYY-MM-DD', else None."""
    s = clean_text(value)
    if not s:
        return None
    m = re.fullmatch(r"(\d{4})\.(\d{2})\.(\d{2})", s)
    if not m:
        logger.warning("[normalize] invalid dotted date: %r", s)
        return None
    d = _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    return d.isoformat() if d else None


def _parse_with_dateparser(text: str) -> Optional[date]:
    dt = dateparser.parse(
        text,
        languages=["ko", "en"],
        settings={"PREFER_DAY_OF_MONTH": "first", "RETURN_AS_TIMEZONE_AWARE": False},
    )
    if not isinstance(dt, datetime):
        return None
    return dt.date()


def parse_date_range(value: Any) -> Tuple[Optional[str], Optional[str]]:
    """
    Free-form range like '2026-05-01~2026-05-31' or '2026.05.01 ~ 2026.05.31'.

    First date token is the start, the last one the end. A single token means a
    one-day event. If no numeric token is found, dateparser gets one try on the
    whole string. Anything unparseable -> (None, None).
    """
    s = clean_text(value)
    if not s:
        return None, None

    found = []
    for m in _DATE_TOKEN_RE.finditer(s):
        d = _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        if d is not None:
            found.append(d)

    if not found:
        d = _parse_with_dateparser(s)
        if d is None:
            logger.warning("[normalize] unparseable date range: %r", s)
            return None, None
        return d.isoformat(), None

    start = found[0]
    end = found[-1] if len(found) > 1 else None
    if end is not None and end < start:
        end = None
    return start.isoformat(), end.isoformat() if end else None


# ============================================================
# Coordinates
# ============================================================

def parse_coordinate(value: Any, *, limit: float) -> Optional[float]:
    """
    Provider coordinate -> decimal degrees.

    Integer-scaled values (magnitude >= COORD_DIVISOR) are divided by
    COORD_DIVISOR; decimal strings are taken as-is. Zero, garbage or
    out-of-range values degrade to None.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        v = float(str(value).strip())
    except ValueError:
        return None
    if v != v or v == 0.0:  # NaN / missing marker
        return None
    if abs(v) >= COORD_DIVISOR:
        v = v / COORD_DIVISOR
    if abs(v) > limit:
        return None
    return v


def parse_lat(value: Any) -> Optional[float]:
    return parse_coordinate(value, limit=90.0)


def parse_lng(value: Any) -> Optional[float]:
    return parse_coordinate(value, limit=180.0)


# ============================================================
# District
# ============================================================

def district_key(sido: Any, sigungu: Any) -> Optional[str]:
    """
    Canonical district key shared by every source: '<full 시도> <시군구>'.

      ('서울', '강남구')     -> '서울특별시 강남구'
      ('경기도', '고양시')   -> '경기도 고양시'

    None unless both parts are present and sigungu ends in 구/시/군.
    """
    s = clean_text(sido)
    g = clean_text(sigungu)
    if not s or not g or not g.endswith(_DISTRICT_SUFFIXES):
        return None
    return f"{SIDO_NAMES.get(s, s)} {g}"


def district_from_address(address: Optional[str]) -> Optional[str]:
    """
    Address-prefix fallback for the administrative district:
      '서울특별시 강남구 테헤란로 1' -> '서울특별시 강남구'
      '서울 강남구 테헤란로 1'       -> '서울특별시 강남구'
    """
    s = clean_text(address)
    if not s:
        return None
    parts = s.split(" ")
    if len(parts) < 2:
        return None
    if parts[0] not in SIDO_NAMES:
        return None
    return district_key(parts[0], parts[1])
