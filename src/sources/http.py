from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import requests

from ..errors import SourceFetchError

logger = logging.getLogger(__name__)

USER_AGENT = "BabyPlace-Collector/1.0"


@dataclass
class HttpResult:
    url: str
    status_code: int
    text: str


def http_get(
    url: str,
    *,
    params: Optional[Mapping[str, Any]] = None,
    headers: Optional[Mapping[str, str]] = None,
    timeout_s: float = 10.0,
) -> HttpResult:
    """
    GET with a hard timeout. The request is aborted once timeout_s elapses.

    Transport errors, timeouts and non-2xx responses raise SourceFetchError so
    the coordinator can retry the page.
    """
    logger.debug("[http] GET %s", url)
    try:
        r = requests.get(
            url,
            params=params,
            timeout=timeout_s,
            headers={"User-Agent": USER_AGENT, **(headers or {})},
        )
    except requests.Timeout as e:
        raise SourceFetchError(f"timeout after {timeout_s}s: {url}") from e
    except requests.RequestException as e:
        raise SourceFetchError(f"{type(e).__name__}: {e}") from e

    if not 200 <= r.status_code < 300:
        raise SourceFetchError(f"HTTP {r.status_code} from {url}", status_code=r.status_code)

    return HttpResult(url=r.url, status_code=r.status_code, text=r.text)


def http_get_json(
    url: str,
    *,
    params: Optional[Mapping[str, Any]] = None,
    headers: Optional[Mapping[str, str]] = None,
    timeout_s: float = 10.0,
) -> Any:
    res = http_get(url, params=params, headers=headers, timeout_s=timeout_s)
    try:
        return json.loads(res.text)
    except ValueError as e:
        raise SourceFetchError(f"malformed JSON from {url}: {e}") from e
