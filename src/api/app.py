from __future__ import annotations

import logging
import time
from functools import lru_cache
from typing import List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, status as http_status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.requests import Request

from ..config import Settings
from ..db.repository import Repository
from ..db.supabase_client import get_supabase_client
from ..db.supabase_repository import SupabaseRepository
from ..errors import QueryFailedError, QueryValidationError
from ..query.nearest import nearest_facilities
from ..query.pagination import ListedPlace, PageRequest, list_page
from ..query.search_log import record_search
from ..query.verification import VerificationStatus, verification_status

logger = logging.getLogger(__name__)


class PageOut(BaseModel):
    items: List[ListedPlace] = Field(default_factory=list)
    next_cursor: Optional[str] = None


class NearestOut(BaseModel):
    items: List[ListedPlace] = Field(default_factory=list)


@lru_cache
def get_repository() -> Repository:
    return SupabaseRepository(get_supabase_client(Settings.from_env()))


def _split(values: Optional[List[str]]) -> List[str]:
    """Accept both ?tags=a&tags=b and ?tags=a,b."""
    out: List[str] = []
    for v in values or []:
        out.extend(s.strip() for s in v.split(",") if s.strip())
    return out


app = FastAPI(title="family-places")


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started_at = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
    logger.info(
        "http request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


@app.exception_handler(RequestValidationError)
async def _request_validation_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ())[1:]) or "request"
        detail = f"{field}: {first.get('msg', 'invalid value')}"
    else:
        detail = "invalid request"
    return JSONResponse(status_code=http_status.HTTP_400_BAD_REQUEST, content={"detail": detail})


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/places", response_model=PageOut)
def list_places(
    background_tasks: BackgroundTasks,
    sw_lat: Optional[float] = Query(default=None),
    sw_lng: Optional[float] = Query(default=None),
    ne_lat: Optional[float] = Query(default=None),
    ne_lng: Optional[float] = Query(default=None),
    zoom: Optional[int] = Query(default=None),
    category: Optional[List[str]] = Query(default=None),
    tags: Optional[List[str]] = Query(default=None),
    indoor: Optional[bool] = Query(default=None),
    query: Optional[str] = Query(default=None),
    sort: str = Query(default="popularity"),
    lat: Optional[float] = Query(default=None),
    lng: Optional[float] = Query(default=None),
    cursor: Optional[str] = Query(default=None),
    limit: Optional[int] = Query(default=None),
    repository: Repository = Depends(get_repository),
) -> PageOut:
    req = PageRequest(
        sw_lat=sw_lat,
        sw_lng=sw_lng,
        ne_lat=ne_lat,
        ne_lng=ne_lng,
        zoom=zoom,
        categories=_split(category),
        tags=_split(tags),
        indoor=indoor,
        query=query,
        sort=sort,
        lat=lat,
        lng=lng,
        cursor=cursor,
        limit=limit,
    )
    try:
        page = list_page(repository, req)
    except QueryValidationError as exc:
        raise HTTPException(status_code=http_status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except QueryFailedError as exc:
        raise HTTPException(status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc

    if query and query.strip():
        background_tasks.add_task(record_search, repository, query, len(page.items))
    return PageOut(items=page.items, next_cursor=page.next_cursor)


@app.get("/places/nearest", response_model=NearestOut)
def list_nearest(
    lat: Optional[float] = Query(default=None),
    lng: Optional[float] = Query(default=None),
    type: Optional[str] = Query(default=None),
    repository: Repository = Depends(get_repository),
) -> NearestOut:
    try:
        items = nearest_facilities(repository, lat, lng, type)
    except QueryValidationError as exc:
        raise HTTPException(status_code=http_status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except QueryFailedError as exc:
        raise HTTPException(status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    return NearestOut(items=items)


@app.get("/places/{place_id}/verification", response_model=VerificationStatus)
def get_verification(
    place_id: str,
    repository: Repository = Depends(get_repository),
) -> VerificationStatus:
    try:
        return verification_status(repository, place_id)
    except QueryValidationError as exc:
        raise HTTPException(status_code=http_status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except QueryFailedError as exc:
        raise HTTPException(status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
