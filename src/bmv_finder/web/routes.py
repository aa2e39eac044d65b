"""JSON API routes."""

import secrets
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from bmv_finder.analysis.bmv import calculate_bmv
from bmv_finder.config import Settings
from bmv_finder.db import SaleQueries, SaleStore
from bmv_finder.errors import StorageError
from bmv_finder.ingest.coordinator import UpdateCoordinator
from bmv_finder.logging import get_logger
from bmv_finder.models import Listing, RentalComparable

logger = get_logger(__name__)

router = APIRouter()


class BMVRequest(BaseModel):
    """Body of POST /api/bmv."""

    listing: Listing
    rentals: list[RentalComparable] = Field(default_factory=list)


def _get_store(request: Request) -> SaleStore:
    return request.app.state.store  # type: ignore[no-any-return]


def _get_settings(request: Request) -> Settings:
    return request.app.state.settings  # type: ignore[no-any-return]


def _dump(model: BaseModel) -> Any:
    return model.model_dump(mode="json", by_alias=True)


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status_code)


def _authorized(request: Request, settings: Settings) -> bool:
    token = settings.update_token.get_secret_value()
    if not token:
        return True
    supplied = request.headers.get("authorization", "")
    return secrets.compare_digest(supplied, f"Bearer {token}")


@router.get("/health")
async def health_check() -> JSONResponse:
    """Liveness probe."""
    return JSONResponse({"status": "ok"})


@router.get("/api/search")
async def search(
    request: Request,
    q: str = "",
    limit: int | None = None,
    include_retracted: bool = False,
) -> JSONResponse:
    """Sold prices for a postcode, postcode prefix or town/district."""
    if not q.strip():
        return _error("Query is required", 400)
    limit = limit if limit is not None else _get_settings(request).search_default_limit

    try:
        sales = await SaleQueries(_get_store(request)).search(
            q, limit, include_retracted=include_retracted
        )
    except StorageError:
        logger.error("search_query_failed", query=q, exc_info=True)
        return _error("Failed to search sold prices. Please try again.", 500)

    return JSONResponse({"data": [_dump(s) for s in sales], "count": len(sales)})


@router.get("/api/trend")
async def trend(request: Request, q: str = "") -> JSONResponse:
    """Yearly average price and year-on-year change."""
    if not q.strip():
        return _error("Query is required", 400)
    try:
        points = await SaleQueries(_get_store(request)).trend(q)
    except StorageError:
        logger.error("trend_query_failed", query=q, exc_info=True)
        return _error("Failed to load price trend. Please try again.", 500)
    return JSONResponse({"data": [_dump(p) for p in points]})


@router.get("/api/property-history")
async def property_history(
    request: Request,
    postcode: str = "",
    paon: str | None = None,
    saon: str | None = None,
    street: str | None = None,
) -> JSONResponse:
    """Every sale of one address with first-to-last growth."""
    if not postcode.strip():
        return _error("Postcode is required", 400)
    try:
        history = await SaleQueries(_get_store(request)).property_history(
            postcode=postcode, paon=paon, saon=saon, street=street
        )
    except StorageError:
        logger.error("history_query_failed", postcode=postcode, exc_info=True)
        return _error("Failed to load property history. Please try again.", 500)
    return JSONResponse(_dump(history))


@router.get("/api/area-summary")
async def area_summary(request: Request, q: str = "") -> JSONResponse:
    if not q.strip():
        return _error("Query is required", 400)
    try:
        summary = await SaleQueries(_get_store(request)).area_summary(q)
    except StorageError:
        logger.error("area_summary_failed", query=q, exc_info=True)
        return _error("Failed to load area summary. Please try again.", 500)
    return JSONResponse(_dump(summary))


@router.post("/api/update-land-registry")
async def update_land_registry(request: Request) -> JSONResponse:
    """Apply the latest monthly update. 503 means "not published yet, retry later"."""
    settings = _get_settings(request)
    if not _authorized(request, settings):
        logger.warning("unauthorized_update_attempt")
        return _error("Unauthorized", 401)

    result = await UpdateCoordinator(_get_store(request), settings).run_update()
    if result.success:
        status = 200
    elif result.retry_later:
        status = 503
    else:
        status = 500
    return JSONResponse(_dump(result), status_code=status)


@router.post("/api/bmv")
async def bmv(request: Request, body: BMVRequest) -> JSONResponse:
    """Compare a listing with sold prices in its outward code."""
    try:
        sold = await SaleQueries(_get_store(request)).sold_comparables(body.listing.postcode)
    except StorageError:
        logger.error("bmv_comparables_failed", postcode=body.listing.postcode, exc_info=True)
        return _error("Failed to load comparable sales. Please try again.", 500)
    return JSONResponse(_dump(calculate_bmv(body.listing, sold, body.rentals)))


@router.get("/api/db/check")
async def db_check(request: Request) -> JSONResponse:
    """Report whether the store answers and how many records it holds."""
    store = _get_store(request)
    try:
        records = await SaleQueries(store).count()
    except StorageError as e:
        logger.warning("db_check_failed", error=str(e))
        return JSONResponse({"connected": False, "store": store.name}, status_code=503)
    return JSONResponse({"connected": True, "store": store.name, "records": records})
