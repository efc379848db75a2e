from fastapi import APIRouter, Depends, Request, status
from typing import List

from ..observability import SHORTEN_TOTAL
from ..schemas import ErrorResponse, ShortUrlCreate, ShortUrlCreated, ShortUrlStats, ShortUrlListItem
from ..services.rate_limiter import RateLimiter
from ..services.shortening import ShorteningService

router = APIRouter()

ERROR_RESPONSES = {code: {"model": ErrorResponse} for code in (400, 404, 409, 410, 429, 500)}

def get_service(request: Request) -> ShorteningService:
    return request.app.state.service

@router.post(
    "/shorturls",
    response_model=ShortUrlCreated,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(RateLimiter())],
    responses={c: ERROR_RESPONSES[c] for c in (400, 409, 429, 500)},
)
async def create_short_url(
    body: ShortUrlCreate,
    service: ShorteningService = Depends(get_service)
):
    result = await service.shorten(body.url, validity_minutes=body.validity, custom_code=body.shortcode)
    SHORTEN_TOTAL.inc()
    return ShortUrlCreated(short_link=result.short_link, expiry=result.expiry_at)

@router.get(
    "/shorturls/{shortcode}",
    response_model=ShortUrlStats,
    responses={c: ERROR_RESPONSES[c] for c in (404, 410, 500)},
)
async def get_short_url_stats(
    shortcode: str,
    service: ShorteningService = Depends(get_service)
):
    stats = await service.stats(shortcode)
    return ShortUrlStats.from_stats(stats)

@router.get("/api/urls", response_model=List[ShortUrlListItem])
async def list_short_urls(service: ShorteningService = Depends(get_service)):
    return [ShortUrlListItem.from_summary(s) for s in await service.list_all()]
