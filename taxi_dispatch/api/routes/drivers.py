"""
Driver statistics
=================

GET /api/v1/drivers/{driver_id}/stats   -- completed orders, ratings, average
GET /api/v1/drivers/{driver_id}/badges  -- earned badge labels
"""

from fastapi import APIRouter, Depends, Request

from taxi_dispatch.api.dependencies import get_rating_service
from taxi_dispatch.api.middleware import limiter
from taxi_dispatch.api.schemas import DriverBadgesResponse, DriverStatsResponse
from taxi_dispatch.config import settings
from taxi_dispatch.services.ratings import RatingService

router = APIRouter(prefix="/drivers", tags=["drivers"])


@router.get(
    "/{driver_id}/stats",
    response_model=DriverStatsResponse,
    summary="Aggregated driver statistics",
)
@limiter.limit(settings.api_rate_limit)
async def get_driver_stats(
    request: Request,
    driver_id: str,
    ratings: RatingService = Depends(get_rating_service),
):
    return await ratings.driver_stats(driver_id)


@router.get(
    "/{driver_id}/badges",
    response_model=DriverBadgesResponse,
    summary="Badges earned by a driver",
)
@limiter.limit(settings.api_rate_limit)
async def get_driver_badges(
    request: Request,
    driver_id: str,
    ratings: RatingService = Depends(get_rating_service),
):
    return DriverBadgesResponse(badges=await ratings.driver_badges(driver_id))
