from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request, status

from ...crowdsource import RatingStore
from ...models import (
    SEARCH_CATEGORIES,
    LatLng,
    SearchParameters,
    VenueFilters,
    VenueRatingCreate,
    VenueRatingSummary,
    VenueSearchResponse,
)
from ...pipeline import WorkspacePipeline
from ..types import CategoryQuery, Latitude, Longitude, RadiusQuery, VenueId, WorkTypeQuery

router = APIRouter(tags=["venues"])


def _ratings(request: Request) -> RatingStore:
    return request.app.state.ratings


@router.get("/venues", response_model=VenueSearchResponse)
async def search_venues(
    request: Request,
    lat: Latitude,
    lng: Longitude,
    radius: RadiusQuery = 2000,
    category: CategoryQuery = None,
    wifi: bool = False,
    outlets: bool = False,
    quiet: bool = False,
    work_type: WorkTypeQuery = "focus",
):
    """Fetch and score venues around a point without going through chat."""
    amenities = [name for name, wanted in (("wifi", wifi), ("outlets", outlets), ("quiet", quiet)) if wanted]
    params = SearchParameters(
        work_type=work_type,
        amenities=amenities or ["wifi"],
        location=LatLng(lat=lat, lng=lng),
        radius=radius,
        category=category or list(SEARCH_CATEGORIES),
        intent="direct venue search",
    )
    filters = VenueFilters(wifi=wifi, outlets=outlets, quiet=quiet)
    pipeline: WorkspacePipeline = request.app.state.pipeline
    fetched, reasoning = await pipeline.search(params, None if filters.is_empty() else filters)
    return VenueSearchResponse(
        venues=reasoning.ranked_venues,
        summary=reasoning.summary,
        meta=fetched.meta,
    )


@router.post(
    "/venues/{venue_id}/ratings",
    response_model=VenueRatingSummary,
    status_code=status.HTTP_201_CREATED,
)
async def rate_venue(venue_id: VenueId, payload: VenueRatingCreate, request: Request):
    amenities = await _ratings(request).submit(venue_id, payload)
    return VenueRatingSummary(venue_id=venue_id, amenities=amenities)


@router.get("/venues/{venue_id}/ratings", response_model=VenueRatingSummary)
async def venue_ratings(venue_id: VenueId, request: Request):
    amenities = await _ratings(request).summary(venue_id)
    if amenities.rating_count == 0:
        raise HTTPException(404, "No ratings for this venue yet")
    return VenueRatingSummary(venue_id=venue_id, amenities=amenities)
