"""Data stage: fetch nearby venues from Overpass and normalize them."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from ..geo import haversine_meters
from ..metrics import pipeline_fallbacks_total, venue_source_requests_total
from ..models import (
    CrowdsourcedAmenities,
    FetchMeta,
    FetchResult,
    LatLng,
    SearchParameters,
    Venue,
    VenueFilters,
)
from ..settings import settings

logger = logging.getLogger(__name__)

WIFI_YES_VALUES = {"yes", "wlan", "wifi", "free", "customers"}
WIFI_NO_VALUES = {"no"}
# Tag value -> wifi_quality; OSM only says "has wifi", not how good it is
WIFI_PRESENT_QUALITY = 3
WIFI_ABSENT_QUALITY = 1
WIFI_FILTER_MIN_QUALITY = 3

CATEGORY_SELECTORS: dict[str, list[str]] = {
    "cafe": ['["amenity"="cafe"]'],
    "coworking": ['["amenity"="coworking_space"]', '["office"="coworking"]'],
    "library": ['["amenity"="library"]'],
}


class VenueSourceUnavailable(RuntimeError):
    """Every configured venue endpoint failed."""


class VenueSource(Protocol):
    name: str

    async def search(self, params: SearchParameters) -> list[dict[str, Any]]: ...


def build_overpass_query(params: SearchParameters, timeout_seconds: int = 25) -> str:
    if params.location is None:
        raise ValueError("location is required to build a venue query")
    around = f"(around:{params.radius},{params.location.lat},{params.location.lng})"
    lines: list[str] = []
    for category in params.category:
        for selector in CATEGORY_SELECTORS.get(category, []):
            lines.append(f"  node{selector}{around};")
            lines.append(f"  way{selector}{around};")
    body = "\n".join(lines)
    return f"[out:json][timeout:{timeout_seconds}];\n(\n{body}\n);\nout center body;"


class OverpassVenueSource:
    """POSTs Overpass QL to each endpoint in order until one answers."""

    name = "overpass"

    def __init__(
        self,
        endpoints: Sequence[str] | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.endpoints = list(endpoints if endpoints is not None else settings.overpass_endpoints)
        self.timeout = timeout if timeout is not None else settings.OVERPASS_TIMEOUT_SECONDS
        self._transport = transport

    async def search(self, params: SearchParameters) -> list[dict[str, Any]]:
        query = build_overpass_query(params, timeout_seconds=int(self.timeout))
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for endpoint in self.endpoints:
                start = time.perf_counter()
                try:
                    response = await client.post(
                        endpoint,
                        data={"data": query},
                        headers={"Accept": "application/json"},
                    )
                    response.raise_for_status()
                    payload = response.json()
                except (httpx.HTTPError, ValueError) as exc:
                    venue_source_requests_total.labels(endpoint=endpoint, result="error").inc()
                    logger.warning(
                        "Overpass endpoint %s failed after %.0fms: %s",
                        endpoint,
                        (time.perf_counter() - start) * 1000,
                        exc,
                    )
                    continue
                venue_source_requests_total.labels(endpoint=endpoint, result="ok").inc()
                elements = payload.get("elements") if isinstance(payload, dict) else None
                return elements if isinstance(elements, list) else []
        raise VenueSourceUnavailable(f"all {len(self.endpoints)} Overpass endpoints failed")


def _category_from_tags(tags: Mapping[str, Any]) -> str:
    amenity = tags.get("amenity")
    if amenity == "cafe":
        return "cafe"
    if amenity == "library":
        return "library"
    if amenity == "coworking_space" or tags.get("office") == "coworking":
        return "coworking"
    return "other"


def _address_from_tags(tags: Mapping[str, Any]) -> str | None:
    street = " ".join(
        str(part) for part in (tags.get("addr:housenumber"), tags.get("addr:street")) if part
    )
    parts = [street, tags.get("addr:city"), tags.get("addr:postcode")]
    address = ", ".join(str(part) for part in parts if part)
    return address or None


def _wifi_from_tags(tags: Mapping[str, Any]) -> tuple[bool | None, int | None]:
    raw = tags.get("internet_access") or tags.get("wifi")
    if raw is None:
        return None, None
    value = str(raw).strip().lower()
    if value in WIFI_YES_VALUES:
        return True, WIFI_PRESENT_QUALITY
    if value in WIFI_NO_VALUES:
        return False, WIFI_ABSENT_QUALITY
    return None, None


def _outlets_from_tags(tags: Mapping[str, Any]) -> bool | None:
    values = [
        str(value).strip().lower()
        for key, value in tags.items()
        if key.startswith("socket:") or key == "power_supply"
    ]
    if not values:
        return None
    return any(value != "no" for value in values)


def _rating_from_tags(tags: Mapping[str, Any]) -> float | None:
    try:
        rating = float(tags["rating"])
    except (KeyError, TypeError, ValueError):
        return None
    return rating if 0 <= rating <= 5 else None


def normalize_element(element: Mapping[str, Any], origin: LatLng) -> Venue | None:
    """One Overpass element to a Venue, or None when it is unusable."""
    if not isinstance(element, Mapping) or element.get("id") is None:
        return None
    lat = element.get("lat")
    lng = element.get("lon")
    center = element.get("center")
    if (lat is None or lng is None) and isinstance(center, Mapping):
        lat, lng = center.get("lat"), center.get("lon")
    tags = element.get("tags") if isinstance(element.get("tags"), Mapping) else {}
    category = _category_from_tags(tags)
    has_wifi, wifi_quality = _wifi_from_tags(tags)
    try:
        position = LatLng(lat=float(lat), lng=float(lng))
        return Venue(
            id=str(element["id"]),
            place_id=f"osm-{element['id']}",
            name=str(tags.get("name") or f"Unnamed {category}"),
            position=position,
            category=category,
            address=_address_from_tags(tags),
            wifi_quality=wifi_quality,
            has_wifi=has_wifi,
            has_outlets=_outlets_from_tags(tags),
            noise_level=None,
            rating=_rating_from_tags(tags),
            distance=haversine_meters(origin, position),
            opening_hours=tags.get("opening_hours"),
        )
    except (TypeError, ValueError, ValidationError):
        return None


def merge_overrides(
    venues: Iterable[Venue], overrides: Mapping[str, CrowdsourcedAmenities] | None
) -> list[Venue]:
    if not overrides:
        return list(venues)
    merged: list[Venue] = []
    for venue in venues:
        override = overrides.get(venue.override_key) or overrides.get(venue.id)
        if override is None or override.rating_count == 0:
            merged.append(venue)
            continue
        update: dict[str, Any] = {"crowdsourced": True}
        if override.wifi_quality is not None:
            update["wifi_quality"] = override.wifi_quality
            update["has_wifi"] = True
        if override.has_outlets is not None:
            update["has_outlets"] = override.has_outlets
        if override.noise_level is not None:
            update["noise_level"] = override.noise_level
        merged.append(venue.model_copy(update=update))
    return merged


def apply_filters(venues: Iterable[Venue], filters: VenueFilters | None) -> list[Venue]:
    kept = list(venues)
    if filters is None:
        return kept
    if filters.wifi:
        kept = [
            v
            for v in kept
            if v.has_wifi is True or (v.wifi_quality or 0) >= WIFI_FILTER_MIN_QUALITY
        ]
    if filters.outlets:
        kept = [v for v in kept if v.has_outlets is True]
    if filters.quiet:
        kept = [v for v in kept if v.noise_level == "quiet"]
    return kept


def _by_distance(venue: Venue) -> float:
    return venue.distance if venue.distance is not None else float("inf")


OverrideLookup = Callable[[Sequence[str]], Awaitable[Mapping[str, CrowdsourcedAmenities]]]


async def _lookup_overrides(
    venues: Sequence[Venue], lookup: OverrideLookup
) -> Mapping[str, CrowdsourcedAmenities]:
    keys = [venue.override_key for venue in venues]
    if not keys:
        return {}
    try:
        return await lookup(keys)
    except Exception:
        logger.exception("Rating lookup failed; continuing without crowdsourced data")
        pipeline_fallbacks_total.labels(stage="data").inc()
        return {}


async def fetch_venues(
    params: SearchParameters,
    filters: VenueFilters | None = None,
    *,
    source: VenueSource | None = None,
    overrides: Mapping[str, CrowdsourcedAmenities] | None = None,
    override_lookup: OverrideLookup | None = None,
) -> FetchResult:
    """
    Never raises: missing location yields source "none", total failure "error".

    `override_lookup` is asked only for the venues the source just returned;
    if it fails the venues go out with their OSM attributes.
    """
    if params.location is None:
        return FetchResult(venues=[], meta=FetchMeta(source="none", total=0))

    source = source or OverpassVenueSource()
    try:
        elements = await source.search(params)
    except VenueSourceUnavailable as exc:
        logger.error("Venue fetch failed: %s", exc)
        return FetchResult(venues=[], meta=FetchMeta(source="error", total=0))
    except Exception:
        logger.exception("Venue source %s raised unexpectedly", source.name)
        return FetchResult(venues=[], meta=FetchMeta(source="error", total=0))

    venues: list[Venue] = []
    dropped = 0
    for element in elements:
        venue = normalize_element(element, params.location)
        if venue is None:
            dropped += 1
            continue
        venues.append(venue)
    if dropped:
        logger.info("Dropped %d malformed venue records", dropped)

    if override_lookup is not None:
        overrides = {**(overrides or {}), **await _lookup_overrides(venues, override_lookup)}

    venues = apply_filters(merge_overrides(venues, overrides), filters)
    venues.sort(key=_by_distance)
    venues = venues[: settings.venue_result_limit]
    return FetchResult(venues=venues, meta=FetchMeta(source=source.name, total=len(venues)))


__all__ = [
    "OverpassVenueSource",
    "VenueSource",
    "VenueSourceUnavailable",
    "apply_filters",
    "build_overpass_query",
    "fetch_venues",
    "merge_overrides",
    "normalize_element",
]
