"""Action stage: turn ranked venues into a chat message and map updates."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from pydantic import ValidationError

from ..geo import centroid
from ..models import (
    ActionResult,
    LatLng,
    MapMarker,
    MapUpdates,
    MapView,
    MarkerAmenities,
    RouteDestination,
    RoutePlan,
    ScoredVenue,
)

logger = logging.getLogger(__name__)

MAX_MARKERS = 10
VIEW_SAMPLE = 5
ROUTE_DESTINATIONS = 3
RUNNERS_UP = 3
DEFAULT_ZOOM = 14

RESULT_SUGGESTIONS = [
    "Get directions to the top pick",
    "Show me reviews for these places",
    "Find something closer",
    "Show me more options",
]
GENERIC_SUGGESTIONS = [
    "Search within a larger radius",
    "Show me any cafes nearby",
    "Find a library instead",
]


def format_distance(meters: float | None) -> str:
    if meters is None:
        return "unknown distance"
    if meters < 1000:
        return f"{round(meters)}m"
    return f"{meters / 1000:.1f}km"


def amenity_badges(venue: ScoredVenue) -> list[str]:
    badges: list[str] = []
    if venue.wifi_quality is not None and venue.wifi_quality >= 4:
        badges.append("Great WiFi")
    elif venue.has_wifi or (venue.wifi_quality or 0) >= 3:
        badges.append("WiFi")
    if venue.has_outlets:
        badges.append("Outlets")
    if venue.noise_level == "quiet":
        badges.append("Quiet")
    elif venue.noise_level == "loud":
        badges.append("Lively")
    if venue.crowdsourced:
        badges.append("Community verified")
    return badges


def build_markers(ranked: Sequence[ScoredVenue]) -> list[MapMarker]:
    markers: list[MapMarker] = []
    for venue in ranked[:MAX_MARKERS]:
        try:
            markers.append(
                MapMarker(
                    id=venue.id,
                    position=venue.position,
                    name=venue.name,
                    category=venue.category,
                    score=venue.score,
                    amenities=MarkerAmenities(
                        wifi_quality=venue.wifi_quality,
                        has_outlets=venue.has_outlets,
                        noise_level=venue.noise_level,
                    ),
                    rating=venue.rating,
                    address=venue.address,
                    distance=format_distance(venue.distance),
                )
            )
        except (AttributeError, TypeError, ValueError, ValidationError) as exc:
            logger.warning("Skipping marker for malformed venue: %s", exc)
    return markers


def build_view(ranked: Sequence[ScoredVenue], user_location: LatLng | None) -> MapView | None:
    """Centroid of the top venues, else the user; None leaves the map where it is."""
    points: list[LatLng] = []
    for venue in ranked[:VIEW_SAMPLE]:
        position = getattr(venue, "position", None)
        if isinstance(position, LatLng):
            points.append(position)
    center = centroid(points) or user_location
    if center is None:
        return None
    return MapView(center=center, zoom=DEFAULT_ZOOM, animate=True)


def build_routes(ranked: Sequence[ScoredVenue], user_location: LatLng | None) -> RoutePlan | None:
    if user_location is None or not ranked:
        return None
    destinations: list[RouteDestination] = []
    for venue in ranked[:ROUTE_DESTINATIONS]:
        try:
            destinations.append(
                RouteDestination(id=venue.id, name=venue.name, position=venue.position)
            )
        except (AttributeError, ValidationError) as exc:
            logger.warning("Skipping route to malformed venue: %s", exc)
    if not destinations:
        return None
    return RoutePlan(origin=user_location, destinations=destinations, mode="walking")


def _top_pick_block(venue: ScoredVenue) -> str:
    lines = [
        f"**Top Pick: {venue.name}**",
        venue.address or "Address not available",
        f"Score: {venue.score}/10 · {format_distance(venue.distance)} away",
    ]
    badges = amenity_badges(venue)
    if badges:
        lines.append(" · ".join(badges))
    if venue.reasoning:
        lines.append(venue.reasoning)
    return "\n".join(lines)


def _runner_up_line(index: int, venue: ScoredVenue) -> str:
    return f"{index}. **{venue.name}** ({venue.score}/10, {format_distance(venue.distance)})"


def build_message(ranked: Sequence[ScoredVenue], user_query: str) -> str:
    blocks: list[str] = []
    for position, venue in enumerate(ranked):
        try:
            blocks.append(_top_pick_block(venue))
        except (AttributeError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed top pick candidate: %s", exc)
            continue
        break
    else:
        return (
            f'I couldn\'t find any workspaces matching "{user_query}". '
            "Try expanding your search radius or adjusting your criteria."
        )

    # Candidates before the top pick already failed to render
    runners: list[str] = []
    for venue in ranked[position + 1 :]:
        try:
            runners.append(_runner_up_line(len(runners) + 1, venue))
        except (AttributeError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed runner-up: %s", exc)

    renderable = 1 + len(runners)
    noun = "workspace" if renderable == 1 else "workspaces"
    parts = [f"Found **{renderable}** {noun} for you.", blocks[0]]
    if runners:
        parts.append("**Other options:**\n" + "\n".join(runners[:RUNNERS_UP]))
    return "\n\n".join(parts)


def build_suggestions(has_results: bool) -> list[str]:
    if has_results:
        return [*RESULT_SUGGESTIONS, *GENERIC_SUGGESTIONS[:1]]
    return list(GENERIC_SUGGESTIONS)


def present(
    ranked: Sequence[ScoredVenue],
    user_query: str,
    user_location: LatLng | None = None,
    show_routes: bool = False,
) -> ActionResult:
    markers = build_markers(ranked)
    routes = build_routes(ranked, user_location) if show_routes else None
    return ActionResult(
        message=build_message(ranked, user_query),
        map_updates=MapUpdates(
            markers=markers,
            view=build_view(ranked, user_location),
            routes=routes,
        ),
        suggestions=build_suggestions(bool(markers)),
    )


__all__ = [
    "amenity_badges",
    "build_markers",
    "build_message",
    "build_routes",
    "build_suggestions",
    "build_view",
    "format_distance",
    "present",
]
