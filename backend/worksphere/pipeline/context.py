"""Context stage: turn a free-text request into structured search parameters."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable
from typing import Any, Protocol

from pydantic import ValidationError

from .. import llm_client
from ..metrics import pipeline_fallbacks_total
from ..models import (
    AMENITIES,
    SEARCH_CATEGORIES,
    WORK_TYPES,
    LatLng,
    SearchParameters,
)
from ..settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_RADIUS_METERS = 2000
METERS_PER_MILE = 1609
METERS_PER_KM = 1000
# SearchParameters.radius upper bound
MAX_RADIUS_METERS = 50_000

# Vague proximity words, checked after explicit distances
RADIUS_WORDS: tuple[tuple[str, int], ...] = (
    ("nearby", 1000),
    ("close", 2000),
)

_DISTANCE_RE = re.compile(
    r"(?P<value>\d+(?:\.\d+)?)\s*"
    r"(?P<unit>miles?|mi|kilometers?|kilometres?|kms?|meters?|metres?|m)\b",
    re.IGNORECASE,
)
_COORDS_RE = re.compile(r"(-?\d{1,2}\.\d+)\s*,\s*(-?\d{1,3}\.\d+)")

# Checked in order; the first work type with a hit wins.
WORK_TYPE_KEYWORDS: dict[str, list[str]] = {
    "calls": ["call", "zoom", "video chat", "video conference", "phone", "interview", "webinar"],
    "collaboration": [
        "meeting",
        "meet up",
        "group",
        "team",
        "collaborat",
        "brainstorm",
        "study session",
        "with friends",
        "with colleagues",
    ],
    "casual": ["casual", "relax", "chill", "hang out", "laid back", "laid-back", "browse"],
    "focus": ["focus", "quiet", "deep work", "concentrat", "study", "studying", "productive", "write"],
}

AMENITY_KEYWORDS: dict[str, list[str]] = {
    "wifi": ["wifi", "wi-fi", "wi fi", "internet", "wireless"],
    "outlets": ["outlet", "plug", "socket", "power", "charg"],
    "quiet": ["quiet", "silent", "calm", "peaceful", "no noise"],
    "parking": ["parking", "park my car", "car park"],
    "outdoor": ["outdoor", "outside", "terrace", "patio", "garden", "open air"],
}

CATEGORY_KEYWORDS: dict[str, list[str]] = {
    "cafe": ["cafe", "café", "coffee", "espresso", "tea house", "bakery"],
    "coworking": ["cowork", "co-work", "shared office", "hot desk", "workspace rental"],
    "library": ["library", "libraries", "reading room"],
}

TIME_OF_DAY_KEYWORDS: dict[str, list[str]] = {
    "morning": ["morning", "breakfast", "early"],
    "afternoon": ["afternoon", "lunch", "midday"],
    "evening": ["evening", "tonight", "night", "late"],
}


def keyword_pattern(needles: Iterable[str]) -> re.Pattern[str]:
    """
    Match any needle at the start of a word, so stems like "collaborat"
    still cover "collaborate" while "phone" stays out of "headphones".
    """
    alternation = "|".join(re.escape(n) for n in sorted(needles, key=len, reverse=True))
    return re.compile(rf"\b(?:{alternation})", re.IGNORECASE)


def _compile(mapping: dict[str, list[str]]) -> dict[str, re.Pattern[str]]:
    return {label: keyword_pattern(needles) for label, needles in mapping.items()}


_WORK_TYPE_PATTERNS = _compile(WORK_TYPE_KEYWORDS)
_AMENITY_PATTERNS = _compile(AMENITY_KEYWORDS)
_CATEGORY_PATTERNS = _compile(CATEGORY_KEYWORDS)
_TIME_OF_DAY_PATTERNS = _compile(TIME_OF_DAY_KEYWORDS)


def clamp_radius(meters: int) -> int:
    return min(MAX_RADIUS_METERS, meters)


def parse_radius(text: str) -> int | None:
    """Meters for a distance phrase (capped at MAX_RADIUS_METERS), or None when the text names none."""
    lowered = text.lower()
    match = _DISTANCE_RE.search(lowered)
    if match:
        value = float(match.group("value"))
        unit = match.group("unit")
        if unit.startswith("mi"):
            return clamp_radius(int(round(value * METERS_PER_MILE)))
        if unit.startswith("k"):
            return clamp_radius(int(round(value * METERS_PER_KM)))
        return clamp_radius(int(round(value)))
    for word, meters in RADIUS_WORDS:
        if re.search(rf"\b{word}\b", lowered):
            return meters
    return None


def _match_keywords(text: str, patterns: dict[str, re.Pattern[str]]) -> list[str]:
    return [label for label, pattern in patterns.items() if pattern.search(text)]


def default_parameters(
    user_message: str = "",
    user_location: LatLng | None = None,
    reasoning: str = "Default parameters",
) -> SearchParameters:
    return SearchParameters(
        work_type="focus",
        amenities=["wifi"],
        location=user_location,
        radius=DEFAULT_RADIUS_METERS,
        category=list(SEARCH_CATEGORIES),
        intent=user_message,
        reasoning=reasoning,
    )


class Extractor(Protocol):
    name: str

    async def extract(
        self, user_message: str, user_location: LatLng | None
    ) -> SearchParameters: ...


class RuleBasedExtractor:
    """Deterministic keyword extractor; the default backend and the offline one."""

    name = "rules"

    async def extract(
        self, user_message: str, user_location: LatLng | None
    ) -> SearchParameters:
        lowered = user_message.lower()

        work_types = _match_keywords(lowered, _WORK_TYPE_PATTERNS)
        work_type = work_types[0] if work_types else "focus"

        amenities = _match_keywords(lowered, _AMENITY_PATTERNS) or ["wifi"]
        categories = _match_keywords(lowered, _CATEGORY_PATTERNS) or list(SEARCH_CATEGORIES)
        times = _match_keywords(lowered, _TIME_OF_DAY_PATTERNS)
        radius = parse_radius(lowered) or DEFAULT_RADIUS_METERS

        location = _explicit_location(user_message) or user_location

        reasons = [f"work type {work_type}"]
        if work_types:
            reasons[0] += " from wording"
        reasons.append(f"radius {radius}m")
        if location is None:
            reasons.append("no location available")

        return SearchParameters(
            work_type=work_type,
            amenities=amenities,
            location=location,
            radius=radius,
            category=categories,
            time_of_day=times[0] if times else None,
            intent=user_message.strip(),
            reasoning=", ".join(reasons),
        )


def _explicit_location(text: str) -> LatLng | None:
    match = _COORDS_RE.search(text)
    if not match:
        return None
    try:
        return LatLng(lat=float(match.group(1)), lng=float(match.group(2)))
    except ValidationError:
        return None


EXTRACTOR_PROMPT = """You are the Context Agent for WorkSphere, a workspace finder.
Extract search parameters from the user's message.

Fields:
1. workType: "focus" | "calls" | "collaboration" | "casual"
2. amenities: subset of ["wifi", "outlets", "quiet", "parking", "outdoor"]
3. radius: meters (nearby=1000, close=2000, "2 miles"=3218, "3 km"=3000)
4. category: subset of ["cafe", "coworking", "library"]
5. timeOfDay: "morning" | "afternoon" | "evening" | null
6. location: "near me" unless the user names coordinates

Output ONLY valid JSON:
{"intent": "Find quiet cafe", "parameters": {"workType": "focus", "amenities": ["wifi", "quiet"], "radius": 2000, "category": ["cafe"], "timeOfDay": null, "location": "near me"}, "reasoning": "User needs a quiet focus space"}"""


class LLMExtractor:
    """Chat-completion backed extractor; output is schema-checked before use."""

    name = "llm"

    async def extract(
        self, user_message: str, user_location: LatLng | None
    ) -> SearchParameters:
        location_line = (
            f"{user_location.lat}, {user_location.lng}" if user_location else "unknown"
        )
        text = await llm_client.complete(
            EXTRACTOR_PROMPT,
            [
                {
                    "role": "user",
                    "content": f'Message: "{user_message}"\nLocation: {location_line}',
                }
            ],
            temperature=0.4,
            json_mode=True,
        )
        payload = llm_client.extract_json_object(text)
        return _parameters_from_payload(payload, user_message, user_location)


def _parameters_from_payload(
    payload: dict[str, Any], user_message: str, user_location: LatLng | None
) -> SearchParameters:
    params = payload.get("parameters")
    if not isinstance(params, dict):
        raise ValueError("missing 'parameters' object")

    work_type = str(params.get("workType") or "focus").lower()
    if work_type not in WORK_TYPES:
        work_type = "focus"
    amenities = [a for a in _as_list(params.get("amenities")) if a in AMENITIES]
    categories = [c for c in _as_list(params.get("category")) if c in SEARCH_CATEGORIES]

    radius_raw = params.get("radius")
    if isinstance(radius_raw, (int, float)) and radius_raw > 0:
        radius = clamp_radius(max(1, int(round(radius_raw))))
    else:
        radius = parse_radius(str(radius_raw or "")) or DEFAULT_RADIUS_METERS

    time_of_day = params.get("timeOfDay")
    location = _coerce_location(params.get("location")) or user_location

    return SearchParameters(
        work_type=work_type,
        amenities=amenities or ["wifi"],
        location=location,
        radius=radius,
        category=categories or list(SEARCH_CATEGORIES),
        time_of_day=time_of_day if time_of_day in ("morning", "afternoon", "evening") else None,
        intent=str(payload.get("intent") or user_message),
        reasoning=str(payload.get("reasoning") or ""),
    )


def _as_list(value: Any) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [str(item).strip().lower() for item in value if item]


def _coerce_location(value: Any) -> LatLng | None:
    if not isinstance(value, dict):
        return None
    try:
        return LatLng.model_validate(value)
    except ValidationError:
        return None


async def extract_context(
    user_message: str,
    user_location: LatLng | None = None,
    extractor: Extractor | None = None,
) -> SearchParameters:
    """Never raises: every failure resolves to the default parameters."""
    extractor = extractor or RuleBasedExtractor()
    try:
        params = await extractor.extract(user_message, user_location)
    except (llm_client.LLMUnavailable, ValueError, ValidationError, json.JSONDecodeError) as exc:
        logger.warning("Context extraction via %s failed: %s", extractor.name, exc)
        pipeline_fallbacks_total.labels(stage="context").inc()
        return default_parameters(user_message, user_location, "Unable to parse context, using defaults")
    except Exception:
        logger.exception("Context extraction via %s crashed", extractor.name)
        pipeline_fallbacks_total.labels(stage="context").inc()
        return default_parameters(user_message, user_location, "Error in context agent, using defaults")

    if params.location is None and user_location is not None:
        params = params.model_copy(update={"location": user_location})
    return params


def build_extractor(config: Settings) -> Extractor:
    if config.EXTRACTOR_BACKEND == "llm" and config.llm_configured:
        return LLMExtractor()
    return RuleBasedExtractor()


__all__ = [
    "DEFAULT_RADIUS_METERS",
    "MAX_RADIUS_METERS",
    "build_extractor",
    "Extractor",
    "LLMExtractor",
    "RuleBasedExtractor",
    "default_parameters",
    "extract_context",
    "keyword_pattern",
    "parse_radius",
]
