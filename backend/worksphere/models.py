from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

WorkType = Literal["focus", "calls", "collaboration", "casual"]
VenueCategory = Literal["cafe", "coworking", "library", "other"]
SearchCategory = Literal["cafe", "coworking", "library"]
NoiseLevel = Literal["quiet", "moderate", "loud"]
Amenity = Literal["wifi", "outlets", "quiet", "parking", "outdoor"]
TimeOfDay = Literal["morning", "afternoon", "evening"]

WORK_TYPES: tuple[str, ...] = ("focus", "calls", "collaboration", "casual")
SEARCH_CATEGORIES: tuple[str, ...] = ("cafe", "coworking", "library")
AMENITIES: tuple[str, ...] = ("wifi", "outlets", "quiet", "parking", "outdoor")


class LatLng(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


# --- Venues ---
class Venue(BaseModel):
    id: str
    place_id: str | None = None
    name: str
    position: LatLng
    category: VenueCategory = "other"
    address: str | None = None
    wifi_quality: int | None = Field(default=None, ge=1, le=5)
    has_wifi: bool | None = None
    has_outlets: bool | None = None
    noise_level: NoiseLevel | None = None
    rating: float | None = Field(default=None, ge=0, le=5)
    distance: float | None = Field(default=None, ge=0)
    opening_hours: str | None = None
    crowdsourced: bool = False

    @property
    def override_key(self) -> str:
        return self.place_id or self.id


class ScoreBreakdown(BaseModel):
    wifi: float
    noise: float
    outlets: float
    rating: float
    distance: float


class ScoredVenue(Venue):
    score: float
    score_breakdown: ScoreBreakdown
    reasoning: str


class CrowdsourcedAmenities(BaseModel):
    """Aggregated user ratings for one venue, merged over source data."""

    wifi_quality: int | None = Field(default=None, ge=1, le=5)
    has_outlets: bool | None = None
    noise_level: NoiseLevel | None = None
    rating_count: int = 0


# --- Pipeline stage payloads ---
class SearchParameters(BaseModel):
    work_type: WorkType = "focus"
    amenities: list[Amenity] = Field(default_factory=lambda: ["wifi"])
    location: LatLng | None = None
    radius: int = Field(default=2000, gt=0, le=50_000)
    category: list[SearchCategory] = Field(
        default_factory=lambda: ["cafe", "coworking", "library"]
    )
    time_of_day: TimeOfDay | None = None
    intent: str = ""
    reasoning: str = ""

    @field_validator("amenities", "category", mode="before")
    @classmethod
    def _dedupe(cls, value):  # type: ignore[override]
        if value is None:
            return value
        if isinstance(value, str):
            value = [value]
        seen: list[Any] = []
        for item in value:
            if isinstance(item, str):
                item = item.strip().lower()
            if item not in seen:
                seen.append(item)
        return seen

    @field_validator("category")
    @classmethod
    def _non_empty_category(cls, value: list[str]) -> list[str]:
        return value or list(SEARCH_CATEGORIES)


class VenueFilters(BaseModel):
    wifi: bool | None = None
    outlets: bool | None = None
    quiet: bool | None = None

    def is_empty(self) -> bool:
        return not (self.wifi or self.outlets or self.quiet)


class Preferences(BaseModel):
    work_type: WorkType | None = None
    amenities: list[str] = Field(default_factory=list)


class RoutingDecision(BaseModel):
    run_pipeline: bool
    reasoning: str
    stages: list[str] = Field(default_factory=list)


class FetchMeta(BaseModel):
    source: str
    total: int = 0


class FetchResult(BaseModel):
    venues: list[Venue] = Field(default_factory=list)
    meta: FetchMeta


class ReasoningResult(BaseModel):
    ranked_venues: list[ScoredVenue] = Field(default_factory=list)
    summary: str
    recommendations: list[str] = Field(default_factory=list)


class MarkerAmenities(BaseModel):
    wifi_quality: int | None = None
    has_outlets: bool | None = None
    noise_level: NoiseLevel | None = None


class MapMarker(BaseModel):
    id: str
    position: LatLng
    name: str
    category: VenueCategory
    score: float
    amenities: MarkerAmenities
    rating: float | None = None
    address: str | None = None
    distance: str


class MapView(BaseModel):
    center: LatLng
    zoom: int = 14
    animate: bool = True


class RouteDestination(BaseModel):
    id: str
    name: str
    position: LatLng


class RoutePlan(BaseModel):
    origin: LatLng
    destinations: list[RouteDestination]
    mode: Literal["walking", "driving", "cycling"] = "walking"


class MapUpdates(BaseModel):
    markers: list[MapMarker] = Field(default_factory=list)
    view: MapView | None = None
    routes: RoutePlan | None = None


class ActionResult(BaseModel):
    message: str
    map_updates: MapUpdates
    suggestions: list[str] = Field(default_factory=list)


# --- Chat API ---
class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str = Field(min_length=1, max_length=10_000)


class ChatRequest(BaseModel):
    messages: list[ChatMessage] = Field(min_length=1)
    location: LatLng | None = None
    filters: VenueFilters | None = None
    conversation_id: str | None = None
    show_routes: bool = False

    @property
    def last_user_message(self) -> str:
        for message in reversed(self.messages):
            if message.role == "user":
                return message.content
        return self.messages[-1].content


class AgentStep(BaseModel):
    agent: str
    result: dict[str, Any]
    duration_ms: float


class ChatResponse(BaseModel):
    content: str
    venues: list[ScoredVenue] = Field(default_factory=list)
    map_updates: MapUpdates | None = None
    suggestions: list[str] = Field(default_factory=list)
    agent_steps: list[AgentStep] = Field(default_factory=list)


# --- Crowdsourced ratings API ---
class VenueRatingCreate(BaseModel):
    user_id: str = Field(min_length=1, max_length=128)
    wifi_quality: int = Field(ge=1, le=5)
    has_outlets: bool
    noise_level: NoiseLevel
    comment: str | None = Field(default=None, max_length=1000)


class VenueRatingSummary(BaseModel):
    venue_id: str
    amenities: CrowdsourcedAmenities


class VenueSearchResponse(BaseModel):
    venues: list[ScoredVenue]
    summary: str
    meta: FetchMeta
