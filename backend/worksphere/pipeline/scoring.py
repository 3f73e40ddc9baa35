"""Reasoning stage: weighted multi-criterion venue scoring and ranking."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from ..models import Preferences, ReasoningResult, ScoreBreakdown, ScoredVenue, Venue

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 5.0
MAX_SCORE = 10.0
STRENGTH_THRESHOLD = 8.0
WEAKNESS_THRESHOLD = 4.0

NOISE_SCORES = {"quiet": 10.0, "moderate": 6.0, "loud": 3.0}
NOISE_SENSITIVE_WORK = {"focus", "calls"}
LOUD_PENALTY = 2.0
CASUAL_QUIET_BONUS = 1.0

# (upper bound in meters, score); anything farther scores FAR_DISTANCE_SCORE
DISTANCE_BANDS: tuple[tuple[float, float], ...] = ((500, 10.0), (1000, 8.0), (2000, 6.0))
FAR_DISTANCE_SCORE = 4.0


@dataclass(frozen=True, slots=True)
class CriterionWeights:
    wifi: float
    noise: float
    outlets: float
    rating: float
    distance: float

    @property
    def total(self) -> float:
        return self.wifi + self.noise + self.outlets + self.rating + self.distance


# Each row sums to exactly 1.0, so totals stay inside [0, MAX_SCORE].
WEIGHTS: dict[str, CriterionWeights] = {
    "focus": CriterionWeights(wifi=0.25, noise=0.35, outlets=0.20, rating=0.10, distance=0.10),
    "calls": CriterionWeights(wifi=0.35, noise=0.30, outlets=0.15, rating=0.10, distance=0.10),
    "collaboration": CriterionWeights(
        wifi=0.30, noise=0.20, outlets=0.25, rating=0.25, distance=0.0
    ),
    "casual": CriterionWeights(wifi=0.30, noise=0.25, outlets=0.20, rating=0.15, distance=0.10),
}
DEFAULT_WORK_TYPE = "casual"


def weights_for(work_type: str | None) -> CriterionWeights:
    return WEIGHTS.get(work_type or DEFAULT_WORK_TYPE, WEIGHTS[DEFAULT_WORK_TYPE])


def _clamp(value: float, low: float = 0.0, high: float = MAX_SCORE) -> float:
    return max(low, min(high, value))


def score_wifi(quality: int | None) -> float:
    if quality is None:
        return NEUTRAL_SCORE
    return float(min(5, max(1, quality)) * 2)


def score_noise(level: str | None, work_type: str | None = None) -> float:
    if level is None or level not in NOISE_SCORES:
        return NEUTRAL_SCORE
    score = NOISE_SCORES[level]
    if level == "loud" and work_type in NOISE_SENSITIVE_WORK:
        score -= LOUD_PENALTY
    if level == "quiet" and work_type == "casual":
        score += CASUAL_QUIET_BONUS
    return _clamp(score)


def score_outlets(has_outlets: bool | None, required: bool = False) -> float:
    if has_outlets is True:
        return MAX_SCORE
    if has_outlets is False and required:
        return 2.0
    return NEUTRAL_SCORE


def score_rating(rating: float | None) -> float:
    if rating is None:
        return NEUTRAL_SCORE
    return _clamp(rating, 0.0, 5.0) * 2


def score_distance(distance: float | None) -> float:
    if distance is None:
        return NEUTRAL_SCORE
    for upper, score in DISTANCE_BANDS:
        if distance < upper:
            return score
    return FAR_DISTANCE_SCORE


def score_breakdown(venue: Venue, preferences: Preferences) -> ScoreBreakdown:
    return ScoreBreakdown(
        wifi=score_wifi(venue.wifi_quality),
        noise=score_noise(venue.noise_level, preferences.work_type),
        outlets=score_outlets(venue.has_outlets, "outlets" in preferences.amenities),
        rating=score_rating(venue.rating),
        distance=score_distance(venue.distance),
    )


def weighted_total(breakdown: ScoreBreakdown, weights: CriterionWeights) -> float:
    total = (
        breakdown.wifi * weights.wifi
        + breakdown.noise * weights.noise
        + breakdown.outlets * weights.outlets
        + breakdown.rating * weights.rating
        + breakdown.distance * weights.distance
    )
    return round(total, 2)


_PHRASES: tuple[tuple[str, str, str], ...] = (
    ("wifi", "excellent WiFi", "weak WiFi"),
    ("noise", "very quiet", "noisy environment"),
    ("outlets", "plenty of outlets", "limited outlets"),
    ("rating", "highly rated", "mixed reviews"),
    ("distance", "very close", "a bit far"),
)


def explain(breakdown: ScoreBreakdown, work_type: str | None) -> str:
    """Short strengths/weaknesses sentence derived from sub-score thresholds."""
    label = work_type or "work"
    strengths: list[str] = []
    weaknesses: list[str] = []
    for field, strength, weakness in _PHRASES:
        value = getattr(breakdown, field)
        if value >= STRENGTH_THRESHOLD:
            strengths.append(strength)
        elif value <= WEAKNESS_THRESHOLD:
            weaknesses.append(weakness)

    parts: list[str] = []
    if strengths:
        parts.append(f"Great for {label} - {', '.join(strengths)}.")
    if weaknesses:
        parts.append(f"Note: {', '.join(weaknesses)}.")
    return " ".join(parts) or f"Decent option for {label}."


def score_venue(venue: Venue, preferences: Preferences) -> ScoredVenue:
    breakdown = score_breakdown(venue, preferences)
    return ScoredVenue(
        **venue.model_dump(),
        score=weighted_total(breakdown, weights_for(preferences.work_type)),
        score_breakdown=breakdown,
        reasoning=explain(breakdown, preferences.work_type),
    )


def rank(scored: Iterable[ScoredVenue]) -> list[ScoredVenue]:
    """Descending by score; sorted() is stable so ties keep their input order."""
    return sorted(scored, key=lambda venue: venue.score, reverse=True)


def summarize(ranked: Sequence[ScoredVenue]) -> str:
    if not ranked:
        return "No suitable workspaces found"
    top = ranked[0]
    noun = "workspace" if len(ranked) == 1 else "workspaces"
    return f"Found {len(ranked)} {noun}. Top pick: {top.name} (score: {top.score}/10)"


def recommend(ranked: Sequence[ScoredVenue]) -> list[str]:
    top = list(ranked[:3])
    if not top:
        return ["Try expanding your search radius or adjusting filters"]

    first = top[0]
    recommendations = [f"Best overall: {first.name} - {first.reasoning}"]
    if len(top) > 1:
        second = top[1]
        if abs(first.score - second.score) < 0.5:
            recommendations.append(f"Very close alternative: {second.name} - {second.reasoning}")
        else:
            recommendations.append(f"Good backup: {second.name} - {second.reasoning}")
    if len(top) > 2 and top[2].score_breakdown.distance > 8:
        third = top[2]
        km = round((third.distance or 0) / 1000, 1)
        recommendations.append(f"Closest option: {third.name} - only {km}km away")
    return recommendations


def score_venues(venues: Sequence[Venue], preferences: Preferences) -> ReasoningResult:
    if not venues:
        return ReasoningResult(
            ranked_venues=[],
            summary=summarize([]),
            recommendations=recommend([]),
        )

    ranked = rank(score_venue(venue, preferences) for venue in venues)
    logger.debug(
        "Scored %d venues with %s weights; top=%.2f",
        len(ranked),
        preferences.work_type or DEFAULT_WORK_TYPE,
        ranked[0].score,
    )
    return ReasoningResult(
        ranked_venues=ranked,
        summary=summarize(ranked),
        recommendations=recommend(ranked),
    )


__all__ = [
    "CriterionWeights",
    "DEFAULT_WORK_TYPE",
    "NEUTRAL_SCORE",
    "WEIGHTS",
    "explain",
    "rank",
    "score_breakdown",
    "score_distance",
    "score_noise",
    "score_outlets",
    "score_rating",
    "score_venue",
    "score_venues",
    "score_wifi",
    "weighted_total",
    "weights_for",
]
