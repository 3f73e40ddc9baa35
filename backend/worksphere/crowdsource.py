"""Crowdsourced venue ratings: one rating per user per venue, aggregated for the Data stage."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import Any

from .models import CrowdsourcedAmenities, VenueRatingCreate
from .store import KeyValueStore

logger = logging.getLogger(__name__)

OUTLET_MAJORITY = 0.5


def aggregate_ratings(ratings: Sequence[dict[str, Any]]) -> CrowdsourcedAmenities:
    """
    Fold raw ratings into amenity values:
    mean WiFi quality rounded, outlets when more than half say so,
    and the most common noise level (ties go to the one seen first).
    """
    if not ratings:
        return CrowdsourcedAmenities()

    wifi_values = [int(r["wifi_quality"]) for r in ratings if r.get("wifi_quality") is not None]
    wifi_quality = None
    if wifi_values:
        wifi_quality = min(5, max(1, int(round(sum(wifi_values) / len(wifi_values)))))

    outlet_votes = [bool(r["has_outlets"]) for r in ratings if r.get("has_outlets") is not None]
    has_outlets = None
    if outlet_votes:
        has_outlets = sum(outlet_votes) / len(outlet_votes) > OUTLET_MAJORITY

    noise_votes = [r["noise_level"] for r in ratings if r.get("noise_level")]
    noise_level = None
    if noise_votes:
        # Counter keeps insertion order, and max() returns the first maximal item
        counts = Counter(noise_votes)
        noise_level = max(counts, key=counts.__getitem__)

    return CrowdsourcedAmenities(
        wifi_quality=wifi_quality,
        has_outlets=has_outlets,
        noise_level=noise_level,
        rating_count=len(ratings),
    )


class RatingStore:
    """Ratings keyed by venue; a user's second rating replaces their first."""

    def __init__(self, store: KeyValueStore, shards: int = 32) -> None:
        self._store = store
        # Per-venue read-modify-write guard within this process
        self._locks = [asyncio.Lock() for _ in range(max(1, shards))]

    @staticmethod
    def _key(venue_id: str) -> str:
        return f"ratings:{venue_id}"

    async def list_ratings(self, venue_id: str) -> list[dict[str, Any]]:
        ratings = await self._store.get(self._key(venue_id))
        return list(ratings) if ratings else []

    async def submit(self, venue_id: str, rating: VenueRatingCreate) -> CrowdsourcedAmenities:
        entry = rating.model_dump()
        entry["created_at"] = datetime.now(timezone.utc).isoformat()
        async with self._locks[hash(venue_id) % len(self._locks)]:
            ratings = await self.list_ratings(venue_id)
            for index, existing in enumerate(ratings):
                if existing.get("user_id") == rating.user_id:
                    ratings[index] = entry
                    break
            else:
                ratings.append(entry)
            await self._store.set(self._key(venue_id), ratings)
        logger.info("Stored rating for venue %s (%d total)", venue_id, len(ratings))
        return aggregate_ratings(ratings)

    async def summary(self, venue_id: str) -> CrowdsourcedAmenities:
        return aggregate_ratings(await self.list_ratings(venue_id))

    async def overrides_for(self, venue_ids: Iterable[str]) -> dict[str, CrowdsourcedAmenities]:
        """Aggregates for the given venues, skipping those nobody has rated."""
        overrides: dict[str, CrowdsourcedAmenities] = {}
        for venue_id in dict.fromkeys(venue_ids):
            summary = await self.summary(venue_id)
            if summary.rating_count:
                overrides[venue_id] = summary
        return overrides


__all__ = ["RatingStore", "aggregate_ratings"]
