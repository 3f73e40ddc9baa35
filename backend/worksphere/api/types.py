from __future__ import annotations

from typing import Annotated

from fastapi import Path, Query

from ..models import SearchCategory, WorkType

Latitude = Annotated[float, Query(ge=-90, le=90, description="Search origin latitude")]
Longitude = Annotated[float, Query(ge=-180, le=180, description="Search origin longitude")]

RadiusQuery = Annotated[
    int,
    Query(gt=0, le=50_000, description="Search radius in meters"),
]

CategoryQuery = Annotated[
    list[SearchCategory] | None,
    Query(description="Repeatable: cafe, coworking, library. Omitted means all three."),
]

WorkTypeQuery = Annotated[
    WorkType,
    Query(description="Reweights scoring criteria (focus, calls, collaboration, casual)"),
]

VenueId = Annotated[
    str,
    Path(
        min_length=1,
        max_length=64,
        pattern=r"^[A-Za-z0-9_.:-]+$",
        description="Venue place id, e.g. osm-4815162342",
    ),
]
