import asyncio

import httpx
import pytest
from backend.worksphere.models import CrowdsourcedAmenities, LatLng, SearchParameters, VenueFilters
from backend.worksphere.pipeline.data import (
    OverpassVenueSource,
    apply_filters,
    build_overpass_query,
    fetch_venues,
    merge_overrides,
    normalize_element,
)
from conftest import FakeVenueSource, osm_node

SF = LatLng(lat=37.7749, lng=-122.4194)
PRIMARY = "https://primary.example/api/interpreter"
BACKUP = "https://backup.example/api/interpreter"


def params(**overrides):
    base = dict(location=SF, radius=1500, category=["cafe", "library"])
    base.update(overrides)
    return SearchParameters(**base)


def fetch(search_params, filters=None, **kwargs):
    return asyncio.run(fetch_venues(search_params, filters, **kwargs))


def test_missing_location_skips_network():
    source = FakeVenueSource([osm_node(1, 37.775, -122.419, name="Unused")])

    result = fetch(params(location=None), source=source)

    assert result.venues == []
    assert result.meta.source == "none"
    assert result.meta.total == 0
    assert source.calls == []


def test_query_covers_requested_categories():
    query = build_overpass_query(params(category=["coworking", "library"]))
    assert "around:1500,37.7749,-122.4194" in query
    assert 'node["amenity"="coworking_space"]' in query
    assert 'way["office"="coworking"]' in query
    assert '["amenity"="library"]' in query
    assert '"cafe"' not in query
    assert query.rstrip().endswith("out center body;")


def test_normalize_reads_wifi_outlets_and_address():
    element = osm_node(
        42,
        37.7760,
        -122.4194,
        name="Sightglass",
        amenity="cafe",
        internet_access="wlan",
        **{
            "socket:type2": "2",
            "addr:housenumber": "270",
            "addr:street": "7th St",
            "addr:city": "San Francisco",
        },
    )
    venue = normalize_element(element, SF)

    assert venue is not None
    assert venue.id == "42"
    assert venue.place_id == "osm-42"
    assert venue.category == "cafe"
    assert venue.has_wifi is True
    assert venue.wifi_quality == 3
    assert venue.has_outlets is True
    assert venue.noise_level is None
    assert venue.address == "270 7th St, San Francisco"
    assert venue.distance == pytest.approx(122, abs=2)


def test_normalize_handles_ways_and_missing_tags():
    element = {"type": "way", "id": 7, "center": {"lat": 37.78, "lon": -122.42}, "tags": {"amenity": "library", "wifi": "no"}}
    venue = normalize_element(element, SF)

    assert venue.name == "Unnamed library"
    assert venue.has_wifi is False
    assert venue.wifi_quality == 1
    assert venue.has_outlets is None
    assert venue.rating is None


@pytest.mark.parametrize(
    "element",
    [
        {"type": "node", "lat": 37.7, "lon": -122.4, "tags": {}},
        {"type": "node", "id": 3, "tags": {"name": "No coords"}},
        {"type": "node", "id": 4, "lat": "north", "lon": -122.4},
        {"type": "node", "id": 5, "lat": 137.0, "lon": -122.4},
        "not-a-dict",
    ],
)
def test_malformed_elements_are_dropped(element):
    assert normalize_element(element, SF) is None


def test_fetch_drops_bad_records_sorts_and_caps():
    elements = [osm_node(i, 37.7749 + i * 0.0005, -122.4194, name=f"Cafe {i}", amenity="cafe") for i in range(30, 0, -1)]
    elements.append({"type": "node", "tags": {"name": "broken"}})
    source = FakeVenueSource(elements)

    result = fetch(params(), source=source)

    assert result.meta.source == "overpass"
    assert result.meta.total == 20
    assert len(result.venues) == 20
    distances = [v.distance for v in result.venues]
    assert distances == sorted(distances)
    assert result.venues[0].name == "Cafe 1"


def test_filters_are_applied():
    source = FakeVenueSource(
        [
            osm_node(1, 37.775, -122.419, name="Wifi", amenity="cafe", internet_access="yes"),
            osm_node(2, 37.776, -122.419, name="Plugs", amenity="cafe", internet_access="free", power_supply="yes"),
            osm_node(3, 37.777, -122.419, name="Nothing", amenity="cafe"),
        ]
    )

    result = fetch(params(), VenueFilters(wifi=True, outlets=True), source=source)

    assert [v.name for v in result.venues] == ["Plugs"]


def test_quiet_filter_needs_crowdsourced_noise():
    source = FakeVenueSource(
        [
            osm_node(1, 37.775, -122.419, name="Rated", amenity="cafe"),
            osm_node(2, 37.776, -122.419, name="Unrated", amenity="library"),
        ]
    )
    overrides = {
        "osm-1": CrowdsourcedAmenities(wifi_quality=4, has_outlets=True, noise_level="quiet", rating_count=2)
    }

    result = fetch(params(), VenueFilters(quiet=True), source=source, overrides=overrides)

    assert [v.name for v in result.venues] == ["Rated"]
    venue = result.venues[0]
    assert venue.crowdsourced is True
    assert venue.wifi_quality == 4
    assert venue.noise_level == "quiet"


def test_merge_overrides_ignores_unrated():
    venue = normalize_element(osm_node(9, 37.775, -122.419, name="X"), SF)
    merged = merge_overrides([venue], {"osm-9": CrowdsourcedAmenities()})
    assert merged[0].crowdsourced is False


def test_apply_filters_without_filters_keeps_everything():
    venue = normalize_element(osm_node(9, 37.775, -122.419, name="X"), SF)
    assert apply_filters([venue], None) == [venue]


def test_overpass_fails_over_to_next_endpoint():
    hits = []

    def handler(request: httpx.Request) -> httpx.Response:
        hits.append(str(request.url))
        if str(request.url) == PRIMARY:
            return httpx.Response(504, text="gateway timeout")
        return httpx.Response(
            200,
            json={"elements": [osm_node(1, 37.775, -122.419, name="Backup Cafe", amenity="cafe")]},
        )

    source = OverpassVenueSource([PRIMARY, BACKUP], timeout=5, transport=httpx.MockTransport(handler))

    result = fetch(params(), source=source)

    assert hits == [PRIMARY, BACKUP]
    assert result.meta.source == "overpass"
    assert [v.name for v in result.venues] == ["Backup Cafe"]


def test_overpass_bad_json_counts_as_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == PRIMARY:
            return httpx.Response(200, text="<html>rate limited</html>")
        return httpx.Response(200, json={"elements": []})

    source = OverpassVenueSource([PRIMARY, BACKUP], timeout=5, transport=httpx.MockTransport(handler))

    result = fetch(params(), source=source)

    assert result.meta.source == "overpass"
    assert result.venues == []


def test_all_endpoints_failing_reports_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    source = OverpassVenueSource([PRIMARY, BACKUP], timeout=5, transport=httpx.MockTransport(handler))

    result = fetch(params(), source=source)

    assert result.venues == []
    assert result.meta.source == "error"
    assert result.meta.total == 0


def test_unexpected_source_error_reports_error():
    source = FakeVenueSource(error=RuntimeError("parser exploded"))

    result = fetch(params(), source=source)

    assert result.venues == []
    assert result.meta.source == "error"


def test_override_lookup_only_sees_returned_venues():
    source = FakeVenueSource(
        [
            osm_node(1, 37.775, -122.419, name="Rated", amenity="cafe"),
            osm_node(2, 37.776, -122.419, name="Unrated", amenity="cafe"),
        ]
    )
    asked = []

    async def lookup(keys):
        asked.append(list(keys))
        return {"osm-1": CrowdsourcedAmenities(noise_level="quiet", rating_count=1)}

    result = fetch(params(), source=source, override_lookup=lookup)

    assert asked == [["osm-1", "osm-2"]]
    assert [v.noise_level for v in result.venues] == ["quiet", None]


def test_failing_override_lookup_keeps_osm_attributes():
    source = FakeVenueSource([osm_node(1, 37.775, -122.419, name="Cafe", amenity="cafe", wifi="yes")])

    async def lookup(keys):
        raise ConnectionError("redis down")

    result = fetch(params(), source=source, override_lookup=lookup)

    assert result.meta.source == "overpass"
    assert [v.name for v in result.venues] == ["Cafe"]
    assert result.venues[0].crowdsourced is False
    assert result.venues[0].wifi_quality == 3
