import asyncio

from backend.worksphere.crowdsource import RatingStore
from backend.worksphere.models import ChatMessage, ChatRequest, LatLng, Venue
from backend.worksphere.pipeline import RuleBasedClassifier, RuleBasedExtractor, WorkspacePipeline, data
from backend.worksphere.pipeline.orchestrator import DIRECT_REPLY_GREETING, DirectResponder
from conftest import osm_node

SF = LatLng(lat=37.7749, lng=-122.4194)


class CountingExtractor(RuleBasedExtractor):
    def __init__(self):
        self.calls = 0

    async def extract(self, user_message, user_location):
        self.calls += 1
        return await super().extract(user_message, user_location)


class StubSource:
    """Counts searches and returns canned Overpass elements."""

    name = "overpass"

    def __init__(self, elements):
        self.elements = elements
        self.calls = 0

    async def search(self, params):
        self.calls += 1
        return list(self.elements)


def build_pipeline(elements):
    extractor = CountingExtractor()
    source = StubSource(elements)
    pipeline = WorkspacePipeline(
        classifier=RuleBasedClassifier(),
        extractor=extractor,
        source=source,
        responder=DirectResponder(),
    )
    return pipeline, extractor, source


def chat(pipeline, text, location=SF):
    request = ChatRequest(messages=[ChatMessage(role="user", content=text)], location=location)
    return asyncio.run(pipeline.run(request))


def test_quiet_cafe_scenario(monkeypatch):
    pipeline, extractor, source = build_pipeline([{"id": 1}])
    perfect = Venue(
        id="1",
        place_id="osm-1",
        name="Quiet Bean",
        position=LatLng(lat=37.7752, lng=-122.4194),
        category="cafe",
        wifi_quality=5,
        has_outlets=True,
        noise_level="quiet",
        rating=4.5,
        distance=300,
    )
    # The scenario pins the venue attributes, so bypass tag normalization
    monkeypatch.setattr(data, "normalize_element", lambda element, origin: perfect)

    response = chat(pipeline, "Find a quiet cafe with WiFi near me")

    context_step = next(step for step in response.agent_steps if step.agent == "context")
    assert context_step.result["work_type"] == "focus"
    assert len(response.venues) == 1
    top = response.venues[0]
    assert top.score > 5
    assert "**Top Pick: Quiet Bean**" in response.content
    assert response.map_updates.markers[0].name == "Quiet Bean"
    assert [step.agent for step in response.agent_steps] == [
        "orchestrator",
        "context",
        "data",
        "reasoning",
        "action",
    ]


def test_no_venues_scenario():
    pipeline, _, source = build_pipeline([])

    response = chat(pipeline, "Find a coworking space with outlets")

    assert source.calls == 1
    assert response.venues == []
    assert "couldn't find" in response.content
    assert response.suggestions


def test_small_talk_skips_downstream_stages():
    pipeline, extractor, source = build_pipeline([{"id": 1, "lat": 37.77, "lon": -122.42}])

    response = chat(pipeline, "hi there, how are you?")

    assert response.content == DIRECT_REPLY_GREETING
    assert extractor.calls == 0
    assert source.calls == 0
    assert response.venues == []
    assert response.map_updates is None
    assert [step.agent for step in response.agent_steps] == ["orchestrator"]


def test_missing_location_reports_no_results_without_fetching():
    pipeline, _, source = build_pipeline([{"id": 1, "lat": 37.77, "lon": -122.42}])

    response = chat(pipeline, "Find a library nearby", location=None)

    assert source.calls == 0
    assert "couldn't find" in response.content
    data_step = next(step for step in response.agent_steps if step.agent == "data")
    assert data_step.result == {"count": 0, "source": "none"}
    assert response.map_updates.view is None


class BrokenStore:
    """Every call fails, like a Redis that went away."""

    async def get(self, key):
        raise ConnectionError("redis down")

    async def set(self, key, value, ttl_seconds=None):
        raise ConnectionError("redis down")

    async def delete(self, key):
        raise ConnectionError("redis down")

    async def clear(self):
        raise ConnectionError("redis down")


def test_ratings_outage_does_not_break_the_turn():
    pipeline, _, _ = build_pipeline([osm_node(1, 37.7752, -122.4194, name="Still Here", amenity="cafe")])
    pipeline.ratings = RatingStore(BrokenStore())

    response = chat(pipeline, "Find a cafe to work from")

    assert [venue.name for venue in response.venues] == ["Still Here"]
    assert response.venues[0].crowdsourced is False
    assert "**Top Pick: Still Here**" in response.content
