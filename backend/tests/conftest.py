import asyncio
import os
import sys
from pathlib import Path

import pytest
import sentry_sdk
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Disable outbound Sentry calls during tests
sentry_sdk.init = lambda *args, **kwargs: None  # type: ignore[assignment]
os.environ["SENTRY_DSN"] = ""
os.environ.pop("LLM_API_KEY", None)
os.environ.pop("REDIS_URL", None)

from backend.worksphere.main import app  # noqa: E402
from backend.worksphere.settings import settings  # noqa: E402


class FakeVenueSource:
    """Stands in for Overpass: returns canned elements and counts calls."""

    name = "overpass"

    def __init__(self, elements=None, error: Exception | None = None):
        self.elements = list(elements or [])
        self.error = error
        self.calls = []

    async def search(self, params):
        self.calls.append(params)
        if self.error is not None:
            raise self.error
        return list(self.elements)


def osm_node(element_id, lat, lon, **tags):
    return {"type": "node", "id": element_id, "lat": lat, "lon": lon, "tags": tags}


@pytest.fixture(scope="session")
def client() -> TestClient:
    return TestClient(app, base_url="http://api.testserver")


@pytest.fixture
def fake_source():
    pipeline = app.state.pipeline
    original = pipeline.source
    source = FakeVenueSource()
    pipeline.source = source
    yield source
    pipeline.source = original


@pytest.fixture(autouse=True)
def reset_state():
    settings.RATE_LIMIT_ENABLED = False
    settings.LLM_API_KEY = None
    settings.SENTRY_DSN = None
    settings.CLASSIFIER_BACKEND = "rules"
    settings.EXTRACTOR_BACKEND = "rules"
    settings.DIRECT_REPLY_BACKEND = "canned"
    limiter = getattr(app.state, "rate_limiter", None)
    if limiter:
        asyncio.run(limiter.reset())
    asyncio.run(app.state.ratings_store.clear())
    yield
    asyncio.run(app.state.ratings_store.clear())
