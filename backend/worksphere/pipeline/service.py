from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any

from ..crowdsource import RatingStore
from ..logging_config import get_logger
from ..metrics import pipeline_runs_total, pipeline_stage_duration_seconds, venues_returned
from ..models import (
    AgentStep,
    ChatRequest,
    ChatResponse,
    FetchResult,
    LatLng,
    Preferences,
    ReasoningResult,
    SearchParameters,
    VenueFilters,
)
from ..settings import Settings
from .context import Extractor, build_extractor, extract_context
from .data import OverpassVenueSource, OverrideLookup, VenueSource, fetch_venues
from .orchestrator import Classifier, DirectResponder, build_classifier, build_responder, route
from .presenter import present
from .scoring import score_venues

logger = get_logger(__name__)


class _StepRecorder:
    def __init__(self) -> None:
        self.steps: list[AgentStep] = []

    @contextmanager
    def stage(self, name: str):
        result: dict[str, Any] = {}
        start = time.perf_counter()
        try:
            yield result
        finally:
            elapsed = time.perf_counter() - start
            pipeline_stage_duration_seconds.labels(stage=name).observe(elapsed)
            self.steps.append(
                AgentStep(agent=name, result=result, duration_ms=round(elapsed * 1000, 2))
            )


class WorkspacePipeline:
    """Orchestrator -> Context -> Data -> Reasoning -> Action for one chat turn."""

    def __init__(
        self,
        *,
        classifier: Classifier,
        extractor: Extractor,
        source: VenueSource,
        responder: DirectResponder,
        ratings: RatingStore | None = None,
    ) -> None:
        self.classifier = classifier
        self.extractor = extractor
        self.source = source
        self.responder = responder
        self.ratings = ratings

    @classmethod
    def from_settings(cls, config: Settings, ratings: RatingStore | None = None) -> WorkspacePipeline:
        return cls(
            classifier=build_classifier(config),
            extractor=build_extractor(config),
            source=OverpassVenueSource(
                endpoints=config.overpass_endpoints, timeout=config.OVERPASS_TIMEOUT_SECONDS
            ),
            responder=build_responder(config),
            ratings=ratings,
        )

    def _override_lookup(self) -> OverrideLookup | None:
        return self.ratings.overrides_for if self.ratings is not None else None

    async def search(
        self, params: SearchParameters, filters: VenueFilters | None = None
    ) -> tuple[FetchResult, ReasoningResult]:
        """Data + Reasoning only; used by the direct venue search endpoint."""
        fetched = await fetch_venues(
            params, filters, source=self.source, override_lookup=self._override_lookup()
        )
        venues_returned.observe(len(fetched.venues))
        reasoning = score_venues(
            fetched.venues, Preferences(work_type=params.work_type, amenities=params.amenities)
        )
        return fetched, reasoning

    async def run(self, request: ChatRequest) -> ChatResponse:
        message = request.last_user_message
        prior = request.messages[:-1]
        recorder = _StepRecorder()

        with recorder.stage("orchestrator") as step:
            decision = await route(message, prior, classifier=self.classifier)
            step.update(decision.model_dump())

        if not decision.run_pipeline:
            content = await self.responder.reply(message, prior)
            pipeline_runs_total.labels(outcome="skipped").inc()
            logger.info("pipeline_skipped", reasoning=decision.reasoning)
            return ChatResponse(
                content=content,
                venues=[],
                map_updates=None,
                suggestions=[],
                agent_steps=recorder.steps,
            )

        with recorder.stage("context") as step:
            params = await extract_context(message, request.location, extractor=self.extractor)
            step.update(params.model_dump(mode="json"))

        with recorder.stage("data") as step:
            fetched = await fetch_venues(
                params,
                request.filters,
                source=self.source,
                override_lookup=self._override_lookup(),
            )
            venues_returned.observe(len(fetched.venues))
            step.update({"count": len(fetched.venues), "source": fetched.meta.source})

        with recorder.stage("reasoning") as step:
            reasoning = score_venues(
                fetched.venues,
                Preferences(work_type=params.work_type, amenities=params.amenities),
            )
            step.update(
                {
                    "summary": reasoning.summary,
                    "recommendations": reasoning.recommendations,
                    "top_score": reasoning.ranked_venues[0].score if reasoning.ranked_venues else None,
                }
            )

        with recorder.stage("action") as step:
            action = present(
                reasoning.ranked_venues,
                message,
                _origin(params, request.location),
                show_routes=request.show_routes,
            )
            step.update({"markers": len(action.map_updates.markers)})

        outcome = "results" if reasoning.ranked_venues else f"empty_{fetched.meta.source}"
        pipeline_runs_total.labels(outcome=outcome).inc()
        logger.info(
            "pipeline_completed",
            work_type=params.work_type,
            radius=params.radius,
            source=fetched.meta.source,
            venues=len(reasoning.ranked_venues),
        )
        return ChatResponse(
            content=action.message,
            venues=reasoning.ranked_venues,
            map_updates=action.map_updates,
            suggestions=action.suggestions,
            agent_steps=recorder.steps,
        )


def _origin(params: SearchParameters, fallback: LatLng | None) -> LatLng | None:
    return params.location or fallback


__all__ = ["WorkspacePipeline"]
