"""Orchestrator stage: decide whether a chat turn needs the venue pipeline."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Protocol

from .. import llm_client
from ..metrics import pipeline_fallbacks_total
from ..models import ChatMessage, RoutingDecision
from ..settings import Settings
from .context import keyword_pattern, parse_radius

logger = logging.getLogger(__name__)

PIPELINE_STAGES = ["context", "data", "reasoning", "action"]
FALLBACK_REASONING = "Classification failed, running the full pipeline"

SEARCH_VOCABULARY = (
    "find",
    "search",
    "looking for",
    "look for",
    "recommend",
    "suggest",
    "where can i",
    "where should i",
    "place to",
    "spot",
    "workspace",
    "work space",
    "cowork",
    "co-work",
    "cafe",
    "café",
    "coffee",
    "library",
    "libraries",
    "wifi",
    "wi-fi",
    "internet",
    "outlet",
    "socket",
    "plug",
    "quiet",
    "noise",
    "near me",
    "study",
    "work from",
    "laptop",
    "meeting",
    "call",
)
_SEARCH_RE = keyword_pattern(SEARCH_VOCABULARY)

SMALL_TALK_PATTERNS = (
    r"^(hi|hey|hello|hiya|yo|howdy|greetings|good (morning|afternoon|evening))\b",
    r"\bhow are you\b",
    r"\bwhat'?s up\b",
    r"^(thanks|thank you|thx|cheers)\b",
    r"^(bye|goodbye|see you|later)\b",
    r"\bwho are you\b",
    r"\bwhat can you do\b",
    r"^(ok|okay|cool|nice|great|awesome)[.!]*$",
)
_SMALL_TALK_RE = re.compile("|".join(f"(?:{p})" for p in SMALL_TALK_PATTERNS))


class Classifier(Protocol):
    name: str

    async def classify(
        self, user_message: str, prior_context: list[ChatMessage] | None = None
    ) -> RoutingDecision: ...


class RuleBasedClassifier:
    name = "rules"

    async def classify(
        self, user_message: str, prior_context: list[ChatMessage] | None = None
    ) -> RoutingDecision:
        text = user_message.strip().lower()
        if _SEARCH_RE.search(text) or parse_radius(text) is not None:
            return RoutingDecision(
                run_pipeline=True,
                reasoning="Message asks for a venue search",
                stages=list(PIPELINE_STAGES),
            )
        if _SMALL_TALK_RE.search(text):
            return RoutingDecision(
                run_pipeline=False,
                reasoning="Greeting or small talk, answering directly",
                stages=[],
            )
        return RoutingDecision(
            run_pipeline=True,
            reasoning="No small-talk match, running the full pipeline",
            stages=list(PIPELINE_STAGES),
        )


CLASSIFIER_PROMPT = """You are the Orchestrator for WorkSphere, a workspace finder.
Decide if the user's message needs a venue search.

Skip the search (skipAgents: true) for greetings, small talk, thanks, or
questions about what you can do. Run it (skipAgents: false) whenever the user
wants places to work, study, meet or take calls, or mentions amenities.

Output ONLY valid JSON:
{"skipAgents": false, "reasoning": "User wants a quiet cafe", "agentsToUse": ["context", "data", "reasoning", "action"]}"""


class LLMClassifier:
    name = "llm"

    async def classify(
        self, user_message: str, prior_context: list[ChatMessage] | None = None
    ) -> RoutingDecision:
        history = [
            {"role": m.role, "content": m.content}
            for m in (prior_context or [])[-6:]
            if m.role in ("user", "assistant")
        ]
        text = await llm_client.complete(
            CLASSIFIER_PROMPT,
            [*history, {"role": "user", "content": user_message}],
            temperature=0.3,
            json_mode=True,
        )
        return _decision_from_payload(llm_client.extract_json_object(text))


def _decision_from_payload(payload: dict[str, Any]) -> RoutingDecision:
    skip = payload.get("skipAgents")
    if not isinstance(skip, bool):
        raise ValueError("skipAgents must be a boolean")
    if skip:
        return RoutingDecision(
            run_pipeline=False, reasoning=str(payload.get("reasoning") or ""), stages=[]
        )
    agents = payload.get("agentsToUse")
    stages = [a for a in agents if a in PIPELINE_STAGES] if isinstance(agents, list) else []
    return RoutingDecision(
        run_pipeline=True,
        reasoning=str(payload.get("reasoning") or ""),
        stages=stages or list(PIPELINE_STAGES),
    )


async def route(
    user_message: str,
    prior_context: list[ChatMessage] | None = None,
    classifier: Classifier | None = None,
) -> RoutingDecision:
    """Classify one turn; any classifier failure runs the full pipeline."""
    classifier = classifier or RuleBasedClassifier()
    try:
        return await classifier.classify(user_message, prior_context)
    except (llm_client.LLMUnavailable, ValueError, json.JSONDecodeError) as exc:
        logger.warning("Routing via %s failed: %s", classifier.name, exc)
    except Exception:
        logger.exception("Routing via %s crashed", classifier.name)
    pipeline_fallbacks_total.labels(stage="orchestrator").inc()
    return RoutingDecision(
        run_pipeline=True, reasoning=FALLBACK_REASONING, stages=list(PIPELINE_STAGES)
    )


DIRECT_REPLY_GREETING = "Hello! How can I help you find a workspace today?"

DIRECT_REPLY_PROMPT = """You are WorkSphere, a friendly assistant that helps people
find cafes, coworking spaces and libraries to work from. Reply briefly and
conversationally. If it fits, invite the user to describe what kind of
workspace they need."""


class DirectResponder:
    """Answers turns the orchestrator routes away from the venue pipeline."""

    def __init__(self, use_llm: bool = False) -> None:
        self.use_llm = use_llm

    async def reply(self, user_message: str, prior_context: list[ChatMessage] | None = None) -> str:
        if not self.use_llm:
            return DIRECT_REPLY_GREETING
        history = [
            {"role": m.role, "content": m.content}
            for m in (prior_context or [])[-6:]
            if m.role in ("user", "assistant")
        ]
        try:
            return await llm_client.complete(
                DIRECT_REPLY_PROMPT,
                [*history, {"role": "user", "content": user_message}],
                temperature=0.7,
            )
        except llm_client.LLMUnavailable as exc:
            logger.warning("Direct reply fell back to greeting: %s", exc)
            pipeline_fallbacks_total.labels(stage="direct_reply").inc()
            return DIRECT_REPLY_GREETING


def build_classifier(config: Settings) -> Classifier:
    if config.CLASSIFIER_BACKEND == "llm" and config.llm_configured:
        return LLMClassifier()
    return RuleBasedClassifier()


def build_responder(config: Settings) -> DirectResponder:
    return DirectResponder(use_llm=config.DIRECT_REPLY_BACKEND == "llm" and config.llm_configured)


__all__ = [
    "Classifier",
    "DirectResponder",
    "LLMClassifier",
    "RuleBasedClassifier",
    "build_classifier",
    "build_responder",
    "route",
]
