import asyncio
import json

import pytest
from backend.worksphere import llm_client
from backend.worksphere.models import ChatMessage
from backend.worksphere.pipeline.orchestrator import (
    DIRECT_REPLY_GREETING,
    FALLBACK_REASONING,
    DirectResponder,
    LLMClassifier,
    RuleBasedClassifier,
    build_classifier,
    route,
)
from backend.worksphere.settings import settings


def decide(message, classifier=None, prior=None):
    return asyncio.run(route(message, prior, classifier=classifier))


@pytest.mark.parametrize(
    "message",
    [
        "hi there, how are you?",
        "Hello!",
        "thanks",
        "good morning",
        "what can you do?",
        "hi, my hotspot is fine",
        "thanks, I recall it now",
    ],
)
def test_small_talk_skips_pipeline(message):
    decision = decide(message)
    assert decision.run_pipeline is False
    assert decision.stages == []


@pytest.mark.parametrize(
    "message",
    [
        "Find a quiet cafe with WiFi near me",
        "hi, any libraries open late?",
        "I need somewhere with outlets",
        "where can I take a video call",
        "hey, anything within 5km?",
    ],
)
def test_search_vocabulary_runs_pipeline(message):
    decision = decide(message)
    assert decision.run_pipeline is True
    assert decision.stages == ["context", "data", "reasoning", "action"]


def test_unrecognized_message_runs_pipeline():
    assert decide("tell me about the neighbourhood").run_pipeline is True


def test_llm_classifier_can_skip(monkeypatch):
    settings.LLM_API_KEY = "test-key"

    async def fake_post_json(path, request_payload, timeout=None):  # noqa: ARG001
        content = json.dumps({"skipAgents": True, "reasoning": "Greeting", "agentsToUse": []})
        return {"choices": [{"message": {"content": content}}]}

    monkeypatch.setattr(llm_client, "post_json", fake_post_json)

    decision = decide("hey", LLMClassifier(), [ChatMessage(role="assistant", content="Hi!")])
    assert decision.run_pipeline is False
    assert decision.reasoning == "Greeting"


def test_llm_failure_falls_back_to_full_pipeline(monkeypatch):
    settings.LLM_API_KEY = "test-key"

    async def failing_post_json(path, request_payload, timeout=None):  # noqa: ARG001
        raise llm_client.LLMUnavailable("upstream 503")

    monkeypatch.setattr(llm_client, "post_json", failing_post_json)

    decision = decide("hi there, how are you?", LLMClassifier())
    assert decision.run_pipeline is True
    assert decision.reasoning == FALLBACK_REASONING


def test_llm_non_boolean_skip_falls_back(monkeypatch):
    settings.LLM_API_KEY = "test-key"

    async def fake_post_json(path, request_payload, timeout=None):  # noqa: ARG001
        return {"choices": [{"message": {"content": '{"skipAgents": "maybe"}'}}]}

    monkeypatch.setattr(llm_client, "post_json", fake_post_json)

    assert decide("hello", LLMClassifier()).run_pipeline is True


def test_build_classifier_requires_api_key():
    settings.CLASSIFIER_BACKEND = "llm"
    assert isinstance(build_classifier(settings), RuleBasedClassifier)
    settings.LLM_API_KEY = "test-key"
    assert isinstance(build_classifier(settings), LLMClassifier)


def test_canned_direct_reply():
    reply = asyncio.run(DirectResponder().reply("hi"))
    assert reply == DIRECT_REPLY_GREETING


def test_llm_direct_reply_falls_back_to_greeting():
    reply = asyncio.run(DirectResponder(use_llm=True).reply("hi"))
    assert reply == DIRECT_REPLY_GREETING
