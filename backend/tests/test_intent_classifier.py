# tests/test_intent_classifier.py — Provider-backed intent classification and keyword fallback
import httpx
import pytest

from errors import ProviderError, ProviderTimeout
from intent_classifier import (
    ContextCounts, Intent, IntentClassifier, KEYWORD_MATCH_CONFIDENCE, keyword_intent,
)
from llm_provider import LLMProvider, ProviderReply

from tests.conftest import FakeProvider, intent_reply


@pytest.mark.parametrize("text,expected", [
    ("create task for onboarding", Intent.TASK_CREATION),
    ("Please MOVE TASK 12 to done", Intent.TASK_MANAGEMENT),
    ("assign agent Researcher please", Intent.AGENT_ASSIGNMENT),
    ("create column for QA", Intent.PROJECT_MANAGEMENT),
    ("run agent on the brief", Intent.AGENT_USE),
])
def test_keyword_table(text, expected):
    result = keyword_intent(text)
    assert result.primary is expected
    assert result.confidence == KEYWORD_MATCH_CONFIDENCE
    assert result.degraded is True


def test_keyword_table_first_match_wins():
    # both "create task" and "move task" appear; task_creation is checked first
    assert keyword_intent("move task A then create task B").primary is Intent.TASK_CREATION


def test_keyword_fallback_default():
    result = keyword_intent("how is the launch going?")
    assert result.primary is Intent.GENERAL_ANSWER
    assert result.confidence == 0.3


@pytest.mark.asyncio
async def test_provider_timeout_falls_back_to_keywords():
    classifier = IntentClassifier(FakeProvider(ProviderTimeout("Model provider timed out after 10s")))

    result = await classifier.classify("create task for onboarding")

    assert result.primary is Intent.TASK_CREATION
    assert result.confidence == 0.6
    assert result.degraded is True


@pytest.mark.asyncio
async def test_provider_json_is_parsed():
    provider = FakeProvider(intent_reply(
        "task_management", 0.92, secondary="move_task",
        entities=[{"type": "column", "value": "Done", "confidence": 0.8}],
    ))
    classifier = IntentClassifier(provider)

    result = await classifier.classify("move the onboarding task to done", ContextCounts(
        project_name="Launch Plan", task_count=3, column_names=["Backlog", "Done"],
    ))

    assert result.primary is Intent.TASK_MANAGEMENT
    assert result.secondary == "move_task"
    assert result.confidence == pytest.approx(0.92)
    assert result.entities[0].value == "Done"
    assert result.degraded is False

    call = provider.calls[0]
    assert call["temperature"] == 0.1
    assert call["max_tokens"] == 300
    assert call["response_format"] == {"type": "json_object"}
    assert "Launch Plan" in call["messages"][1]["content"]
    assert "Backlog, Done" in call["messages"][1]["content"]


@pytest.mark.asyncio
async def test_unknown_intent_label_maps_to_other():
    classifier = IntentClassifier(FakeProvider(intent_reply("world_domination", 0.7)))
    result = await classifier.classify("do something unusual")
    assert result.primary is Intent.OTHER
    assert result.degraded is False


@pytest.mark.asyncio
async def test_confidence_is_clamped():
    classifier = IntentClassifier(FakeProvider(intent_reply("general_answer", 7)))
    result = await classifier.classify("what's left?")
    assert result.confidence == 1.0


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["", "not json at all", '{"entities": []}'])
async def test_unusable_reply_falls_back(content):
    classifier = IntentClassifier(FakeProvider(ProviderReply(content=content)))
    result = await classifier.classify("add task to write the blog post")
    assert result.primary is Intent.TASK_CREATION
    assert result.degraded is True


@pytest.mark.asyncio
async def test_any_provider_error_falls_back():
    classifier = IntentClassifier(FakeProvider(ProviderError("Model provider returned HTTP 500")))
    result = await classifier.classify("tell me a joke")
    assert result.primary is Intent.GENERAL_ANSWER
    assert result.degraded is True


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [
    [],
    {"choices": ["x"]},
    {"choices": [{"message": {"content": 42}}]},
])
async def test_wrong_shape_reply_falls_back(monkeypatch, body):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    provider = LLMProvider(timeout=5, transport=httpx.MockTransport(lambda request: httpx.Response(200, json=body)))

    result = await IntentClassifier(provider).classify("create task for onboarding")

    assert result.primary is Intent.TASK_CREATION
    assert result.confidence == KEYWORD_MATCH_CONFIDENCE
    assert result.degraded is True
