# tests/test_ai.py — Assistant endpoint over HTTP
import httpx
import pytest
from httpx import AsyncClient

from errors import ProviderRateLimited, ProviderTimeout
from llm_provider import LLMProvider, get_llm_provider
from main import app

from tests.conftest import (
    OUTSIDER_ID, OWNER_ID, get_auth_headers, intent_reply, tool_reply,
)


@pytest.mark.asyncio
async def test_assistant_creates_task(client: AsyncClient, fake_provider, test_project, test_columns):
    fake_provider.queue(
        intent_reply("task_creation", 0.9),
        tool_reply(("create_task", {"title": "Fix login crash", "type": "bug"}), content="On it."),
    )
    resp = await client.post(
        "/api/v1/ai/assistant",
        json={"input": "Create a bug task called 'Fix login crash'", "projectId": test_project.id},
        headers=get_auth_headers(OWNER_ID),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["metadata"] == {"tokensUsed": 150, "intent": "task_creation", "degraded": False}

    data = body["data"]
    assert data["type"] == "task_creation"
    assert data["createdTasks"][0]["status"] == "backlog"
    assert data["createdTasks"][0]["priority"] == "medium"
    assert data["createdTasks"][0]["tokenEstimate"] == 500
    assert data["toolResults"][0] == {"tool": "create_task", "success": True,
                                      "result": data["createdTasks"][0]}

    tasks = await client.get(f"/api/v1/projects/{test_project.id}/tasks", headers=get_auth_headers(OWNER_ID))
    assert [t["title"] for t in tasks.json()["data"]] == ["Fix login crash"]


@pytest.mark.asyncio
async def test_unknown_tool_still_returns_200(client: AsyncClient, fake_provider, test_project, test_columns):
    fake_provider.queue(intent_reply("task_management"), tool_reply(("delete_everything", {})))
    resp = await client.post(
        "/api/v1/ai/assistant",
        json={"input": "delete everything", "projectId": test_project.id},
        headers=get_auth_headers(OWNER_ID),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["data"]["toolResults"] == [
        {"tool": "delete_everything", "success": False, "error": "Tool 'delete_everything' not found"},
    ]


@pytest.mark.asyncio
async def test_degraded_answer_when_provider_down(client: AsyncClient, fake_provider, test_project, test_columns):
    fake_provider.queue(ProviderTimeout("slow"), ProviderTimeout("slow"))
    resp = await client.post(
        "/api/v1/ai/assistant",
        json={"input": "create task for onboarding", "projectId": test_project.id},
        headers=get_auth_headers(OWNER_ID),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["metadata"]["degraded"] is True
    assert body["metadata"]["intent"] == "task_creation"
    assert body["data"]["tokensUsed"] == 0
    assert body["data"]["type"] == "general_answer"


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [[], {"choices": ["x"]}])
async def test_wrong_shape_provider_reply_degrades(
    client: AsyncClient, monkeypatch, test_project, test_columns, body,
):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json=body))
    app.dependency_overrides[get_llm_provider] = lambda: LLMProvider(timeout=5, transport=transport)

    resp = await client.post(
        "/api/v1/ai/assistant",
        json={"input": "create task for onboarding", "projectId": test_project.id},
        headers=get_auth_headers(OWNER_ID),
    )
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["success"] is True
    assert payload["metadata"]["degraded"] is True
    assert payload["data"]["type"] == "general_answer"
    assert payload["data"]["tokensUsed"] == 0


@pytest.mark.asyncio
async def test_rate_limit_is_429(client: AsyncClient, fake_provider, test_project, test_columns):
    fake_provider.queue(intent_reply("general_answer"), ProviderRateLimited())
    resp = await client.post(
        "/api/v1/ai/assistant",
        json={"input": "hello", "projectId": test_project.id},
        headers=get_auth_headers(OWNER_ID),
    )
    assert resp.status_code == 429
    assert resp.json() == {
        "success": False,
        "error": "Rate limit exceeded",
        "message": "Too many AI requests. Please try again later.",
    }


@pytest.mark.asyncio
async def test_private_project_is_403_for_non_members(client: AsyncClient, store, test_org):
    project = await store.create_project(
        organization_id=test_org.id, name="Board Only", created_by=OWNER_ID, visibility="private",
    )
    resp = await client.post(
        "/api/v1/ai/assistant",
        json={"input": "what's here?", "projectId": project.id},
        headers=get_auth_headers(OUTSIDER_ID),
    )
    assert resp.status_code == 403
    assert resp.json()["success"] is False


@pytest.mark.asyncio
async def test_missing_token_is_401(client: AsyncClient, test_project):
    resp = await client.post("/api/v1/ai/assistant", json={"input": "hi", "projectId": test_project.id})
    assert resp.status_code == 401
    assert resp.json()["error"] == "User not authenticated"


@pytest.mark.asyncio
async def test_invalid_body_is_400(client: AsyncClient):
    resp = await client.post(
        "/api/v1/ai/assistant",
        json={"input": "", "projectId": "p1"},
        headers=get_auth_headers(OWNER_ID),
    )
    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["error"] == "Invalid request data"
    assert body["details"][0]["loc"][-1] == "input"


@pytest.mark.asyncio
async def test_unknown_project_is_404(client: AsyncClient):
    resp = await client.post(
        "/api/v1/ai/assistant",
        json={"input": "hello", "projectId": "no-such-project"},
        headers=get_auth_headers(OWNER_ID),
    )
    assert resp.status_code == 404
    assert resp.json()["error"] == "Project not found"


@pytest.mark.asyncio
async def test_list_tools(client: AsyncClient):
    resp = await client.get("/api/v1/ai/tools", headers=get_auth_headers(OWNER_ID))
    assert resp.status_code == 200
    body = resp.json()
    assert body["metadata"]["count"] == 16
    assert {"name", "description", "parameters"} <= set(body["data"][0])


@pytest.mark.asyncio
async def test_list_providers(client: AsyncClient, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("GROQ_API_KEY", raising=False)
    resp = await client.get("/api/v1/ai/providers", headers=get_auth_headers(OWNER_ID))
    assert resp.status_code == 200
    assert resp.json()["data"]["active_provider"] == "none"


@pytest.mark.asyncio
async def test_health_and_root(client: AsyncClient):
    resp = await client.get("/")
    assert resp.json()["status"] == "operational"
    health = await client.get("/health")
    assert health.status_code == 200
    assert "X-Request-ID" in health.headers
