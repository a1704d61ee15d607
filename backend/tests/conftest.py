# tests/conftest.py — Shared test fixtures
import os
import json

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ.pop("OTEL_EXPORTER_OTLP_ENDPOINT", None)

from models import Base
from auth import AuthService
from authorization import AuthorizationGate
from database import get_db_session
from entity_store import EntityStore
from errors import ProviderUnavailable
from llm_provider import ProposedToolCall, ProviderReply, get_llm_provider
from main import app

OWNER_ID = "user-owner"
EDITOR_ID = "user-editor"
VIEWER_ID = "user-viewer"
OUTSIDER_ID = "user-outsider"


# ============================================================
# SCRIPTED MODEL PROVIDER
# ============================================================

class FakeProvider:
    """Stands in for LLMProvider: each chat() call pops the next scripted reply.

    A scripted exception is raised instead of returned. An empty script raises
    ProviderUnavailable, the same as an unconfigured provider.
    """

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    def queue(self, *replies):
        self.replies.extend(replies)

    async def chat(self, messages, **kwargs):
        self.calls.append({"messages": messages, **kwargs})
        if not self.replies:
            raise ProviderUnavailable("No LLM provider configured")
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


def intent_reply(primary: str, confidence: float = 0.9, secondary=None, entities=None) -> ProviderReply:
    body = {
        "intent": {"primary": primary, "secondary": secondary, "confidence": confidence},
        "entities": entities or [],
        "reasoning": "scripted",
    }
    return ProviderReply(content=json.dumps(body), tokens_used=40, model="gpt-4o-mini")


def tool_reply(*calls, content: str = "", tokens_used: int = 150) -> ProviderReply:
    """calls are (name, arguments) pairs; arguments may be a dict or a raw string."""
    proposed = [
        ProposedToolCall(
            name=name,
            arguments=arguments if isinstance(arguments, str) else json.dumps(arguments),
            id=f"call_{i}",
        )
        for i, (name, arguments) in enumerate(calls)
    ]
    return ProviderReply(content=content, tool_calls=proposed, tokens_used=tokens_used,
                         model="gpt-4o-2024-08-06", finish_reason="tool_calls" if proposed else "stop")


# ============================================================
# DATABASE & CLIENT
# ============================================================

@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest_asyncio.fixture(scope="function")
async def client(db_engine, fake_provider):
    """HTTP test client with overridden DB and model provider dependencies"""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    app.dependency_overrides[get_llm_provider] = lambda: fake_provider
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ============================================================
# BOARD FIXTURES
# ============================================================

@pytest_asyncio.fixture
async def store(db_session):
    return EntityStore(db_session)


@pytest_asyncio.fixture
async def gate(store):
    return AuthorizationGate(store)


@pytest_asyncio.fixture
async def test_org(store):
    """Organization owned by OWNER_ID; EDITOR_ID is a member, VIEWER_ID a viewer"""
    org = await store.create_organization(name="Acme Robotics", slug="acme-robotics", created_by=OWNER_ID)
    members = list(org.members) + [
        {"userId": EDITOR_ID, "role": "member", "joinedAt": "2026-01-01T00:00:00+00:00"},
        {"userId": VIEWER_ID, "role": "viewer", "joinedAt": "2026-01-01T00:00:00+00:00"},
    ]
    return await store.update_organization(org.id, {"members": members})


@pytest_asyncio.fixture
async def test_project(store, test_org):
    """Team project: OWNER_ID owns it, EDITOR_ID edits, VIEWER_ID views"""
    return await store.create_project(
        organization_id=test_org.id,
        name="Launch Plan",
        created_by=OWNER_ID,
        description="Everything needed for the spring launch",
        members=[
            {"userId": EDITOR_ID, "role": "editor"},
            {"userId": VIEWER_ID, "role": "viewer"},
        ],
    )


@pytest_asyncio.fixture
async def test_columns(store, test_project):
    """Backlog / Ready / In Progress / Done, in that order"""
    columns = []
    for title in ("Backlog", "Ready", "In Progress", "Done"):
        columns.append(await store.create_column(project_id=test_project.id, title=title, created_by=OWNER_ID))
    return columns


@pytest_asyncio.fixture
async def test_agent(store, test_org):
    return await store.create_agent(
        organization_id=test_org.id,
        name="Researcher",
        model="gpt-4o-mini",
        created_by=OWNER_ID,
        type="research",
        system_prompt="You dig up sources and summarise them.",
    )


def get_auth_headers(user_id: str, email: str = None) -> dict:
    """Generate auth headers for a user id, as the identity provider would"""
    token_data = {"sub": user_id}
    if email:
        token_data["email"] = email
    token = AuthService.create_access_token(token_data)
    return {"Authorization": f"Bearer {token}"}
