# tests/test_tools.py — Tool registry, column resolution and the executor
import pytest
import pytest_asyncio

from ai_tools import (
    TOOL_REGISTRY, Tool, ToolContext, ToolExecutor, ToolRegistry,
    build_default_registry, resolve_column,
)
from models import BoardColumn

from tests.conftest import EDITOR_ID, OUTSIDER_ID, OWNER_ID, VIEWER_ID


@pytest_asyncio.fixture
async def executor():
    return ToolExecutor(build_default_registry())


def _ctx(store, gate, project, user_id=OWNER_ID):
    return ToolContext(
        user_id=user_id,
        project_id=project.id,
        organization_id=project.organization_id,
        store=store,
        gate=gate,
    )


# ============================================================
# REGISTRY
# ============================================================

def test_default_registry_catalog():
    assert TOOL_REGISTRY.names() == [
        "create_project", "get_project_info", "update_project",
        "create_task", "update_task", "delete_task", "move_task",
        "search_tasks", "analyze_tasks",
        "create_column", "update_column", "delete_column",
        "assign_agent", "run_agent",
        "get_project_analytics", "get_task_stats",
    ]
    assert len(TOOL_REGISTRY) == 16
    assert "create_task" in TOOL_REGISTRY


def test_provider_schemas_wrap_definitions():
    schema = next(s for s in TOOL_REGISTRY.provider_schemas() if s["function"]["name"] == "create_task")
    assert schema["type"] == "function"
    params = schema["function"]["parameters"]
    assert params["required"] == ["title"]
    assert "medium" in params["properties"]["priority"]["enum"]


def test_registry_rejects_duplicates():
    class Ping(Tool):
        name = "ping"

    with pytest.raises(ValueError):
        ToolRegistry([Ping(), Ping()])


def test_registry_is_read_only():
    with pytest.raises(TypeError):
        TOOL_REGISTRY._tools["rogue"] = None


# ============================================================
# COLUMN RESOLUTION
# ============================================================

def _column(id, name, title=None, position=0):
    return BoardColumn(id=id, name=name, title=title or name, position=position)


def test_resolve_column_prefers_explicit_id():
    columns = [_column("c1", "backlog"), _column("c2", "done", position=1)]
    assert resolve_column(columns, column_id="c2").id == "c2"
    assert resolve_column(columns, column_id="nope") is None


def test_resolve_column_by_name_then_status():
    columns = [
        _column("c1", "ideas", "Ideas", 0),
        _column("c2", "doing", "Doing", 1),
        _column("c3", "shipped", "Shipped", 2),
    ]
    assert resolve_column(columns, column_name="Shipped").id == "c3"
    assert resolve_column(columns, status="in_progress").id == "c2"
    # unknown name with no status falls through to the first column
    assert resolve_column(columns, column_name="nowhere").id == "c1"


def test_resolve_column_falls_back_to_first_by_position():
    columns = [_column("c2", "review", position=1), _column("c1", "triage", position=0)]
    assert resolve_column(columns).id == "c1"
    assert resolve_column([]) is None


# ============================================================
# EXECUTOR
# ============================================================

@pytest.mark.asyncio
async def test_unknown_tool_is_a_result_not_an_exception(executor, store, gate, test_project):
    result = await executor.execute_tool("delete_everything", {}, _ctx(store, gate, test_project))
    assert result.success is False
    assert result.error == "Tool 'delete_everything' not found"
    assert result.to_dict() == {"success": False, "error": "Tool 'delete_everything' not found"}


@pytest.mark.asyncio
async def test_create_task_applies_defaults_and_resolves_column(executor, store, gate, test_project):
    column = await store.create_column(project_id=test_project.id, title="Backlog", name="backlog",
                                       created_by=OWNER_ID)

    result = await executor.execute_tool(
        "create_task", {"title": "Fix login crash", "type": "bug"}, _ctx(store, gate, test_project),
    )

    assert result.success, result.error
    task = result.data
    assert task["columnId"] == column.id
    assert task["status"] == "backlog"
    assert task["priority"] == "medium"
    assert task["tokenEstimate"] == 500
    assert task["type"] == "bug"
    assert task["position"] == 0


@pytest.mark.asyncio
async def test_create_task_uses_status_for_placement(executor, store, gate, test_project, test_columns):
    result = await executor.execute_tool(
        "create_task", {"title": "Pair on API", "status": "in_progress"}, _ctx(store, gate, test_project),
    )
    assert result.success
    assert result.data["columnId"] == test_columns[2].id


@pytest.mark.asyncio
async def test_create_task_without_columns_fails(executor, store, gate, test_project):
    result = await executor.execute_tool("create_task", {"title": "Homeless"}, _ctx(store, gate, test_project))
    assert result.success is False
    assert "No columns found" in result.error


@pytest.mark.asyncio
async def test_missing_required_parameter(executor, store, gate, test_project, test_columns):
    result = await executor.execute_tool("create_task", {"description": "no title"}, _ctx(store, gate, test_project))
    assert result.success is False
    assert "title" in result.error


@pytest.mark.asyncio
async def test_non_object_parameters(executor, store, gate, test_project):
    result = await executor.execute_tool("search_tasks", ["not", "a", "dict"], _ctx(store, gate, test_project))
    assert result.success is False
    assert "JSON object" in result.error


@pytest.mark.asyncio
async def test_viewer_cannot_mutate_through_tools(executor, store, gate, test_project, test_columns):
    project_id = test_project.id
    result = await executor.execute_tool(
        "create_task", {"title": "Sneaky"}, _ctx(store, gate, test_project, VIEWER_ID),
    )
    assert result.success is False
    assert "Required role" in result.error
    # a failed tool rolls the session back, so only plain ids are used afterwards
    assert await store.list_tasks(project_id) == []


@pytest.mark.asyncio
async def test_outsider_cannot_create_project(executor, store, gate, test_project):
    result = await executor.execute_tool(
        "create_project", {"name": "Hostile"}, _ctx(store, gate, test_project, OUTSIDER_ID),
    )
    assert result.success is False


@pytest.mark.asyncio
async def test_create_project_adds_default_columns(executor, store, gate, test_project):
    result = await executor.execute_tool(
        "create_project", {"name": "Website", "visibility": "private"}, _ctx(store, gate, test_project, EDITOR_ID),
    )
    assert result.success, result.error
    assert result.data["visibility"] == "private"
    columns = await store.list_columns(result.data["id"])
    assert [c.title for c in columns] == ["Backlog", "Ready", "In Progress", "Done"]


@pytest.mark.asyncio
async def test_update_and_move_task(executor, store, gate, test_project, test_columns):
    ctx = _ctx(store, gate, test_project, EDITOR_ID)
    task = await store.create_task(test_project.id, test_columns[0].id, "Draft brief", OWNER_ID)

    updated = await executor.execute_tool(
        "update_task", {"taskId": task.id, "priority": "urgent", "progressPercentage": 40}, ctx,
    )
    assert updated.success, updated.error
    assert updated.data["priority"] == "urgent"
    assert updated.data["progressPercentage"] == 40

    moved = await executor.execute_tool("move_task", {"taskId": task.id, "columnName": "Done", "position": 0}, ctx)
    assert moved.success, moved.error
    assert moved.data["columnId"] == test_columns[3].id
    assert moved.data["position"] == 0


@pytest.mark.asyncio
async def test_move_task_to_unknown_column(executor, store, gate, test_project, test_columns):
    task = await store.create_task(test_project.id, test_columns[0].id, "Stuck", OWNER_ID)
    result = await executor.execute_tool(
        "move_task", {"taskId": task.id, "columnName": "Limbo"}, _ctx(store, gate, test_project),
    )
    assert result.success is False
    assert result.error == "Target column not found"


@pytest.mark.asyncio
async def test_task_from_another_project_is_not_found(executor, store, gate, test_org, test_project, test_columns):
    other = await store.create_project(organization_id=test_org.id, name="Other", created_by=OWNER_ID)
    other_column = await store.create_column(project_id=other.id, title="Backlog", created_by=OWNER_ID)
    foreign = await store.create_task(other.id, other_column.id, "Not yours", OWNER_ID)
    foreign_id = foreign.id

    result = await executor.execute_tool("delete_task", {"taskId": foreign_id}, _ctx(store, gate, test_project))
    assert result.success is False
    assert await store.get_task(foreign_id) is not None


@pytest.mark.asyncio
async def test_search_tasks_filters(executor, store, gate, test_project, test_columns):
    await store.create_task(test_project.id, test_columns[0].id, "Write launch email", OWNER_ID,
                            type="email", tags=["launch"])
    await store.create_task(test_project.id, test_columns[0].id, "Fix crash", OWNER_ID, type="bug", priority="high")

    ctx = _ctx(store, gate, test_project, VIEWER_ID)
    by_text = await executor.execute_tool("search_tasks", {"query": "LAUNCH"}, ctx)
    by_priority = await executor.execute_tool("search_tasks", {"priority": "high"}, ctx)
    by_tag = await executor.execute_tool("search_tasks", {"tags": ["launch"], "limit": 5}, ctx)

    assert [t["title"] for t in by_text.data] == ["Write launch email"]
    assert [t["title"] for t in by_priority.data] == ["Fix crash"]
    assert len(by_tag.data) == 1


@pytest.mark.asyncio
async def test_analyze_tasks_unknown_type(executor, store, gate, test_project):
    result = await executor.execute_tool(
        "analyze_tasks", {"analysisType": "astrology"}, _ctx(store, gate, test_project),
    )
    assert result.success is False
    assert result.error == "Unknown analysis type: astrology"


@pytest.mark.asyncio
async def test_analyze_progress(executor, store, gate, test_project, test_columns):
    await store.create_task(test_project.id, test_columns[3].id, "Done one", OWNER_ID, status="done")
    await store.create_task(test_project.id, test_columns[0].id, "Open one", OWNER_ID)
    result = await executor.execute_tool(
        "analyze_tasks", {"analysisType": "progress"}, _ctx(store, gate, test_project),
    )
    assert result.success, result.error
    assert result.data["totalTasks"] == 2
    assert result.data["completionRate"] == 50.0


@pytest.mark.asyncio
async def test_column_tools(executor, store, gate, test_project, test_columns):
    ctx = _ctx(store, gate, test_project, EDITOR_ID)
    created = await executor.execute_tool("create_column", {"title": "QA Review", "color": "#123456"}, ctx)
    assert created.success, created.error
    assert created.data["name"] == "qa_review"
    assert created.data["position"] == 4

    updated = await executor.execute_tool(
        "update_column", {"columnId": created.data["id"], "autoRun": True, "title": "QA"}, ctx,
    )
    assert updated.data["title"] == "QA"
    assert updated.data["settings"]["autoRun"] is True

    deleted = await executor.execute_tool("delete_column", {"columnId": created.data["id"]}, ctx)
    assert deleted.data == {"deleted": True, "columnId": created.data["id"]}


@pytest.mark.asyncio
async def test_project_info_and_stats(executor, store, gate, test_project, test_columns):
    await store.create_task(test_project.id, test_columns[0].id, "Only task", OWNER_ID)
    ctx = _ctx(store, gate, test_project, VIEWER_ID)

    info = await executor.execute_tool("get_project_info", {"includeStats": True}, ctx)
    assert info.success, info.error
    assert info.data["project"]["id"] == test_project.id
    assert len(info.data["columns"][0]["tasks"]) == 1
    assert "stats" in info.data

    stats = await executor.execute_tool("get_task_stats", {"groupBy": "priority"}, ctx)
    assert stats.success, stats.error


@pytest.mark.asyncio
async def test_agent_tools_are_placeholders(executor, store, gate, test_project):
    result = await executor.execute_tool(
        "assign_agent", {"taskId": "t-1", "agentId": "a-1"}, _ctx(store, gate, test_project),
    )
    assert result.success
    assert "coming soon" in result.data["message"]


@pytest.mark.asyncio
async def test_search_tasks_negative_limit_returns_newest(executor, store, gate, test_project, test_columns):
    await store.create_task(test_project.id, test_columns[0].id, "Older", OWNER_ID)
    await store.create_task(test_project.id, test_columns[0].id, "Newer", OWNER_ID)

    result = await executor.execute_tool("search_tasks", {"limit": -1}, _ctx(store, gate, test_project))

    assert result.success is True
    assert [t["title"] for t in result.data] == ["Newer"]


@pytest.mark.asyncio
async def test_failed_rollback_is_still_reported_as_data():
    class Explodes(Tool):
        name = "explodes"

        async def execute(self, params, ctx):
            raise RuntimeError("tool blew up")

    class DroppedConnectionStore:
        async def rollback(self):
            raise ConnectionError("connection lost")

    ctx = ToolContext(user_id=OWNER_ID, project_id="p-1", organization_id="o-1",
                      store=DroppedConnectionStore(), gate=None)
    result = await ToolExecutor(ToolRegistry([Explodes()])).execute_tool("explodes", {}, ctx)

    assert result.success is False
    assert result.error == "tool blew up"
