# ai_tools.py — Tool catalog the assistant can invoke on a project board
# Features:
# - One Tool subclass per operation, collected once into an immutable registry
# - JSON-schema parameter contracts exposed to the model provider
# - Executor that never raises: unknown tools and failures become ToolResults
# - Mutations on other resources go back through the AuthorizationGate
#
# Tools run strictly one at a time; each awaits its store calls in order.

import json
import random
import logging
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

from authorization import AuthorizationGate, ResourceKind
from entity_store import EntityStore
from errors import BoardError, NotFound, ToolExecutionError
from models import BoardColumn, Task, TaskStatus, TaskType, TaskPriority, ProjectVisibility, utcnow
from schemas import column_out, project_out, task_out, project_context_out
import task_analytics

logger = logging.getLogger("board-assistant.tools")

EDIT_ROLES = ("owner", "editor")

DEFAULT_COLUMNS = ("Backlog", "Ready", "In Progress", "Done")
DEFAULT_COLUMN_COLORS = ("#3b82f6", "#10b981", "#f59e0b", "#ef4444", "#8b5cf6")
COLUMN_COLOR_PALETTE = DEFAULT_COLUMN_COLORS + ("#06b6d4", "#84cc16")

DEFAULT_TOKEN_ESTIMATE = 500
DEFAULT_SEARCH_LIMIT = 50

# Status -> phrases searched for in column name/title, in priority order
STATUS_COLUMN_PATTERNS = MappingProxyType({
    "backlog": ("backlog", "todo", "ideas", "new"),
    "ready": ("ready", "to do", "todo", "planned"),
    "in_progress": ("in progress", "doing", "wip", "active", "working"),
    "done": ("done", "completed", "finished", "complete"),
    "blocked": ("blocked", "waiting", "hold"),
    "cancelled": ("cancelled", "canceled", "rejected"),
})
GENERIC_COLUMN_PATTERNS = ("backlog", "todo", "ready", "new")

_TASK_TYPES = [t.value for t in TaskType]
_TASK_STATUSES = [s.value for s in TaskStatus]
_TASK_PRIORITIES = [p.value for p in TaskPriority]
_VISIBILITIES = [v.value for v in ProjectVisibility]


# ============================================================
# CONTEXT & RESULTS
# ============================================================

@dataclass
class ToolContext:
    user_id: str
    project_id: str
    organization_id: str
    store: EntityStore
    gate: AuthorizationGate


@dataclass
class ToolResult:
    success: bool
    data: Any = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": self.success}
        if self.success:
            body["data"] = self.data
        else:
            body["error"] = self.error
        return body


# ============================================================
# COLUMN RESOLUTION
# ============================================================

def find_column_by_name(columns: Sequence[BoardColumn], column_name: str) -> Optional[BoardColumn]:
    wanted = column_name.strip().lower()
    for column in columns:
        if column.name.lower() == wanted or column.title.lower() == wanted:
            return column
    return None


def _first_containing(columns: Sequence[BoardColumn], patterns: Iterable[str]) -> Optional[BoardColumn]:
    for pattern in patterns:
        for column in columns:
            if pattern in column.title.lower() or pattern in column.name.lower():
                return column
    return None


def resolve_column(
    columns: Sequence[BoardColumn],
    column_id: Optional[str] = None,
    column_name: Optional[str] = None,
    status: Optional[str] = None,
) -> Optional[BoardColumn]:
    """Pick the column a new task lands in.

    Order: explicit id, exact name/title match, status phrase table,
    generic backlog-ish patterns, then the first column by position.
    """
    ordered = sorted(columns, key=lambda c: c.position)
    if column_id:
        return next((c for c in ordered if c.id == column_id), None)
    if column_name:
        match = find_column_by_name(ordered, column_name)
        if match:
            return match
    if status:
        match = _first_containing(ordered, STATUS_COLUMN_PATTERNS.get(status, ()))
        if match:
            return match
    match = _first_containing(ordered, GENERIC_COLUMN_PATTERNS)
    if match:
        return match
    return ordered[0] if ordered else None


# ============================================================
# TOOL BASE
# ============================================================

class Tool:
    """A named operation with a JSON-schema parameter contract."""

    name: str = ""
    description: str = ""
    properties: Dict[str, Any] = {}
    required: Sequence[str] = ()

    @property
    def parameters(self) -> Dict[str, Any]:
        return {"type": "object", "properties": dict(self.properties), "required": list(self.required)}

    def definition(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description, "parameters": self.parameters}

    def provider_schema(self) -> Dict[str, Any]:
        return {"type": "function", "function": self.definition()}

    def validate(self, params: Dict[str, Any]) -> None:
        missing = [key for key in self.required if params.get(key) in (None, "")]
        if missing:
            raise ToolExecutionError(f"Missing required parameter(s): {', '.join(missing)}")

    async def execute(self, params: Dict[str, Any], ctx: ToolContext) -> Any:
        raise NotImplementedError

    # -- gate-mediated lookups -------------------------------------------

    async def _editable_project(self, ctx: ToolContext):
        access = await ctx.gate.authorize(ResourceKind.PROJECT, ctx.project_id, ctx.user_id, EDIT_ROLES)
        return access.project

    async def _editable_task(self, ctx: ToolContext, task_id: str) -> Task:
        access = await ctx.gate.authorize(ResourceKind.TASK, task_id, ctx.user_id, EDIT_ROLES)
        if access.resource.project_id != ctx.project_id:
            raise NotFound("task", "Task not found in this project")
        return access.resource

    async def _editable_column(self, ctx: ToolContext, column_id: str) -> BoardColumn:
        access = await ctx.gate.authorize(ResourceKind.COLUMN, column_id, ctx.user_id, EDIT_ROLES)
        if access.resource.project_id != ctx.project_id:
            raise NotFound("column", "Column not found in this project")
        return access.resource


def _string(description: str, **extra) -> Dict[str, Any]:
    return {"type": "string", "description": description, **extra}


def _pick(params: Dict[str, Any], mapping: Dict[str, str]) -> Dict[str, Any]:
    """camelCase tool params -> snake_case store fields, present keys only."""
    return {field: params[key] for key, field in mapping.items() if key in params and params[key] is not None}


# ============================================================
# PROJECT TOOLS
# ============================================================

class CreateProjectTool(Tool):
    name = "create_project"
    description = "Create a new project in the current organization"
    properties = {
        "name": _string("Project name"),
        "description": _string("Project description"),
        "visibility": _string("Project visibility level", enum=_VISIBILITIES),
    }
    required = ("name",)

    async def execute(self, params, ctx):
        await ctx.gate.authorize(ResourceKind.ORGANIZATION, ctx.organization_id, ctx.user_id)
        project = await ctx.store.create_project(
            organization_id=ctx.organization_id,
            name=params["name"],
            created_by=ctx.user_id,
            description=params.get("description"),
            visibility=params.get("visibility") or ProjectVisibility.TEAM,
        )
        for index, title in enumerate(DEFAULT_COLUMNS):
            await ctx.store.create_column(
                project_id=project.id,
                title=title,
                created_by=ctx.user_id,
                name=title.lower().replace(" ", "_"),
                color=DEFAULT_COLUMN_COLORS[index % len(DEFAULT_COLUMN_COLORS)],
                position=index,
            )
        return project_out(project)


class GetProjectInfoTool(Tool):
    name = "get_project_info"
    description = "Get detailed information about the current project"
    properties = {"includeStats": {"type": "boolean", "description": "Include task statistics"}}

    async def execute(self, params, ctx):
        context = await ctx.store.get_project_context(ctx.project_id)
        if not context:
            raise NotFound("project")
        info = project_context_out(context)
        if params.get("includeStats"):
            info["stats"] = task_analytics.project_stats(context.tasks, len(context.columns))
        return info


class UpdateProjectTool(Tool):
    name = "update_project"
    description = "Update project properties"
    properties = {
        "name": _string("New project name"),
        "description": _string("New project description"),
        "visibility": _string("New visibility level", enum=_VISIBILITIES),
    }

    async def execute(self, params, ctx):
        await self._editable_project(ctx)
        updates = _pick(params, {"name": "name", "description": "description", "visibility": "visibility"})
        project = await ctx.store.update_project(ctx.project_id, updates)
        if not project:
            raise NotFound("project")
        return project_out(project)


# ============================================================
# TASK TOOLS
# ============================================================

class CreateTaskTool(Tool):
    name = "create_task"
    description = "Create a new task in the project"
    properties = {
        "title": _string("Task title"),
        "description": _string("Task description"),
        "type": _string("Task type", enum=_TASK_TYPES),
        "priority": _string("Task priority", enum=_TASK_PRIORITIES),
        "status": _string("Task status for smart column placement", enum=_TASK_STATUSES),
        "columnId": _string("Column ID to create task in"),
        "columnName": _string("Column name (alternative to columnId)"),
        "tokenEstimate": {"type": "number", "description": "Estimated tokens for task completion"},
        "dueDate": _string("Due date in ISO format"),
        "tags": {"type": "array", "items": {"type": "string"}, "description": "Task tags"},
    }
    required = ("title",)

    async def execute(self, params, ctx):
        await self._editable_project(ctx)
        columns = await ctx.store.list_columns(ctx.project_id)
        if not columns:
            raise ToolExecutionError("No columns found in project. Create columns first.")

        column = resolve_column(
            columns,
            column_id=params.get("columnId"),
            column_name=params.get("columnName"),
            status=params.get("status"),
        )
        if not column:
            raise NotFound("column", "Column not found in this project")

        task = await ctx.store.create_task(
            project_id=ctx.project_id,
            column_id=column.id,
            title=params["title"],
            created_by=ctx.user_id,
            description=params.get("description"),
            type=params.get("type") or TaskType.CUSTOM,
            status=params.get("status") or TaskStatus.BACKLOG,
            priority=params.get("priority") or TaskPriority.MEDIUM,
            token_estimate=params.get("tokenEstimate") or DEFAULT_TOKEN_ESTIMATE,
            due_date=params.get("dueDate"),
            tags=params.get("tags") or [],
        )
        return task_out(task)


class UpdateTaskTool(Tool):
    name = "update_task"
    description = "Update an existing task"
    properties = {
        "taskId": _string("Task ID to update"),
        "title": _string("New task title"),
        "description": _string("New task description"),
        "type": _string("New task type", enum=_TASK_TYPES),
        "priority": _string("New task priority", enum=_TASK_PRIORITIES),
        "status": _string("New task status", enum=_TASK_STATUSES),
        "progressPercentage": {"type": "number", "description": "Task completion percentage (0-100)"},
        "tokenEstimate": {"type": "number", "description": "Estimated tokens for task completion"},
        "dueDate": _string("Due date in ISO format"),
        "tags": {"type": "array", "items": {"type": "string"}, "description": "Task tags"},
    }
    required = ("taskId",)

    _FIELDS = {
        "title": "title",
        "description": "description",
        "type": "type",
        "priority": "priority",
        "status": "status",
        "progressPercentage": "progress_percentage",
        "tokenEstimate": "token_estimate",
        "dueDate": "due_date",
        "tags": "tags",
    }

    async def execute(self, params, ctx):
        task = await self._editable_task(ctx, params["taskId"])
        updated = await ctx.store.update_task(task.id, _pick(params, self._FIELDS))
        if not updated:
            raise NotFound("task")
        return task_out(updated)


class DeleteTaskTool(Tool):
    name = "delete_task"
    description = "Delete a task from the project"
    properties = {"taskId": _string("Task ID to delete")}
    required = ("taskId",)

    async def execute(self, params, ctx):
        task = await self._editable_task(ctx, params["taskId"])
        deleted = await ctx.store.delete_task(task.id)
        return {"deleted": deleted, "taskId": task.id}


class MoveTaskTool(Tool):
    name = "move_task"
    description = "Move a task to a different column"
    properties = {
        "taskId": _string("Task ID to move"),
        "columnId": _string("Target column ID"),
        "columnName": _string("Target column name (alternative to columnId)"),
        "position": {"type": "number", "description": "Position in the target column"},
    }
    required = ("taskId",)

    async def execute(self, params, ctx):
        task = await self._editable_task(ctx, params["taskId"])
        column_id = params.get("columnId")
        if not column_id and params.get("columnName"):
            column = find_column_by_name(await ctx.store.list_columns(ctx.project_id), params["columnName"])
            column_id = column.id if column else None
        if not column_id:
            raise ToolExecutionError("Target column not found")

        target = await ctx.store.get_column(column_id)
        if not target or target.project_id != ctx.project_id:
            raise ToolExecutionError("Target column not found")

        position = params.get("position")
        moved = await ctx.store.move_task(task.id, target.id, int(position) if position is not None else None)
        if not moved:
            raise NotFound("task")
        return task_out(moved)


class SearchTasksTool(Tool):
    name = "search_tasks"
    description = "Search for tasks using various criteria"
    properties = {
        "query": _string("Text to search in title and description"),
        "status": _string("Filter by task status"),
        "priority": _string("Filter by task priority"),
        "type": _string("Filter by task type"),
        "agentId": _string("Filter by specific agent ID"),
        "tags": {"type": "array", "items": {"type": "string"}, "description": "Filter by tags"},
        "limit": {"type": "number", "description": "Maximum number of results"},
    }

    async def execute(self, params, ctx):
        tasks = await ctx.store.list_tasks(ctx.project_id)

        query = (params.get("query") or "").lower()
        if query:
            tasks = [
                t for t in tasks
                if query in t.title.lower() or (t.description and query in t.description.lower())
            ]
        for key in ("status", "priority", "type"):
            wanted = params.get(key)
            if wanted:
                tasks = [t for t in tasks if getattr(getattr(t, key), "value", getattr(t, key)) == wanted]
        if params.get("agentId"):
            tasks = [t for t in tasks if any(a.get("agentId") == params["agentId"] for a in t.agents or [])]
        if params.get("tags"):
            wanted_tags = set(params["tags"])
            tasks = [t for t in tasks if wanted_tags.intersection(t.tags or [])]

        tasks.sort(key=lambda t: t.created_at, reverse=True)
        limit = max(1, int(params.get("limit") or DEFAULT_SEARCH_LIMIT))
        return [task_out(t) for t in tasks[:limit]]


class AnalyzeTasksTool(Tool):
    name = "analyze_tasks"
    description = "Analyze project tasks and provide insights"
    properties = {
        "analysisType": _string("Type of analysis to perform", enum=list(task_analytics.ANALYSES)),
        "timeframe": _string('Time frame for analysis (e.g., "7d", "30d", "3m")'),
    }
    required = ("analysisType",)

    async def execute(self, params, ctx):
        analysis = task_analytics.ANALYSES.get(params["analysisType"])
        if not analysis:
            raise ToolExecutionError(f"Unknown analysis type: {params['analysisType']}")
        tasks = await ctx.store.list_tasks(ctx.project_id)
        return analysis(tasks, params.get("timeframe"))


# ============================================================
# COLUMN TOOLS
# ============================================================

class CreateColumnTool(Tool):
    name = "create_column"
    description = "Create a new column in the project board"
    properties = {
        "title": _string("Column title"),
        "name": _string("Column name (URL-friendly identifier)"),
        "color": _string("Column color (hex code)"),
        "position": {"type": "number", "description": "Column position (0-based)"},
        "autoRun": {"type": "boolean", "description": "Whether to auto-run agents on tasks moved to this column"},
    }
    required = ("title",)

    async def execute(self, params, ctx):
        await self._editable_project(ctx)
        position = params.get("position")
        column = await ctx.store.create_column(
            project_id=ctx.project_id,
            title=params["title"],
            created_by=ctx.user_id,
            name=params.get("name") or params["title"].lower().replace(" ", "_"),
            color=params.get("color") or random.choice(COLUMN_COLOR_PALETTE),
            position=int(position) if position is not None else None,
            settings={"autoRun": bool(params.get("autoRun", False)), "taskLimit": 50},
        )
        return column_out(column)


class UpdateColumnTool(Tool):
    name = "update_column"
    description = "Update an existing column"
    properties = {
        "columnId": _string("Column ID to update"),
        "title": _string("New column title"),
        "color": _string("New column color"),
        "autoRun": {"type": "boolean", "description": "Whether to enable auto-run"},
    }
    required = ("columnId",)

    async def execute(self, params, ctx):
        column = await self._editable_column(ctx, params["columnId"])
        updates = _pick(params, {"title": "title", "color": "color"})
        if params.get("autoRun") is not None:
            updates["settings"] = {**(column.settings or {}), "autoRun": bool(params["autoRun"])}
        updated = await ctx.store.update_column(column.id, updates)
        if not updated:
            raise NotFound("column")
        return column_out(updated)


class DeleteColumnTool(Tool):
    name = "delete_column"
    description = "Delete a column and all its tasks"
    properties = {"columnId": _string("Column ID to delete")}
    required = ("columnId",)

    async def execute(self, params, ctx):
        column = await self._editable_column(ctx, params["columnId"])
        deleted = await ctx.store.delete_column(column.id)
        return {"deleted": deleted, "columnId": column.id}


# ============================================================
# AGENT TOOLS
# ============================================================

class AssignAgentTool(Tool):
    """Placeholder until an agent execution backend exists."""

    name = "assign_agent"
    description = "Assign an AI agent to a task"
    properties = {
        "taskId": _string("Task ID to assign agent to"),
        "agentId": _string("Agent ID to assign"),
        "autoRun": {"type": "boolean", "description": "Whether to run the agent immediately"},
    }
    required = ("taskId", "agentId")

    async def execute(self, params, ctx):
        return {
            "success": True,
            "message": "Agent assignment functionality coming soon",
            "taskId": params["taskId"],
            "agentId": params["agentId"],
        }


class RunAgentTool(Tool):
    """Placeholder until an agent execution backend exists."""

    name = "run_agent"
    description = "Execute an agent on a task"
    properties = {
        "taskId": _string("Task ID to run agent on"),
        "agentId": _string("Specific agent to run (optional)"),
    }
    required = ("taskId",)

    async def execute(self, params, ctx):
        return {
            "success": True,
            "message": "Agent execution functionality coming soon",
            "taskId": params["taskId"],
            "agentId": params.get("agentId"),
        }


# ============================================================
# ANALYTICS TOOLS
# ============================================================

class GetProjectAnalyticsTool(Tool):
    name = "get_project_analytics"
    description = "Get comprehensive project analytics and insights"
    properties = {
        "timeframe": _string("Analysis timeframe (7d, 30d, 3m, 6m, 1y)"),
        "includeCharts": {"type": "boolean", "description": "Include chart data"},
    }

    async def execute(self, params, ctx):
        context = await ctx.store.get_project_context(ctx.project_id)
        if not context:
            raise NotFound("project")
        return {
            "project": project_out(context.project),
            "analytics": task_analytics.project_analytics(context.tasks, params.get("timeframe")),
            "generatedAt": utcnow().isoformat(),
        }


class GetTaskStatsTool(Tool):
    name = "get_task_stats"
    description = "Get detailed task statistics"
    properties = {
        "groupBy": _string("How to group the statistics", enum=list(task_analytics.TASK_STAT_GROUPINGS)),
    }

    async def execute(self, params, ctx):
        tasks = await ctx.store.list_tasks(ctx.project_id)
        return task_analytics.task_stats(tasks, params.get("groupBy"))


# ============================================================
# REGISTRY & EXECUTOR
# ============================================================

class ToolRegistry:
    """Immutable name -> Tool mapping, fixed at construction."""

    def __init__(self, tools: Iterable[Tool]):
        catalog: Dict[str, Tool] = {}
        for tool in tools:
            if not tool.name:
                raise ValueError(f"{type(tool).__name__} has no name")
            if tool.name in catalog:
                raise ValueError(f"Duplicate tool name: {tool.name}")
            catalog[tool.name] = tool
        self._tools = MappingProxyType(catalog)

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def definitions(self) -> List[Dict[str, Any]]:
        return [tool.definition() for tool in self._tools.values()]

    def provider_schemas(self) -> List[Dict[str, Any]]:
        return [tool.provider_schema() for tool in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)


def build_default_registry() -> ToolRegistry:
    return ToolRegistry([
        CreateProjectTool(),
        GetProjectInfoTool(),
        UpdateProjectTool(),
        CreateTaskTool(),
        UpdateTaskTool(),
        DeleteTaskTool(),
        MoveTaskTool(),
        SearchTasksTool(),
        AnalyzeTasksTool(),
        CreateColumnTool(),
        UpdateColumnTool(),
        DeleteColumnTool(),
        AssignAgentTool(),
        RunAgentTool(),
        GetProjectAnalyticsTool(),
        GetTaskStatsTool(),
    ])


TOOL_REGISTRY = build_default_registry()


def get_tool_registry() -> ToolRegistry:
    """FastAPI dependency returning the process-wide catalog."""
    return TOOL_REGISTRY


class ToolExecutor:
    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    async def execute_tool(self, name: str, params: Optional[Dict[str, Any]], ctx: ToolContext) -> ToolResult:
        tool = self.registry.get(name)
        if tool is None:
            logger.warning(
                f"🛠️ Unknown tool requested: {name} (project={ctx.project_id}, "
                f"available={', '.join(self.registry.names())})"
            )
            return ToolResult(success=False, error=f"Tool '{name}' not found")

        params = params or {}
        start = time.perf_counter()
        logger.info(f"🛠️ Executing tool: {name} (project={ctx.project_id}, user={ctx.user_id})")
        try:
            if not isinstance(params, dict):
                raise ToolExecutionError("Tool parameters must be a JSON object")
            tool.validate(params)
            data = await tool.execute(params, ctx)
        except Exception as e:
            # every failure, expected or not, is reported back as data
            try:
                await ctx.store.rollback()
            except Exception:
                logger.exception(f"❌ Session rollback failed after tool error: {name}")
            logger.error(
                f"❌ Tool execution failed: {name} ({type(e).__name__}: {e}) "
                f"params={json.dumps(params, default=str)[:500]}",
                exc_info=not isinstance(e, BoardError),
            )
            return ToolResult(success=False, error=str(e) or type(e).__name__)

        logger.info(f"✅ Tool executed successfully: {name} ({(time.perf_counter() - start) * 1000:.0f}ms)")
        return ToolResult(success=True, data=data)
