# routers/tasks.py — Tasks on a project board
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import Field

from auth import get_current_user, CurrentUser
from authorization import (
    AccessResult, AuthorizationGate, ResourceKind, get_authorization_gate, require_task_access,
)
from entity_store import EntityStore, get_entity_store
from errors import AgentExecutionUnavailable, Forbidden, NotFound
from models import TaskPriority, TaskStatus, TaskType, utcnow
from schemas import CamelModel, envelope, task_out

logger = logging.getLogger("board-assistant.tasks")

router = APIRouter(prefix="/api/v1/tasks", tags=["Tasks"])

EDIT_ROLES = ("owner", "editor")
DEFAULT_TOKEN_ESTIMATE = 500

# column name -> status applied when a task is moved into it
COLUMN_STATUS_MAP = {
    "backlog": TaskStatus.BACKLOG,
    "ready": TaskStatus.READY,
    "in_progress": TaskStatus.IN_PROGRESS,
    "done": TaskStatus.DONE,
}


# ============================================================
# SCHEMAS
# ============================================================

class TaskAgentIn(CamelModel):
    agent_id: str = Field(..., min_length=1)
    agent_name: Optional[str] = None


class TaskAssigneeIn(CamelModel):
    user_id: str = Field(..., min_length=1)
    role: Optional[str] = None


class TaskCreate(CamelModel):
    project_id: str = Field(..., min_length=1)
    column_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    type: TaskType = TaskType.CUSTOM
    status: TaskStatus = TaskStatus.BACKLOG
    priority: TaskPriority = TaskPriority.MEDIUM
    token_estimate: int = Field(default=DEFAULT_TOKEN_ESTIMATE, ge=0)
    due_date: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)
    assignees: List[TaskAssigneeIn] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)
    parent_task: Optional[str] = None
    agents: List[TaskAgentIn] = Field(default_factory=list)


class TaskUpdate(CamelModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    type: Optional[TaskType] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    token_estimate: Optional[int] = Field(default=None, ge=0)
    actual_tokens_used: Optional[int] = Field(default=None, ge=0)
    progress_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    time_spent: Optional[int] = Field(default=None, ge=0)
    due_date: Optional[datetime] = None
    tags: Optional[List[str]] = None
    assignees: Optional[List[TaskAssigneeIn]] = None
    dependencies: Optional[List[str]] = None
    blocked_by: Optional[List[str]] = None
    subtasks: Optional[List[str]] = None
    parent_task: Optional[str] = None


class MoveTaskRequest(CamelModel):
    column_id: str = Field(..., min_length=1)
    position: Optional[int] = Field(default=None, ge=0)


class AssignAgentsRequest(CamelModel):
    agents: List[TaskAgentIn] = Field(..., min_length=1)
    auto_run: bool = False


class RunAgentRequest(CamelModel):
    agent_id: Optional[str] = None
    options: Dict[str, Any] = Field(default_factory=dict)


# --- Helpers ---

def _assignee_entries(assignees: List[TaskAssigneeIn]) -> List[Dict[str, Any]]:
    assigned_at = utcnow().isoformat()
    return [
        {"userId": a.user_id, "role": a.role, "assignedAt": assigned_at}
        for a in assignees
    ]


def _agent_entries(agents: List[TaskAgentIn]) -> List[Dict[str, Any]]:
    return [{"agentId": a.agent_id, "agentName": a.agent_name} for a in agents]


# ============================================================
# ENDPOINTS
# ============================================================

@router.post("", status_code=201)
async def create_task(
    body: TaskCreate,
    user: CurrentUser = Depends(get_current_user),
    store: EntityStore = Depends(get_entity_store),
    gate: AuthorizationGate = Depends(get_authorization_gate),
):
    """Create a task at the bottom of its column (owner/editor)"""
    await gate.authorize(ResourceKind.PROJECT, body.project_id, user.id, EDIT_ROLES)
    task = await store.create_task(
        project_id=body.project_id,
        column_id=body.column_id,
        title=body.title,
        created_by=user.id,
        description=body.description,
        type=body.type,
        status=body.status,
        priority=body.priority,
        token_estimate=body.token_estimate,
        due_date=body.due_date,
        tags=body.tags,
        assignees=_assignee_entries(body.assignees),
        dependencies=body.dependencies,
        parent_task=body.parent_task,
        agents=_agent_entries(body.agents),
    )
    return envelope(task_out(task))


@router.get("/{task_id}")
async def get_task(access: AccessResult = Depends(require_task_access())):
    return envelope(task_out(access.resource))


@router.patch("/{task_id}")
async def update_task(
    task_id: str,
    body: TaskUpdate,
    access: AccessResult = Depends(require_task_access(*EDIT_ROLES)),
    store: EntityStore = Depends(get_entity_store),
):
    updates = body.model_dump(exclude_unset=True)
    if body.assignees is not None:
        updates["assignees"] = _assignee_entries(body.assignees)
    task = await store.update_task(task_id, updates)
    if not task:
        raise NotFound("task")
    return envelope(task_out(task))


@router.delete("/{task_id}")
async def delete_task(
    task_id: str,
    access: AccessResult = Depends(require_task_access(*EDIT_ROLES)),
    store: EntityStore = Depends(get_entity_store),
):
    if not await store.delete_task(task_id):
        raise NotFound("task")
    return envelope(message="Task deleted successfully")


@router.post("/{task_id}/move")
async def move_task(
    task_id: str,
    body: MoveTaskRequest,
    access: AccessResult = Depends(require_task_access(*EDIT_ROLES)),
    store: EntityStore = Depends(get_entity_store),
):
    """Move a task to another column of the same project.

    Columns named backlog/ready/in_progress/done also set the task status.
    """
    column = await store.get_column(body.column_id)
    if not column:
        raise NotFound("column")
    if column.project_id != access.resource.project_id:
        raise Forbidden("Cannot move task to column in different project")

    task = await store.move_task(task_id, column.id, body.position)
    if not task:
        raise NotFound("task")
    status = COLUMN_STATUS_MAP.get((column.name or "").lower())
    if status is not None and task.status != status:
        task = await store.update_task(task_id, {"status": status})
    return envelope(task_out(task))


@router.post("/{task_id}/assign-agent")
async def assign_agents(
    task_id: str,
    body: AssignAgentsRequest,
    access: AccessResult = Depends(require_task_access(*EDIT_ROLES)),
    user: CurrentUser = Depends(get_current_user),
    store: EntityStore = Depends(get_entity_store),
    gate: AuthorizationGate = Depends(get_authorization_gate),
):
    """Replace the task's agents and record each assignment in its history"""
    agents = []
    for requested in body.agents:
        agent_access = await gate.authorize(ResourceKind.AGENT, requested.agent_id, user.id)
        agent = agent_access.resource
        agents.append({"agentId": agent.id, "agentName": requested.agent_name or agent.name})

    assigned_at = utcnow().isoformat()
    history = [{"agentId": a["agentId"], "assignedAt": assigned_at, "assignedBy": user.id} for a in agents]
    task = await store.append_agent_history(task_id, history, agents=agents)
    if not task:
        raise NotFound("task")

    logger.info(f"🤖 Assigned {len(agents)} agent(s) to task {task_id} by {user.id}")
    metadata = {"autoRunRequested": True} if body.auto_run else None
    return envelope(task_out(task), metadata=metadata)


@router.post("/{task_id}/run-agent")
async def run_agent(
    task_id: str,
    body: RunAgentRequest,
    access: AccessResult = Depends(require_task_access(*EDIT_ROLES)),
):
    raise AgentExecutionUnavailable(detail=f"No agent execution backend is configured for task {task_id}")
