# routers/projects.py — Projects and their board context
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import Field

from auth import get_current_user, CurrentUser
from authorization import (
    AccessResult, AuthorizationGate, ResourceKind, get_authorization_gate, require_project_access,
)
from entity_store import EntityStore, get_entity_store
from errors import NotFound
from models import ProjectRole, ProjectVisibility
from schemas import CamelModel, column_out, envelope, project_context_out, project_out, task_out

logger = logging.getLogger("board-assistant.projects")

router = APIRouter(prefix="/api/v1/projects", tags=["Projects"])

# Columns every new project starts with
DEFAULT_PROJECT_COLUMNS = [
    {"title": "Backlog", "name": "backlog", "color": "#6b7280", "position": 0},
    {"title": "Sprint Ready", "name": "ready", "color": "#3b82f6", "position": 1},
    {"title": "In Progress", "name": "in_progress", "color": "#f59e0b", "position": 2},
    {"title": "Done", "name": "done", "color": "#10b981", "position": 3},
]


# ============================================================
# SCHEMAS
# ============================================================

class ProjectMemberIn(CamelModel):
    user_id: str = Field(..., min_length=1)
    role: ProjectRole = ProjectRole.VIEWER


class ProjectCreate(CamelModel):
    organization_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    visibility: ProjectVisibility = ProjectVisibility.TEAM
    settings: Dict[str, Any] = Field(default_factory=dict)
    members: List[ProjectMemberIn] = Field(default_factory=list)


class ProjectUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    visibility: Optional[ProjectVisibility] = None
    settings: Optional[Dict[str, Any]] = None
    is_archived: Optional[bool] = None


# ============================================================
# ENDPOINTS
# ============================================================

@router.post("", status_code=201)
async def create_project(
    body: ProjectCreate,
    user: CurrentUser = Depends(get_current_user),
    store: EntityStore = Depends(get_entity_store),
    gate: AuthorizationGate = Depends(get_authorization_gate),
):
    """Create a project with the default board columns; the caller becomes its owner"""
    await gate.authorize(ResourceKind.ORGANIZATION, body.organization_id, user.id)
    project = await store.create_project(
        organization_id=body.organization_id,
        name=body.name,
        created_by=user.id,
        description=body.description,
        visibility=body.visibility,
        settings=body.settings,
        members=[{"userId": m.user_id, "role": m.role.value} for m in body.members],
    )
    for column in DEFAULT_PROJECT_COLUMNS:
        await store.create_column(project_id=project.id, created_by=user.id, **column)

    logger.info(
        f"📂 Project created: {project.name} ({project.id}) org={project.organization_id} "
        f"columns={len(DEFAULT_PROJECT_COLUMNS)}"
    )
    return envelope(project_out(project))


@router.get("/{project_id}")
async def get_project(access: AccessResult = Depends(require_project_access())):
    return envelope(project_out(access.project))


@router.patch("/{project_id}")
async def update_project(
    project_id: str,
    body: ProjectUpdate,
    access: AccessResult = Depends(require_project_access("owner", "editor")),
    store: EntityStore = Depends(get_entity_store),
):
    updates = body.model_dump(exclude_unset=True)
    if "settings" in updates:
        updates["settings"] = {**(access.project.settings or {}), **(updates["settings"] or {})}
    project = await store.update_project(project_id, updates)
    if not project:
        raise NotFound("project")
    return envelope(project_out(project))


@router.delete("/{project_id}")
async def delete_project(
    project_id: str,
    access: AccessResult = Depends(require_project_access("owner")),
    store: EntityStore = Depends(get_entity_store),
):
    if not await store.delete_project(project_id):
        raise NotFound("project")
    return envelope(message="Project deleted successfully")


@router.get("/{project_id}/context")
async def get_project_context(
    project_id: str,
    access: AccessResult = Depends(require_project_access()),
    store: EntityStore = Depends(get_entity_store),
):
    """Organization, project, tasks, columns (with their tasks), agents and members"""
    context = await store.get_project_context(project_id)
    if not context:
        raise NotFound("project")
    return envelope(project_context_out(context), metadata={
        "projectId": project_id,
        "organizationId": context.organization.id,
        **context.counts(),
    })


@router.get("/{project_id}/tasks")
async def list_project_tasks(
    project_id: str,
    access: AccessResult = Depends(require_project_access()),
    store: EntityStore = Depends(get_entity_store),
):
    tasks = await store.list_tasks(project_id)
    return envelope([task_out(t) for t in tasks])


@router.get("/{project_id}/columns")
async def list_project_columns(
    project_id: str,
    access: AccessResult = Depends(require_project_access()),
    store: EntityStore = Depends(get_entity_store),
):
    columns = await store.list_columns(project_id)
    return envelope([column_out(c) for c in columns])
