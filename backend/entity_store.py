# entity_store.py — Persistence operations over the five board entity kinds
# Wraps one AsyncSession. Every mutating call commits on its own; callers that
# run several mutations in a row get no atomicity across them.
#
# Deletion policy (per kind):
#   organization, project, agent -> soft (is_active = False)
#   column                       -> hard, cascades to the column's tasks
#   task                         -> hard
#
# Position fields are computed as read-max-then-write with no lock, so two
# concurrent creates in the same column can land on the same position.

import logging
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, func, delete
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import Depends

from database import get_db_session
from errors import Conflict, NotFound, ValidationFailed
from models import (
    Organization, Project, Agent, BoardColumn, Task,
    OrgRole, ProjectRole, ProjectVisibility, ColumnVisibility,
    TaskType, TaskStatus, TaskPriority,
    default_org_settings, default_project_settings,
    default_agent_settings, default_column_settings,
    utcnow,
)

logger = logging.getLogger("board-assistant.store")

DELETION_POLICY = MappingProxyType({
    "organization": "soft",
    "project": "soft",
    "agent": "soft",
    "column": "hard",
    "task": "hard",
})

ORGANIZATION_FIELDS = frozenset({"name", "description", "logo_url", "settings", "members"})
PROJECT_FIELDS = frozenset({"name", "description", "visibility", "members", "settings", "is_archived"})
AGENT_FIELDS = frozenset({
    "name", "description", "type", "model", "system_prompt", "settings", "is_public",
})
COLUMN_FIELDS = frozenset({"title", "name", "color", "position", "settings", "visibility"})
TASK_FIELDS = frozenset({
    "title", "description", "type", "status", "priority", "position", "column_id",
    "agents", "agent_history", "token_estimate", "actual_tokens_used",
    "progress_percentage", "time_spent", "assignees", "tags", "dependencies",
    "blocked_by", "subtasks", "parent_task", "due_date",
})

_ENUM_FIELDS = {
    Project: {"visibility": ProjectVisibility},
    Agent: {"type": TaskType},
    BoardColumn: {"visibility": ColumnVisibility},
    Task: {"type": TaskType, "status": TaskStatus, "priority": TaskPriority},
}


def coerce_enum(enum_cls, value, field_name: str):
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationFailed(f"Invalid {field_name} '{value}'. Expected one of: {allowed}")


def coerce_datetime(value, field_name: str):
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise ValidationFailed(f"Invalid {field_name} '{value}'. Expected an ISO 8601 date")


def _member_entry(user_id: str, role: str, stamp_key: str, **extra) -> Dict[str, Any]:
    entry = {"userId": user_id, "role": role, stamp_key: utcnow().isoformat()}
    entry.update(extra)
    return entry


@dataclass
class ProjectContext:
    """Everything the assistant needs to reason about one project."""

    organization: Organization
    project: Project
    tasks: List[Task]
    columns: List[BoardColumn]
    agents: List[Agent]
    members: List[Dict[str, Any]] = field(default_factory=list)

    def tasks_in(self, column_id: str) -> List[Task]:
        return sorted(
            (t for t in self.tasks if t.column_id == column_id),
            key=lambda t: t.position,
        )

    def counts(self) -> Dict[str, int]:
        return {
            "tasks": len(self.tasks),
            "columns": len(self.columns),
            "agents": len(self.agents),
        }


class EntityStore:
    """CRUD over organizations, projects, agents, columns and tasks."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ============================================================
    # HELPERS
    # ============================================================

    async def _save(self, obj):
        self.session.add(obj)
        await self.session.commit()
        await self.session.refresh(obj)
        return obj

    def _apply_updates(self, obj, updates: Dict[str, Any], allowed: Iterable[str]):
        enum_fields = _ENUM_FIELDS.get(type(obj), {})
        for key, value in updates.items():
            if key not in allowed:
                continue
            if key in enum_fields:
                value = coerce_enum(enum_fields[key], value, key)
            if key == "due_date":
                value = coerce_datetime(value, key)
            # JSON columns are only flagged dirty on reassignment
            if isinstance(value, (list, dict)):
                value = type(value)(value)
            setattr(obj, key, value)
        obj.updated_at = utcnow()

    async def rollback(self):
        await self.session.rollback()

    async def _next_position(self, model, *criteria) -> int:
        stmt = select(func.max(model.position)).where(*criteria)
        current = (await self.session.execute(stmt)).scalar()
        return 0 if current is None else current + 1

    # ============================================================
    # ORGANIZATIONS
    # ============================================================

    async def create_organization(
        self,
        name: str,
        slug: str,
        created_by: str,
        description: Optional[str] = None,
        logo_url: Optional[str] = None,
        settings: Optional[Dict[str, Any]] = None,
    ) -> Organization:
        stmt = select(Organization).where(Organization.slug == slug, Organization.is_active.is_(True))
        if (await self.session.execute(stmt)).scalar_one_or_none():
            raise Conflict(f"Organization with slug '{slug}' already exists")

        org = Organization(
            name=name,
            slug=slug,
            description=description,
            logo_url=logo_url,
            settings={**default_org_settings(), **(settings or {})},
            members=[
                _member_entry(created_by, OrgRole.OWNER.value, "joinedAt", permissions=["*"]),
            ],
            created_by=created_by,
        )
        org = await self._save(org)
        logger.info(f"Organization created: {org.slug} ({org.id}) by {created_by}")
        return org

    async def get_organization(self, organization_id: str) -> Optional[Organization]:
        stmt = select(Organization).where(
            Organization.id == organization_id, Organization.is_active.is_(True),
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def update_organization(self, organization_id: str, updates: Dict[str, Any]) -> Optional[Organization]:
        org = await self.get_organization(organization_id)
        if not org:
            return None
        self._apply_updates(org, updates, ORGANIZATION_FIELDS)
        return await self._save(org)

    async def delete_organization(self, organization_id: str) -> bool:
        org = await self.get_organization(organization_id)
        if not org:
            return False
        org.is_active = False
        org.updated_at = utcnow()
        await self._save(org)
        return True

    async def list_organizations_for_user(self, user_id: str) -> List[Organization]:
        stmt = select(Organization).where(Organization.is_active.is_(True)).order_by(Organization.created_at)
        orgs = (await self.session.execute(stmt)).scalars().all()
        return [o for o in orgs if any(m.get("userId") == user_id for m in o.members or [])]

    # ============================================================
    # PROJECTS
    # ============================================================

    async def create_project(
        self,
        organization_id: str,
        name: str,
        created_by: str,
        description: Optional[str] = None,
        visibility: Any = ProjectVisibility.TEAM,
        settings: Optional[Dict[str, Any]] = None,
        members: Optional[List[Dict[str, Any]]] = None,
    ) -> Project:
        org = await self.get_organization(organization_id)
        if not org:
            raise NotFound("organization")

        roster = [_member_entry(created_by, ProjectRole.OWNER.value, "addedAt")]
        for member in members or []:
            if member.get("userId") and member["userId"] != created_by:
                role = coerce_enum(ProjectRole, member.get("role", "viewer"), "role")
                roster.append(_member_entry(member["userId"], role.value, "addedAt"))

        project = Project(
            organization_id=organization_id,
            name=name,
            description=description,
            visibility=coerce_enum(ProjectVisibility, visibility or ProjectVisibility.TEAM, "visibility"),
            members=roster,
            settings={**default_project_settings(), **(settings or {})},
            created_by=created_by,
        )
        project = await self._save(project)
        logger.info(f"Project created: {project.name} ({project.id}) in org {organization_id}")
        return project

    async def get_project(self, project_id: str) -> Optional[Project]:
        stmt = select(Project).where(Project.id == project_id, Project.is_active.is_(True))
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def update_project(self, project_id: str, updates: Dict[str, Any]) -> Optional[Project]:
        project = await self.get_project(project_id)
        if not project:
            return None
        self._apply_updates(project, updates, PROJECT_FIELDS)
        return await self._save(project)

    async def delete_project(self, project_id: str) -> bool:
        project = await self.get_project(project_id)
        if not project:
            return False
        project.is_active = False
        project.updated_at = utcnow()
        await self._save(project)
        return True

    async def list_projects(self, organization_id: str) -> List[Project]:
        stmt = (
            select(Project)
            .where(Project.organization_id == organization_id, Project.is_active.is_(True))
            .order_by(Project.created_at)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    # ============================================================
    # AGENTS
    # ============================================================

    async def create_agent(
        self,
        organization_id: str,
        name: str,
        model: str,
        created_by: str,
        type: Any = TaskType.CUSTOM,
        description: Optional[str] = None,
        system_prompt: str = "",
        settings: Optional[Dict[str, Any]] = None,
        is_public: bool = False,
    ) -> Agent:
        if not await self.get_organization(organization_id):
            raise NotFound("organization")
        agent = Agent(
            organization_id=organization_id,
            name=name,
            description=description,
            type=coerce_enum(TaskType, type or TaskType.CUSTOM, "type"),
            model=model,
            system_prompt=system_prompt or "",
            settings={**default_agent_settings(), **(settings or {})},
            is_public=bool(is_public),
            created_by=created_by,
        )
        return await self._save(agent)

    async def get_agent(self, agent_id: str) -> Optional[Agent]:
        stmt = select(Agent).where(Agent.id == agent_id, Agent.is_active.is_(True))
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def update_agent(self, agent_id: str, updates: Dict[str, Any]) -> Optional[Agent]:
        agent = await self.get_agent(agent_id)
        if not agent:
            return None
        self._apply_updates(agent, updates, AGENT_FIELDS)
        return await self._save(agent)

    async def delete_agent(self, agent_id: str) -> bool:
        agent = await self.get_agent(agent_id)
        if not agent:
            return False
        agent.is_active = False
        agent.updated_at = utcnow()
        await self._save(agent)
        return True

    async def list_agents(self, organization_id: str) -> List[Agent]:
        stmt = (
            select(Agent)
            .where(Agent.organization_id == organization_id, Agent.is_active.is_(True))
            .order_by(Agent.created_at)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def list_public_agents(self) -> List[Agent]:
        stmt = select(Agent).where(Agent.is_public.is_(True), Agent.is_active.is_(True)).order_by(Agent.created_at)
        return list((await self.session.execute(stmt)).scalars().all())

    # ============================================================
    # COLUMNS
    # ============================================================

    async def create_column(
        self,
        project_id: str,
        title: str,
        created_by: str,
        name: Optional[str] = None,
        color: Optional[str] = None,
        settings: Optional[Dict[str, Any]] = None,
        visibility: Any = ColumnVisibility.PUBLIC,
        position: Optional[int] = None,
    ) -> BoardColumn:
        if not await self.get_project(project_id):
            raise NotFound("project")
        if position is None:
            position = await self._next_position(BoardColumn, BoardColumn.project_id == project_id)

        column = BoardColumn(
            project_id=project_id,
            title=title,
            name=name or title.lower().replace(" ", "_"),
            color=color or "#6b7280",
            position=position,
            settings={**default_column_settings(), **(settings or {})},
            visibility=coerce_enum(ColumnVisibility, visibility or ColumnVisibility.PUBLIC, "visibility"),
            created_by=created_by,
        )
        return await self._save(column)

    async def get_column(self, column_id: str) -> Optional[BoardColumn]:
        return await self.session.get(BoardColumn, column_id)

    async def update_column(self, column_id: str, updates: Dict[str, Any]) -> Optional[BoardColumn]:
        column = await self.get_column(column_id)
        if not column:
            return None
        self._apply_updates(column, updates, COLUMN_FIELDS)
        return await self._save(column)

    async def delete_column(self, column_id: str) -> bool:
        column = await self.get_column(column_id)
        if not column:
            return False
        removed = await self.session.execute(delete(Task).where(Task.column_id == column_id))
        await self.session.delete(column)
        await self.session.commit()
        logger.info(f"Column {column_id} deleted with {removed.rowcount} task(s)")
        return True

    async def list_columns(self, project_id: str) -> List[BoardColumn]:
        stmt = select(BoardColumn).where(BoardColumn.project_id == project_id).order_by(BoardColumn.position)
        return list((await self.session.execute(stmt)).scalars().all())

    # ============================================================
    # TASKS
    # ============================================================

    async def create_task(
        self,
        project_id: str,
        column_id: str,
        title: str,
        created_by: str,
        **fields: Any,
    ) -> Task:
        project = await self.get_project(project_id)
        if not project:
            raise NotFound("project")
        column = await self.get_column(column_id)
        if not column:
            raise NotFound("column")
        if column.project_id != project_id:
            raise ValidationFailed("Column does not belong to this project")

        position = await self._next_position(
            Task, Task.project_id == project_id, Task.column_id == column_id,
        )
        agents = list(fields.get("agents") or [])
        assigned_at = utcnow().isoformat()

        task = Task(
            project_id=project_id,
            column_id=column_id,
            title=title,
            description=fields.get("description"),
            type=coerce_enum(TaskType, fields.get("type") or TaskType.CUSTOM, "type"),
            status=coerce_enum(TaskStatus, fields.get("status") or TaskStatus.BACKLOG, "status"),
            priority=coerce_enum(TaskPriority, fields.get("priority") or TaskPriority.MEDIUM, "priority"),
            position=position,
            agents=agents,
            agent_history=[
                {"agentId": a.get("agentId"), "assignedAt": assigned_at, "assignedBy": created_by}
                for a in agents
            ],
            token_estimate=fields.get("token_estimate") or 0,
            actual_tokens_used=0,
            progress_percentage=0,
            time_spent=0,
            assignees=list(fields.get("assignees") or []),
            tags=list(fields.get("tags") or []),
            dependencies=list(fields.get("dependencies") or []),
            blocked_by=[],
            subtasks=[],
            parent_task=fields.get("parent_task"),
            due_date=coerce_datetime(fields.get("due_date"), "due_date"),
            created_by=created_by,
        )
        return await self._save(task)

    async def get_task(self, task_id: str) -> Optional[Task]:
        return await self.session.get(Task, task_id)

    async def update_task(self, task_id: str, updates: Dict[str, Any]) -> Optional[Task]:
        task = await self.get_task(task_id)
        if not task:
            return None
        updates = dict(updates)
        if "actual_tokens_used" in updates and (updates["actual_tokens_used"] or 0) < task.actual_tokens_used:
            raise ValidationFailed("actualTokensUsed cannot decrease")
        if "agent_history" in updates:
            history = list(updates["agent_history"] or [])
            if history[: len(task.agent_history)] != list(task.agent_history):
                raise ValidationFailed("agentHistory is append-only")
        if "progress_percentage" in updates:
            progress = updates["progress_percentage"] or 0
            if not 0 <= progress <= 100:
                raise ValidationFailed("progressPercentage must be between 0 and 100")
        was_done = task.status == TaskStatus.DONE
        self._apply_updates(task, updates, TASK_FIELDS)
        if task.status == TaskStatus.DONE and not was_done:
            task.completed_at = utcnow()
        elif task.status != TaskStatus.DONE:
            task.completed_at = None
        return await self._save(task)

    async def append_agent_history(self, task_id: str, entries: List[Dict[str, Any]],
                                   agents: Optional[List[Dict[str, Any]]] = None) -> Optional[Task]:
        task = await self.get_task(task_id)
        if not task:
            return None
        updates: Dict[str, Any] = {"agent_history": list(task.agent_history or []) + list(entries)}
        if agents is not None:
            updates["agents"] = agents
        return await self.update_task(task_id, updates)

    async def delete_task(self, task_id: str) -> bool:
        task = await self.get_task(task_id)
        if not task:
            return False
        await self.session.delete(task)
        await self.session.commit()
        return True

    async def list_tasks(self, project_id: str) -> List[Task]:
        stmt = select(Task).where(Task.project_id == project_id).order_by(Task.position)
        return list((await self.session.execute(stmt)).scalars().all())

    async def list_column_tasks(self, column_id: str) -> List[Task]:
        stmt = select(Task).where(Task.column_id == column_id).order_by(Task.position)
        return list((await self.session.execute(stmt)).scalars().all())

    async def move_task(self, task_id: str, column_id: str, position: Optional[int] = None) -> Optional[Task]:
        """Move a task into a column.

        An explicit position is stored as given, so repeating the same move is a
        no-op. Without one the task goes to the end of the target column.
        """
        column = await self.get_column(column_id)
        if not column:
            raise NotFound("column", "Target column not found")
        task = await self.get_task(task_id)
        if not task:
            return None
        if position is None:
            position = await self._next_position(Task, Task.column_id == column_id)
        task.column_id = column_id
        task.position = position
        task.updated_at = utcnow()
        return await self._save(task)

    # ============================================================
    # CONTEXT
    # ============================================================

    async def get_project_context(self, project_id: str) -> Optional[ProjectContext]:
        project = await self.get_project(project_id)
        if not project:
            return None
        organization = await self.get_organization(project.organization_id)
        if not organization:
            return None

        tasks = await self.list_tasks(project_id)
        columns = await self.list_columns(project_id)
        agents = await self.list_agents(project.organization_id)
        members = [
            {"userId": m.get("userId"), "role": m.get("role")}
            for m in organization.members or []
        ]
        return ProjectContext(
            organization=organization,
            project=project,
            tasks=tasks,
            columns=columns,
            agents=agents,
            members=members,
        )


# ============================================================
# FASTAPI DEPENDENCY
# ============================================================

def get_entity_store(db: AsyncSession = Depends(get_db_session)) -> EntityStore:
    return EntityStore(db)
