# schemas.py — Outbound representations of board entities
# camelCase on the wire, snake_case in Python.

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from models import (
    ProjectVisibility, ColumnVisibility, TaskType, TaskStatus, TaskPriority,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class OrganizationOut(CamelModel):
    id: str
    name: str
    slug: str
    description: Optional[str] = None
    logo_url: Optional[str] = None
    settings: Dict[str, Any] = Field(default_factory=dict)
    members: List[Dict[str, Any]] = Field(default_factory=list)
    created_by: str
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProjectOut(CamelModel):
    id: str
    organization_id: str
    name: str
    description: Optional[str] = None
    visibility: ProjectVisibility
    members: List[Dict[str, Any]] = Field(default_factory=list)
    settings: Dict[str, Any] = Field(default_factory=dict)
    created_by: str
    is_active: bool = True
    is_archived: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AgentOut(CamelModel):
    id: str
    organization_id: str
    name: str
    description: Optional[str] = None
    type: TaskType
    model: str
    system_prompt: str = ""
    settings: Dict[str, Any] = Field(default_factory=dict)
    is_public: bool = False
    created_by: str
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ColumnOut(CamelModel):
    id: str
    project_id: str
    title: str
    name: str
    color: str
    position: int
    settings: Dict[str, Any] = Field(default_factory=dict)
    visibility: ColumnVisibility
    created_by: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TaskOut(CamelModel):
    id: str
    project_id: str
    column_id: str
    title: str
    description: Optional[str] = None
    type: TaskType
    status: TaskStatus
    priority: TaskPriority
    position: int
    agents: List[Dict[str, Any]] = Field(default_factory=list)
    agent_history: List[Dict[str, Any]] = Field(default_factory=list)
    token_estimate: int = 0
    actual_tokens_used: int = 0
    progress_percentage: float = 0
    time_spent: int = 0
    assignees: List[Any] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)
    blocked_by: List[str] = Field(default_factory=list)
    subtasks: List[str] = Field(default_factory=list)
    parent_task: Optional[str] = None
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_by: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def _dump(model_cls, obj) -> Dict[str, Any]:
    return model_cls.model_validate(obj).model_dump(mode="json", by_alias=True)


def organization_out(org) -> Dict[str, Any]:
    return _dump(OrganizationOut, org)


def project_out(project) -> Dict[str, Any]:
    return _dump(ProjectOut, project)


def agent_out(agent) -> Dict[str, Any]:
    return _dump(AgentOut, agent)


def column_out(column) -> Dict[str, Any]:
    return _dump(ColumnOut, column)


def task_out(task) -> Dict[str, Any]:
    return _dump(TaskOut, task)


def project_context_out(context) -> Dict[str, Any]:
    """Organization, project, flat tasks, and columns carrying their own tasks."""
    return {
        "organization": organization_out(context.organization),
        "project": project_out(context.project),
        "tasks": [task_out(t) for t in context.tasks],
        "columns": [
            {**column_out(c), "tasks": [task_out(t) for t in context.tasks_in(c.id)]}
            for c in context.columns
        ],
        "agents": [agent_out(a) for a in context.agents],
        "members": context.members,
    }


def envelope(data: Any = None, message: Optional[str] = None,
             metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Uniform success body: {success, data?, message?, metadata?}."""
    body: Dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    if metadata is not None:
        body["metadata"] = metadata
    return body
