# models.py — Database models for the board assistant
# Organisation-scoped project boards:
# - String UUID primary keys everywhere
# - Membership lists stored inline (JSON) on organizations and projects
# - Soft deletes for organizations, projects and agents; hard deletes for columns and tasks
# - Task agent history is append-only

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean, Integer, Float,
    Enum as SQLEnum, ForeignKey, Text, Index,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


def as_aware(value):
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def enum_column(enum_cls):
    return SQLEnum(enum_cls, values_callable=_enum_values, native_enum=False, length=32)


# ============================================================
# ENUMS
# ============================================================

class OrgRole(str, PyEnum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"


class ProjectRole(str, PyEnum):
    OWNER = "owner"
    EDITOR = "editor"
    VIEWER = "viewer"


class ProjectVisibility(str, PyEnum):
    PUBLIC = "public"
    PRIVATE = "private"
    TEAM = "team"


class ColumnVisibility(str, PyEnum):
    PUBLIC = "public"
    PRIVATE = "private"


class TaskType(str, PyEnum):
    EMAIL = "email"
    DOC = "doc"
    CODE = "code"
    RESEARCH = "research"
    DESIGN = "design"
    LEGAL = "legal"
    FINANCE = "finance"
    BUG = "bug"
    TEST = "test"
    INFRA = "infra"
    OUTREACH = "outreach"
    CUSTOM = "custom"


class TaskStatus(str, PyEnum):
    BACKLOG = "backlog"
    READY = "ready"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"


class TaskPriority(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


# ============================================================
# DEFAULTS
# ============================================================

def default_org_settings():
    return {
        "defaultColumns": ["backlog", "ready", "in_progress", "done"],
        "aiCredits": 10000,
        "maxProjects": 10,
        "features": ["ai_agents", "auto_run"],
    }


def default_project_settings():
    return {
        "autoRunEnabled": False,
        "aiModel": "claude-3-5-sonnet",
        "tokenBudget": 10000,
    }


def default_agent_settings():
    return {
        "maxTokens": 4000,
        "temperature": 0.3,
        "autoRun": False,
        "retryAttempts": 2,
        "timeout": 30,
    }


def default_column_settings():
    return {
        "isCollapsed": False,
        "isPinned": False,
        "autoRun": False,
        "taskLimit": 50,
    }


# ============================================================
# ORGANIZATIONS
# ============================================================

class Organization(Base):
    __tablename__ = "organizations"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False, index=True)
    # unique among active organizations; enforced by EntityStore
    slug = Column(String, nullable=False, index=True)
    description = Column(Text, nullable=True)
    logo_url = Column(String, nullable=True)
    settings = Column(JSON, nullable=False, default=default_org_settings)
    # [{userId, role, joinedAt, permissions}]
    members = Column(JSON, nullable=False, default=list)
    created_by = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


# ============================================================
# PROJECTS
# ============================================================

class Project(Base):
    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=new_uuid)
    organization_id = Column(String, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    visibility = Column(enum_column(ProjectVisibility), default=ProjectVisibility.TEAM, nullable=False)
    # [{userId, role, addedAt}]
    members = Column(JSON, nullable=False, default=list)
    settings = Column(JSON, nullable=False, default=default_project_settings)
    created_by = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, index=True)
    is_archived = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_project_org_active", "organization_id", "is_active"),
    )


# ============================================================
# AGENTS
# ============================================================

class Agent(Base):
    __tablename__ = "agents"

    id = Column(String, primary_key=True, default=new_uuid)
    organization_id = Column(String, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    type = Column(enum_column(TaskType), default=TaskType.CUSTOM, nullable=False)
    model = Column(String, nullable=False)
    system_prompt = Column(Text, nullable=False, default="")
    settings = Column(JSON, nullable=False, default=default_agent_settings)
    is_public = Column(Boolean, default=False, index=True)
    created_by = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


# ============================================================
# BOARD COLUMNS
# ============================================================

class BoardColumn(Base):
    __tablename__ = "columns"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    name = Column(String, nullable=False)
    color = Column(String, nullable=False, default="#6b7280")
    position = Column(Integer, nullable=False, default=0)
    settings = Column(JSON, nullable=False, default=default_column_settings)
    visibility = Column(enum_column(ColumnVisibility), default=ColumnVisibility.PUBLIC, nullable=False)
    created_by = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_column_project_position", "project_id", "position"),
    )


# ============================================================
# TASKS
# ============================================================

class Task(Base):
    __tablename__ = "tasks"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id"), nullable=False, index=True)
    column_id = Column(String, ForeignKey("columns.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    type = Column(enum_column(TaskType), default=TaskType.CUSTOM, nullable=False)
    status = Column(enum_column(TaskStatus), default=TaskStatus.BACKLOG, nullable=False, index=True)
    priority = Column(enum_column(TaskPriority), default=TaskPriority.MEDIUM, nullable=False)
    position = Column(Integer, nullable=False, default=0)
    # [{agentId, agentName}]
    agents = Column(JSON, nullable=False, default=list)
    # append-only [{agentId, assignedAt, assignedBy, result?}]
    agent_history = Column(JSON, nullable=False, default=list)
    token_estimate = Column(Integer, nullable=False, default=0)
    actual_tokens_used = Column(Integer, nullable=False, default=0)
    progress_percentage = Column(Float, nullable=False, default=0)
    time_spent = Column(Integer, nullable=False, default=0)
    assignees = Column(JSON, nullable=False, default=list)
    tags = Column(JSON, nullable=False, default=list)
    dependencies = Column(JSON, nullable=False, default=list)
    blocked_by = Column(JSON, nullable=False, default=list)
    subtasks = Column(JSON, nullable=False, default=list)
    parent_task = Column(String, nullable=True)
    due_date = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_task_column_position", "project_id", "column_id", "position"),
    )
