# authorization.py — Hierarchical access control for boards
# Walks resource -> project -> organization, scanning each level's member list
# for the caller. Project role is the project membership role or "viewer";
# the organization role is never used in its place.

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from fastapi import Depends, Request

from auth import CurrentUser, get_current_user
from entity_store import EntityStore, get_entity_store
from errors import BoardError, Forbidden, NotFound, Unauthenticated
from models import Organization, Project, ProjectVisibility, ColumnVisibility

logger = logging.getLogger("board-assistant.authz")

# Organization scope, lowest to highest
ROLE_HIERARCHY = ("viewer", "member", "editor", "admin", "owner")

ORG_WILDCARD_PERMISSION = "*"


class ResourceKind(str, Enum):
    ORGANIZATION = "organization"
    PROJECT = "project"
    TASK = "task"
    COLUMN = "column"
    AGENT = "agent"


def has_minimum_role(user_role: str, minimum_role: str) -> bool:
    """Index comparison on ROLE_HIERARCHY; unknown role names never pass."""
    if user_role not in ROLE_HIERARCHY or minimum_role not in ROLE_HIERARCHY:
        return False
    return ROLE_HIERARCHY.index(user_role) >= ROLE_HIERARCHY.index(minimum_role)


def can_perform_action(user_role: Optional[str], required_roles: Sequence[str]) -> bool:
    if not required_roles:
        return True
    return user_role in required_roles


def find_member(members: Optional[List[Dict[str, Any]]], user_id: str) -> Optional[Dict[str, Any]]:
    for member in members or []:
        if member.get("userId") == user_id:
            return member
    return None


def _value(enum_or_str) -> str:
    return getattr(enum_or_str, "value", enum_or_str)


@dataclass
class AccessResult:
    allowed: bool
    role: Optional[str] = None
    organization: Optional[Organization] = None
    project: Optional[Project] = None
    resource: Any = None
    membership: Optional[Dict[str, Any]] = None
    required_roles: List[str] = field(default_factory=list)
    error: Optional[BoardError] = None

    def raise_for_denial(self) -> "AccessResult":
        if not self.allowed:
            raise self.error or Forbidden("Access denied")
        return self


class AuthorizationGate:
    """Resolves a caller's effective role for any board resource."""

    def __init__(self, store: EntityStore):
        self.store = store

    async def resolve_access(
        self,
        kind: ResourceKind,
        resource_id: str,
        user_id: Optional[str],
        required_roles: Sequence[str] = (),
    ) -> AccessResult:
        kind = ResourceKind(kind)
        required = list(required_roles or [])
        if not user_id:
            return AccessResult(allowed=False, required_roles=required, error=Unauthenticated())

        if kind is ResourceKind.ORGANIZATION:
            result = await self._organization_access(resource_id, user_id, required)
        elif kind is ResourceKind.PROJECT:
            result = await self._project_access(resource_id, user_id, required)
        elif kind is ResourceKind.TASK:
            result = await self._task_access(resource_id, user_id, required)
        elif kind is ResourceKind.COLUMN:
            result = await self._column_access(resource_id, user_id, required)
        else:
            result = await self._agent_access(resource_id, user_id, required)

        if not result.allowed:
            logger.info(
                f"Access denied: {kind.value}={resource_id} user={user_id} "
                f"reason={result.error.message if result.error else 'unknown'}"
            )
        return result

    async def authorize(
        self,
        kind: ResourceKind,
        resource_id: str,
        user_id: Optional[str],
        required_roles: Sequence[str] = (),
    ) -> AccessResult:
        result = await self.resolve_access(kind, resource_id, user_id, required_roles)
        return result.raise_for_denial()

    # ============================================================
    # PER-LEVEL CHECKS
    # ============================================================

    async def _organization_access(self, organization_id: str, user_id: str, required: List[str],
                                   organization: Optional[Organization] = None) -> AccessResult:
        org = organization or await self.store.get_organization(organization_id)
        if not org:
            return AccessResult(allowed=False, required_roles=required, error=NotFound("organization"))

        membership = find_member(org.members, user_id)
        if not membership:
            return AccessResult(
                allowed=False, organization=org, resource=org, required_roles=required,
                error=Forbidden("Access denied: You are not a member of the organization"),
            )

        role = membership.get("role")
        wildcard = ORG_WILDCARD_PERMISSION in (membership.get("permissions") or [])
        if required and not wildcard and not can_perform_action(role, required):
            return AccessResult(
                allowed=False, role=role, organization=org, resource=org,
                membership=membership, required_roles=required,
                error=Forbidden.missing_roles(required),
            )
        return AccessResult(
            allowed=True, role=role, organization=org, resource=org,
            membership=membership, required_roles=required,
        )

    async def _project_access(self, project_id: str, user_id: str, required: List[str],
                              project: Optional[Project] = None) -> AccessResult:
        project = project or await self.store.get_project(project_id)
        if not project:
            return AccessResult(allowed=False, required_roles=required, error=NotFound("project"))

        org_check = await self._organization_access(project.organization_id, user_id, [])
        if not org_check.allowed:
            org_check.project = project
            org_check.resource = project
            return org_check

        membership = find_member(project.members, user_id)
        if _value(project.visibility) == ProjectVisibility.PRIVATE.value and not membership:
            return AccessResult(
                allowed=False, organization=org_check.organization, project=project,
                resource=project, required_roles=required,
                error=Forbidden("Access denied: This project is private"),
            )

        role = membership.get("role") if membership else "viewer"
        if not can_perform_action(role, required):
            return AccessResult(
                allowed=False, role=role, organization=org_check.organization, project=project,
                resource=project, membership=membership, required_roles=required,
                error=Forbidden.missing_roles(required),
            )
        return AccessResult(
            allowed=True, role=role, organization=org_check.organization, project=project,
            resource=project, membership=membership, required_roles=required,
        )

    async def _task_access(self, task_id: str, user_id: str, required: List[str]) -> AccessResult:
        task = await self.store.get_task(task_id)
        if not task:
            return AccessResult(allowed=False, required_roles=required, error=NotFound("task"))
        result = await self._project_access(task.project_id, user_id, required)
        result.resource = task
        return result

    async def _column_access(self, column_id: str, user_id: str, required: List[str]) -> AccessResult:
        column = await self.store.get_column(column_id)
        if not column:
            return AccessResult(allowed=False, required_roles=required, error=NotFound("column"))
        result = await self._project_access(column.project_id, user_id, required)
        result.resource = column
        if not result.allowed:
            return result

        if (
            _value(column.visibility) == ColumnVisibility.PRIVATE.value
            and column.created_by != user_id
            and not result.membership
        ):
            result.allowed = False
            result.error = Forbidden("Access denied: This column is private")
        return result

    async def _agent_access(self, agent_id: str, user_id: str, required: List[str]) -> AccessResult:
        agent = await self.store.get_agent(agent_id)
        if not agent:
            return AccessResult(allowed=False, required_roles=required, error=NotFound("agent"))
        if agent.is_public:
            return AccessResult(allowed=True, role="viewer", resource=agent, required_roles=required)
        result = await self._organization_access(agent.organization_id, user_id, required)
        result.resource = agent
        return result

    # ============================================================
    # LISTINGS
    # ============================================================

    async def get_user_organizations(self, user_id: str) -> List[Organization]:
        return await self.store.list_organizations_for_user(user_id)

    async def get_user_projects_in_organization(self, organization_id: str, user_id: str) -> List[Project]:
        org_check = await self._organization_access(organization_id, user_id, [])
        if not org_check.allowed:
            return []
        projects = await self.store.list_projects(organization_id)
        visible = [
            p for p in projects
            if _value(p.visibility) in (ProjectVisibility.PUBLIC.value, ProjectVisibility.TEAM.value)
            or find_member(p.members, user_id)
        ]
        return sorted(visible, key=lambda p: p.created_at, reverse=True)


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

def get_authorization_gate(store: EntityStore = Depends(get_entity_store)) -> AuthorizationGate:
    return AuthorizationGate(store)


def require_access(kind: ResourceKind, path_param: str, *required_roles: str):
    """Dependency factory: authorize the resource named by a path parameter.

    The resolved AccessResult lands on request.state.access so handlers reuse
    the fetched organization/project/resource.
    """
    async def _check(
        request: Request,
        user: CurrentUser = Depends(get_current_user),
        gate: AuthorizationGate = Depends(get_authorization_gate),
    ) -> AccessResult:
        resource_id = request.path_params.get(path_param)
        result = await gate.authorize(kind, resource_id, user.id, required_roles)
        request.state.access = result
        return result
    return _check


def require_organization_access(*roles: str):
    return require_access(ResourceKind.ORGANIZATION, "organization_id", *roles)


def require_project_access(*roles: str):
    return require_access(ResourceKind.PROJECT, "project_id", *roles)


def require_task_access(*roles: str):
    return require_access(ResourceKind.TASK, "task_id", *roles)


def require_column_access(*roles: str):
    return require_access(ResourceKind.COLUMN, "column_id", *roles)


def require_agent_access(*roles: str):
    return require_access(ResourceKind.AGENT, "agent_id", *roles)
