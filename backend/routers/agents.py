# routers/agents.py — AI agent definitions
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import Field

from auth import get_current_user, CurrentUser
from authorization import (
    AccessResult, AuthorizationGate, ResourceKind, can_perform_action,
    get_authorization_gate, require_agent_access,
)
from entity_store import EntityStore, get_entity_store
from errors import Forbidden, NotFound
from models import TaskType
from schemas import CamelModel, agent_out, envelope

router = APIRouter(prefix="/api/v1/agents", tags=["Agents"])

AGENT_ADMIN_ROLES = ("owner", "admin")


class AgentCreate(CamelModel):
    organization_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    type: TaskType = TaskType.CUSTOM
    model: str = Field(..., min_length=1, max_length=100)
    system_prompt: str = Field(default="", max_length=20000)
    settings: Dict[str, Any] = Field(default_factory=dict)
    is_public: bool = False


class AgentUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    type: Optional[TaskType] = None
    model: Optional[str] = Field(default=None, min_length=1, max_length=100)
    system_prompt: Optional[str] = Field(default=None, max_length=20000)
    settings: Optional[Dict[str, Any]] = None
    is_public: Optional[bool] = None


async def _require_agent_admin(gate: AuthorizationGate, organization_id: str, user_id: str, action: str):
    """Organization owner/admin check with the per-action denial message."""
    result = await gate.resolve_access(ResourceKind.ORGANIZATION, organization_id, user_id)
    if not result.allowed:
        if isinstance(result.error, NotFound):
            raise result.error
        raise Forbidden("Access denied: You are not a member of this organization")
    wildcard = "*" in ((result.membership or {}).get("permissions") or [])
    if not wildcard and not can_perform_action(result.role, AGENT_ADMIN_ROLES):
        raise Forbidden(
            f"Access denied: Admin or owner role required to {action} agents",
            required_roles=AGENT_ADMIN_ROLES,
        )
    return result


# --- Endpoints ---

@router.get("/available")
async def list_available_agents(
    user: CurrentUser = Depends(get_current_user),
    store: EntityStore = Depends(get_entity_store),
    gate: AuthorizationGate = Depends(get_authorization_gate),
):
    """Public agents plus every agent in the caller's organizations"""
    agents = {a.id: a for a in await store.list_public_agents()}
    for org in await gate.get_user_organizations(user.id):
        for agent in await store.list_agents(org.id):
            agents.setdefault(agent.id, agent)
    return envelope([agent_out(a) for a in agents.values()], metadata={"count": len(agents)})


@router.post("", status_code=201)
async def create_agent(
    body: AgentCreate,
    user: CurrentUser = Depends(get_current_user),
    store: EntityStore = Depends(get_entity_store),
    gate: AuthorizationGate = Depends(get_authorization_gate),
):
    await _require_agent_admin(gate, body.organization_id, user.id, "create")
    agent = await store.create_agent(
        organization_id=body.organization_id,
        name=body.name,
        model=body.model,
        created_by=user.id,
        type=body.type,
        description=body.description,
        system_prompt=body.system_prompt,
        settings=body.settings,
        is_public=body.is_public,
    )
    return envelope(agent_out(agent))


@router.get("/{agent_id}")
async def get_agent(access: AccessResult = Depends(require_agent_access())):
    return envelope(agent_out(access.resource))


@router.patch("/{agent_id}")
async def update_agent(
    agent_id: str,
    body: AgentUpdate,
    access: AccessResult = Depends(require_agent_access()),
    user: CurrentUser = Depends(get_current_user),
    store: EntityStore = Depends(get_entity_store),
    gate: AuthorizationGate = Depends(get_authorization_gate),
):
    """Update an agent (organization owner/admin, public agents included)"""
    await _require_agent_admin(gate, access.resource.organization_id, user.id, "update")
    updates = body.model_dump(exclude_unset=True)
    if "settings" in updates:
        updates["settings"] = {**(access.resource.settings or {}), **(updates["settings"] or {})}
    agent = await store.update_agent(agent_id, updates)
    if not agent:
        raise NotFound("agent")
    return envelope(agent_out(agent))


@router.delete("/{agent_id}")
async def delete_agent(
    agent_id: str,
    access: AccessResult = Depends(require_agent_access()),
    user: CurrentUser = Depends(get_current_user),
    store: EntityStore = Depends(get_entity_store),
    gate: AuthorizationGate = Depends(get_authorization_gate),
):
    await _require_agent_admin(gate, access.resource.organization_id, user.id, "delete")
    if not await store.delete_agent(agent_id):
        raise NotFound("agent")
    return envelope(message="Agent deleted successfully")
