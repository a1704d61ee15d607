# routers/organizations.py — Organization management
import re
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import Field

from auth import get_current_user, CurrentUser
from authorization import (
    AccessResult, AuthorizationGate, get_authorization_gate, require_organization_access,
)
from entity_store import EntityStore, get_entity_store
from errors import NotFound, ValidationFailed
from models import utcnow
from schemas import CamelModel, agent_out, envelope, organization_out, project_out

router = APIRouter(prefix="/api/v1/organizations", tags=["Organizations"])
user_router = APIRouter(prefix="/api/v1/user", tags=["Organizations"])


# --- Schemas ---

class OrganizationCreate(CamelModel):
    name: str = Field(..., min_length=2, max_length=100)
    slug: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = Field(default=None, max_length=1000)
    logo_url: Optional[str] = None
    settings: Dict[str, Any] = Field(default_factory=dict)


class OrganizationUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    logo_url: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None


# --- Helpers ---

def _slugify(name: str) -> str:
    slug = re.sub(r'[^a-z0-9]+', '-', name.lower()).strip('-')
    return slug[:50]


# --- Endpoints ---

@user_router.get("/organizations")
async def list_user_organizations(
    user: CurrentUser = Depends(get_current_user),
    gate: AuthorizationGate = Depends(get_authorization_gate),
):
    """Organizations the caller is a member of"""
    organizations = await gate.get_user_organizations(user.id)
    return envelope([organization_out(o) for o in organizations])


@router.post("", status_code=201)
async def create_organization(
    body: OrganizationCreate,
    user: CurrentUser = Depends(get_current_user),
    store: EntityStore = Depends(get_entity_store),
):
    """Create an organization; the caller becomes its owner"""
    slug = _slugify(body.slug or body.name)
    if not slug:
        raise ValidationFailed("Organization slug must contain letters or digits")
    org = await store.create_organization(
        name=body.name,
        slug=slug,
        created_by=user.id,
        description=body.description,
        logo_url=body.logo_url,
        settings=body.settings,
    )
    return envelope(organization_out(org))


@router.get("/{organization_id}")
async def get_organization(access: AccessResult = Depends(require_organization_access())):
    return envelope(organization_out(access.organization))


@router.patch("/{organization_id}")
async def update_organization(
    organization_id: str,
    body: OrganizationUpdate,
    access: AccessResult = Depends(require_organization_access("owner", "admin")),
    store: EntityStore = Depends(get_entity_store),
):
    """Update organization details (owner/admin)"""
    updates = body.model_dump(exclude_unset=True)
    if "settings" in updates:
        updates["settings"] = {**(access.organization.settings or {}), **(updates["settings"] or {})}
    org = await store.update_organization(organization_id, updates)
    if not org:
        raise NotFound("organization")
    return envelope(organization_out(org))


@router.delete("/{organization_id}")
async def delete_organization(
    organization_id: str,
    access: AccessResult = Depends(require_organization_access("owner")),
    store: EntityStore = Depends(get_entity_store),
):
    if not await store.delete_organization(organization_id):
        raise NotFound("organization")
    return envelope(message="Organization deleted successfully")


@router.get("/{organization_id}/projects")
async def list_organization_projects(
    organization_id: str,
    access: AccessResult = Depends(require_organization_access()),
    user: CurrentUser = Depends(get_current_user),
    gate: AuthorizationGate = Depends(get_authorization_gate),
):
    """Projects visible to the caller, newest first"""
    projects = await gate.get_user_projects_in_organization(organization_id, user.id)
    return envelope([project_out(p) for p in projects])


@router.get("/{organization_id}/agents")
async def list_organization_agents(
    organization_id: str,
    access: AccessResult = Depends(require_organization_access()),
    store: EntityStore = Depends(get_entity_store),
):
    agents = await store.list_agents(organization_id)
    return envelope([agent_out(a) for a in agents])


@router.get("/{organization_id}/ai-usage")
async def get_ai_usage(
    organization_id: str,
    access: AccessResult = Depends(require_organization_access()),
    store: EntityStore = Depends(get_entity_store),
):
    """Tokens recorded on the organization's tasks against its AI credits"""
    tokens_used = 0
    for project in await store.list_projects(organization_id):
        tokens_used += sum(t.actual_tokens_used or 0 for t in await store.list_tasks(project.id))
    credits = int((access.organization.settings or {}).get("aiCredits", 0))
    now = utcnow()
    return envelope({
        "tokensUsed": tokens_used,
        "tokensRemaining": credits - tokens_used,
        "aiCredits": credits,
        "lastResetDate": now.replace(day=1, hour=0, minute=0, second=0, microsecond=0).isoformat(),
    })
