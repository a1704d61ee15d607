# routers/columns.py — Board columns
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import Field

from auth import get_current_user, CurrentUser
from authorization import (
    AccessResult, AuthorizationGate, ResourceKind, get_authorization_gate, require_column_access,
)
from entity_store import EntityStore, get_entity_store
from errors import NotFound
from models import ColumnVisibility
from schemas import CamelModel, column_out, envelope, task_out

router = APIRouter(prefix="/api/v1/columns", tags=["Columns"])

EDIT_ROLES = ("owner", "editor")

_HEX_COLOR = r"^#[0-9a-fA-F]{6}$"


class ColumnCreate(CamelModel):
    project_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=100)
    name: Optional[str] = Field(default=None, max_length=100)
    color: Optional[str] = Field(default=None, pattern=_HEX_COLOR)
    position: Optional[int] = Field(default=None, ge=0)
    settings: Dict[str, Any] = Field(default_factory=dict)
    visibility: ColumnVisibility = ColumnVisibility.PUBLIC


class ColumnUpdate(CamelModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    name: Optional[str] = Field(default=None, max_length=100)
    color: Optional[str] = Field(default=None, pattern=_HEX_COLOR)
    position: Optional[int] = Field(default=None, ge=0)
    settings: Optional[Dict[str, Any]] = None
    visibility: Optional[ColumnVisibility] = None


@router.post("", status_code=201)
async def create_column(
    body: ColumnCreate,
    user: CurrentUser = Depends(get_current_user),
    store: EntityStore = Depends(get_entity_store),
    gate: AuthorizationGate = Depends(get_authorization_gate),
):
    """Append a column to a project board (owner/editor)"""
    await gate.authorize(ResourceKind.PROJECT, body.project_id, user.id, EDIT_ROLES)
    column = await store.create_column(
        project_id=body.project_id,
        title=body.title,
        created_by=user.id,
        name=body.name,
        color=body.color,
        settings=body.settings,
        visibility=body.visibility,
        position=body.position,
    )
    return envelope(column_out(column))


@router.get("/{column_id}")
async def get_column(access: AccessResult = Depends(require_column_access())):
    return envelope(column_out(access.resource))


@router.patch("/{column_id}")
async def update_column(
    column_id: str,
    body: ColumnUpdate,
    access: AccessResult = Depends(require_column_access(*EDIT_ROLES)),
    store: EntityStore = Depends(get_entity_store),
):
    updates = body.model_dump(exclude_unset=True)
    if "settings" in updates:
        updates["settings"] = {**(access.resource.settings or {}), **(updates["settings"] or {})}
    column = await store.update_column(column_id, updates)
    if not column:
        raise NotFound("column")
    return envelope(column_out(column))


@router.delete("/{column_id}")
async def delete_column(
    column_id: str,
    access: AccessResult = Depends(require_column_access(*EDIT_ROLES)),
    store: EntityStore = Depends(get_entity_store),
):
    """Delete a column and every task in it"""
    if not await store.delete_column(column_id):
        raise NotFound("column")
    return envelope(message="Column deleted successfully")


@router.get("/{column_id}/tasks")
async def list_column_tasks(
    column_id: str,
    access: AccessResult = Depends(require_column_access()),
    store: EntityStore = Depends(get_entity_store),
):
    tasks = await store.list_column_tasks(column_id)
    return envelope([task_out(t) for t in tasks])
