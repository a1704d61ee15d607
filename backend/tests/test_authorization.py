# tests/test_authorization.py — Role hierarchy and the hierarchical access gate
import pytest

from authorization import (
    ROLE_HIERARCHY, ResourceKind, can_perform_action, has_minimum_role,
)
from errors import Forbidden, NotFound, Unauthenticated

from tests.conftest import EDITOR_ID, OUTSIDER_ID, OWNER_ID, VIEWER_ID


# ============================================================
# PURE ROLE CHECKS
# ============================================================

def test_has_minimum_role_follows_hierarchy_order():
    for i, user_role in enumerate(ROLE_HIERARCHY):
        for j, minimum in enumerate(ROLE_HIERARCHY):
            assert has_minimum_role(user_role, minimum) is (i >= j)


def test_has_minimum_role_rejects_unknown_roles():
    assert has_minimum_role("superuser", "viewer") is False
    assert has_minimum_role("owner", "superuser") is False


def test_can_perform_action_is_membership_not_hierarchy():
    assert can_perform_action("owner", ["owner", "editor"]) is True
    assert can_perform_action("viewer", []) is True
    # an admin is not implicitly an editor
    assert can_perform_action("admin", ["editor"]) is False
    assert can_perform_action(None, ["viewer"]) is False


# ============================================================
# ORGANIZATION LEVEL
# ============================================================

@pytest.mark.asyncio
async def test_member_gets_their_org_role(gate, test_org):
    result = await gate.resolve_access(ResourceKind.ORGANIZATION, test_org.id, EDITOR_ID)
    assert result.allowed
    assert result.role == "member"


@pytest.mark.asyncio
async def test_non_member_is_denied_org(gate, test_org):
    result = await gate.resolve_access(ResourceKind.ORGANIZATION, test_org.id, OUTSIDER_ID)
    assert not result.allowed
    assert isinstance(result.error, Forbidden)


@pytest.mark.asyncio
async def test_wildcard_permission_satisfies_any_required_role(gate, test_org):
    # the creator's membership carries permissions ["*"]
    result = await gate.resolve_access(ResourceKind.ORGANIZATION, test_org.id, OWNER_ID, ["editor"])
    assert result.allowed


@pytest.mark.asyncio
async def test_org_role_outside_required_roles_is_denied(gate, test_org):
    result = await gate.resolve_access(ResourceKind.ORGANIZATION, test_org.id, VIEWER_ID, ["owner", "admin"])
    assert not result.allowed
    assert result.error.required_roles == ["owner", "admin"]


@pytest.mark.asyncio
async def test_missing_user_is_unauthenticated(gate, test_org):
    result = await gate.resolve_access(ResourceKind.ORGANIZATION, test_org.id, None)
    assert not result.allowed
    assert isinstance(result.error, Unauthenticated)


@pytest.mark.asyncio
async def test_unknown_resource_is_not_found(gate):
    result = await gate.resolve_access(ResourceKind.PROJECT, "missing-project", OWNER_ID)
    assert not result.allowed
    assert isinstance(result.error, NotFound)
    with pytest.raises(NotFound):
        await gate.authorize(ResourceKind.TASK, "missing-task", OWNER_ID)


# ============================================================
# PROJECT LEVEL
# ============================================================

@pytest.mark.asyncio
@pytest.mark.parametrize("org_role", ["viewer", "member", "editor", "admin", "owner"])
async def test_private_project_denies_non_members_whatever_their_org_role(store, gate, org_role):
    org = await store.create_organization(name="Private Co", slug="private-co", created_by="u1")
    await store.update_organization(org.id, {
        "members": list(org.members) + [{"userId": "u2", "role": org_role}],
    })
    project = await store.create_project(
        organization_id=org.id, name="Secret", created_by="u1", visibility="private",
    )

    result = await gate.resolve_access(ResourceKind.PROJECT, project.id, "u2")

    assert result.allowed is False
    assert isinstance(result.error, Forbidden)


@pytest.mark.asyncio
async def test_team_project_defaults_non_members_to_viewer(store, gate, test_org):
    project = await store.create_project(organization_id=test_org.id, name="Ops", created_by=EDITOR_ID)
    # OWNER_ID owns the organization but is not on this project
    result = await gate.resolve_access(ResourceKind.PROJECT, project.id, OWNER_ID)
    assert result.allowed
    assert result.role == "viewer"

    denied = await gate.resolve_access(ResourceKind.PROJECT, project.id, OWNER_ID, ["owner", "editor"])
    assert not denied.allowed
    assert denied.error.required_roles == ["owner", "editor"]


@pytest.mark.asyncio
async def test_project_role_comes_from_project_membership(gate, test_project):
    result = await gate.resolve_access(ResourceKind.PROJECT, test_project.id, EDITOR_ID, ["owner", "editor"])
    assert result.allowed
    assert result.role == "editor"
    assert result.organization.id == test_project.organization_id


@pytest.mark.asyncio
async def test_project_denied_outside_the_organization(gate, test_project):
    with pytest.raises(Forbidden):
        await gate.authorize(ResourceKind.PROJECT, test_project.id, OUTSIDER_ID)


# ============================================================
# TASKS, COLUMNS, AGENTS
# ============================================================

@pytest.mark.asyncio
async def test_task_access_goes_through_its_project(store, gate, test_project, test_columns):
    task = await store.create_task(test_project.id, test_columns[0].id, "Write copy", OWNER_ID)

    viewer = await gate.resolve_access(ResourceKind.TASK, task.id, VIEWER_ID)
    assert viewer.allowed
    assert viewer.resource.id == task.id

    edit = await gate.resolve_access(ResourceKind.TASK, task.id, VIEWER_ID, ["owner", "editor"])
    assert not edit.allowed


@pytest.mark.asyncio
async def test_private_column_hidden_from_non_members(store, gate, test_org, test_project):
    column = await store.create_column(
        project_id=test_project.id, title="Drafts", created_by=EDITOR_ID, visibility="private",
    )
    # VIEWER_ID is a project member, so the column stays visible
    assert (await gate.resolve_access(ResourceKind.COLUMN, column.id, VIEWER_ID)).allowed

    # an org member who is not on the project and did not create the column
    await store.update_organization(test_org.id, {
        "members": list(test_org.members) + [{"userId": "u-late", "role": "member"}],
    })
    result = await gate.resolve_access(ResourceKind.COLUMN, column.id, "u-late")
    assert not result.allowed
    assert "private" in result.error.message


@pytest.mark.asyncio
async def test_public_agent_visible_to_anyone(store, gate, test_org):
    agent = await store.create_agent(
        organization_id=test_org.id, name="Helper", model="gpt-4o-mini", created_by=OWNER_ID, is_public=True,
    )
    result = await gate.resolve_access(ResourceKind.AGENT, agent.id, OUTSIDER_ID)
    assert result.allowed
    assert result.role == "viewer"


@pytest.mark.asyncio
async def test_private_agent_needs_org_membership(gate, test_agent):
    assert (await gate.resolve_access(ResourceKind.AGENT, test_agent.id, VIEWER_ID)).allowed
    assert not (await gate.resolve_access(ResourceKind.AGENT, test_agent.id, OUTSIDER_ID)).allowed


# ============================================================
# LISTINGS
# ============================================================

@pytest.mark.asyncio
async def test_user_projects_hide_private_projects_without_membership(store, gate, test_org, test_project):
    await store.create_project(organization_id=test_org.id, name="Hidden", created_by=OWNER_ID, visibility="private")

    owner_view = await gate.get_user_projects_in_organization(test_org.id, OWNER_ID)
    editor_view = await gate.get_user_projects_in_organization(test_org.id, EDITOR_ID)
    outsider_view = await gate.get_user_projects_in_organization(test_org.id, OUTSIDER_ID)

    assert {p.name for p in owner_view} == {"Launch Plan", "Hidden"}
    assert [p.name for p in editor_view] == ["Launch Plan"]
    assert outsider_view == []


@pytest.mark.asyncio
async def test_user_organizations(gate, test_org):
    orgs = await gate.get_user_organizations(VIEWER_ID)
    assert [o.id for o in orgs] == [test_org.id]
    assert await gate.get_user_organizations(OUTSIDER_ID) == []
