"""Tests for the organization aggregate: organizations, teams and project groups."""

import pytest
from pydantic import ValidationError
from sqlalchemy import delete, func, select

from orgaccess.core.errors import InvalidRoleError, NotFoundError
from orgaccess.core.database.base import generate_ulid
from orgaccess.features.access_control import membership
from orgaccess.features.access_control.models import organization_memberships, team_memberships
from orgaccess.features.access_control.role_assignment import EntityPath, NestedEntityField, get_acl
from orgaccess.features.access_control.roles import OrganizationRole, ProjectGroupRole, TeamRole
from orgaccess.features.organizations import service
from orgaccess.features.organizations.models import (
    OrganizationAccessControlEntry,
    ProjectGroupAccessControlEntry,
    TeamAccessControlEntry,
)
from orgaccess.features.organizations.responses import (
    object_for_list_response,
    object_for_response,
    user_for_list_response,
)

pytestmark = pytest.mark.asyncio


async def _row_count(db, model_or_table, *criteria) -> int:
    stmt = select(func.count()).select_from(model_or_table)
    if criteria:
        stmt = stmt.where(*criteria)
    return (await db.execute(stmt)).scalar_one()


# ============================================================================
# Organizations
# ============================================================================

async def test_create_organization_grants_creator_full_admin(db, make_user) -> None:
    creator_id = await make_user("creator")

    org = await service.create_organization(db, {"name": "org1", "not_in_schema": "x"}, creator_id)

    assert org.name == "org1"
    assert org.creator_id == creator_id
    assert org.created_at is not None
    assert org.updated_at is not None
    assert [(entry.subject_id, entry.role) for entry in org.get_acl()] == [(creator_id, "ORG_FULL_ADMIN")]
    assert await membership.is_member(db, org.id, creator_id)
    assert not hasattr(org, "not_in_schema")


async def test_create_organization_validates_before_writing(db, make_user) -> None:
    creator_id = await make_user("creator")

    with pytest.raises(ValidationError):
        await service.create_organization(db, {"no_name": "z"}, creator_id)
    with pytest.raises(NotFoundError):
        await service.create_organization(db, {"name": "org"}, generate_ulid())
    await db.rollback()

    assert await service.find_organizations(db, creator_id) == []


async def test_update_organization_applies_allow_list(db, make_user) -> None:
    creator_id = await make_user("creator")
    org = await service.create_organization(db, {"name": "org1"}, creator_id)
    org_id = org.id
    created_at = org.created_at
    first_updated_at = org.updated_at

    assert await service.update_organization(db, generate_ulid(), {"name": "x"}) is None

    updated = await service.update_organization(
        db,
        org_id,
        {"name": "newOrg", "id": generate_ulid(), "created_at": "2000-01-01T00:00:00", "updated_at": None},
    )

    assert updated.id == org_id
    assert updated.name == "newOrg"
    assert updated.created_at == created_at
    assert updated.updated_at > first_updated_at
    second_updated_at = updated.updated_at

    # Only forged fields: nothing but the timestamp changes
    unchanged = await service.update_organization(db, org_id, {"id": generate_ulid(), "created_at": None})
    assert unchanged.id == org_id
    assert unchanged.name == "newOrg"
    assert unchanged.created_at == created_at
    assert unchanged.updated_at > second_updated_at


async def test_update_team_and_project_group_touch_updated_at(db, make_user) -> None:
    creator_id = await make_user("creator")
    org = await service.create_organization(db, {"name": "org"}, creator_id)
    org_id = org.id
    team = await service.create_team(db, org_id, {"name": "team"}, creator_id)
    team_updated_at = team.updated_at
    group = await service.create_project_group(db, org_id, {"name": "group"}, creator_id)
    group_updated_at = group.updated_at

    team = await service.update_team(db, org_id, team.id, {"name": "renamed"})
    group = await service.update_project_group(db, org_id, group.id, {"name": "renamed"})

    assert team.updated_at > team_updated_at
    assert group.updated_at > group_updated_at


async def test_update_organization_rejects_invalid_values(db, make_user) -> None:
    creator_id = await make_user("creator")
    org = await service.create_organization(db, {"name": "org1"}, creator_id)

    with pytest.raises(ValidationError):
        await service.update_organization(db, org.id, {"name": ""})


async def test_delete_organization_is_idempotent_and_cascades(db, make_user) -> None:
    creator_id = await make_user("creator")
    member_id = await make_user("member")
    org = await service.create_organization(db, {"name": "org1"}, creator_id)
    org_id = org.id
    team = await service.create_team(db, org_id, {"name": "team"}, creator_id)
    team_id = team.id
    await service.create_project_group(db, org_id, {"name": "group"}, creator_id)
    await service.add_user(db, org_id, member_id)
    await service.add_user_to_team(db, org_id, team_id, member_id)
    await service.set_team_role(db, org_id, OrganizationRole.ORG_ADMIN, team_id)

    await service.delete_organization(db, generate_ulid())
    await service.delete_organization(db, org_id)

    assert await service.get_organization(db, org_id) is None
    assert await service.get_teams(db, org_id) == []
    assert await service.get_project_groups(db, org_id) == []
    assert await _row_count(db, organization_memberships) == 0
    assert await _row_count(db, team_memberships) == 0
    for ace in (OrganizationAccessControlEntry, TeamAccessControlEntry, ProjectGroupAccessControlEntry):
        assert await _row_count(db, ace) == 0
    assert await service.find_organizations(db, member_id) == []

    await service.delete_organization(db, org_id)


async def test_get_organization_loads_project_groups_on_request(db, make_user) -> None:
    creator_id = await make_user("creator")
    assert await service.get_organization(db, generate_ulid()) is None

    org = await service.create_organization(db, {"name": "org1"}, creator_id)
    org_id = org.id
    team = await service.create_team(db, org_id, {"name": "team"}, creator_id)
    team_id = team.id
    group = await service.create_project_group(db, org_id, {"name": "group"}, creator_id)
    group_id = group.id

    without_groups = object_for_response(await service.get_organization(db, org_id))
    assert "project_groups" not in without_groups
    assert [t["id"] for t in without_groups["teams"]] == [team_id]

    with_groups = object_for_response(await service.get_organization(db, org_id, with_project_groups=True))
    assert [g["id"] for g in with_groups["project_groups"]] == [group_id]


async def test_add_user_then_get_users(db, make_user) -> None:
    user_id = await make_user("user")
    org = await service.create_organization(db, {"name": "org"}, user_id)
    org_id = org.id

    with pytest.raises(NotFoundError):
        await service.add_user(db, generate_ulid(), user_id)
    with pytest.raises(NotFoundError):
        await service.add_user(db, org_id, generate_ulid())

    await service.add_user(db, org_id, user_id)
    assert await service.is_authorized(db, org_id, None, user_id)
    assert [found.id for found in await service.find_organizations(db, user_id)] == [org_id]
    assert [user.id for user in await service.get_users(db, org_id)] == [user_id]

    # Adding the same user again is a no-op
    await service.add_user(db, org_id, user_id)
    assert await _row_count(db, organization_memberships) == 1

    await service.remove_user(db, org_id, user_id)
    assert await service.get_users(db, org_id) == []
    assert not await service.is_authorized(db, org_id, None, user_id)
    assert await service.find_organizations(db, user_id) == []

    # Removing an absent user is a no-op
    await service.remove_user(db, org_id, user_id)


async def test_remove_user_checks_existence(db, make_user) -> None:
    user_id = await make_user("user")
    org = await service.create_organization(db, {"name": "org"}, user_id)
    org_id = org.id

    with pytest.raises(NotFoundError):
        await service.remove_user(db, generate_ulid(), user_id)
    with pytest.raises(NotFoundError):
        await service.remove_user(db, org_id, generate_ulid())


async def test_set_team_role_requires_team_of_organization(db, make_user) -> None:
    creator_id = await make_user("creator")
    org = await service.create_organization(db, {"name": "org"}, creator_id)
    org_id = org.id

    with pytest.raises(NotFoundError):
        await service.set_team_role(db, org_id, OrganizationRole.ORG_ADMIN, generate_ulid())
    with pytest.raises(InvalidRoleError):
        await service.set_user_role(db, org_id, "TEAM_ADMIN", creator_id)


async def test_restore_founding_grant(db, make_user) -> None:
    creator_id = await make_user("creator")
    org = await service.create_organization(db, {"name": "org"}, creator_id)
    org_id = org.id

    assert await service.restore_founding_grant(db, org_id) is False

    await db.execute(delete(OrganizationAccessControlEntry).where(OrganizationAccessControlEntry.entity_id == org_id))
    await db.execute(delete(organization_memberships).where(organization_memberships.c.organization_id == org_id))
    await db.commit()
    assert not await service.is_authorized(db, org_id, None, creator_id)

    assert await service.restore_founding_grant(db, org_id) is True
    assert await service.restore_founding_grant(db, org_id) is False
    assert await service.is_authorized(db, org_id, [OrganizationRole.ORG_FULL_ADMIN], creator_id)

    with pytest.raises(NotFoundError):
        await service.restore_founding_grant(db, generate_ulid())


# ============================================================================
# Teams
# ============================================================================

async def test_create_team_grants_creator_team_admin(db, make_user) -> None:
    creator_id = await make_user("creator")
    org = await service.create_organization(db, {"name": "org"}, creator_id)
    org_id = org.id

    with pytest.raises(NotFoundError):
        await service.create_team(db, generate_ulid(), {"name": "team"}, creator_id)
    with pytest.raises(ValidationError):
        await service.create_team(db, org_id, {"logo_path": "x.png"}, creator_id)

    team = await service.create_team(db, org_id, {"name": "team", "logo_path": "team.png"}, creator_id)

    assert team.organization_id == org_id
    assert team.logo_path == "team.png"
    assert [(entry.subject_id, entry.role) for entry in team.get_acl()] == [(creator_id, "TEAM_ADMIN")]
    # The creator is not made a team member
    assert await membership.get_team_ids(db, org_id, creator_id) == []


async def test_update_team(db, make_user) -> None:
    creator_id = await make_user("creator")
    org = await service.create_organization(db, {"name": "org"}, creator_id)
    org_id = org.id
    team = await service.create_team(db, org_id, {"name": "team"}, creator_id)
    team_id = team.id

    updated = await service.update_team(db, org_id, team_id, {"name": "renamed", "organization_id": generate_ulid()})

    assert updated.name == "renamed"
    assert updated.organization_id == org_id
    assert await service.update_team(db, org_id, generate_ulid(), {"name": "x"}) is None


async def test_delete_team_cascades_to_memberships(db, make_user) -> None:
    creator_id = await make_user("creator")
    member_id = await make_user("member")
    org = await service.create_organization(db, {"name": "org"}, creator_id)
    org_id = org.id
    red = await service.create_team(db, org_id, {"name": "red"}, creator_id)
    red_id = red.id
    blue = await service.create_team(db, org_id, {"name": "blue"}, creator_id)
    blue_id = blue.id
    await service.add_user(db, org_id, member_id)
    for team_id in (red_id, blue_id):
        await service.add_user_to_team(db, org_id, team_id, member_id)
    await service.set_team_role(db, org_id, OrganizationRole.ORG_ADMIN, red_id)

    await service.delete_team(db, org_id, red_id)

    assert await membership.get_team_ids(db, org_id, member_id) == [blue_id]
    assert [team.id for team in await service.get_teams(db, org_id)] == [blue_id]
    organization = await service.get_organization(db, org_id)
    assert [team.id for team in organization.teams] == [blue_id]
    assert [entry.subject_id for entry in organization.get_acl()] == [creator_id]
    assert await _row_count(db, TeamAccessControlEntry, TeamAccessControlEntry.entity_id == red_id) == 0
    # Organization membership is untouched
    assert await membership.is_member(db, org_id, member_id)

    await service.delete_team(db, org_id, red_id)


async def test_team_user_roles(db, make_user) -> None:
    creator_id = await make_user("creator")
    member_id = await make_user("member")
    org = await service.create_organization(db, {"name": "org"}, creator_id)
    org_id = org.id
    team = await service.create_team(db, org_id, {"name": "team"}, creator_id)
    team_id = team.id
    path = EntityPath(org_id, NestedEntityField.TEAMS, team_id)

    await service.set_team_user_role(db, org_id, team_id, TeamRole.TEAM_ADMIN, member_id)
    assert sorted(entry.subject_id for entry in await get_acl(db, path)) == sorted([creator_id, member_id])

    await service.remove_team_user_role(db, org_id, team_id, member_id)
    assert [entry.subject_id for entry in await get_acl(db, path)] == [creator_id]

    with pytest.raises(InvalidRoleError):
        await service.set_team_user_role(db, org_id, team_id, "ORG_ADMIN", member_id)
    with pytest.raises(NotFoundError):
        await service.set_team_user_role(db, org_id, generate_ulid(), TeamRole.TEAM_ADMIN, member_id)


async def test_add_user_to_team_through_service(db, make_user) -> None:
    creator_id = await make_user("creator")
    outsider_id = await make_user("outsider")
    org = await service.create_organization(db, {"name": "org"}, creator_id)
    org_id = org.id
    team = await service.create_team(db, org_id, {"name": "team"}, creator_id)
    team_id = team.id

    with pytest.raises(NotFoundError):
        await service.add_user_to_team(db, org_id, team_id, outsider_id)
    await db.rollback()

    await service.add_user_to_team(db, org_id, team_id, creator_id)
    assert await membership.get_team_ids(db, org_id, creator_id) == [team_id]
    await service.remove_user_from_team(db, org_id, team_id, creator_id)
    assert await membership.get_team_ids(db, org_id, creator_id) == []


# ============================================================================
# Project groups
# ============================================================================

async def test_project_group_lifecycle(db, make_user) -> None:
    creator_id = await make_user("creator")
    member_id = await make_user("member")
    org = await service.create_organization(db, {"name": "org"}, creator_id)
    org_id = org.id

    group = await service.create_project_group(db, org_id, {"name": "group"}, creator_id)
    group_id = group.id
    assert [(entry.subject_id, entry.role) for entry in group.get_acl()] == [(creator_id, "PROJECT_GROUP_ADMIN")]

    renamed = await service.update_project_group(db, org_id, group_id, {"name": "renamed", "logo_path": "x"})
    assert renamed.name == "renamed"
    assert await service.update_project_group(db, org_id, generate_ulid(), {"name": "x"}) is None

    await service.set_project_group_user_role(db, org_id, group_id, ProjectGroupRole.PROJECT_GROUP_ADMIN, member_id)
    group = await service.get_project_group(db, org_id, group_id)
    assert sorted(entry.subject_id for entry in group.get_acl()) == sorted([creator_id, member_id])

    await service.remove_project_group_user_role(db, org_id, group_id, member_id)
    group = await service.get_project_group(db, org_id, group_id)
    assert [entry.subject_id for entry in group.get_acl()] == [creator_id]

    await service.delete_project_group(db, org_id, group_id)
    assert await service.get_project_groups(db, org_id) == []
    assert await _row_count(db, ProjectGroupAccessControlEntry) == 0
    await service.delete_project_group(db, org_id, group_id)


async def test_nested_user_role_through_generic_field(db, make_user) -> None:
    creator_id = await make_user("creator")
    member_id = await make_user("member")
    org = await service.create_organization(db, {"name": "org"}, creator_id)
    org_id = org.id
    group = await service.create_project_group(db, org_id, {"name": "group"}, creator_id)
    group_id = group.id

    await service.set_nested_user_role(db, org_id, "project_groups", group_id, "PROJECT_GROUP_ADMIN", member_id)
    path = EntityPath(org_id, NestedEntityField.PROJECT_GROUPS, group_id)
    assert member_id in {entry.subject_id for entry in await get_acl(db, path)}

    await service.remove_nested_user_role(db, org_id, "project_groups", group_id, member_id)
    assert member_id not in {entry.subject_id for entry in await get_acl(db, path)}

    with pytest.raises(ValueError):
        await service.set_nested_user_role(db, org_id, "labels", group_id, "PROJECT_GROUP_ADMIN", member_id)


# ============================================================================
# Projections
# ============================================================================

async def test_projections(db, make_user) -> None:
    creator_id = await make_user("creator", "creator@example.com")
    org = await service.create_organization(db, {"name": "org", "logo_path": "org.png"}, creator_id)
    org_id = org.id
    team = await service.create_team(db, org_id, {"name": "team"}, creator_id)
    team_id = team.id
    await service.set_team_role(db, org_id, OrganizationRole.ORG_ADMIN, team_id)
    await service.add_user_to_team(db, org_id, team_id, creator_id)

    organization = await service.get_organization(db, org_id, with_project_groups=True)
    detail = object_for_response(organization)
    summary = object_for_list_response(organization)

    assert set(summary) == {"id", "name", "logo_path", "created_at", "updated_at"}
    assert set(detail) == set(summary) | {"access_control_list", "teams", "project_groups"}
    assert detail["logo_path"] == "org.png"
    assert {"role": "ORG_FULL_ADMIN", "user_id": creator_id} in detail["access_control_list"]
    assert {"role": "ORG_ADMIN", "team_id": team_id} in detail["access_control_list"]
    assert detail["teams"] == [{
        "id": team_id,
        "name": "team",
        "logo_path": None,
        "access_control_list": [{"role": "TEAM_ADMIN", "user_id": creator_id}],
    }]
    assert detail["project_groups"] == []

    [user] = await service.get_users(db, org_id)
    assert await user_for_list_response(db, org_id, user) == {
        "id": creator_id,
        "display_name": "creator",
        "email": "creator@example.com",
        "team_ids": [team_id],
    }
    assert (await user_for_list_response(db, generate_ulid(), user))["team_ids"] == []
