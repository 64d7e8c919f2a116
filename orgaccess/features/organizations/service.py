"""
Organization, team and project-group operations.

Each public coroutine here is one unit of work: it checks every precondition
before its first write and commits once at the end, so readers never see an
organization without its founding ACE and membership, or a half-applied
cascade. The access_control functions it composes only stage statements.
"""
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from typing import Any, Mapping, TypeVar
from pydantic import BaseModel
from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from orgaccess.core.errors import NotFoundError
from orgaccess.features.access_control import membership
from orgaccess.features.access_control.authorization import is_authorized, get_effective_roles  # noqa: F401
from orgaccess.features.access_control.role_assignment import (
    EntityPath,
    NestedEntityField,
    set_role,
    remove_role,
    grant_on_create,
    get_acl,
)
from orgaccess.features.access_control.roles import OrganizationRole, TeamRole, ProjectGroupRole, SubjectType
from orgaccess.features.organizations.models import (
    Organization,
    Team,
    ProjectGroup,
    OrganizationAccessControlEntry,
    TeamAccessControlEntry,
    ProjectGroupAccessControlEntry,
)
from orgaccess.features.organizations.schemas import (
    OrganizationCreate,
    OrganizationUpdate,
    TeamCreate,
    TeamUpdate,
    ProjectGroupCreate,
    ProjectGroupUpdate,
)
from orgaccess.features.users.models import User
from orgaccess.utils import get_logger


log = get_logger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def _validated(schema: type[SchemaT], attrs: SchemaT | Mapping[str, Any]) -> SchemaT:
    """Validate input, raising pydantic.ValidationError before anything is written."""
    if isinstance(attrs, schema):
        return attrs
    return schema.model_validate(dict(attrs))


def _updatable_values(schema: type[BaseModel], fields: BaseModel | Mapping[str, Any]) -> dict[str, Any]:
    """Values of the allow-listed fields that were actually supplied. Everything else is ignored."""
    if isinstance(fields, BaseModel):
        fields = fields.model_dump(exclude_unset=True)
    allowed = {key: value for key, value in fields.items() if key in schema.model_fields}
    return schema.model_validate(allowed).model_dump(exclude_unset=True, exclude_none=True)


# ============================================================================
# Organizations
# ============================================================================

async def get_organization(
    db: AsyncSession,
    organization_id: str,
    with_project_groups: bool = False,
) -> Organization | None:
    """
    Get organization by ID with its ACL and teams, or None.

    Project groups are loaded only when ``with_project_groups`` is set.
    """
    stmt = (
        select(Organization)
        .where(Organization.id == organization_id)
        .execution_options(populate_existing=True)
    )
    if with_project_groups:
        stmt = stmt.options(selectinload(Organization.project_groups))
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def create_organization(
    db: AsyncSession,
    attrs: OrganizationCreate | Mapping[str, Any],
    creator_id: str,
) -> Organization:
    """
    Create an organization owned by ``creator_id``.

    The organization, the creator's ORG_FULL_ADMIN entry and the creator's
    membership are written in one transaction.

    Raises:
        pydantic.ValidationError: malformed attributes
        NotFoundError: unknown creator
    """
    data = _validated(OrganizationCreate, attrs)
    await membership.ensure_user(db, creator_id)

    organization = Organization(**data.model_dump(), creator_id=creator_id)
    db.add(organization)
    await db.flush()
    organization_id = organization.id

    await grant_on_create(db, EntityPath(organization_id), creator_id)
    await membership.add_user_to_organization(db, organization_id, creator_id)
    await db.commit()

    log.info("Created organization %s by user %s", organization_id, creator_id)
    return await get_organization(db, organization_id, with_project_groups=True)


async def update_organization(
    db: AsyncSession,
    organization_id: str,
    fields: OrganizationUpdate | Mapping[str, Any],
) -> Organization | None:
    """
    Update the allow-listed fields of an organization.

    Identifier and timestamp fields in ``fields`` are ignored. Returns the
    updated organization, or None if the id is unknown.
    """
    values = _updatable_values(OrganizationUpdate, fields)
    result = await db.execute(
        update(Organization)
        .where(Organization.id == organization_id)
        .values(**values, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return None
    await db.commit()

    log.info("Updated organization %s fields %s", organization_id, sorted(values))
    return await get_organization(db, organization_id)


async def delete_organization(db: AsyncSession, organization_id: str) -> None:
    """
    Delete an organization with its teams, project groups, ACLs and memberships.

    Deleting an unknown id succeeds.
    """
    team_ids = select(Team.id).where(Team.organization_id == organization_id)
    group_ids = select(ProjectGroup.id).where(ProjectGroup.organization_id == organization_id)

    await membership.remove_organization_memberships(db, organization_id)
    for stmt in (
        delete(TeamAccessControlEntry).where(TeamAccessControlEntry.entity_id.in_(team_ids)),
        delete(ProjectGroupAccessControlEntry).where(ProjectGroupAccessControlEntry.entity_id.in_(group_ids)),
        delete(OrganizationAccessControlEntry).where(OrganizationAccessControlEntry.entity_id == organization_id),
        delete(Team).where(Team.organization_id == organization_id),
        delete(ProjectGroup).where(ProjectGroup.organization_id == organization_id),
    ):
        await db.execute(stmt.execution_options(synchronize_session=False))
    result = await db.execute(
        delete(Organization)
        .where(Organization.id == organization_id)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    if result.rowcount:
        log.info("Deleted organization %s", organization_id)


def iter_organizations(db: AsyncSession, user_id: str) -> AsyncIterator[Organization]:
    """Lazily iterate the organizations the user belongs to; each call queries again."""
    return membership.iter_organizations_for_user(db, user_id)


async def find_organizations(db: AsyncSession, user_id: str) -> list[Organization]:
    """Organizations the user belongs to, with teams and project groups loaded."""
    return await membership.find_organizations_for_user(db, user_id)


async def get_users(db: AsyncSession, organization_id: str) -> list[User]:
    """Members of the organization, in join order."""
    return await membership.get_members(db, organization_id)


async def add_user(db: AsyncSession, organization_id: str, user_id: str) -> None:
    """Make the user a member of the organization. Idempotent."""
    await membership.add_user_to_organization(db, organization_id, user_id)
    await db.commit()


async def remove_user(db: AsyncSession, organization_id: str, user_id: str) -> None:
    """Remove the user (and their team memberships) from the organization. Idempotent."""
    await membership.remove_user_from_organization(db, organization_id, user_id)
    await db.commit()


async def set_user_role(
    db: AsyncSession,
    organization_id: str,
    role: OrganizationRole | str,
    user_id: str,
) -> None:
    """Give the user ``role`` on the organization, replacing any previous role."""
    await set_role(db, EntityPath(organization_id), role, user_id)
    await db.commit()


async def remove_user_role(db: AsyncSession, organization_id: str, user_id: str) -> None:
    await remove_role(db, EntityPath(organization_id), user_id)
    await db.commit()


async def set_team_role(
    db: AsyncSession,
    organization_id: str,
    role: OrganizationRole | str,
    team_id: str,
) -> None:
    """
    Grant an organization role to a team: every member of the team holds
    ``role`` within the organization while they stay in the team.

    Raises:
        NotFoundError: the team is not part of the organization
        InvalidRoleError: ``role`` is not an organization role
    """
    await membership.ensure_team(db, organization_id, team_id)
    await set_role(db, EntityPath(organization_id), role, team_id, SubjectType.TEAM)
    await db.commit()


async def remove_team_role(db: AsyncSession, organization_id: str, team_id: str) -> None:
    await remove_role(db, EntityPath(organization_id), team_id, SubjectType.TEAM)
    await db.commit()


async def restore_founding_grant(db: AsyncSession, organization_id: str) -> bool:
    """
    Re-derive the creator's ORG_FULL_ADMIN entry and membership for an
    organization whose ACL is empty.

    Safe to call repeatedly. Returns True if anything was restored.

    Raises:
        NotFoundError: unknown organization
    """
    organization = await get_organization(db, organization_id)
    if organization is None:
        raise NotFoundError("Organization", organization_id)
    creator_id = organization.creator_id
    if creator_id is None or await get_acl(db, EntityPath(organization_id)):
        return False

    await membership.ensure_user(db, creator_id)
    await grant_on_create(db, EntityPath(organization_id), creator_id)
    await membership.add_user_to_organization(db, organization_id, creator_id)
    await db.commit()

    log.warning("Restored founding grant of organization %s for user %s", organization_id, creator_id)
    return True


# ============================================================================
# Nested entities (generic)
# ============================================================================

async def set_nested_user_role(
    db: AsyncSession,
    organization_id: str,
    field: NestedEntityField | str,
    entity_id: str,
    role: Any,
    user_id: str,
) -> None:
    """Give the user ``role`` on a team or project group of the organization."""
    await set_role(db, EntityPath(organization_id, NestedEntityField(field), entity_id), role, user_id)
    await db.commit()


async def remove_nested_user_role(
    db: AsyncSession,
    organization_id: str,
    field: NestedEntityField | str,
    entity_id: str,
    user_id: str,
) -> None:
    await remove_role(db, EntityPath(organization_id, NestedEntityField(field), entity_id), user_id)
    await db.commit()


# ============================================================================
# Teams
# ============================================================================

async def get_team(db: AsyncSession, organization_id: str, team_id: str) -> Team | None:
    result = await db.execute(
        select(Team)
        .where(Team.id == team_id, Team.organization_id == organization_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_teams(db: AsyncSession, organization_id: str) -> list[Team]:
    result = await db.execute(
        select(Team)
        .where(Team.organization_id == organization_id)
        .order_by(Team.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def create_team(
    db: AsyncSession,
    organization_id: str,
    attrs: TeamCreate | Mapping[str, Any],
    creator_id: str,
) -> Team:
    """
    Create a team and grant its creator TEAM_ADMIN on it.

    The creator does not become a team member.

    Raises:
        pydantic.ValidationError: malformed attributes
        NotFoundError: unknown organization or creator
    """
    data = _validated(TeamCreate, attrs)
    await membership.ensure_organization(db, organization_id)
    await membership.ensure_user(db, creator_id)

    team = Team(**data.model_dump(), organization_id=organization_id, creator_id=creator_id)
    db.add(team)
    await db.flush()
    team_id = team.id

    await grant_on_create(db, EntityPath(organization_id, NestedEntityField.TEAMS, team_id), creator_id)
    await db.commit()

    log.info("Created team %s in organization %s by user %s", team_id, organization_id, creator_id)
    return await get_team(db, organization_id, team_id)


async def update_team(
    db: AsyncSession,
    organization_id: str,
    team_id: str,
    fields: TeamUpdate | Mapping[str, Any],
) -> Team | None:
    """Update the allow-listed fields of a team. None if the team is not in the organization."""
    values = _updatable_values(TeamUpdate, fields)
    result = await db.execute(
        update(Team)
        .where(Team.id == team_id, Team.organization_id == organization_id)
        .values(**values, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return None
    await db.commit()
    return await get_team(db, organization_id, team_id)


async def delete_team(db: AsyncSession, organization_id: str, team_id: str) -> None:
    """
    Delete a team from the organization.

    Removes the team from every member's team ids, drops its ACL and any
    organization role granted to it. Memberships of the organization stay.
    Deleting an unknown team succeeds.
    """
    team_ids = select(Team.id).where(Team.id == team_id, Team.organization_id == organization_id)

    await membership.remove_team_references(db, organization_id, team_id)
    await remove_role(db, EntityPath(organization_id), team_id, SubjectType.TEAM)
    await db.execute(
        delete(TeamAccessControlEntry)
        .where(TeamAccessControlEntry.entity_id.in_(team_ids))
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(
        delete(Team)
        .where(Team.id == team_id, Team.organization_id == organization_id)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    if result.rowcount:
        log.info("Deleted team %s of organization %s", team_id, organization_id)


async def add_user_to_team(db: AsyncSession, organization_id: str, team_id: str, user_id: str) -> None:
    await membership.add_user_to_team(db, organization_id, team_id, user_id)
    await db.commit()


async def remove_user_from_team(db: AsyncSession, organization_id: str, team_id: str, user_id: str) -> None:
    await membership.remove_user_from_team(db, organization_id, team_id, user_id)
    await db.commit()


async def set_team_user_role(
    db: AsyncSession,
    organization_id: str,
    team_id: str,
    role: TeamRole | str,
    user_id: str,
) -> None:
    await set_nested_user_role(db, organization_id, NestedEntityField.TEAMS, team_id, role, user_id)


async def remove_team_user_role(db: AsyncSession, organization_id: str, team_id: str, user_id: str) -> None:
    await remove_nested_user_role(db, organization_id, NestedEntityField.TEAMS, team_id, user_id)


# ============================================================================
# Project Groups
# ============================================================================

async def get_project_group(db: AsyncSession, organization_id: str, group_id: str) -> ProjectGroup | None:
    result = await db.execute(
        select(ProjectGroup)
        .where(ProjectGroup.id == group_id, ProjectGroup.organization_id == organization_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_project_groups(db: AsyncSession, organization_id: str) -> list[ProjectGroup]:
    result = await db.execute(
        select(ProjectGroup)
        .where(ProjectGroup.organization_id == organization_id)
        .order_by(ProjectGroup.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def create_project_group(
    db: AsyncSession,
    organization_id: str,
    attrs: ProjectGroupCreate | Mapping[str, Any],
    creator_id: str,
) -> ProjectGroup:
    """
    Create a project group and grant its creator PROJECT_GROUP_ADMIN on it.

    Raises:
        pydantic.ValidationError: malformed attributes
        NotFoundError: unknown organization or creator
    """
    data = _validated(ProjectGroupCreate, attrs)
    await membership.ensure_organization(db, organization_id)
    await membership.ensure_user(db, creator_id)

    group = ProjectGroup(**data.model_dump(), organization_id=organization_id, creator_id=creator_id)
    db.add(group)
    await db.flush()
    group_id = group.id

    await grant_on_create(db, EntityPath(organization_id, NestedEntityField.PROJECT_GROUPS, group_id), creator_id)
    await db.commit()

    log.info("Created project group %s in organization %s by user %s", group_id, organization_id, creator_id)
    return await get_project_group(db, organization_id, group_id)


async def update_project_group(
    db: AsyncSession,
    organization_id: str,
    group_id: str,
    fields: ProjectGroupUpdate | Mapping[str, Any],
) -> ProjectGroup | None:
    values = _updatable_values(ProjectGroupUpdate, fields)
    result = await db.execute(
        update(ProjectGroup)
        .where(ProjectGroup.id == group_id, ProjectGroup.organization_id == organization_id)
        .values(**values, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return None
    await db.commit()
    return await get_project_group(db, organization_id, group_id)


async def delete_project_group(db: AsyncSession, organization_id: str, group_id: str) -> None:
    """Delete a project group and its ACL. Deleting an unknown group succeeds."""
    group_ids = select(ProjectGroup.id).where(
        ProjectGroup.id == group_id, ProjectGroup.organization_id == organization_id
    )
    await db.execute(
        delete(ProjectGroupAccessControlEntry)
        .where(ProjectGroupAccessControlEntry.entity_id.in_(group_ids))
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(
        delete(ProjectGroup)
        .where(ProjectGroup.id == group_id, ProjectGroup.organization_id == organization_id)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    if result.rowcount:
        log.info("Deleted project group %s of organization %s", group_id, organization_id)


async def set_project_group_user_role(
    db: AsyncSession,
    organization_id: str,
    group_id: str,
    role: ProjectGroupRole | str,
    user_id: str,
) -> None:
    await set_nested_user_role(db, organization_id, NestedEntityField.PROJECT_GROUPS, group_id, role, user_id)


async def remove_project_group_user_role(db: AsyncSession, organization_id: str, group_id: str, user_id: str) -> None:
    await remove_nested_user_role(db, organization_id, NestedEntityField.PROJECT_GROUPS, group_id, user_id)
