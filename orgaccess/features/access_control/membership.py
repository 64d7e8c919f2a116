"""
Membership registry.

Tracks which organizations, and which teams within them, a user belongs to.
Membership mutations use set semantics: adding twice leaves one row, and
removing something absent is a successful no-op.

These functions stage statements in the caller's session and never commit.
"""
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from sqlalchemy import select, delete, and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from orgaccess.core.database.engine import insert_ignore
from orgaccess.core.errors import NotFoundError
from orgaccess.features.access_control.models import organization_memberships, team_memberships
from orgaccess.features.organizations.models import Organization, Team
from orgaccess.features.users.models import User
from orgaccess.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Existence checks
# ============================================================================

async def ensure_organization(db: AsyncSession, organization_id: str) -> None:
    result = await db.execute(select(Organization.id).where(Organization.id == organization_id))
    if result.scalar_one_or_none() is None:
        raise NotFoundError("Organization", organization_id)


async def ensure_user(db: AsyncSession, user_id: str) -> None:
    result = await db.execute(select(User.id).where(User.id == user_id))
    if result.scalar_one_or_none() is None:
        raise NotFoundError("User", user_id)


async def ensure_team(db: AsyncSession, organization_id: str, team_id: str) -> None:
    result = await db.execute(
        select(Team.id).where(Team.id == team_id, Team.organization_id == organization_id)
    )
    if result.scalar_one_or_none() is None:
        raise NotFoundError("Team", team_id)


async def ensure_member(db: AsyncSession, organization_id: str, user_id: str) -> None:
    if not await is_member(db, organization_id, user_id):
        raise NotFoundError("Organization member", user_id)


# ============================================================================
# Queries
# ============================================================================

async def is_member(db: AsyncSession, organization_id: str, user_id: str) -> bool:
    result = await db.execute(
        select(organization_memberships.c.user_id).where(
            organization_memberships.c.user_id == user_id,
            organization_memberships.c.organization_id == organization_id,
        )
    )
    return result.first() is not None


def team_ids_query(organization_id: str, user_id: str):
    """Select the ids of existing teams of the organization that the user belongs to."""
    return (
        select(team_memberships.c.team_id)
        .join(Team, Team.id == team_memberships.c.team_id)
        .where(
            team_memberships.c.user_id == user_id,
            team_memberships.c.organization_id == organization_id,
            Team.organization_id == organization_id,
        )
    )


async def get_team_ids(db: AsyncSession, organization_id: str, user_id: str) -> list[str]:
    """Team ids of the user within the organization. Stale references are skipped."""
    result = await db.execute(
        team_ids_query(organization_id, user_id).order_by(team_memberships.c.joined_at, team_memberships.c.team_id)
    )
    return list(result.scalars().all())


async def get_member_ids(db: AsyncSession, organization_id: str) -> list[str]:
    result = await db.execute(
        select(organization_memberships.c.user_id)
        .where(organization_memberships.c.organization_id == organization_id)
        .order_by(organization_memberships.c.joined_at, organization_memberships.c.user_id)
    )
    return list(result.scalars().all())


async def get_members(db: AsyncSession, organization_id: str) -> list[User]:
    result = await db.execute(
        select(User)
        .join(organization_memberships, organization_memberships.c.user_id == User.id)
        .where(organization_memberships.c.organization_id == organization_id)
        .order_by(organization_memberships.c.joined_at, User.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def iter_organizations_for_user(
    db: AsyncSession,
    user_id: str,
    with_project_groups: bool = True,
) -> AsyncIterator[Organization]:
    """
    Yield the organizations the user is a member of.

    Every call runs a fresh query, so iterating again reflects the current
    memberships rather than a snapshot.
    """
    stmt = (
        select(Organization)
        .join(organization_memberships, organization_memberships.c.organization_id == Organization.id)
        .where(organization_memberships.c.user_id == user_id)
        .order_by(organization_memberships.c.joined_at, Organization.id)
        .execution_options(populate_existing=True)
    )
    if with_project_groups:
        stmt = stmt.options(selectinload(Organization.project_groups))
    result = await db.execute(stmt)
    for organization in result.scalars():
        yield organization


async def find_organizations_for_user(db: AsyncSession, user_id: str) -> list[Organization]:
    return [organization async for organization in iter_organizations_for_user(db, user_id)]


# ============================================================================
# Mutations
# ============================================================================

async def add_user_to_organization(db: AsyncSession, organization_id: str, user_id: str) -> bool:
    """
    Ensure the user is a member of the organization. Does not touch ACEs.

    Returns True if a membership was created, False if it already existed.

    Raises:
        NotFoundError: unknown organization or user
    """
    await ensure_organization(db, organization_id)
    await ensure_user(db, user_id)

    inserted = await insert_ignore(
        db,
        organization_memberships,
        user_id=user_id,
        organization_id=organization_id,
        joined_at=datetime.now(timezone.utc),
    )
    if inserted:
        log.info("Added user %s to organization %s", user_id, organization_id)
    return bool(inserted)


async def remove_user_from_organization(db: AsyncSession, organization_id: str, user_id: str) -> bool:
    """
    Remove the user's membership and all team memberships under the organization.

    ACEs naming the user are left in place; without a membership they can no
    longer grant anything.

    Raises:
        NotFoundError: unknown organization or user
    """
    await ensure_organization(db, organization_id)
    await ensure_user(db, user_id)

    await db.execute(
        delete(team_memberships).where(
            team_memberships.c.user_id == user_id,
            team_memberships.c.organization_id == organization_id,
        )
    )
    result = await db.execute(
        delete(organization_memberships).where(
            organization_memberships.c.user_id == user_id,
            organization_memberships.c.organization_id == organization_id,
        )
    )
    if result.rowcount:
        log.info("Removed user %s from organization %s", user_id, organization_id)
    return bool(result.rowcount)


async def add_user_to_team(db: AsyncSession, organization_id: str, team_id: str, user_id: str) -> bool:
    """
    Add an organization member to one of its teams.

    Raises:
        NotFoundError: the team is not part of the organization, or the user
            is not a member of the organization
    """
    await ensure_team(db, organization_id, team_id)
    await ensure_member(db, organization_id, user_id)

    inserted = await insert_ignore(
        db,
        team_memberships,
        user_id=user_id,
        team_id=team_id,
        organization_id=organization_id,
        joined_at=datetime.now(timezone.utc),
    )
    if inserted:
        log.info("Added user %s to team %s of organization %s", user_id, team_id, organization_id)
    return bool(inserted)


async def remove_user_from_team(db: AsyncSession, organization_id: str, team_id: str, user_id: str) -> bool:
    """
    Remove an organization member from one of its teams. Idempotent.

    Raises:
        NotFoundError: the team is not part of the organization, or the user
            is not a member of the organization
    """
    await ensure_team(db, organization_id, team_id)
    await ensure_member(db, organization_id, user_id)

    result = await db.execute(
        delete(team_memberships).where(
            and_(
                team_memberships.c.user_id == user_id,
                team_memberships.c.team_id == team_id,
                team_memberships.c.organization_id == organization_id,
            )
        )
    )
    if result.rowcount:
        log.info("Removed user %s from team %s of organization %s", user_id, team_id, organization_id)
    return bool(result.rowcount)


async def remove_team_references(db: AsyncSession, organization_id: str, team_id: str) -> int:
    """Drop the team from every user's memberships in the organization."""
    result = await db.execute(
        delete(team_memberships).where(
            team_memberships.c.team_id == team_id,
            team_memberships.c.organization_id == organization_id,
        )
    )
    return result.rowcount


async def remove_organization_memberships(db: AsyncSession, organization_id: str) -> None:
    """Drop every organization and team membership pointing at the organization."""
    await db.execute(delete(team_memberships).where(team_memberships.c.organization_id == organization_id))
    await db.execute(
        delete(organization_memberships).where(organization_memberships.c.organization_id == organization_id)
    )
