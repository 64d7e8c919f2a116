"""
Authorization resolution.

Answers "may this user act within this organization with one of these
roles". Membership gates everything: non-members are never authorized, and
ACEs that still name a removed member become unreachable. For members, the
effective role set is the union of:

1. organization ACEs naming the user,
2. organization ACEs naming a team the user belongs to,
3. organization roles implied by team roles the user holds on those teams
   (TEAM_ROLE_IMPLICATIONS).

Nothing is cached between calls.
"""
import enum
from typing import Iterable
from sqlalchemy import select, or_, and_
from sqlalchemy.ext.asyncio import AsyncSession

from orgaccess.features.access_control.membership import is_member, team_ids_query
from orgaccess.features.access_control.roles import SubjectType, implied_organization_roles
from orgaccess.features.organizations.models import OrganizationAccessControlEntry, TeamAccessControlEntry
from orgaccess.utils import get_logger


log = get_logger(__name__)


def _role_token(role: enum.Enum | str) -> str:
    return role.value if isinstance(role, enum.Enum) else str(role)


async def get_effective_roles(db: AsyncSession, organization_id: str, user_id: str) -> set[str]:
    """Role tokens the user holds within the organization, direct and through teams."""
    team_ids = team_ids_query(organization_id, user_id)

    org_ace = OrganizationAccessControlEntry
    result = await db.execute(
        select(org_ace.role).where(
            org_ace.entity_id == organization_id,
            or_(
                and_(org_ace.subject_type == SubjectType.USER.value, org_ace.subject_id == user_id),
                and_(org_ace.subject_type == SubjectType.TEAM.value, org_ace.subject_id.in_(team_ids)),
            ),
        )
    )
    organization_roles = result.scalars().all()

    team_ace = TeamAccessControlEntry
    result = await db.execute(
        select(team_ace.role).where(
            team_ace.entity_id.in_(team_ids),
            team_ace.subject_type == SubjectType.USER.value,
            team_ace.subject_id == user_id,
        )
    )
    team_roles = result.scalars().all()

    return set(organization_roles) | implied_organization_roles(team_roles)


async def is_authorized(
    db: AsyncSession,
    organization_id: str,
    required_roles: Iterable[enum.Enum | str] | None,
    user_id: str,
) -> bool:
    """
    Decide whether the user is authorized within the organization.

    Args:
        db: Database session
        organization_id: Organization scope
        required_roles: Acceptable organization roles; None means any member
        user_id: User to check

    Returns:
        True if the user is a member and, when roles are required, holds at
        least one of them
    """
    if not await is_member(db, organization_id, user_id):
        log.debug("User %s is not a member of organization %s", user_id, organization_id)
        return False

    if required_roles is None:
        return True

    required = {_role_token(role) for role in required_roles}
    effective = await get_effective_roles(db, organization_id, user_id)
    authorized = not effective.isdisjoint(required)
    log.debug(
        "User %s %s in organization %s (required=%s, effective=%s)",
        user_id, "authorized" if authorized else "denied", organization_id, sorted(required), sorted(effective)
    )
    return authorized
