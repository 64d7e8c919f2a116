"""
Projections of organizations, teams, project groups and members into plain
records for API responses. Internal ACE ids are never exposed.
"""
from typing import Any
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession

from orgaccess.features.access_control.membership import get_team_ids
from orgaccess.features.access_control.models import AccessControlEntryMixin
from orgaccess.features.access_control.roles import SubjectType
from orgaccess.features.organizations.models import Organization, Team, ProjectGroup
from orgaccess.features.users.models import User


def access_control_entry_for_response(entry: AccessControlEntryMixin) -> dict[str, Any]:
    subject_key = "team_id" if entry.subject_type == SubjectType.TEAM.value else "user_id"
    return {"role": entry.role, subject_key: entry.subject_id}


def _acl_for_response(entity) -> list[dict[str, Any]]:
    return [access_control_entry_for_response(entry) for entry in entity.get_acl()]


def team_for_response(team: Team) -> dict[str, Any]:
    return {
        "id": team.id,
        "name": team.name,
        "logo_path": team.logo_path,
        "access_control_list": _acl_for_response(team),
    }


def project_group_for_response(group: ProjectGroup) -> dict[str, Any]:
    return {
        "id": group.id,
        "name": group.name,
        "access_control_list": _acl_for_response(group),
    }


def object_for_list_response(organization: Organization) -> dict[str, Any]:
    """Organization summary for list views: no teams, no ACL."""
    return {
        "id": organization.id,
        "name": organization.name,
        "logo_path": organization.logo_path,
        "created_at": organization.created_at,
        "updated_at": organization.updated_at,
    }


def object_for_response(organization: Organization) -> dict[str, Any]:
    """
    Organization detail with its ACL and teams.

    Project groups are included only when they were loaded with the
    organization (see service.get_organization).
    """
    response = object_for_list_response(organization)
    response["access_control_list"] = _acl_for_response(organization)
    response["teams"] = [team_for_response(team) for team in organization.teams]
    if "project_groups" not in inspect(organization).unloaded:
        response["project_groups"] = [project_group_for_response(group) for group in organization.project_groups]
    return response


async def user_for_list_response(db: AsyncSession, organization_id: str, user: User) -> dict[str, Any]:
    """
    Member summary with the teams of ``organization_id`` the user belongs to.

    An organization the user is not part of yields an empty team list.
    """
    return {
        "id": user.id,
        "display_name": user.display_name,
        "email": user.email,
        "team_ids": await get_team_ids(db, organization_id, user.id),
    }
