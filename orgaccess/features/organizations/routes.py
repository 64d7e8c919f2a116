"""
Organization feature routes.

Service errors are translated by the application's exception handlers:
NotFoundError -> 404, InvalidRoleError and validation errors -> 400.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from orgaccess.core.database.engine import get_db
from orgaccess.features.access_control.role_assignment import NestedEntityField
from orgaccess.features.users.models import User
from orgaccess.features.users.dependencies import get_current_user
from orgaccess.features.organizations import service
from orgaccess.features.organizations.models import Organization
from orgaccess.features.organizations.responses import (
    object_for_response,
    object_for_list_response,
    team_for_response,
    project_group_for_response,
    user_for_list_response,
)
from orgaccess.features.organizations.schemas import (
    OrganizationCreate,
    OrganizationUpdate,
    OrganizationResponse,
    OrganizationListResponse,
    OrganizationUserResponse,
    OrganizationUserRoleAssignment,
    OrganizationTeamRoleAssignment,
    NestedUserRoleAssignment,
    AuthorizationCheck,
    AuthorizationCheckResponse,
    AddMember,
    TeamCreate,
    TeamUpdate,
    TeamResponse,
    TeamUserRoleAssignment,
    ProjectGroupCreate,
    ProjectGroupUpdate,
    ProjectGroupResponse,
    ProjectGroupUserRoleAssignment,
)
from orgaccess.features.organizations.dependencies import (
    get_organization_by_id,
    require_organization_admin,
    require_organization_full_admin,
    require_organization_member,
)


router = APIRouter(tags=["organizations"])


# Organization CRUD endpoints
@router.post("/", response_model=OrganizationResponse, response_model_exclude_none=True,
             status_code=status.HTTP_201_CREATED)
async def create_organization(
    org_data: OrganizationCreate,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create a new organization owned by the current user."""
    organization = await service.create_organization(db, org_data, user.id)
    return object_for_response(organization)


@router.get("/my", response_model=list[OrganizationListResponse])
async def get_my_organizations(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get all organizations the current user is a member of."""
    return [
        object_for_list_response(organization)
        async for organization in service.iter_organizations(db, user.id)
    ]


@router.get("/{organization_id}", response_model=OrganizationResponse, response_model_exclude_none=True,
            dependencies=[Depends(require_organization_member)])
async def get_organization(
    organization: Annotated[Organization, Depends(get_organization_by_id)]
):
    """Get organization by ID (members only)."""
    return object_for_response(organization)


@router.patch("/{organization_id}", response_model=OrganizationResponse, response_model_exclude_none=True,
              dependencies=[Depends(require_organization_admin)])
async def update_organization(
    organization_id: str,
    update_data: OrganizationUpdate,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Update organization information (admins only)."""
    organization = await service.update_organization(db, organization_id, update_data)
    if organization is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Organization not found"
        )
    return object_for_response(organization)


@router.delete("/{organization_id}", status_code=status.HTTP_204_NO_CONTENT,
               dependencies=[Depends(require_organization_full_admin)])
async def delete_organization(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Delete an organization (full admins only)."""
    await service.delete_organization(db, organization_id)


# Membership endpoints
@router.get("/{organization_id}/members", response_model=list[OrganizationUserResponse],
            dependencies=[Depends(require_organization_member)])
async def list_members(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """List organization members with their team ids (members only)."""
    users = await service.get_users(db, organization_id)
    return [await user_for_list_response(db, organization_id, user) for user in users]


@router.post("/{organization_id}/members", status_code=status.HTTP_204_NO_CONTENT,
             dependencies=[Depends(require_organization_admin)])
async def add_member(
    organization_id: str,
    add_data: AddMember,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Add a user to the organization (admins only). Adding a member twice is a no-op."""
    await service.add_user(db, organization_id, add_data.user_id)


@router.delete("/{organization_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT,
               dependencies=[Depends(require_organization_admin)])
async def remove_member(
    organization_id: str,
    user_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Remove a user from the organization (admins only)."""
    await service.remove_user(db, organization_id, user_id)


# Organization role endpoints
@router.put("/{organization_id}/roles/users", status_code=status.HTTP_204_NO_CONTENT,
            dependencies=[Depends(require_organization_admin)])
async def set_user_role(
    organization_id: str,
    assignment: OrganizationUserRoleAssignment,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Set a user's organization role (admins only)."""
    await service.set_user_role(db, organization_id, assignment.role, assignment.user_id)


@router.delete("/{organization_id}/roles/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT,
               dependencies=[Depends(require_organization_admin)])
async def remove_user_role(
    organization_id: str,
    user_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    await service.remove_user_role(db, organization_id, user_id)


@router.put("/{organization_id}/roles/teams", status_code=status.HTTP_204_NO_CONTENT,
            dependencies=[Depends(require_organization_admin)])
async def set_team_role(
    organization_id: str,
    assignment: OrganizationTeamRoleAssignment,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Grant an organization role to every member of a team (admins only)."""
    await service.set_team_role(db, organization_id, assignment.role, assignment.team_id)


@router.delete("/{organization_id}/roles/teams/{team_id}", status_code=status.HTTP_204_NO_CONTENT,
               dependencies=[Depends(require_organization_admin)])
async def remove_team_role(
    organization_id: str,
    team_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    await service.remove_team_role(db, organization_id, team_id)


@router.put("/{organization_id}/roles/nested", status_code=status.HTTP_204_NO_CONTENT,
            dependencies=[Depends(require_organization_admin)])
async def set_nested_user_role(
    organization_id: str,
    assignment: NestedUserRoleAssignment,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Set a user's role on a team or project group (admins only)."""
    await service.set_nested_user_role(
        db, organization_id, assignment.field, assignment.entity_id, assignment.role, assignment.user_id
    )


@router.delete("/{organization_id}/roles/nested/{field}/{entity_id}/{user_id}",
               status_code=status.HTTP_204_NO_CONTENT, dependencies=[Depends(require_organization_admin)])
async def remove_nested_user_role(
    organization_id: str,
    field: NestedEntityField,
    entity_id: str,
    user_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Remove a user's role on a team or project group (admins only)."""
    await service.remove_nested_user_role(db, organization_id, field, entity_id, user_id)


@router.post("/{organization_id}/authorization", response_model=AuthorizationCheckResponse,
             dependencies=[Depends(require_organization_member)])
async def check_authorization(
    organization_id: str,
    check: AuthorizationCheck,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Check whether a user is a member, or holds one of the given roles (members only)."""
    authorized = await service.is_authorized(db, organization_id, check.roles, check.user_id)
    return AuthorizationCheckResponse(authorized=authorized)


# Team endpoints
@router.post("/{organization_id}/teams", response_model=TeamResponse, response_model_exclude_none=True,
             status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_organization_admin)])
async def create_team(
    organization_id: str,
    team_data: TeamCreate,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create a team; the creator becomes its TEAM_ADMIN (admins only)."""
    team = await service.create_team(db, organization_id, team_data, user.id)
    return team_for_response(team)


@router.get("/{organization_id}/teams", response_model=list[TeamResponse], response_model_exclude_none=True,
            dependencies=[Depends(require_organization_member)])
async def list_teams(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    return [team_for_response(team) for team in await service.get_teams(db, organization_id)]


@router.patch("/{organization_id}/teams/{team_id}", response_model=TeamResponse, response_model_exclude_none=True,
              dependencies=[Depends(require_organization_admin)])
async def update_team(
    organization_id: str,
    team_id: str,
    team_data: TeamUpdate,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    team = await service.update_team(db, organization_id, team_id, team_data)
    if team is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Team not found"
        )
    return team_for_response(team)


@router.delete("/{organization_id}/teams/{team_id}", status_code=status.HTTP_204_NO_CONTENT,
               dependencies=[Depends(require_organization_admin)])
async def delete_team(
    organization_id: str,
    team_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    await service.delete_team(db, organization_id, team_id)


@router.post("/{organization_id}/teams/{team_id}/members", status_code=status.HTTP_204_NO_CONTENT,
             dependencies=[Depends(require_organization_admin)])
async def add_team_member(
    organization_id: str,
    team_id: str,
    add_data: AddMember,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Add an organization member to a team (admins only)."""
    await service.add_user_to_team(db, organization_id, team_id, add_data.user_id)


@router.delete("/{organization_id}/teams/{team_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT,
               dependencies=[Depends(require_organization_admin)])
async def remove_team_member(
    organization_id: str,
    team_id: str,
    user_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    await service.remove_user_from_team(db, organization_id, team_id, user_id)


@router.put("/{organization_id}/teams/{team_id}/roles", status_code=status.HTTP_204_NO_CONTENT,
            dependencies=[Depends(require_organization_admin)])
async def set_team_user_role(
    organization_id: str,
    team_id: str,
    assignment: TeamUserRoleAssignment,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    await service.set_team_user_role(db, organization_id, team_id, assignment.role, assignment.user_id)


@router.delete("/{organization_id}/teams/{team_id}/roles/{user_id}", status_code=status.HTTP_204_NO_CONTENT,
               dependencies=[Depends(require_organization_admin)])
async def remove_team_user_role(
    organization_id: str,
    team_id: str,
    user_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    await service.remove_team_user_role(db, organization_id, team_id, user_id)


# Project group endpoints
@router.post("/{organization_id}/project-groups", response_model=ProjectGroupResponse,
             status_code=status.HTTP_201_CREATED, response_model_exclude_none=True,
             dependencies=[Depends(require_organization_admin)])
async def create_project_group(
    organization_id: str,
    group_data: ProjectGroupCreate,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create a project group; the creator becomes its PROJECT_GROUP_ADMIN (admins only)."""
    group = await service.create_project_group(db, organization_id, group_data, user.id)
    return project_group_for_response(group)


@router.get("/{organization_id}/project-groups", response_model=list[ProjectGroupResponse],
            response_model_exclude_none=True, dependencies=[Depends(require_organization_member)])
async def list_project_groups(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    return [project_group_for_response(group) for group in await service.get_project_groups(db, organization_id)]


@router.patch("/{organization_id}/project-groups/{group_id}", response_model=ProjectGroupResponse,
              response_model_exclude_none=True, dependencies=[Depends(require_organization_admin)])
async def update_project_group(
    organization_id: str,
    group_id: str,
    group_data: ProjectGroupUpdate,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    group = await service.update_project_group(db, organization_id, group_id, group_data)
    if group is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Project group not found"
        )
    return project_group_for_response(group)


@router.delete("/{organization_id}/project-groups/{group_id}", status_code=status.HTTP_204_NO_CONTENT,
               dependencies=[Depends(require_organization_admin)])
async def delete_project_group(
    organization_id: str,
    group_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    await service.delete_project_group(db, organization_id, group_id)


@router.put("/{organization_id}/project-groups/{group_id}/roles", status_code=status.HTTP_204_NO_CONTENT,
            dependencies=[Depends(require_organization_admin)])
async def set_project_group_user_role(
    organization_id: str,
    group_id: str,
    assignment: ProjectGroupUserRoleAssignment,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    await service.set_project_group_user_role(db, organization_id, group_id, assignment.role, assignment.user_id)


@router.delete("/{organization_id}/project-groups/{group_id}/roles/{user_id}",
               status_code=status.HTTP_204_NO_CONTENT, dependencies=[Depends(require_organization_admin)])
async def remove_project_group_user_role(
    organization_id: str,
    group_id: str,
    user_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    await service.remove_project_group_user_role(db, organization_id, group_id, user_id)
