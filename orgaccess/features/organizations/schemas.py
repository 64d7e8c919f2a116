"""
Pydantic schemas for organization, team and project-group requests and responses.

Update schemas double as the writable-field allow-lists: anything not
declared on them (ids, timestamps, ACLs) is dropped during validation.
"""
from datetime import datetime
from pydantic import BaseModel, Field, ConfigDict, EmailStr

from orgaccess.features.access_control.roles import OrganizationRole, TeamRole, ProjectGroupRole
from orgaccess.features.access_control.role_assignment import NestedEntityField


# ============================================================================
# Organization Schemas
# ============================================================================

class OrganizationBase(BaseModel):
    """Base organization schema."""
    name: str = Field(..., min_length=1, max_length=255)
    logo_path: str | None = Field(None, max_length=500)


class OrganizationCreate(OrganizationBase):
    """Schema for creating a new organization."""
    pass


class OrganizationUpdate(BaseModel):
    """Schema for updating organization information."""
    name: str | None = Field(None, min_length=1, max_length=255)
    logo_path: str | None = Field(None, max_length=500)


# ============================================================================
# Team / Project-Group Schemas
# ============================================================================

class TeamCreate(BaseModel):
    """Schema for creating a team."""
    name: str = Field(..., min_length=1, max_length=255)
    logo_path: str | None = Field(None, max_length=500)


class TeamUpdate(BaseModel):
    """Schema for updating a team."""
    name: str | None = Field(None, min_length=1, max_length=255)
    logo_path: str | None = Field(None, max_length=500)


class ProjectGroupCreate(BaseModel):
    """Schema for creating a project group."""
    name: str = Field(..., min_length=1, max_length=255)


class ProjectGroupUpdate(BaseModel):
    """Schema for updating a project group."""
    name: str | None = Field(None, min_length=1, max_length=255)


# ============================================================================
# Role / Membership Requests
# ============================================================================

class OrganizationUserRoleAssignment(BaseModel):
    """Grant an organization role to a user."""
    user_id: str
    role: OrganizationRole


class OrganizationTeamRoleAssignment(BaseModel):
    """Grant an organization role to every member of a team."""
    team_id: str
    role: OrganizationRole


class TeamUserRoleAssignment(BaseModel):
    user_id: str
    role: TeamRole


class ProjectGroupUserRoleAssignment(BaseModel):
    user_id: str
    role: ProjectGroupRole


class NestedUserRoleAssignment(BaseModel):
    """Grant a role on a nested entity; the token is validated against the entity's scope."""
    field: NestedEntityField
    entity_id: str
    user_id: str
    role: str = Field(..., min_length=1, max_length=50)


class AddMember(BaseModel):
    user_id: str = Field(..., description="ID of the user to add")


class AuthorizationCheck(BaseModel):
    """Ask whether a user holds any of ``roles`` (or is simply a member when omitted)."""
    user_id: str
    roles: list[OrganizationRole] | None = None


class AuthorizationCheckResponse(BaseModel):
    authorized: bool


# ============================================================================
# Responses
# ============================================================================

class AccessControlEntryResponse(BaseModel):
    """ACE as exposed to clients: exactly one of user_id / team_id is set."""
    role: str
    user_id: str | None = None
    team_id: str | None = None


class TeamResponse(BaseModel):
    id: str
    name: str
    logo_path: str | None = None
    access_control_list: list[AccessControlEntryResponse] = Field(default_factory=list)


class ProjectGroupResponse(BaseModel):
    id: str
    name: str
    access_control_list: list[AccessControlEntryResponse] = Field(default_factory=list)


class OrganizationListResponse(BaseModel):
    """Organization as listed: no nested collections, no ACL."""
    id: str
    name: str
    logo_path: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OrganizationResponse(OrganizationListResponse):
    access_control_list: list[AccessControlEntryResponse] = Field(default_factory=list)
    teams: list[TeamResponse] = Field(default_factory=list)
    project_groups: list[ProjectGroupResponse] | None = None


class OrganizationUserResponse(BaseModel):
    id: str
    display_name: str
    email: EmailStr | None = None
    team_ids: list[str] = Field(default_factory=list)
