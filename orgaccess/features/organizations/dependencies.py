"""
Organization-related dependency injection functions.
"""
from typing import Annotated
from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from orgaccess.core.database.engine import get_db
from orgaccess.features.access_control.dependencies import require_organization_role
from orgaccess.features.access_control.roles import OrganizationRole
from orgaccess.features.organizations.models import Organization
from orgaccess.features.organizations.service import get_organization


# Organization members with either admin role may manage the organization
require_organization_admin = require_organization_role(
    OrganizationRole.ORG_FULL_ADMIN,
    OrganizationRole.ORG_ADMIN,
)
require_organization_full_admin = require_organization_role(OrganizationRole.ORG_FULL_ADMIN)
require_organization_member = require_organization_role()


async def get_organization_by_id(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Organization:
    """
    Get organization by ID (with project groups) or raise 404.

    Args:
        organization_id: Organization ULID
        db: Database session

    Returns:
        Organization model

    Raises:
        HTTPException: 404 if organization not found
    """
    organization = await get_organization(db, organization_id, with_project_groups=True)

    if organization is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Organization not found"
        )

    return organization
