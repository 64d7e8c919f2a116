"""
FastAPI dependencies protecting organization-scoped routes.
"""
import enum
from typing import Annotated
from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from orgaccess.core.database.engine import get_db
from orgaccess.features.access_control.authorization import is_authorized
from orgaccess.features.users.dependencies import get_current_user
from orgaccess.features.users.models import User


def require_organization_role(*roles: enum.Enum | str):
    """
    FastAPI dependency requiring the current user to hold one of ``roles`` in
    the organization named by the ``organization_id`` path parameter.

    With no roles, organization membership is enough.

    Usage:
        @router.patch("/{organization_id}")
        async def update(
            user: User = Depends(require_organization_role(OrganizationRole.ORG_ADMIN))
        ):
            ...

    Raises:
        HTTPException: 403 if the user is not authorized
    """
    required = roles or None

    async def organization_role_dependency(
        organization_id: str,
        db: Annotated[AsyncSession, Depends(get_db)],
        current_user: Annotated[User, Depends(get_current_user)]
    ) -> User:
        if not await is_authorized(db, organization_id, required, current_user.id):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not authorized for this organization"
            )
        return current_user

    return organization_role_dependency
