"""
FastAPI dependencies for resolving the calling user.

Identity is established upstream (an auth gateway or reverse proxy) and
forwarded in the user-id header; this service only checks that the user
exists.
"""
from typing import Annotated
from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession

from orgaccess.core import config
from orgaccess.core.database.engine import get_db
from orgaccess.features.users.models import User
from orgaccess.features.users.service import get_user


user_id_header = APIKeyHeader(name=config.USER_ID_HEADER, auto_error=False)


async def get_current_user(
    user_id: Annotated[str | None, Depends(user_id_header)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> User:
    """
    Get the current user from the forwarded user-id header.

    Usage:
        @router.get("/me")
        async def get_me(user: User = Depends(get_current_user)):
            return user
    """
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing user identity",
        )

    user = await get_user(db, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown user",
        )

    return user
