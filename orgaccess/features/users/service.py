"""
User provider used by the access-control engine to validate existence.
"""
from typing import Any, Mapping
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orgaccess.features.users.models import User
from orgaccess.features.users.schemas import UserCreate
from orgaccess.utils import get_logger


log = get_logger(__name__)


async def create_user(db: AsyncSession, attrs: UserCreate | Mapping[str, Any]) -> User:
    """
    Create and persist a user.

    Raises:
        pydantic.ValidationError: if ``attrs`` is malformed (nothing is written)
    """
    data = attrs if isinstance(attrs, UserCreate) else UserCreate.model_validate(attrs)
    user = User(**data.model_dump())
    db.add(user)
    await db.commit()
    log.info("Created user %s", user.id)
    return await get_user(db, user.id)


async def get_user(db: AsyncSession, user_id: str) -> User | None:
    """Find a user by id, or None."""
    result = await db.execute(
        select(User)
        .where(User.id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()
