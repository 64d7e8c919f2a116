"""
Access-control entries and membership tables.

An access-control entry (ACE) is a ``(subject, role)`` pair attached to one
entity. Every entity type that owns an ACL keeps its entries in its own table
built from AccessControlEntryMixin, and exposes the AccessControlled
capability so the role-assignment engine can address it without knowing the
concrete type.

Memberships are the per-user index of organizations and teams a user
belongs to. Membership gates authorization; ACEs grant roles.
"""
import enum
from datetime import datetime, timezone
from typing import TYPE_CHECKING, ClassVar
from sqlalchemy import String, ForeignKey, Table, Column, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from orgaccess.core.database.base import Base, generate_ulid
from orgaccess.features.access_control.roles import ADMIN_ROLES, SubjectType

if TYPE_CHECKING:
    from sqlalchemy import ColumnElement
    from orgaccess.features.access_control.role_assignment import EntityPath


# ============================================================================
# Membership Tables
# ============================================================================

# User-Organization membership (one row per organization the user belongs to)
organization_memberships = Table(
    "organization_memberships",
    Base.metadata,
    Column("user_id", String(26), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("organization_id", String(26), ForeignKey("organizations.id", ondelete="CASCADE"), primary_key=True),
    Column("joined_at", DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)),
)

# User-Team membership within an organization (the user's team ids for that organization)
team_memberships = Table(
    "team_memberships",
    Base.metadata,
    Column("user_id", String(26), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("team_id", String(26), ForeignKey("teams.id", ondelete="CASCADE"), primary_key=True),
    Column("organization_id", String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
    Column("joined_at", DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)),
    Index("ix_team_memberships_user_organization", "user_id", "organization_id"),
)


# ============================================================================
# Access-Control Entries
# ============================================================================

class AccessControlEntryMixin:
    """
    Columns shared by every ACE table.

    Concrete tables add ``entity_id`` pointing at the owning entity.
    Subject uniqueness is not enforced here; the role-assignment engine keeps
    one entry per subject and the resolver tolerates duplicates.
    """
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    subject_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    subject_type: Mapped[str] = mapped_column(String(16), nullable=False, default=SubjectType.USER.value)
    role: Mapped[str] = mapped_column(String(50), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__}(entity_id={self.entity_id}, "
            f"{self.subject_type}={self.subject_id}, role={self.role})>"
        )


class AccessControlled:
    """
    Capability of an entity that owns an access-control list.

    Implementations declare:
        __ace_model__  - the ACE table class holding their entries
        __role_enum__  - the role catalog valid for their scope
        __scope_name__ - human readable scope name used in errors

    and implement ``path_criteria`` to locate themselves from an EntityPath.
    """
    __ace_model__: ClassVar[type[AccessControlEntryMixin]]
    __role_enum__: ClassVar[type[enum.Enum]]
    __scope_name__: ClassVar[str]

    @classmethod
    def admin_role(cls) -> enum.Enum:
        return ADMIN_ROLES[cls.__role_enum__]

    @classmethod
    def path_criteria(cls, path: "EntityPath") -> list["ColumnElement[bool]"]:
        raise NotImplementedError

    def get_acl(self) -> list[AccessControlEntryMixin]:
        return list(self.access_control_list)
