"""
Organization, Team and Project-Group models.

Organizations own two nested collections, teams and project groups, each
unique by id within the parent organization. All three entity types own an
access-control list stored in a dedicated ACE table.
"""
from sqlalchemy import String, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from orgaccess.core.database.base import Base, TimestampMixin, generate_ulid
from orgaccess.features.access_control.models import AccessControlled, AccessControlEntryMixin
from orgaccess.features.access_control.roles import OrganizationRole, TeamRole, ProjectGroupRole
from orgaccess.features.access_control.role_assignment import NestedEntityField, register_access_controlled


# ============================================================================
# Access-Control Entry Tables
# ============================================================================

class OrganizationAccessControlEntry(Base, AccessControlEntryMixin):
    """ACE on an organization. The subject is a user or a team of that organization."""
    __tablename__ = "organization_access_control_entries"

    entity_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )


class TeamAccessControlEntry(Base, AccessControlEntryMixin):
    """ACE on a team."""
    __tablename__ = "team_access_control_entries"

    entity_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )


class ProjectGroupAccessControlEntry(Base, AccessControlEntryMixin):
    """ACE on a project group."""
    __tablename__ = "project_group_access_control_entries"

    entity_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("project_groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )


# ============================================================================
# Entities
# ============================================================================

class Organization(Base, TimestampMixin, AccessControlled):
    """
    Organization, the root of the access-control hierarchy.

    The creator id is recorded so the founding grant can be re-derived if
    it was ever lost.
    """
    __tablename__ = "organizations"
    __ace_model__ = OrganizationAccessControlEntry
    __role_enum__ = OrganizationRole
    __scope_name__ = "Organization"

    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    logo_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    creator_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )

    # Relationships
    access_control_list: Mapped[list["OrganizationAccessControlEntry"]] = relationship(
        "OrganizationAccessControlEntry",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrganizationAccessControlEntry.id"
    )

    teams: Mapped[list["Team"]] = relationship(
        "Team",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="Team.id"
    )

    # Loaded only on request (see service.get_organization)
    project_groups: Mapped[list["ProjectGroup"]] = relationship(
        "ProjectGroup",
        cascade="all, delete-orphan",
        lazy="raise",
        order_by="ProjectGroup.id"
    )

    @classmethod
    def path_criteria(cls, path):
        return [cls.id == path.organization_id]

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name!r})>"


class Team(Base, TimestampMixin, AccessControlled):
    """Team inside an organization. Members are tracked in team_memberships."""
    __tablename__ = "teams"
    __ace_model__ = TeamAccessControlEntry
    __role_enum__ = TeamRole
    __scope_name__ = "Team"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    logo_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    creator_id: Mapped[str | None] = mapped_column(String(26), nullable=True)

    access_control_list: Mapped[list["TeamAccessControlEntry"]] = relationship(
        "TeamAccessControlEntry",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TeamAccessControlEntry.id"
    )

    @classmethod
    def path_criteria(cls, path):
        return [cls.id == path.nested_entity_id, cls.organization_id == path.organization_id]

    def __repr__(self) -> str:
        return f"<Team(id={self.id}, org_id={self.organization_id}, name={self.name!r})>"


class ProjectGroup(Base, TimestampMixin, AccessControlled):
    """Project group inside an organization."""
    __tablename__ = "project_groups"
    __ace_model__ = ProjectGroupAccessControlEntry
    __role_enum__ = ProjectGroupRole
    __scope_name__ = "ProjectGroup"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    creator_id: Mapped[str | None] = mapped_column(String(26), nullable=True)

    access_control_list: Mapped[list["ProjectGroupAccessControlEntry"]] = relationship(
        "ProjectGroupAccessControlEntry",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ProjectGroupAccessControlEntry.id"
    )

    @classmethod
    def path_criteria(cls, path):
        return [cls.id == path.nested_entity_id, cls.organization_id == path.organization_id]

    def __repr__(self) -> str:
        return f"<ProjectGroup(id={self.id}, org_id={self.organization_id}, name={self.name!r})>"


register_access_controlled(None, Organization)
register_access_controlled(NestedEntityField.TEAMS, Team)
register_access_controlled(NestedEntityField.PROJECT_GROUPS, ProjectGroup)
