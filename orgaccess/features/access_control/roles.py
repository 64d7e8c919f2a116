"""
Role catalog.

Each scope (organization, team, project group) has its own closed set of
role tokens. Tokens from different scopes are never compared directly:
team-scoped roles reach the organization namespace only through
TEAM_ROLE_IMPLICATIONS.
"""
import enum
from typing import Mapping, TypeVar

from orgaccess.core.errors import InvalidRoleError
from orgaccess.utils import get_logger


log = get_logger(__name__)


class OrganizationRole(str, enum.Enum):
    """Roles held on an organization."""
    ORG_FULL_ADMIN = "ORG_FULL_ADMIN"
    ORG_ADMIN = "ORG_ADMIN"


class TeamRole(str, enum.Enum):
    """Roles held on a team."""
    TEAM_ADMIN = "TEAM_ADMIN"


class ProjectGroupRole(str, enum.Enum):
    """Roles held on a project group."""
    PROJECT_GROUP_ADMIN = "PROJECT_GROUP_ADMIN"


class SubjectType(str, enum.Enum):
    """Kind of principal an access-control entry names."""
    USER = "user"
    TEAM = "team"


# Passing no role filter to the resolver means "any organization member"
IMPLICIT_MEMBER = None

# Role granted to the creator of an entity, per scope
ADMIN_ROLES: Mapping[type[enum.Enum], enum.Enum] = {
    OrganizationRole: OrganizationRole.ORG_FULL_ADMIN,
    TeamRole: TeamRole.TEAM_ADMIN,
    ProjectGroupRole: ProjectGroupRole.PROJECT_GROUP_ADMIN,
}

# Organization roles a member inherits from the team roles they hold
TEAM_ROLE_IMPLICATIONS: dict[TeamRole, frozenset[OrganizationRole]] = {
    TeamRole.TEAM_ADMIN: frozenset(),
}


RoleT = TypeVar("RoleT", bound=enum.Enum)


def parse_role(role_enum: type[RoleT], value: object) -> RoleT:
    """
    Coerce ``value`` into a member of ``role_enum``.

    Raises:
        InvalidRoleError: if the token is not part of the catalog, including
            tokens of a different scope.
    """
    if isinstance(value, enum.Enum) and not isinstance(value, role_enum):
        raise InvalidRoleError(value.value, role_enum.__name__)
    try:
        return role_enum(value)
    except ValueError:
        raise InvalidRoleError(value, role_enum.__name__) from None


def implied_organization_roles(team_roles) -> set[str]:
    """Organization role tokens implied by a collection of stored team role tokens."""
    implied: set[str] = set()
    for token in team_roles:
        try:
            role = TeamRole(token)
        except ValueError:
            log.warning("Ignoring unknown team role token %r", token)
            continue
        implied.update(r.value for r in TEAM_ROLE_IMPLICATIONS.get(role, ()))
    return implied
