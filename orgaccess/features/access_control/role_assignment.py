"""
Role assignment for any access-controlled entity of an organization.

Targets are addressed by an EntityPath: the organization itself, or one of
its nested entities (a team or a project group). The engine never branches
on entity type; each type registers itself and supplies its ACE table, role
catalog and path criteria through the AccessControlled capability.

Writes are expressed as one conditional statement keyed by the organization
id and the nested entity id. A target deleted concurrently makes the write
match zero rows, which is reported as NotFoundError.

These functions stage statements in the caller's session and never commit.
"""
import enum
from dataclasses import dataclass
from typing import Sequence
from sqlalchemy import String, select, insert, delete, literal
from sqlalchemy.ext.asyncio import AsyncSession

from orgaccess.core.database.base import generate_ulid
from orgaccess.core.errors import NotFoundError
from orgaccess.features.access_control.models import AccessControlled, AccessControlEntryMixin
from orgaccess.features.access_control.roles import SubjectType, parse_role
from orgaccess.utils import get_logger


log = get_logger(__name__)


class NestedEntityField(str, enum.Enum):
    """Sub-collections of an organization that own their own ACL."""
    TEAMS = "teams"
    PROJECT_GROUPS = "project_groups"


@dataclass(frozen=True)
class EntityPath:
    """Address of an access-controlled entity inside an organization."""
    organization_id: str
    nested_field: NestedEntityField | None = None
    nested_entity_id: str | None = None

    def __post_init__(self):
        if (self.nested_field is None) != (self.nested_entity_id is None):
            raise ValueError("nested_field and nested_entity_id must be given together")
        if self.nested_field is not None:
            object.__setattr__(self, "nested_field", NestedEntityField(self.nested_field))

    @property
    def entity_id(self) -> str:
        return self.nested_entity_id if self.nested_entity_id is not None else self.organization_id

    def __str__(self) -> str:
        if self.nested_field is None:
            return self.organization_id
        return f"{self.organization_id}/{self.nested_field.value}/{self.nested_entity_id}"


_registry: dict[NestedEntityField | None, type[AccessControlled]] = {}


def register_access_controlled(
    nested_field: NestedEntityField | None,
    model: type[AccessControlled],
) -> type[AccessControlled]:
    """Register ``model`` as the target for ``nested_field`` (None for the organization)."""
    _registry[nested_field] = model
    return model


def resolve_model(path: EntityPath) -> type[AccessControlled]:
    try:
        return _registry[path.nested_field]
    except KeyError:
        raise RuntimeError(f"No access-controlled entity registered for {path.nested_field!r}") from None


def _target_ids(model: type[AccessControlled], path: EntityPath):
    return select(model.id).where(*model.path_criteria(path))


async def set_role(
    db: AsyncSession,
    path: EntityPath,
    role: enum.Enum | str,
    subject_id: str,
    subject_type: SubjectType = SubjectType.USER,
) -> None:
    """
    Upsert the ACE ``{subject_id, role}`` on the entity at ``path``.

    One role per subject per entity: an existing entry for the subject is
    replaced, not added to.

    Raises:
        InvalidRoleError: role is not valid for the target scope
        NotFoundError: organization or nested entity does not exist
    """
    model = resolve_model(path)
    role = parse_role(model.__role_enum__, role)
    subject_type = SubjectType(subject_type)
    table = model.__ace_model__.__table__

    ace_id = generate_ulid()
    source = select(
        literal(ace_id, String),
        model.id,
        literal(subject_id, String),
        literal(subject_type.value, String),
        literal(role.value, String),
    ).where(*model.path_criteria(path))
    result = await db.execute(
        insert(table).from_select(["id", "entity_id", "subject_id", "subject_type", "role"], source)
    )
    if result.rowcount == 0:
        raise NotFoundError(model.__scope_name__, path.entity_id)

    # Most recent assignment wins
    await db.execute(
        delete(table).where(
            table.c.entity_id == path.entity_id,
            table.c.subject_id == subject_id,
            table.c.subject_type == subject_type.value,
            table.c.id != ace_id,
        )
    )
    log.info("Set %s role %s for %s %s on %s", model.__scope_name__, role.value, subject_type.value, subject_id, path)


async def remove_role(
    db: AsyncSession,
    path: EntityPath,
    subject_id: str,
    subject_type: SubjectType = SubjectType.USER,
) -> int:
    """Remove every ACE naming the subject on the entity at ``path``. Absent entries are a no-op."""
    model = resolve_model(path)
    subject_type = SubjectType(subject_type)
    table = model.__ace_model__.__table__
    result = await db.execute(
        delete(table).where(
            table.c.entity_id.in_(_target_ids(model, path)),
            table.c.subject_id == subject_id,
            table.c.subject_type == subject_type.value,
        )
    )
    if result.rowcount:
        log.info("Removed %s role of %s %s on %s", model.__scope_name__, subject_type.value, subject_id, path)
    return result.rowcount


async def grant_on_create(
    db: AsyncSession,
    path: EntityPath,
    subject_id: str,
    admin_role: enum.Enum | str | None = None,
) -> None:
    """Seed a freshly created entity's ACL with its creator holding the scope's admin role."""
    model = resolve_model(path)
    await set_role(db, path, admin_role or model.admin_role(), subject_id)


async def get_acl(db: AsyncSession, path: EntityPath) -> Sequence[AccessControlEntryMixin]:
    """Current ACEs of the entity at ``path`` (empty if it does not exist)."""
    model = resolve_model(path)
    ace = model.__ace_model__
    result = await db.execute(
        select(ace)
        .where(ace.entity_id.in_(_target_ids(model, path)))
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()
