"""
Error taxonomy for access-control operations.

- NotFoundError: a referenced organization, nested entity or user does not
  exist and the operation needs it for a positive side effect.
- InvalidRoleError: a role token does not belong to the target scope.

Malformed create/update input raises pydantic's ValidationError before any
write. Reads and replace-style updates on an unknown id return None, and
removals of absent state succeed silently.
"""


class AccessControlError(Exception):
    """Base class for errors raised by the access-control engine."""


class NotFoundError(AccessControlError, LookupError):
    """A referenced entity does not exist."""

    def __init__(self, kind: str, entity_id: str | None = None):
        self.kind = kind
        self.entity_id = entity_id
        message = f"{kind} not found" if entity_id is None else f"{kind} {entity_id!r} not found"
        super().__init__(message)


class InvalidRoleError(AccessControlError, ValueError):
    """A role token is not part of the scope's role catalog."""

    def __init__(self, role: object, scope: str):
        self.role = role
        self.scope = scope
        super().__init__(f"Invalid {scope} role: {role!r}")
