"""Error kinds raised by the persistence layer.

Every error carries the entity (table name) it concerns and, where it makes
sense, the offending field and value so callers can act on it.
"""

from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError


class ClinicError(Exception):
    """Base class for all recoverable persistence errors."""

    status_code = 400
    kind = "clinic_error"

    def __init__(self, message: str, entity: Optional[str] = None,
                 field: Optional[str] = None, value: Any = None):
        super().__init__(message)
        self.message = message
        self.entity = entity
        self.field = field
        self.value = value

    def to_dict(self) -> dict:
        return {
            "detail": self.message,
            "error": self.kind,
            "entity": self.entity,
            "field": self.field,
            "value": None if self.value is None else str(self.value),
        }


class ValidationError(ClinicError):
    """A field is missing, malformed or out of range."""

    status_code = 422
    kind = "validation_error"

    @classmethod
    def from_pydantic(cls, entity: str, exc: PydanticValidationError) -> "ValidationError":
        first = exc.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or None
        return cls(
            f"Invalid {entity}: {field or 'payload'}: {first.get('msg')}",
            entity=entity,
            field=field,
            value=first.get("input") if field else None,
        )


class ConflictError(ClinicError):
    """A uniqueness constraint or the vet booking slot is already taken."""

    status_code = 409
    kind = "conflict"


class ReferenceError(ClinicError):
    """A foreign key does not resolve to an existing row."""

    status_code = 400
    kind = "reference_error"


class NotFoundError(ClinicError):
    """The targeted row does not exist."""

    status_code = 404
    kind = "not_found"


class DependencyError(ClinicError):
    """A delete is blocked because restricted dependents still exist."""

    status_code = 409
    kind = "dependency_error"
