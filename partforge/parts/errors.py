# partforge/parts/errors.py
"""
Error taxonomy for part operations.

Every error carries a stable code so adapters (HTTP, CLI) can map it
without inspecting messages. Database failures are translated once, at
the writer boundary, by translate_db_error().
"""

from typing import Any, Dict, Optional

from sqlalchemy.exc import DBAPIError

# PostgreSQL SQLSTATE codes
UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
CHECK_VIOLATION = "23514"
LOCK_NOT_AVAILABLE = "55P03"


class PartError(Exception):
    """Base exception for part engine errors."""
    code = "GENERAL_ERROR"
    retryable = False

    def __init__(
        self,
        message: str,
        entity_id: Optional[Any] = None,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.entity_id = str(entity_id) if entity_id is not None else None
        self.operation = operation
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form used by adapters and logs."""
        data: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.entity_id is not None:
            data["entity_id"] = self.entity_id
        if self.operation is not None:
            data["operation"] = self.operation
        if self.details:
            data["details"] = self.details
        return data


class NotFoundError(PartError):
    """Raised when a part, version or structure edge does not exist."""
    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: Any, operation: Optional[str] = None):
        super().__init__(
            f"{entity} not found: {entity_id}",
            entity_id=entity_id,
            operation=operation,
            details={"entity": entity},
        )


class DuplicateNameError(PartError):
    """Raised on a unique constraint conflict (e.g. global part number)."""
    code = "DUPLICATE_NAME"


class SelfReferenceError(PartError):
    """Raised when a structure edge would make a part its own child."""
    code = "SELF_REFERENCE"

    def __init__(self, part_id: Any, operation: Optional[str] = None):
        super().__init__(
            "A part cannot reference itself",
            entity_id=part_id,
            operation=operation,
        )


class CircularReferenceError(PartError):
    """Raised when a structure edge would close a cycle."""
    code = "CIRCULAR_REFERENCE"

    def __init__(self, parent_part_id: Any, child_part_id: Any, operation: Optional[str] = None):
        super().__init__(
            "Adding this relationship would create a circular reference",
            entity_id=parent_part_id,
            operation=operation,
            details={
                "parent_part_id": str(parent_part_id),
                "child_part_id": str(child_part_id),
            },
        )


class ValidationError(PartError):
    """Raised when a payload fails the validation grammar."""
    code = "VALIDATION_ERROR"

    def __init__(
        self,
        violations: Dict[str, str],
        entity_id: Optional[Any] = None,
        operation: Optional[str] = None,
    ):
        self.violations = dict(violations)
        fields = ", ".join(sorted(self.violations))
        super().__init__(
            f"Validation failed: {fields}",
            entity_id=entity_id,
            operation=operation,
            details={"violations": self.violations},
        )


class GeneralError(PartError):
    """Raised for database failures with no more specific meaning."""
    code = "GENERAL_ERROR"


class LockTimeoutError(PartError):
    """Raised when a row or advisory lock wait exceeds lock_timeout."""
    code = "LOCK_TIMEOUT"
    retryable = True


class VersionNotEditableError(PartError):
    """Raised when editing a version whose status is past in_review."""
    code = "VERSION_NOT_EDITABLE"

    def __init__(self, part_version_id: Any, status: str, operation: Optional[str] = None):
        super().__init__(
            f"Part version is {status} and can no longer be edited; create a new version",
            entity_id=part_version_id,
            operation=operation,
            details={"version_status": status},
        )


class DuplicateStructureError(PartError):
    """Raised when an identical currently-valid structure edge exists."""
    code = "DUPLICATE_STRUCTURE"


def sqlstate_of(exc: BaseException) -> Optional[str]:
    """Extract the SQLSTATE from a SQLAlchemy/DBAPI exception, if any."""
    orig = getattr(exc, "orig", exc)
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def _first_line(exc: BaseException) -> str:
    message = str(getattr(exc, "orig", None) or exc).strip()
    return message.splitlines()[0] if message else type(exc).__name__


def translate_db_error(
    exc: BaseException,
    operation: str,
    entity_id: Optional[Any] = None,
) -> PartError:
    """
    Map a database exception to the part error taxonomy.

    PartErrors pass through unchanged so nested translation is harmless.

    Args:
        exc: Exception raised while talking to the database
        operation: Name of the operation that failed (e.g. "create_part")
        entity_id: Entity the operation was acting on

    Returns:
        A PartError subclass instance (never raises)
    """
    if isinstance(exc, PartError):
        return exc

    state = sqlstate_of(exc)
    detail = _first_line(exc)

    if state == UNIQUE_VIOLATION:
        return DuplicateNameError(
            "An entry with this identifier already exists",
            entity_id=entity_id,
            operation=operation,
            details={"sqlstate": state, "db_message": detail},
        )
    if state == LOCK_NOT_AVAILABLE:
        return LockTimeoutError(
            "Timed out waiting for a lock held by a concurrent writer",
            entity_id=entity_id,
            operation=operation,
            details={"sqlstate": state},
        )
    if state == FOREIGN_KEY_VIOLATION:
        error = NotFoundError("Referenced entity", entity_id, operation=operation)
        error.details.update({"sqlstate": state, "db_message": detail})
        return error

    details: Dict[str, Any] = {"db_message": detail}
    if state:
        details["sqlstate"] = state
    if not isinstance(exc, DBAPIError):
        details["exception_type"] = type(exc).__name__
    return GeneralError(
        f"Failed to {operation.replace('_', ' ')}",
        entity_id=entity_id,
        operation=operation,
        details=details,
    )
