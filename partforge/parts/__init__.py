# Parts module - versioned part records and their validation grammar
#
# The writer (partforge.parts.writer) depends on the structure graph and is
# imported from its own module to keep this package import-cycle free.
from .errors import (
    PartError,
    NotFoundError,
    DuplicateNameError,
    SelfReferenceError,
    CircularReferenceError,
    ValidationError,
    GeneralError,
    LockTimeoutError,
    VersionNotEditableError,
    DuplicateStructureError,
    translate_db_error,
)
from .models import (
    ChangeType,
    Part,
    PartVersion,
    PartWithVersion,
    PartStructureEdge,
    PartRevision,
    CreatePartResult,
    RelationshipFailure,
)
from .validation import ValidationMode, ValidationReport, validate_payload
from .identity import (
    NewPartIds,
    begin_new_part,
    begin_next_version,
    require_version_after,
    parse_version,
    is_valid_version,
    compare_versions,
    bump_version,
)

__all__ = [
    # Errors
    "PartError",
    "NotFoundError",
    "DuplicateNameError",
    "SelfReferenceError",
    "CircularReferenceError",
    "ValidationError",
    "GeneralError",
    "LockTimeoutError",
    "VersionNotEditableError",
    "DuplicateStructureError",
    "translate_db_error",
    # Models
    "ChangeType",
    "Part",
    "PartVersion",
    "PartWithVersion",
    "PartStructureEdge",
    "PartRevision",
    "CreatePartResult",
    "RelationshipFailure",
    # Validation
    "ValidationMode",
    "ValidationReport",
    "validate_payload",
    # Identity
    "NewPartIds",
    "begin_new_part",
    "begin_next_version",
    "require_version_after",
    "parse_version",
    "is_valid_version",
    "compare_versions",
    "bump_version",
]
