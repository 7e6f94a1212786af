# partforge/parts/models.py
"""
Data models for parts, versions, structure edges and revisions.

Rows are read with raw SQL and mapped onto these dataclasses with the
from_row() constructors. The *_COLUMNS constants are the matching
SELECT/RETURNING column lists.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from .fields import FIELD_KEYS, TECHNICAL_FIELDS, EDITABLE_STATUSES


class ChangeType(Enum):
    """Kinds of revision ledger entries."""
    INITIAL = "INITIAL"
    UPDATE = "UPDATE"
    STATUS_CHANGE = "STATUS_CHANGE"


PART_COLUMNS = (
    "part_id, creator_id, global_part_number, status_in_bom, lifecycle_status, "
    "is_public, current_version_id, created_at, updated_by, updated_at"
)

PART_VERSION_COLUMNS = (
    "part_version_id, part_id, part_version, part_name, version_status, "
    + ", ".join(spec.column for spec in TECHNICAL_FIELDS)
    + ", released_at, created_by, created_at, updated_by, updated_at"
)

PART_STRUCTURE_COLUMNS = (
    "part_structure_id, parent_part_id, child_part_id, relation_type, quantity, "
    "notes, valid_from, valid_until, created_by, created_at, updated_by, updated_at"
)

PART_REVISION_COLUMNS = (
    "part_revision_id, part_version_id, change_type, change_description, "
    "changed_by, changed_fields, previous_values, new_values, revision_date"
)


def prefixed(columns: str, alias: str) -> str:
    """Qualify a column list with a table alias."""
    return ", ".join(f"{alias}.{name.strip()}" for name in columns.split(","))


@dataclass
class Part:
    """The logical, versioned record of a component."""
    part_id: UUID
    creator_id: UUID
    status_in_bom: str
    lifecycle_status: str
    is_public: bool
    global_part_number: Optional[str] = None
    current_version_id: Optional[UUID] = None
    created_at: Optional[datetime] = None
    updated_by: Optional[UUID] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "Part":
        m = row._mapping
        return cls(
            part_id=m["part_id"],
            creator_id=m["creator_id"],
            global_part_number=m["global_part_number"],
            status_in_bom=m["status_in_bom"],
            lifecycle_status=m["lifecycle_status"],
            is_public=m["is_public"],
            current_version_id=m["current_version_id"],
            created_at=m["created_at"],
            updated_by=m["updated_by"],
            updated_at=m["updated_at"],
        )


@dataclass
class PartVersion:
    """
    One numbered snapshot of a Part's attributes.

    `attributes` holds the technical fields keyed by payload key; the
    identity triple (name, version, status) is kept on the object.
    """
    part_version_id: UUID
    part_id: UUID
    version: str
    name: str
    status: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    released_at: Optional[datetime] = None
    created_by: Optional[UUID] = None
    created_at: Optional[datetime] = None
    updated_by: Optional[UUID] = None
    updated_at: Optional[datetime] = None

    @property
    def is_editable(self) -> bool:
        return self.status in EDITABLE_STATUSES

    def get(self, key: str, default: Any = None) -> Any:
        """Read any registry field by payload key."""
        if key in ("name", "version", "status"):
            return getattr(self, key)
        return self.attributes.get(key, default)

    def field_values(self) -> Dict[str, Any]:
        """All registry fields keyed by payload key."""
        values = {"name": self.name, "version": self.version, "status": self.status}
        values.update(self.attributes)
        return {key: values.get(key) for key in FIELD_KEYS}

    @classmethod
    def from_row(cls, row) -> "PartVersion":
        m = row._mapping
        return cls(
            part_version_id=m["part_version_id"],
            part_id=m["part_id"],
            version=m["part_version"],
            name=m["part_name"],
            status=m["version_status"],
            attributes={spec.key: m[spec.column] for spec in TECHNICAL_FIELDS},
            released_at=m["released_at"],
            created_by=m["created_by"],
            created_at=m["created_at"],
            updated_by=m["updated_by"],
            updated_at=m["updated_at"],
        )


@dataclass
class PartWithVersion:
    """A Part together with the version its current pointer references."""
    part: Part
    current_version: Optional[PartVersion] = None


@dataclass
class RelationshipFailure:
    """A best-effort relationship row that could not be written."""
    kind: str
    index: int
    code: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "index": self.index, "code": self.code, "message": self.message}


@dataclass
class CreatePartResult:
    """Outcome of create_part."""
    part: Part
    version: PartVersion
    relationship_failures: List[RelationshipFailure] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        """True when every requested relationship row was written."""
        return not self.relationship_failures


@dataclass
class PartStructureEdge:
    """A time-bounded parent/child assembly relationship."""
    part_structure_id: UUID
    parent_part_id: UUID
    child_part_id: UUID
    relation_type: str
    quantity: Decimal
    valid_from: datetime
    valid_until: Optional[datetime] = None
    notes: Optional[str] = None
    created_by: Optional[UUID] = None
    created_at: Optional[datetime] = None
    updated_by: Optional[UUID] = None
    updated_at: Optional[datetime] = None

    def is_current(self, at: datetime) -> bool:
        """Currently valid: open-ended or closing after `at`."""
        return self.valid_until is None or self.valid_until > at

    @classmethod
    def from_row(cls, row) -> "PartStructureEdge":
        m = row._mapping
        return cls(
            part_structure_id=m["part_structure_id"],
            parent_part_id=m["parent_part_id"],
            child_part_id=m["child_part_id"],
            relation_type=m["relation_type"],
            quantity=m["quantity"],
            notes=m["notes"],
            valid_from=m["valid_from"],
            valid_until=m["valid_until"],
            created_by=m["created_by"],
            created_at=m["created_at"],
            updated_by=m["updated_by"],
            updated_at=m["updated_at"],
        )


@dataclass
class PartRevision:
    """Append-only audit entry for a mutation of a PartVersion."""
    part_revision_id: UUID
    part_version_id: UUID
    change_type: ChangeType
    change_description: str
    changed_by: UUID
    changed_fields: List[str] = field(default_factory=list)
    previous_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    revision_date: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "PartRevision":
        m = row._mapping
        return cls(
            part_revision_id=m["part_revision_id"],
            part_version_id=m["part_version_id"],
            change_type=ChangeType(m["change_type"]),
            change_description=m["change_description"],
            changed_by=m["changed_by"],
            changed_fields=list(m["changed_fields"] or []),
            previous_values=m["previous_values"],
            new_values=m["new_values"],
            revision_date=m["revision_date"],
        )
