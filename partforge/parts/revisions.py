# partforge/parts/revisions.py
"""
Append-only revision ledger for part versions.

Exactly one entry is written per mutating operation, inside the same
transaction as the mutation. There is no update or delete API; the
database trigger on part_revision rejects UPDATEs as well.
"""

import json
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import text
from sqlalchemy.orm import Session

from .models import ChangeType, PartRevision, PART_REVISION_COLUMNS


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_json(value: Any) -> Optional[str]:
    """Serialize revision payloads (Decimal, datetime and UUID aware)."""
    if value is None:
        return None
    return json.dumps(value, default=_json_default, sort_keys=True)


class RevisionLedger:
    """Writes and reads PartRevision entries."""

    def __init__(self, session: Session):
        self.session = session

    def append(
        self,
        part_version_id: UUID,
        actor_id: UUID,
        change_type: ChangeType,
        description: str,
        changed_fields: Iterable[str] = (),
        previous_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
    ) -> PartRevision:
        """
        Append one revision entry.

        Args:
            part_version_id: Version the change applies to
            actor_id: Who made the change
            change_type: INITIAL, UPDATE or STATUS_CHANGE
            description: Human-readable summary
            changed_fields: Names of the fields that changed
            previous_values: Field -> value before the change
            new_values: Field -> value after the change

        Returns:
            The stored PartRevision
        """
        row = self.session.execute(
            text(f"""
                INSERT INTO part_revision (
                    part_revision_id, part_version_id, change_type, change_description,
                    changed_by, changed_fields, previous_values, new_values, revision_date
                ) VALUES (
                    :id, :part_version_id, :change_type, :description,
                    :actor_id, CAST(:changed_fields AS jsonb),
                    CAST(:previous_values AS jsonb), CAST(:new_values AS jsonb), :revision_date
                )
                RETURNING {PART_REVISION_COLUMNS}
            """),
            {
                "id": uuid4(),
                "part_version_id": part_version_id,
                "change_type": ChangeType(change_type).value,
                "description": description,
                "actor_id": actor_id,
                "changed_fields": to_json(list(changed_fields)),
                "previous_values": to_json(previous_values),
                "new_values": to_json(new_values),
                "revision_date": datetime.now(timezone.utc),
            },
        ).fetchone()
        return PartRevision.from_row(row)

    def list_for_version(self, part_version_id: UUID) -> List[PartRevision]:
        """All revisions of a version, newest first."""
        result = self.session.execute(
            text(f"""
                SELECT {PART_REVISION_COLUMNS}
                FROM part_revision
                WHERE part_version_id = :id
                ORDER BY revision_date DESC, part_revision_id
            """),
            {"id": part_version_id},
        )
        return [PartRevision.from_row(row) for row in result]
