# partforge/parts/locking.py
"""
Row-level locking for part writes.

All functions must be called inside an open transaction; the locks they
take are held until that transaction commits or rolls back. Lock order is
always Part row, then dependent rows, then the structure graph lock.
"""

from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import NotFoundError, translate_db_error
from .models import Part, PartVersion, PART_COLUMNS, PART_VERSION_COLUMNS

# Key for the transaction-scoped advisory lock serializing structure edge writes
STRUCTURE_LOCK_KEY = "partforge.part_structure"


def lock_part(session: Session, part_id: UUID) -> Part:
    """
    Lock a Part row (SELECT ... FOR UPDATE).

    Raises:
        NotFoundError: Part does not exist (no lock is held)
        LockTimeoutError: lock_timeout elapsed while waiting
    """
    try:
        row = session.execute(
            text(f"SELECT {PART_COLUMNS} FROM part WHERE part_id = :part_id FOR UPDATE"),
            {"part_id": part_id},
        ).fetchone()
    except SQLAlchemyError as exc:
        raise translate_db_error(exc, "lock_part", part_id) from exc

    if row is None:
        raise NotFoundError("Part", part_id, operation="lock_part")
    return Part.from_row(row)


def lock_part_version(session: Session, part_version_id: UUID) -> PartVersion:
    """
    Lock a PartVersion row, locking its owning Part row first.

    Raises:
        NotFoundError: Version (or its Part) does not exist
        LockTimeoutError: lock_timeout elapsed while waiting
    """
    try:
        owner = session.execute(
            text("SELECT part_id FROM part_version WHERE part_version_id = :id"),
            {"id": part_version_id},
        ).fetchone()
        if owner is None:
            raise NotFoundError("Part version", part_version_id, operation="lock_part_version")

        lock_part(session, owner[0])

        row = session.execute(
            text(f"""
                SELECT {PART_VERSION_COLUMNS}
                FROM part_version
                WHERE part_version_id = :id AND part_id = :part_id
                FOR UPDATE
            """),
            {"id": part_version_id, "part_id": owner[0]},
        ).fetchone()
    except SQLAlchemyError as exc:
        raise translate_db_error(exc, "lock_part_version", part_version_id) from exc

    # Deleted (or moved) while we waited for the Part lock
    if row is None:
        raise NotFoundError("Part version", part_version_id, operation="lock_part_version")
    return PartVersion.from_row(row)


def lock_structure_graph(session: Session):
    """Take the transaction-scoped advisory lock for structure edge writes."""
    try:
        session.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
            {"key": STRUCTURE_LOCK_KEY},
        )
    except SQLAlchemyError as exc:
        raise translate_db_error(exc, "lock_structure_graph") from exc
