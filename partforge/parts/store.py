# partforge/parts/store.py
"""
Read model for parts and versions.

Plain reads on the caller's session; nothing here locks or writes.
"""

from typing import List, Optional
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.orm import Session

from .errors import NotFoundError
from .models import (
    Part,
    PartVersion,
    PartWithVersion,
    PART_COLUMNS,
    PART_VERSION_COLUMNS,
    prefixed,
)


class PartStore:
    """Query parts, versions and version categories."""

    def __init__(self, session: Session):
        self.session = session

    def get_part(self, part_id: UUID) -> Optional[Part]:
        row = self.session.execute(
            text(f"SELECT {PART_COLUMNS} FROM part WHERE part_id = :id"),
            {"id": part_id},
        ).fetchone()
        return Part.from_row(row) if row else None

    def get_part_version(self, part_version_id: UUID) -> Optional[PartVersion]:
        row = self.session.execute(
            text(f"SELECT {PART_VERSION_COLUMNS} FROM part_version WHERE part_version_id = :id"),
            {"id": part_version_id},
        ).fetchone()
        return PartVersion.from_row(row) if row else None

    def get_part_with_current_version(self, part_id: UUID) -> PartWithVersion:
        """
        Load a Part and the version its current pointer references.

        Raises:
            NotFoundError: Part does not exist
        """
        part = self.get_part(part_id)
        if part is None:
            raise NotFoundError("Part", part_id, operation="get_part")
        current = None
        if part.current_version_id is not None:
            current = self.get_part_version(part.current_version_id)
        return PartWithVersion(part=part, current_version=current)

    def list_parts(self, limit: int = 50, offset: int = 0) -> List[PartWithVersion]:
        """
        Parts with their current versions, newest first.

        Args:
            limit: Page size
            offset: Rows to skip
        """
        part_cols = prefixed(PART_COLUMNS, "p")
        result = self.session.execute(
            text(f"""
                SELECT {part_cols}
                FROM part p
                ORDER BY p.created_at DESC, p.part_id
                LIMIT :limit OFFSET :offset
            """),
            {"limit": limit, "offset": offset},
        )
        parts = [Part.from_row(row) for row in result]

        version_ids = [p.current_version_id for p in parts if p.current_version_id]
        versions = {}
        if version_ids:
            rows = self.session.execute(
                text(f"""
                    SELECT {PART_VERSION_COLUMNS}
                    FROM part_version
                    WHERE part_version_id = ANY(:ids)
                """),
                {"ids": version_ids},
            )
            for row in rows:
                version = PartVersion.from_row(row)
                versions[version.part_version_id] = version

        return [
            PartWithVersion(part=p, current_version=versions.get(p.current_version_id))
            for p in parts
        ]

    def list_versions(self, part_id: UUID) -> List[PartVersion]:
        """All versions of a part, oldest first."""
        result = self.session.execute(
            text(f"""
                SELECT {PART_VERSION_COLUMNS}
                FROM part_version
                WHERE part_id = :part_id
                ORDER BY created_at, part_version_id
            """),
            {"part_id": part_id},
        )
        return [PartVersion.from_row(row) for row in result]

    def list_version_numbers(self, part_id: UUID) -> List[str]:
        result = self.session.execute(
            text("SELECT part_version FROM part_version WHERE part_id = :part_id"),
            {"part_id": part_id},
        )
        return [row[0] for row in result]

    def get_category_ids(self, part_version_id: UUID) -> List[UUID]:
        result = self.session.execute(
            text("""
                SELECT category_id FROM part_version_category
                WHERE part_version_id = :id
                ORDER BY created_at, category_id
            """),
            {"id": part_version_id},
        )
        return [row[0] for row in result]
