# partforge/structure/graph.py
"""
Structure graph manager: parent/child assembly edges between Parts.

Invariants kept on every write:
- no edge from a part to itself
- currently valid edges form a DAG (checked with a recursive CTE)
- at most one currently valid edge per (parent, child, relation_type)

Edge writes take a single transaction-scoped advisory lock, so two
concurrent inserts (A->B and B->A) cannot both pass the cycle check.
Methods run inside the caller's transaction and never commit.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..logging import get_logger
from ..parts.errors import (
    PartError,
    NotFoundError,
    SelfReferenceError,
    CircularReferenceError,
    DuplicateStructureError,
    ValidationError,
    UNIQUE_VIOLATION,
    sqlstate_of,
    translate_db_error,
)
from ..parts.fields import STRUCTURAL_RELATION_TYPES
from ..parts.locking import lock_structure_graph
from ..parts.models import PartStructureEdge, PART_STRUCTURE_COLUMNS
from .validity import as_utc, edge_current_at, edge_in_effect_at, get_validity_params, is_current, utcnow

logger = get_logger(__name__)

_UNSET: Any = object()


class StructureGraph:
    """Reads and writes part_structure edges."""

    def __init__(self, session: Session):
        self.session = session

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_edge(
        self,
        parent_part_id: UUID,
        child_part_id: UUID,
        relation_type: str,
        quantity: Any,
        actor_id: UUID,
        notes: Optional[str] = None,
        valid_from: Optional[datetime] = None,
        valid_until: Optional[datetime] = None,
    ) -> PartStructureEdge:
        """
        Add a parent -> child edge.

        Raises:
            SelfReferenceError: parent == child
            ValidationError: bad quantity, relation type or window
            NotFoundError: either part does not exist
            CircularReferenceError: parent is reachable from child
            DuplicateStructureError: same currently valid edge exists
        """
        operation = "add_structure_edge"
        if parent_part_id == child_part_id:
            raise SelfReferenceError(parent_part_id, operation=operation)

        now = utcnow()
        valid_from = as_utc(valid_from) or now
        valid_until = as_utc(valid_until)
        qty = self._check_edge_values(relation_type, quantity, valid_from, valid_until, operation)

        try:
            lock_structure_graph(self.session)
            self._require_parts([parent_part_id, child_part_id], operation)

            if is_current(valid_until, now):
                if self._reaches(child_part_id, parent_part_id, now):
                    raise CircularReferenceError(parent_part_id, child_part_id, operation=operation)
                self._reject_duplicate(parent_part_id, child_part_id, relation_type, now, operation)

            row = self.session.execute(
                text(f"""
                    INSERT INTO part_structure (
                        part_structure_id, parent_part_id, child_part_id, relation_type,
                        quantity, notes, valid_from, valid_until,
                        created_by, created_at, updated_by, updated_at
                    ) VALUES (
                        :id, :parent, :child, CAST(:relation_type AS structural_relation_type_enum),
                        :quantity, :notes, :valid_from, :valid_until,
                        :actor_id, :now, :actor_id, :now
                    )
                    RETURNING {PART_STRUCTURE_COLUMNS}
                """),
                {
                    "id": uuid4(),
                    "parent": parent_part_id,
                    "child": child_part_id,
                    "relation_type": relation_type,
                    "quantity": qty,
                    "notes": notes,
                    "valid_from": valid_from,
                    "valid_until": valid_until,
                    "actor_id": actor_id,
                    "now": now,
                },
            ).fetchone()
        except SQLAlchemyError as exc:
            raise self._translate(exc, operation, parent_part_id) from exc

        edge = PartStructureEdge.from_row(row)
        logger.info(
            "structure_edge_added",
            part_structure_id=str(edge.part_structure_id),
            parent_part_id=str(parent_part_id),
            child_part_id=str(child_part_id),
            relation_type=relation_type,
        )
        return edge

    def update_edge(
        self,
        part_structure_id: UUID,
        actor_id: UUID,
        parent_part_id: Optional[UUID] = None,
        child_part_id: Optional[UUID] = None,
        relation_type: Optional[str] = None,
        quantity: Any = None,
        notes: Any = _UNSET,
        valid_until: Any = _UNSET,
    ) -> PartStructureEdge:
        """
        Update an edge in place.

        When the endpoints change, the cycle and duplicate checks run
        against every other currently valid edge.
        """
        operation = "update_structure_edge"
        now = utcnow()
        try:
            lock_structure_graph(self.session)
            edge = self._lock_edge(part_structure_id, operation)

            parent = parent_part_id or edge.parent_part_id
            child = child_part_id or edge.child_part_id
            rel = relation_type or edge.relation_type
            new_notes = edge.notes if notes is _UNSET else notes
            new_until = edge.valid_until if valid_until is _UNSET else as_utc(valid_until)

            if parent == child:
                raise SelfReferenceError(parent, operation=operation)
            qty = self._check_edge_values(
                rel,
                edge.quantity if quantity is None else quantity,
                edge.valid_from,
                new_until,
                operation,
            )

            endpoints_changed = (parent, child) != (edge.parent_part_id, edge.child_part_id)
            if endpoints_changed:
                self._require_parts([parent, child], operation)
            if is_current(new_until, now):
                reopened = not edge.is_current(now)
                if (endpoints_changed or reopened) and self._reaches(
                        child, parent, now, exclude_edge_id=edge.part_structure_id):
                    raise CircularReferenceError(parent, child, operation=operation)
                self._reject_duplicate(parent, child, rel, now, operation, exclude_edge_id=edge.part_structure_id)

            row = self.session.execute(
                text(f"""
                    UPDATE part_structure
                    SET parent_part_id = :parent,
                        child_part_id = :child,
                        relation_type = CAST(:relation_type AS structural_relation_type_enum),
                        quantity = :quantity,
                        notes = :notes,
                        valid_until = :valid_until,
                        updated_by = :actor_id,
                        updated_at = :now
                    WHERE part_structure_id = :id
                    RETURNING {PART_STRUCTURE_COLUMNS}
                """),
                {
                    "id": part_structure_id,
                    "parent": parent,
                    "child": child,
                    "relation_type": rel,
                    "quantity": qty,
                    "notes": new_notes,
                    "valid_until": new_until,
                    "actor_id": actor_id,
                    "now": now,
                },
            ).fetchone()
        except SQLAlchemyError as exc:
            raise self._translate(exc, operation, part_structure_id) from exc

        logger.info("structure_edge_updated", part_structure_id=str(part_structure_id))
        return PartStructureEdge.from_row(row)

    def supersede_edge(
        self,
        part_structure_id: UUID,
        actor_id: UUID,
        quantity: Any = None,
        relation_type: Optional[str] = None,
        notes: Any = _UNSET,
        effective_at: Optional[datetime] = None,
    ) -> PartStructureEdge:
        """
        Close an edge and open its replacement at the same instant.

        The old edge keeps its history with valid_until = effective_at;
        the new edge starts at effective_at with the changed values.

        Returns:
            The new edge
        """
        operation = "supersede_structure_edge"
        now = utcnow()
        effective_at = as_utc(effective_at) or now
        try:
            lock_structure_graph(self.session)
            old = self._lock_edge(part_structure_id, operation)

            if not old.is_current(effective_at):
                raise ValidationError(
                    {"effective_at": "Edge is already closed at this time"},
                    entity_id=part_structure_id,
                    operation=operation,
                )
            if effective_at <= old.valid_from:
                raise ValidationError(
                    {"effective_at": "effective_at must be after the edge's valid_from"},
                    entity_id=part_structure_id,
                    operation=operation,
                )

            rel = relation_type or old.relation_type
            qty = self._check_edge_values(
                rel,
                old.quantity if quantity is None else quantity,
                effective_at,
                old.valid_until,
                operation,
            )
            if is_current(old.valid_until, now):
                self._reject_duplicate(
                    old.parent_part_id, old.child_part_id, rel, now, operation,
                    exclude_edge_id=old.part_structure_id,
                )
                if self._reaches(old.child_part_id, old.parent_part_id, now,
                                 exclude_edge_id=old.part_structure_id):
                    raise CircularReferenceError(old.parent_part_id, old.child_part_id, operation=operation)

            self.session.execute(
                text("""
                    UPDATE part_structure
                    SET valid_until = :effective_at, updated_by = :actor_id, updated_at = :now
                    WHERE part_structure_id = :id
                """),
                {"id": part_structure_id, "effective_at": effective_at, "actor_id": actor_id, "now": now},
            )

            row = self.session.execute(
                text(f"""
                    INSERT INTO part_structure (
                        part_structure_id, parent_part_id, child_part_id, relation_type,
                        quantity, notes, valid_from, valid_until,
                        created_by, created_at, updated_by, updated_at
                    ) VALUES (
                        :id, :parent, :child, CAST(:relation_type AS structural_relation_type_enum),
                        :quantity, :notes, :valid_from, :valid_until,
                        :actor_id, :now, :actor_id, :now
                    )
                    RETURNING {PART_STRUCTURE_COLUMNS}
                """),
                {
                    "id": uuid4(),
                    "parent": old.parent_part_id,
                    "child": old.child_part_id,
                    "relation_type": rel,
                    "quantity": qty,
                    "notes": old.notes if notes is _UNSET else notes,
                    "valid_from": effective_at,
                    "valid_until": old.valid_until,
                    "actor_id": actor_id,
                    "now": now,
                },
            ).fetchone()
        except SQLAlchemyError as exc:
            raise self._translate(exc, operation, part_structure_id) from exc

        edge = PartStructureEdge.from_row(row)
        logger.info(
            "structure_edge_superseded",
            old_part_structure_id=str(part_structure_id),
            new_part_structure_id=str(edge.part_structure_id),
            effective_at=effective_at.isoformat(),
        )
        return edge

    def remove_edge(self, part_structure_id: UUID):
        """Delete an edge outright (history is lost; prefer supersede_edge)."""
        try:
            row = self.session.execute(
                text("DELETE FROM part_structure WHERE part_structure_id = :id RETURNING part_structure_id"),
                {"id": part_structure_id},
            ).fetchone()
        except SQLAlchemyError as exc:
            raise self._translate(exc, "remove_structure_edge", part_structure_id) from exc
        if row is None:
            raise NotFoundError("Structure edge", part_structure_id, operation="remove_structure_edge")
        logger.info("structure_edge_removed", part_structure_id=str(part_structure_id))

    def remove_edges_for_part(self, part_id: UUID) -> int:
        """Delete every edge where the part is parent or child."""
        result = self.session.execute(
            text("""
                DELETE FROM part_structure
                WHERE parent_part_id = :part_id OR child_part_id = :part_id
            """),
            {"part_id": part_id},
        )
        return result.rowcount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_edge(self, part_structure_id: UUID) -> Optional[PartStructureEdge]:
        row = self.session.execute(
            text(f"SELECT {PART_STRUCTURE_COLUMNS} FROM part_structure WHERE part_structure_id = :id"),
            {"id": part_structure_id},
        ).fetchone()
        return PartStructureEdge.from_row(row) if row else None

    def get_edges_for_part(
        self,
        part_id: UUID,
        current_only: bool = False,
        at: Optional[datetime] = None,
        in_effect: bool = False,
    ) -> List[PartStructureEdge]:
        """
        Edges where the part is parent or child.

        Args:
            part_id: Part to look up
            current_only: Only edges not closed as of `at`
            at: Reference time (default: now)
            in_effect: Only edges whose window contains `at` (also
                excludes edges that open later)
        """
        params = get_validity_params(at)
        params["part_id"] = part_id
        current_clause = ""
        if in_effect:
            current_clause = f"AND {edge_in_effect_at('ps')}"
        elif current_only:
            current_clause = f"AND {edge_current_at('ps')}"
        result = self.session.execute(
            text(f"""
                SELECT {PART_STRUCTURE_COLUMNS}
                FROM part_structure ps
                WHERE (ps.parent_part_id = :part_id OR ps.child_part_id = :part_id)
                  {current_clause}
                ORDER BY ps.valid_from, ps.created_at, ps.part_structure_id
            """),
            params,
        )
        return [PartStructureEdge.from_row(row) for row in result]

    def get_children(self, part_id: UUID, at: Optional[datetime] = None) -> List[PartStructureEdge]:
        """Currently valid edges where the part is the parent."""
        return self._current_edges("parent_part_id", part_id, at)

    def get_parents(self, part_id: UUID, at: Optional[datetime] = None) -> List[PartStructureEdge]:
        """Currently valid edges where the part is the child."""
        return self._current_edges("child_part_id", part_id, at)

    def would_create_cycle(self, parent_part_id: UUID, child_part_id: UUID, at: Optional[datetime] = None) -> bool:
        """True if adding parent -> child now would close a cycle."""
        if parent_part_id == child_part_id:
            return True
        return self._reaches(child_part_id, parent_part_id, at or utcnow())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _current_edges(self, column: str, part_id: UUID, at: Optional[datetime]) -> List[PartStructureEdge]:
        # column is one of two literals chosen by the callers above
        params = get_validity_params(at)
        params["part_id"] = part_id
        result = self.session.execute(
            text(f"""
                SELECT {PART_STRUCTURE_COLUMNS}
                FROM part_structure ps
                WHERE ps.{column} = :part_id
                  AND {edge_current_at('ps')}
                ORDER BY ps.created_at, ps.part_structure_id
            """),
            params,
        )
        return [PartStructureEdge.from_row(row) for row in result]

    def _reaches(
        self,
        start_part_id: UUID,
        target_part_id: UUID,
        at: datetime,
        exclude_edge_id: Optional[UUID] = None,
    ) -> bool:
        """
        Whether target is reachable from start over edges current at `at`.

        UNION (not UNION ALL) discards already-visited parts, so the
        recursion terminates even if the stored graph has a cycle.
        """
        params = get_validity_params(at)
        params.update({
            "start_id": start_part_id,
            "target_id": target_part_id,
            "exclude_id": exclude_edge_id,
        })
        result = self.session.execute(
            text(f"""
                WITH RECURSIVE reachable(part_id) AS (
                    SELECT CAST(:start_id AS uuid)

                    UNION

                    SELECT ps.child_part_id
                    FROM part_structure ps
                    JOIN reachable r ON ps.parent_part_id = r.part_id
                    WHERE {edge_current_at('ps')}
                      AND (CAST(:exclude_id AS uuid) IS NULL
                           OR ps.part_structure_id <> CAST(:exclude_id AS uuid))
                )
                SELECT EXISTS (SELECT 1 FROM reachable WHERE part_id = CAST(:target_id AS uuid))
            """),
            params,
        )
        return bool(result.scalar())

    def _reject_duplicate(
        self,
        parent_part_id: UUID,
        child_part_id: UUID,
        relation_type: str,
        at: datetime,
        operation: str,
        exclude_edge_id: Optional[UUID] = None,
    ):
        params = get_validity_params(at)
        params.update({
            "parent": parent_part_id,
            "child": child_part_id,
            "relation_type": relation_type,
            "exclude_id": exclude_edge_id,
        })
        existing = self.session.execute(
            text(f"""
                SELECT ps.part_structure_id
                FROM part_structure ps
                WHERE ps.parent_part_id = :parent
                  AND ps.child_part_id = :child
                  AND ps.relation_type = CAST(:relation_type AS structural_relation_type_enum)
                  AND {edge_current_at('ps')}
                  AND (CAST(:exclude_id AS uuid) IS NULL
                       OR ps.part_structure_id <> CAST(:exclude_id AS uuid))
                LIMIT 1
            """),
            params,
        ).fetchone()
        if existing is not None:
            raise DuplicateStructureError(
                "This structure relationship already exists",
                entity_id=parent_part_id,
                operation=operation,
                details={
                    "child_part_id": str(child_part_id),
                    "relation_type": relation_type,
                    "existing_part_structure_id": str(existing[0]),
                },
            )

    def _require_parts(self, part_ids: List[UUID], operation: str):
        rows = self.session.execute(
            text("SELECT part_id FROM part WHERE part_id = ANY(:ids)"),
            {"ids": list(part_ids)},
        )
        found = {row[0] for row in rows}
        for part_id in part_ids:
            if part_id not in found:
                raise NotFoundError("Part", part_id, operation=operation)

    def _lock_edge(self, part_structure_id: UUID, operation: str) -> PartStructureEdge:
        row = self.session.execute(
            text(f"""
                SELECT {PART_STRUCTURE_COLUMNS}
                FROM part_structure
                WHERE part_structure_id = :id
                FOR UPDATE
            """),
            {"id": part_structure_id},
        ).fetchone()
        if row is None:
            raise NotFoundError("Structure edge", part_structure_id, operation=operation)
        return PartStructureEdge.from_row(row)

    @staticmethod
    def _check_edge_values(
        relation_type: str,
        quantity: Any,
        valid_from: datetime,
        valid_until: Optional[datetime],
        operation: str,
    ) -> Decimal:
        violations = {}
        if relation_type not in STRUCTURAL_RELATION_TYPES:
            violations["relation_type"] = (
                f"Invalid relation_type: must be one of {', '.join(STRUCTURAL_RELATION_TYPES)}"
            )

        qty = None
        if isinstance(quantity, bool):
            violations["quantity"] = "Quantity must be a number"
        else:
            try:
                qty = Decimal(str(quantity))
            except (InvalidOperation, ValueError):
                violations["quantity"] = "Quantity must be a number"
            else:
                if not qty.is_finite() or qty <= 0:
                    violations["quantity"] = "Quantity must be greater than 0"

        if valid_until is not None and valid_until <= valid_from:
            violations["valid_until"] = "valid_until must be after valid_from"

        if violations:
            raise ValidationError(violations, operation=operation)
        return qty

    @staticmethod
    def _translate(exc: SQLAlchemyError, operation: str, entity_id: Any) -> PartError:
        # The partial unique index backs up _reject_duplicate
        if sqlstate_of(exc) == UNIQUE_VIOLATION:
            return DuplicateStructureError(
                "This structure relationship already exists",
                entity_id=entity_id,
                operation=operation,
            )
        return translate_db_error(exc, operation, entity_id)
