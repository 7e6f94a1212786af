# partforge/parts/writer.py
"""
Transactional writer for parts, versions and structure edges.

Every public method is one logical operation and one database
transaction on the injected Session:

    validate -> lock (Part first) -> write -> append revision -> commit

Validation failures are raised before the transaction opens. Any other
failure rolls the whole transaction back and is re-raised as a PartError
carrying the operation name and entity id. Nothing here retries.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Union
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db.engine import transaction
from ..logging import get_logger
from ..settings import Settings, settings as default_settings
from ..structure.graph import StructureGraph
from .errors import (
    PartError,
    NotFoundError,
    ValidationError,
    VersionNotEditableError,
    translate_db_error,
)
from .fields import (
    FIELD_KEYS,
    FIELDS_BY_KEY,
    VERSION_FIELDS,
    JSON,
    PART_STATUSES,
    LIFECYCLE_STATUSES,
    RELEASED_STATUS,
)
from .identity import (
    begin_new_part,
    begin_next_version,
    bump_version,
    highest_version,
    require_version_after,
)
from .locking import lock_part, lock_part_version
from .models import (
    ChangeType,
    CreatePartResult,
    Part,
    PartRevision,
    PartStructureEdge,
    PartVersion,
    PART_COLUMNS,
    PART_VERSION_COLUMNS,
)
from .relationships import RelationshipWriter
from .requests import (
    CreatePartRequest,
    CreatePartVersionRequest,
    UpdatePartVersionRequest,
)
from .revisions import RevisionLedger, to_json
from .store import PartStore
from .validation import ValidationMode, validate_payload

logger = get_logger(__name__)

_UNSET: Any = object()


# ============================================================
# FIXED STATEMENTS (derived from the field registry at import)
# ============================================================

_VERSION_INSERT_COLUMNS = ", ".join(spec.column for spec in VERSION_FIELDS)
_VERSION_INSERT_VALUES = ", ".join(spec.placeholder for spec in VERSION_FIELDS)

INSERT_VERSION_SQL = text(f"""
    INSERT INTO part_version (
        part_version_id, part_id, {_VERSION_INSERT_COLUMNS},
        released_at, created_by, created_at, updated_by, updated_at
    ) VALUES (
        :part_version_id, :part_id, {_VERSION_INSERT_VALUES},
        :released_at, :actor_id, :now, :actor_id, :now
    )
    RETURNING {PART_VERSION_COLUMNS}
""")

# One UPDATE per field; the patch only chooses which of these run
UPDATE_FIELD_SQL = {
    spec.key: text(
        f"UPDATE part_version SET {spec.column} = {spec.placeholder} "
        f"WHERE part_version_id = :part_version_id"
    )
    for spec in VERSION_FIELDS
}

TOUCH_VERSION_SQL = text("""
    UPDATE part_version
    SET updated_at = :now, updated_by = :actor_id
    WHERE part_version_id = :part_version_id
""")

MARK_RELEASED_SQL = text("""
    UPDATE part_version SET released_at = :now
    WHERE part_version_id = :part_version_id
""")

UPDATE_PART_FIELD_SQL = {
    "global_part_number": text(
        "UPDATE part SET global_part_number = :value WHERE part_id = :part_id"
    ),
    "lifecycle_status": text(
        "UPDATE part SET lifecycle_status = CAST(:value AS lifecycle_status_enum) WHERE part_id = :part_id"
    ),
    "is_public": text(
        "UPDATE part SET is_public = :value WHERE part_id = :part_id"
    ),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _db_value(key: str, value: Any) -> Any:
    """Bind value for a registry field (JSON fields are serialized verbatim)."""
    if value is not None and FIELDS_BY_KEY[key].kind == JSON:
        try:
            return to_json(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError(
                {key: f"{key} must be JSON serializable ({exc})"},
                operation="serialize_field",
            ) from exc
    return value


def _version_params(values: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: _db_value(key, values.get(key)) for key in FIELD_KEYS}


class PartWriter:
    """
    Writes parts, versions and structure edges.

    Args:
        session: Session bound to the calling request; the writer commits
            or rolls back on it once per operation
        settings: Lock timeout and versioning policy
    """

    def __init__(self, session: Session, settings: Optional[Settings] = None):
        self.session = session
        self.settings = settings or default_settings
        self.store = PartStore(session)
        self.ledger = RevisionLedger(session)
        self.graph = StructureGraph(session)

    def _transaction(self):
        return transaction(self.session, self.settings.lock_timeout_ms)

    # ============================================================
    # CREATE
    # ============================================================

    def create_part(self, request: CreatePartRequest, actor_id: UUID) -> CreatePartResult:
        """
        Create a Part, its first PartVersion and its relationships.

        The Part and PartVersion are atomic; relationship rows are best
        effort and failures are returned in the result.

        Raises:
            ValidationError: Payload failed the CREATE rule set (nothing written)
            DuplicateNameError: global_part_number (or version) already taken
            GeneralError: Any other database failure (fully rolled back)
        """
        operation = "create_part"
        report = validate_payload(request.version_payload(), ValidationMode.CREATE)
        if not report.valid:
            logger.info("part_validation_failed", operation=operation, violations=report.violations)
            report.raise_if_invalid(operation=operation)

        ids = begin_new_part()
        values = dict(report.values)
        values["status"] = values.get("status") or "draft"
        now = _utcnow()

        try:
            with self._transaction():
                part = self._insert_part(ids.part_id, request, actor_id, now)
                version = self._insert_version(ids.part_version_id, ids.part_id, values, actor_id, now)
                part = self._set_current_version(part.part_id, version.part_version_id, actor_id, now)

                failures = RelationshipWriter(
                    self.session, part.part_id, version.part_version_id, actor_id,
                ).write_all(request)

                self.ledger.append(
                    version.part_version_id,
                    actor_id,
                    ChangeType.INITIAL,
                    f"Created part {version.name} version {version.version}",
                    changed_fields=[key for key in FIELD_KEYS if values.get(key) is not None],
                    new_values={key: values[key] for key in FIELD_KEYS if values.get(key) is not None},
                )
        except PartError as exc:
            logger.warning("part_create_failed", part_id=str(ids.part_id), code=exc.code, error=exc.message)
            raise
        except SQLAlchemyError as exc:
            error = translate_db_error(exc, operation, ids.part_id)
            logger.error("part_create_failed", part_id=str(ids.part_id), code=error.code, error=error.message)
            raise error from exc

        logger.info(
            "part_created",
            part_id=str(part.part_id),
            part_version_id=str(version.part_version_id),
            version=version.version,
            actor_id=str(actor_id),
            relationship_failures=len(failures),
        )
        return CreatePartResult(part=part, version=version, relationship_failures=failures)

    def create_part_version(
        self,
        part_id: UUID,
        request: CreatePartVersionRequest,
        actor_id: UUID,
        copy_current: bool = True,
    ) -> PartVersion:
        """
        Add a new draft version to an existing Part.

        Fields start from the current version (when copy_current) and
        are overlaid by the request. The Part's current pointer is not
        moved; use update_part_with_status for that.

        Raises:
            NotFoundError: Part does not exist
            ValidationError: Bad version (non-monotonic when enforced) or fields
            DuplicateNameError: Version string already used by this Part
        """
        operation = "create_part_version"
        overlay = request.overlay()
        patch_report = validate_payload(overlay, ValidationMode.PATCH)
        patch_report.raise_if_invalid(entity_id=part_id, operation=operation)

        now = _utcnow()
        try:
            with self._transaction():
                part = lock_part(self.session, part_id)
                prior = highest_version(self.store.list_version_numbers(part_id))
                version_string = request.version or bump_version(prior or "0.0.0", "patch")
                version_id = begin_next_version(
                    part_id, prior, version_string, self.settings.enforce_monotonic_versions,
                )

                base: Dict[str, Any] = {}
                source = None
                if copy_current and part.current_version_id is not None:
                    source = self.store.get_part_version(part.current_version_id)
                    base = source.field_values() if source else {}

                record = {**base, **patch_report.values}
                record["version"] = version_string
                record["status"] = patch_report.values.get("status") or "draft"
                mode = ValidationMode.EDIT if source is not None else ValidationMode.CREATE
                report = validate_payload(record, mode)
                report.raise_if_invalid(entity_id=part_id, operation=operation)

                version = self._insert_version(version_id, part_id, report.values, actor_id, now)
                if source is not None:
                    RelationshipWriter(
                        self.session, part_id, version_id, actor_id,
                    ).copy_categories_from(source.part_version_id)

                description = f"Created version {version_string}"
                if source is not None:
                    description += f" from {source.version}"
                self.ledger.append(
                    version_id,
                    actor_id,
                    ChangeType.INITIAL,
                    description,
                    changed_fields=sorted(overlay),
                    new_values={key: report.values.get(key) for key in sorted(overlay)},
                )
        except PartError:
            raise
        except SQLAlchemyError as exc:
            raise translate_db_error(exc, operation, part_id) from exc

        logger.info(
            "part_version_created",
            part_id=str(part_id),
            part_version_id=str(version.part_version_id),
            version=version.version,
            actor_id=str(actor_id),
        )
        return version

    # ============================================================
    # UPDATE
    # ============================================================

    def update_part_version(
        self,
        part_version_id: UUID,
        patch: Union[UpdatePartVersionRequest, Mapping[str, Any]],
        actor_id: UUID,
    ) -> Optional[PartRevision]:
        """
        Apply a sparse patch to an editable PartVersion.

        Args:
            part_version_id: Version to edit
            patch: Request model, or a mapping of field key -> value
                (an optional "category_ids" list replaces the categories)
            actor_id: Who is editing

        Returns:
            The UPDATE revision, or None when nothing changed

        Raises:
            ValidationError: Patch or merged record invalid (rolled back)
            NotFoundError: Version does not exist
            VersionNotEditableError: Version is past in_review
            LockTimeoutError: A concurrent writer held the lock too long
        """
        operation = "update_part_version"
        if isinstance(patch, UpdatePartVersionRequest):
            raw = patch.patch()
            category_ids = patch.category_ids if patch.replaces_categories else None
        else:
            raw = {key: value for key, value in patch.items() if key in FIELDS_BY_KEY}
            category_ids = patch.get("category_ids")

        patch_report = validate_payload(raw, ValidationMode.PATCH)
        patch_report.raise_if_invalid(entity_id=part_version_id, operation=operation)

        now = _utcnow()
        revision = None
        try:
            with self._transaction():
                current = lock_part_version(self.session, part_version_id)
                if not current.is_editable:
                    raise VersionNotEditableError(part_version_id, current.status, operation=operation)

                before = current.field_values()
                report = validate_payload({**before, **patch_report.values}, ValidationMode.EDIT)
                report.raise_if_invalid(entity_id=part_version_id, operation=operation)
                after = {key: report.values.get(key) for key in FIELD_KEYS}

                changed = changed_field_names(before, after)
                if "version" in changed and self.settings.enforce_monotonic_versions:
                    others = list(self.store.list_version_numbers(current.part_id))
                    others.remove(current.version)
                    require_version_after(
                        current.part_id, highest_version(others), after["version"], operation=operation,
                    )
                for key in changed:
                    self.session.execute(
                        UPDATE_FIELD_SQL[key],
                        {key: _db_value(key, after[key]), "part_version_id": part_version_id},
                    )
                if "status" in changed and after["status"] == RELEASED_STATUS:
                    self.session.execute(MARK_RELEASED_SQL, {"now": now, "part_version_id": part_version_id})

                previous_values = {key: before[key] for key in changed}
                new_values = {key: after[key] for key in changed}

                if category_ids is not None:
                    old_categories = self.store.get_category_ids(part_version_id)
                    RelationshipWriter(
                        self.session, current.part_id, part_version_id, actor_id,
                    ).replace_categories(category_ids)
                    if set(old_categories) != set(category_ids):
                        changed.append("category_ids")
                        previous_values["category_ids"] = sorted(str(c) for c in old_categories)
                        new_values["category_ids"] = sorted(str(c) for c in set(category_ids))

                self.session.execute(
                    TOUCH_VERSION_SQL,
                    {"now": now, "actor_id": actor_id, "part_version_id": part_version_id},
                )

                if changed:
                    revision = self.ledger.append(
                        part_version_id,
                        actor_id,
                        ChangeType.UPDATE,
                        f"Updated {', '.join(changed)}",
                        changed_fields=changed,
                        previous_values=previous_values,
                        new_values=new_values,
                    )
        except PartError as exc:
            logger.info("part_version_update_rejected", part_version_id=str(part_version_id), code=exc.code)
            raise
        except SQLAlchemyError as exc:
            raise translate_db_error(exc, operation, part_version_id) from exc

        logger.info(
            "part_version_updated",
            part_version_id=str(part_version_id),
            changed_fields=revision.changed_fields if revision else [],
            actor_id=str(actor_id),
        )
        return revision

    def update_part_with_status(
        self,
        part_id: UUID,
        new_version_id: UUID,
        new_status: str,
        actor_id: UUID,
    ) -> Part:
        """
        Point a Part at one of its versions and set its BOM status.

        The Part row is locked, so concurrent calls serialize and the
        final pointer/status pair always comes from a single call.

        Raises:
            ValidationError: Unknown status
            NotFoundError: Part missing, or version not owned by it
        """
        operation = "update_part_with_status"
        if new_status not in PART_STATUSES:
            raise ValidationError(
                {"status_in_bom": f"Invalid status: must be one of {', '.join(PART_STATUSES)}"},
                entity_id=part_id,
                operation=operation,
            )

        now = _utcnow()
        try:
            with self._transaction():
                before = lock_part(self.session, part_id)
                owned = self.session.execute(
                    text("""
                        SELECT 1 FROM part_version
                        WHERE part_version_id = :version_id AND part_id = :part_id
                    """),
                    {"version_id": new_version_id, "part_id": part_id},
                ).fetchone()
                if owned is None:
                    raise NotFoundError("Part version", new_version_id, operation=operation)

                row = self.session.execute(
                    text(f"""
                        UPDATE part
                        SET current_version_id = :version_id,
                            status_in_bom = CAST(:status AS part_status_enum),
                            updated_at = :now,
                            updated_by = :actor_id
                        WHERE part_id = :part_id
                        RETURNING {PART_COLUMNS}
                    """),
                    {
                        "version_id": new_version_id,
                        "status": new_status,
                        "now": now,
                        "actor_id": actor_id,
                        "part_id": part_id,
                    },
                ).fetchone()
                part = Part.from_row(row)

                self.ledger.append(
                    new_version_id,
                    actor_id,
                    ChangeType.STATUS_CHANGE,
                    f"Status changed from {before.status_in_bom} to {new_status}",
                    changed_fields=["current_version_id", "status_in_bom"],
                    previous_values={
                        "current_version_id": before.current_version_id,
                        "status_in_bom": before.status_in_bom,
                    },
                    new_values={
                        "current_version_id": new_version_id,
                        "status_in_bom": new_status,
                    },
                )
        except PartError:
            raise
        except SQLAlchemyError as exc:
            raise translate_db_error(exc, operation, part_id) from exc

        logger.info(
            "part_status_updated",
            part_id=str(part_id),
            current_version_id=str(new_version_id),
            status_in_bom=new_status,
            actor_id=str(actor_id),
        )
        return part

    def update_part(
        self,
        part_id: UUID,
        actor_id: UUID,
        global_part_number: Any = _UNSET,
        lifecycle_status: Any = _UNSET,
        is_public: Any = _UNSET,
    ) -> Part:
        """
        Update Part-level metadata.

        Only the arguments that are passed are written. The change is
        recorded on the current version's ledger when the Part has one.
        """
        operation = "update_part"
        requested = {
            key: value
            for key, value in (
                ("global_part_number", global_part_number),
                ("lifecycle_status", lifecycle_status),
                ("is_public", is_public),
            )
            if value is not _UNSET
        }
        if requested.get("global_part_number") is not None and not str(requested["global_part_number"]).strip():
            requested["global_part_number"] = None

        violations = {}
        if "lifecycle_status" in requested and requested["lifecycle_status"] not in LIFECYCLE_STATUSES:
            violations["lifecycle_status"] = f"Invalid lifecycle_status: must be one of {', '.join(LIFECYCLE_STATUSES)}"
        if "is_public" in requested and not isinstance(requested["is_public"], bool):
            violations["is_public"] = "is_public must be a boolean"
        if violations:
            raise ValidationError(violations, entity_id=part_id, operation=operation)

        now = _utcnow()
        try:
            with self._transaction():
                before = lock_part(self.session, part_id)
                changed = [key for key, value in requested.items() if getattr(before, key) != value]
                for key in changed:
                    self.session.execute(UPDATE_PART_FIELD_SQL[key], {"value": requested[key], "part_id": part_id})

                row = self.session.execute(
                    text(f"""
                        UPDATE part SET updated_at = :now, updated_by = :actor_id
                        WHERE part_id = :part_id
                        RETURNING {PART_COLUMNS}
                    """),
                    {"now": now, "actor_id": actor_id, "part_id": part_id},
                ).fetchone()
                part = Part.from_row(row)

                if changed and before.current_version_id is not None:
                    self.ledger.append(
                        before.current_version_id,
                        actor_id,
                        ChangeType.UPDATE,
                        f"Updated part {', '.join(changed)}",
                        changed_fields=changed,
                        previous_values={key: getattr(before, key) for key in changed},
                        new_values={key: requested[key] for key in changed},
                    )
        except PartError:
            raise
        except SQLAlchemyError as exc:
            raise translate_db_error(exc, operation, part_id) from exc

        logger.info("part_updated", part_id=str(part_id), changed_fields=changed, actor_id=str(actor_id))
        return part

    # ============================================================
    # DELETE
    # ============================================================

    def delete_part(self, part_id: UUID) -> int:
        """
        Delete a Part with its versions, revisions and relationships.

        Structure edges referencing the part are removed first.

        Returns:
            Number of structure edges removed

        Raises:
            NotFoundError: Part does not exist
        """
        operation = "delete_part"
        try:
            with self._transaction():
                lock_part(self.session, part_id)
                removed_edges = self.graph.remove_edges_for_part(part_id)
                self.session.execute(
                    text("DELETE FROM part WHERE part_id = :part_id"),
                    {"part_id": part_id},
                )
        except PartError:
            raise
        except SQLAlchemyError as exc:
            raise translate_db_error(exc, operation, part_id) from exc

        logger.info("part_deleted", part_id=str(part_id), structure_edges_removed=removed_edges)
        return removed_edges

    # ============================================================
    # STRUCTURE
    # ============================================================

    def add_structure_edge(
        self,
        parent_part_id: UUID,
        child_part_id: UUID,
        actor_id: UUID,
        relation_type: str = "component",
        quantity: Any = 1,
        notes: Optional[str] = None,
        valid_from: Optional[datetime] = None,
        valid_until: Optional[datetime] = None,
    ) -> PartStructureEdge:
        """Add one structure edge as its own transaction."""
        try:
            with self._transaction():
                return self.graph.add_edge(
                    parent_part_id, child_part_id, relation_type, quantity, actor_id,
                    notes=notes, valid_from=valid_from, valid_until=valid_until,
                )
        except SQLAlchemyError as exc:
            raise translate_db_error(exc, "add_structure_edge", parent_part_id) from exc

    def update_structure_edge(
        self,
        part_structure_id: UUID,
        actor_id: UUID,
        **changes: Any,
    ) -> PartStructureEdge:
        """
        Update one structure edge in place as its own transaction.

        Accepts the keyword arguments of StructureGraph.update_edge
        (parent_part_id, child_part_id, relation_type, quantity, notes,
        valid_until); only those passed are changed.
        """
        try:
            with self._transaction():
                return self.graph.update_edge(part_structure_id, actor_id, **changes)
        except SQLAlchemyError as exc:
            raise translate_db_error(exc, "update_structure_edge", part_structure_id) from exc

    def supersede_structure_edge(
        self,
        part_structure_id: UUID,
        actor_id: UUID,
        quantity: Any = None,
        relation_type: Optional[str] = None,
        notes: Optional[str] = None,
        effective_at: Optional[datetime] = None,
    ) -> PartStructureEdge:
        """Supersede one structure edge as its own transaction."""
        kwargs: Dict[str, Any] = {"quantity": quantity, "relation_type": relation_type, "effective_at": effective_at}
        if notes is not None:
            kwargs["notes"] = notes
        try:
            with self._transaction():
                return self.graph.supersede_edge(part_structure_id, actor_id, **kwargs)
        except SQLAlchemyError as exc:
            raise translate_db_error(exc, "supersede_structure_edge", part_structure_id) from exc

    def remove_structure_edge(self, part_structure_id: UUID):
        """Remove one structure edge as its own transaction."""
        try:
            with self._transaction():
                self.graph.remove_edge(part_structure_id)
        except SQLAlchemyError as exc:
            raise translate_db_error(exc, "remove_structure_edge", part_structure_id) from exc

    # ============================================================
    # INTERNALS
    # ============================================================

    def _insert_part(self, part_id: UUID, request: CreatePartRequest, actor_id: UUID, now: datetime) -> Part:
        row = self.session.execute(
            text(f"""
                INSERT INTO part (
                    part_id, creator_id, global_part_number, status_in_bom,
                    lifecycle_status, is_public, current_version_id,
                    created_at, updated_by, updated_at
                ) VALUES (
                    :part_id, :actor_id, :global_part_number, CAST(:status_in_bom AS part_status_enum),
                    CAST(:lifecycle_status AS lifecycle_status_enum), :is_public, NULL,
                    :now, :actor_id, :now
                )
                RETURNING {PART_COLUMNS}
            """),
            {
                "part_id": part_id,
                "actor_id": actor_id,
                "global_part_number": request.global_part_number,
                "status_in_bom": request.part_status,
                "lifecycle_status": request.lifecycle_status,
                "is_public": request.is_public,
                "now": now,
            },
        ).fetchone()
        return Part.from_row(row)

    def _insert_version(
        self,
        part_version_id: UUID,
        part_id: UUID,
        values: Mapping[str, Any],
        actor_id: UUID,
        now: datetime,
    ) -> PartVersion:
        params = _version_params(values)
        params.update({
            "part_version_id": part_version_id,
            "part_id": part_id,
            "released_at": now if values.get("status") == RELEASED_STATUS else None,
            "actor_id": actor_id,
            "now": now,
        })
        row = self.session.execute(INSERT_VERSION_SQL, params).fetchone()
        return PartVersion.from_row(row)

    def _set_current_version(self, part_id: UUID, part_version_id: UUID, actor_id: UUID, now: datetime) -> Part:
        row = self.session.execute(
            text(f"""
                UPDATE part
                SET current_version_id = :version_id, updated_at = :now, updated_by = :actor_id
                WHERE part_id = :part_id
                RETURNING {PART_COLUMNS}
            """),
            {"version_id": part_version_id, "part_id": part_id, "now": now, "actor_id": actor_id},
        ).fetchone()
        return Part.from_row(row)


def changed_field_names(before: Mapping[str, Any], after: Mapping[str, Any]) -> List[str]:
    """Registry keys whose values differ between two records."""
    return [key for key in FIELD_KEYS if before.get(key) != after.get(key)]
