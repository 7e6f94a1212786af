# partforge/parts/relationships.py
"""
Relationship rows written alongside a new part version.

Policy: the Part and its PartVersion are atomic, relationships are best
effort. Each relationship item runs in its own SAVEPOINT; a failing item
rolls back only that savepoint and is reported as a RelationshipFailure.
Link-table duplicates are no-ops (ON CONFLICT DO NOTHING).

Lock timeouts are not absorbed: they abort the whole operation so the
caller can retry it.
"""

import json
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..logging import get_logger
from ..structure.graph import StructureGraph
from .errors import PartError, LockTimeoutError, NotFoundError, translate_db_error
from .models import RelationshipFailure
from .requests import CreatePartRequest

logger = get_logger(__name__)


class RelationshipWriter:
    """Inserts relationship rows for one part version."""

    def __init__(self, session: Session, part_id: UUID, part_version_id: UUID, actor_id: UUID):
        self.session = session
        self.part_id = part_id
        self.part_version_id = part_version_id
        self.actor_id = actor_id
        self.failures: List[RelationshipFailure] = []
        self.log = logger.bind(part_id=str(part_id), part_version_id=str(part_version_id))

    def write_all(self, request: CreatePartRequest) -> List[RelationshipFailure]:
        """
        Write every relationship in the request.

        Returns:
            Failures, in request order (empty when all rows were written)
        """
        for index, category_id in enumerate(request.category_ids):
            self._best_effort("category", index, lambda c=category_id: self.add_category(c))
        for index, tag_id in enumerate(request.tag_ids):
            self._best_effort("tag", index, lambda t=tag_id: self.add_tag(t))
        for index, family_id in enumerate(request.family_ids):
            self._best_effort("family", index, lambda f=family_id: self.add_family(f))
        for index, group_id in enumerate(request.group_ids):
            self._best_effort("group", index, lambda g=group_id: self.add_group(g))
        for index, item in enumerate(request.custom_fields):
            self._best_effort(
                "custom_field", index,
                lambda i=item: self.set_custom_field(i.custom_field_id, i.value),
            )

        manufacturer_part_ids: Dict[int, UUID] = {}
        for index, item in enumerate(request.manufacturer_parts):
            mp_id = self._best_effort("manufacturer_part", index, lambda i=item: self.add_manufacturer_part(i))
            if mp_id is not None:
                manufacturer_part_ids[index] = mp_id

        for index, item in enumerate(request.supplier_parts):
            mp_id = manufacturer_part_ids.get(item.manufacturer_part_index)
            if mp_id is None:
                self._record(
                    "supplier_part",
                    index,
                    NotFoundError("Manufacturer part", item.manufacturer_part_index, operation="insert_supplier_part"),
                )
                continue
            self._best_effort("supplier_part", index, lambda i=item, m=mp_id: self.add_supplier_part(m, i))

        for index, item in enumerate(request.attachments):
            self._best_effort("attachment", index, lambda i=item: self.add_attachment(i))
        for index, item in enumerate(request.representations):
            self._best_effort("representation", index, lambda i=item: self.add_representation(i))
        for index, item in enumerate(request.compliance):
            self._best_effort("compliance", index, lambda i=item: self.add_compliance(i))

        graph = StructureGraph(self.session)
        for index, item in enumerate(request.structure):
            self._best_effort(
                "structure",
                index,
                lambda i=item: graph.add_edge(
                    self.part_id, i.child_part_id, i.relation_type, i.quantity,
                    self.actor_id, notes=i.notes,
                ),
            )

        return self.failures

    # ------------------------------------------------------------------
    # Savepoint handling
    # ------------------------------------------------------------------

    def _best_effort(self, kind: str, index: int, insert: Callable[[], Any]) -> Any:
        try:
            with self.session.begin_nested():
                return insert()
        except LockTimeoutError:
            raise
        except PartError as exc:
            self._record(kind, index, exc)
        except SQLAlchemyError as exc:
            error = translate_db_error(exc, f"insert_{kind}", self.part_version_id)
            if isinstance(error, LockTimeoutError):
                raise error from exc
            self._record(kind, index, error)
        return None

    def _record(self, kind: str, index: int, error: PartError):
        failure = RelationshipFailure(kind=kind, index=index, code=error.code, message=error.message)
        self.failures.append(failure)
        self.log.warning(
            "relationship_insert_failed",
            kind=kind,
            index=index,
            code=error.code,
            error=error.message,
        )

    # ------------------------------------------------------------------
    # Link tables
    # ------------------------------------------------------------------

    def add_category(self, category_id: UUID):
        self.session.execute(
            text("""
                INSERT INTO part_version_category (part_version_id, category_id)
                VALUES (:version_id, :category_id)
                ON CONFLICT DO NOTHING
            """),
            {"version_id": self.part_version_id, "category_id": category_id},
        )

    def add_tag(self, tag_id: UUID):
        self.session.execute(
            text("""
                INSERT INTO part_version_tag (part_version_id, tag_id, assigned_by)
                VALUES (:version_id, :tag_id, :actor_id)
                ON CONFLICT DO NOTHING
            """),
            {"version_id": self.part_version_id, "tag_id": tag_id, "actor_id": self.actor_id},
        )

    def add_family(self, part_family_id: UUID):
        self.session.execute(
            text("""
                INSERT INTO part_family_link (part_id, part_family_id)
                VALUES (:part_id, :family_id)
                ON CONFLICT DO NOTHING
            """),
            {"part_id": self.part_id, "family_id": part_family_id},
        )

    def add_group(self, part_group_id: UUID):
        self.session.execute(
            text("""
                INSERT INTO part_group_link (part_id, part_group_id)
                VALUES (:part_id, :group_id)
                ON CONFLICT DO NOTHING
            """),
            {"part_id": self.part_id, "group_id": part_group_id},
        )

    def set_custom_field(self, custom_field_id: UUID, value: Any):
        # Upsert: the last value for a field wins
        self.session.execute(
            text("""
                INSERT INTO part_custom_field (part_version_id, custom_field_id, value)
                VALUES (:version_id, :field_id, CAST(:value AS jsonb))
                ON CONFLICT (part_version_id, custom_field_id)
                DO UPDATE SET value = EXCLUDED.value
            """),
            {
                "version_id": self.part_version_id,
                "field_id": custom_field_id,
                "value": json.dumps(value, default=str),
            },
        )

    def replace_categories(self, category_ids: List[UUID]):
        """Delete-then-reinsert the version's categories (strict, no savepoints)."""
        self.session.execute(
            text("DELETE FROM part_version_category WHERE part_version_id = :version_id"),
            {"version_id": self.part_version_id},
        )
        for category_id in dict.fromkeys(category_ids):
            self.add_category(category_id)

    def copy_categories_from(self, source_version_id: UUID):
        self.session.execute(
            text("""
                INSERT INTO part_version_category (part_version_id, category_id)
                SELECT :version_id, category_id
                FROM part_version_category
                WHERE part_version_id = :source_id
                ON CONFLICT DO NOTHING
            """),
            {"version_id": self.part_version_id, "source_id": source_version_id},
        )

    # ------------------------------------------------------------------
    # Owned rows
    # ------------------------------------------------------------------

    def add_manufacturer_part(self, item) -> UUID:
        row = self.session.execute(
            text("""
                INSERT INTO manufacturer_part (
                    manufacturer_part_id, part_version_id, manufacturer_id,
                    manufacturer_part_number, description, datasheet_url, product_url,
                    is_recommended, created_by
                ) VALUES (
                    :id, :version_id, :manufacturer_id,
                    :part_number, :description, :datasheet_url, :product_url,
                    :is_recommended, :actor_id
                )
                RETURNING manufacturer_part_id
            """),
            {
                "id": uuid4(),
                "version_id": self.part_version_id,
                "manufacturer_id": item.manufacturer_id,
                "part_number": item.manufacturer_part_number,
                "description": item.description,
                "datasheet_url": item.datasheet_url,
                "product_url": item.product_url,
                "is_recommended": item.is_recommended,
                "actor_id": self.actor_id,
            },
        ).fetchone()
        return row[0]

    def add_supplier_part(self, manufacturer_part_id: UUID, item) -> UUID:
        row = self.session.execute(
            text("""
                INSERT INTO supplier_part (
                    supplier_part_id, manufacturer_part_id, supplier_id, supplier_part_number,
                    unit_price, currency, stock_quantity, lead_time_days,
                    minimum_order_quantity, product_url, is_preferred, created_by
                ) VALUES (
                    :id, :manufacturer_part_id, :supplier_id, :part_number,
                    :unit_price, :currency, :stock_quantity, :lead_time_days,
                    :moq, :product_url, :is_preferred, :actor_id
                )
                RETURNING supplier_part_id
            """),
            {
                "id": uuid4(),
                "manufacturer_part_id": manufacturer_part_id,
                "supplier_id": item.supplier_id,
                "part_number": item.supplier_part_number,
                "unit_price": item.unit_price,
                "currency": item.currency,
                "stock_quantity": item.stock_quantity,
                "lead_time_days": item.lead_time_days,
                "moq": item.minimum_order_quantity,
                "product_url": item.product_url,
                "is_preferred": item.is_preferred,
                "actor_id": self.actor_id,
            },
        ).fetchone()
        return row[0]

    def add_attachment(self, item) -> UUID:
        row = self.session.execute(
            text("""
                INSERT INTO part_attachment (
                    part_attachment_id, part_version_id, file_url, file_name, file_type,
                    file_size_bytes, description, attachment_type, is_primary,
                    thumbnail_url, uploaded_by
                ) VALUES (
                    :id, :version_id, :file_url, :file_name, :file_type,
                    :file_size_bytes, :description, :attachment_type, :is_primary,
                    :thumbnail_url, :actor_id
                )
                RETURNING part_attachment_id
            """),
            {
                "id": uuid4(),
                "version_id": self.part_version_id,
                "file_url": item.file_url,
                "file_name": item.file_name,
                "file_type": item.file_type,
                "file_size_bytes": item.file_size_bytes,
                "description": item.description,
                "attachment_type": item.attachment_type,
                "is_primary": item.is_primary,
                "thumbnail_url": item.thumbnail_url,
                "actor_id": self.actor_id,
            },
        ).fetchone()
        return row[0]

    def add_representation(self, item) -> UUID:
        row = self.session.execute(
            text("""
                INSERT INTO part_representation (
                    part_representation_id, part_version_id, representation_type,
                    format, file_url, metadata, is_recommended, created_by
                ) VALUES (
                    :id, :version_id, :representation_type,
                    :format, :file_url, CAST(:metadata AS jsonb), :is_recommended, :actor_id
                )
                RETURNING part_representation_id
            """),
            {
                "id": uuid4(),
                "version_id": self.part_version_id,
                "representation_type": item.representation_type,
                "format": item.format,
                "file_url": item.file_url,
                "metadata": _dump_optional(item.metadata),
                "is_recommended": item.is_recommended,
                "actor_id": self.actor_id,
            },
        ).fetchone()
        return row[0]

    def add_compliance(self, item) -> UUID:
        row = self.session.execute(
            text("""
                INSERT INTO part_compliance (
                    part_compliance_id, part_version_id, compliance_type, certificate_url,
                    certified_at, expires_at, is_compliant, notes, created_by
                ) VALUES (
                    :id, :version_id, CAST(:compliance_type AS compliance_type_enum),
                    :certificate_url, :certified_at, :expires_at, :is_compliant, :notes, :actor_id
                )
                RETURNING part_compliance_id
            """),
            {
                "id": uuid4(),
                "version_id": self.part_version_id,
                "compliance_type": item.compliance_type,
                "certificate_url": item.certificate_url,
                "certified_at": item.certified_at,
                "expires_at": item.expires_at,
                "is_compliant": item.is_compliant,
                "notes": item.notes,
                "actor_id": self.actor_id,
            },
        ).fetchone()
        return row[0]


def _dump_optional(value: Optional[Any]) -> Optional[str]:
    return None if value is None else json.dumps(value, default=str)
