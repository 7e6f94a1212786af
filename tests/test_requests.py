# tests/test_requests.py
"""
Test request payload models.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from pydantic import ValidationError as SchemaError

from partforge.parts.requests import (
    AddStructureEdgeRequest,
    CreatePartRequest,
    CreatePartVersionRequest,
    UpdatePartRequest,
    UpdatePartStatusRequest,
    UpdatePartVersionRequest,
)


class TestCreatePartRequest:
    """Defaults and field selection for create."""

    def test_defaults(self):
        request = CreatePartRequest(name="Resistor 10k")
        assert request.version == "0.1.0"
        assert request.status == "draft"
        assert request.part_status == "concept"
        assert request.category_ids == []

    def test_version_payload_contains_only_registry_fields(self):
        request = CreatePartRequest(name="Resistor 10k", weight=1, category_ids=[uuid4()])
        payload = request.version_payload()
        assert payload["name"] == "Resistor 10k"
        assert payload["weight"] == 1
        assert "category_ids" not in payload
        assert "part_status" not in payload

    def test_blank_global_part_number_is_none(self):
        assert CreatePartRequest(name="Cap", global_part_number="  ").global_part_number is None

    def test_unknown_part_status_rejected(self):
        with pytest.raises(SchemaError):
            CreatePartRequest(name="Cap", part_status="retired")

    def test_bad_structure_relation_rejected(self):
        with pytest.raises(SchemaError):
            CreatePartRequest(name="Cap", structure=[{"child_part_id": str(uuid4()), "relation_type": "parent"}])

    def test_technical_fields_are_not_schema_checked(self):
        """Bad technical values reach validate_payload as-is."""
        request = CreatePartRequest(name="Cap", weight="heavy")
        assert request.weight == "heavy"


class TestUpdatePartVersionRequest:
    """Sparse patches keep only the fields that were sent."""

    def test_patch_only_sent_fields(self):
        request = UpdatePartVersionRequest(weight=12.5)
        assert request.patch() == {"weight": 12.5}

    def test_explicit_null_is_kept(self):
        request = UpdatePartVersionRequest.model_validate({"weight": None, "weight_unit": None})
        assert request.patch() == {"weight": None, "weight_unit": None}

    def test_categories_replaced_only_when_sent(self):
        assert not UpdatePartVersionRequest(weight=1).replaces_categories
        assert UpdatePartVersionRequest(category_ids=[]).replaces_categories


class TestCreatePartVersionRequest:

    def test_overlay_only_sent_fields(self):
        request = CreatePartVersionRequest(version="1.0.0", short_description="Rev B")
        assert request.overlay() == {"version": "1.0.0", "short_description": "Rev B"}

    def test_version_optional(self):
        assert CreatePartVersionRequest().version is None


class TestOtherRequests:

    def test_status_request_validates_status(self):
        with pytest.raises(SchemaError):
            UpdatePartStatusRequest(new_version_id=uuid4(), new_status="shipping")

    def test_update_part_changes(self):
        request = UpdatePartRequest(is_public=True)
        assert request.changes() == {"is_public": True}

    def test_structure_edge_defaults(self):
        request = AddStructureEdgeRequest(parent_part_id=uuid4(), child_part_id=uuid4())
        assert request.relation_type == "component"
        assert request.quantity == Decimal("1")
