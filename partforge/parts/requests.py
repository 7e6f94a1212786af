# partforge/parts/requests.py
"""
Request payloads consumed by the part engine.

Technical fields are typed as Any: coercion and per-field messages come
from validate_payload(), so a bad weight is reported as a field
violation rather than a schema error. Relationship items are plain
pydantic models.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from .fields import (
    FIELD_KEYS,
    PART_STATUSES,
    LIFECYCLE_STATUSES,
    STRUCTURAL_RELATION_TYPES,
    COMPLIANCE_TYPES,
    REPRESENTATION_TYPES,
)


def _one_of(value: Optional[str], choices, name: str) -> Optional[str]:
    if value is not None and value not in choices:
        raise ValueError(f"{name} must be one of: {', '.join(choices)}")
    return value


class TechnicalFields(BaseModel):
    """Optional technical attributes shared by create and update payloads."""
    short_description: Optional[Any] = None
    long_description: Optional[Any] = None
    functional_description: Optional[Any] = None
    technical_specifications: Optional[Any] = None
    properties: Optional[Any] = None
    electrical_properties: Optional[Any] = None
    mechanical_properties: Optional[Any] = None
    thermal_properties: Optional[Any] = None
    material_composition: Optional[Any] = None
    environmental_data: Optional[Any] = None
    weight: Optional[Any] = None
    weight_unit: Optional[Any] = None
    dimensions: Optional[Any] = None
    dimensions_unit: Optional[Any] = None
    tolerance: Optional[Any] = None
    tolerance_unit: Optional[Any] = None
    voltage_rating_min: Optional[Any] = None
    voltage_rating_max: Optional[Any] = None
    current_rating_min: Optional[Any] = None
    current_rating_max: Optional[Any] = None
    power_rating_max: Optional[Any] = None
    package_type: Optional[Any] = None
    mounting_type: Optional[Any] = None
    pin_count: Optional[Any] = None
    operating_temperature_min: Optional[Any] = None
    operating_temperature_max: Optional[Any] = None
    storage_temperature_min: Optional[Any] = None
    storage_temperature_max: Optional[Any] = None
    temperature_unit: Optional[Any] = None
    revision_notes: Optional[Any] = None


class ManufacturerPartInput(BaseModel):
    """A manufacturer part number for the new version."""
    manufacturer_id: UUID
    manufacturer_part_number: str
    description: Optional[str] = None
    datasheet_url: Optional[str] = None
    product_url: Optional[str] = None
    is_recommended: bool = False


class SupplierPartInput(BaseModel):
    """A supplier offer for one of the request's manufacturer parts."""
    supplier_id: UUID
    manufacturer_part_index: int = 0  # index into manufacturer_parts
    supplier_part_number: Optional[str] = None
    unit_price: Optional[Decimal] = None
    currency: Optional[str] = None
    stock_quantity: Optional[int] = None
    lead_time_days: Optional[int] = None
    minimum_order_quantity: Optional[int] = None
    product_url: Optional[str] = None
    is_preferred: bool = False


class AttachmentInput(BaseModel):
    """A file attached to the version (storage is external)."""
    file_url: str
    file_name: str
    file_type: Optional[str] = None
    file_size_bytes: Optional[int] = None
    description: Optional[str] = None
    attachment_type: Optional[str] = None
    is_primary: bool = False
    thumbnail_url: Optional[str] = None


class RepresentationInput(BaseModel):
    """A CAD/simulation representation of the version."""
    representation_type: str
    format: Optional[str] = None
    file_url: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    is_recommended: bool = False

    @field_validator("representation_type")
    @classmethod
    def _check_type(cls, value):
        return _one_of(value, REPRESENTATION_TYPES, "representation_type")


class ComplianceInput(BaseModel):
    """A regulatory compliance record."""
    compliance_type: str
    certificate_url: Optional[str] = None
    certified_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_compliant: bool = False
    notes: Optional[str] = None

    @field_validator("compliance_type")
    @classmethod
    def _check_type(cls, value):
        return _one_of(value, COMPLIANCE_TYPES, "compliance_type")


class StructureInput(BaseModel):
    """A child edge created with the new part as parent."""
    child_part_id: UUID
    relation_type: str = "component"
    quantity: Decimal = Decimal("1")
    notes: Optional[str] = None

    @field_validator("relation_type")
    @classmethod
    def _check_type(cls, value):
        return _one_of(value, STRUCTURAL_RELATION_TYPES, "relation_type")


class CustomFieldInput(BaseModel):
    """A value for a user-defined field."""
    custom_field_id: UUID
    value: Any = None


class CreatePartRequest(TechnicalFields):
    """Create a Part with its first PartVersion and relationships."""
    name: Optional[Any] = None
    version: Optional[Any] = "0.1.0"
    status: Optional[Any] = "draft"
    part_status: str = "concept"
    global_part_number: Optional[str] = None
    lifecycle_status: str = "draft"
    is_public: bool = False

    category_ids: List[UUID] = Field(default_factory=list)
    tag_ids: List[UUID] = Field(default_factory=list)
    family_ids: List[UUID] = Field(default_factory=list)
    group_ids: List[UUID] = Field(default_factory=list)
    manufacturer_parts: List[ManufacturerPartInput] = Field(default_factory=list)
    supplier_parts: List[SupplierPartInput] = Field(default_factory=list)
    attachments: List[AttachmentInput] = Field(default_factory=list)
    representations: List[RepresentationInput] = Field(default_factory=list)
    compliance: List[ComplianceInput] = Field(default_factory=list)
    structure: List[StructureInput] = Field(default_factory=list)
    custom_fields: List[CustomFieldInput] = Field(default_factory=list)

    @field_validator("part_status")
    @classmethod
    def _check_part_status(cls, value):
        return _one_of(value, PART_STATUSES, "part_status")

    @field_validator("lifecycle_status")
    @classmethod
    def _check_lifecycle_status(cls, value):
        return _one_of(value, LIFECYCLE_STATUSES, "lifecycle_status")

    @field_validator("global_part_number")
    @classmethod
    def _blank_part_number(cls, value):
        # Empty means "no global part number"
        if value is not None and not value.strip():
            return None
        return value

    def version_payload(self) -> Dict[str, Any]:
        """Registry fields of the first version."""
        return self.model_dump(include=set(FIELD_KEYS))


class UpdatePartVersionRequest(TechnicalFields):
    """
    Sparse patch for an editable PartVersion.

    Only fields the caller actually sent are applied; an explicit null
    clears a field.
    """
    name: Optional[Any] = None
    version: Optional[Any] = None
    status: Optional[Any] = None
    category_ids: Optional[List[UUID]] = None

    def patch(self) -> Dict[str, Any]:
        """Registry fields explicitly present in the request."""
        return {key: getattr(self, key) for key in FIELD_KEYS if key in self.model_fields_set}

    @property
    def replaces_categories(self) -> bool:
        return "category_ids" in self.model_fields_set and self.category_ids is not None


class CreatePartVersionRequest(TechnicalFields):
    """
    A new version of an existing Part.

    version defaults to the highest existing version with PATCH bumped.
    Fields not sent are copied from the current version when requested.
    """
    name: Optional[Any] = None
    version: Optional[str] = None
    status: Optional[Any] = "draft"

    def overlay(self) -> Dict[str, Any]:
        """Registry fields explicitly present in the request."""
        return {key: getattr(self, key) for key in FIELD_KEYS if key in self.model_fields_set}


class UpdatePartStatusRequest(BaseModel):
    """Point a Part at a version and set its BOM status."""
    new_version_id: UUID
    new_status: str

    @field_validator("new_status")
    @classmethod
    def _check_status(cls, value):
        return _one_of(value, PART_STATUSES, "new_status")


class UpdatePartRequest(BaseModel):
    """Part-level metadata changes."""
    global_part_number: Optional[str] = None
    lifecycle_status: Optional[str] = None
    is_public: Optional[bool] = None

    @field_validator("lifecycle_status")
    @classmethod
    def _check_lifecycle_status(cls, value):
        return _one_of(value, LIFECYCLE_STATUSES, "lifecycle_status")

    def changes(self) -> Dict[str, Any]:
        return {key: getattr(self, key) for key in self.model_fields_set}


class AddStructureEdgeRequest(BaseModel):
    """Create a parent/child edge in the structure graph."""
    parent_part_id: UUID
    child_part_id: UUID
    relation_type: str = "component"
    quantity: Decimal = Decimal("1")
    notes: Optional[str] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None

    @field_validator("relation_type")
    @classmethod
    def _check_type(cls, value):
        return _one_of(value, STRUCTURAL_RELATION_TYPES, "relation_type")


class SupersedeStructureEdgeRequest(BaseModel):
    """Close an edge and open its replacement from the same instant."""
    quantity: Optional[Decimal] = None
    relation_type: Optional[str] = None
    notes: Optional[str] = None
    effective_at: Optional[datetime] = None

    @field_validator("relation_type")
    @classmethod
    def _check_type(cls, value):
        return _one_of(value, STRUCTURAL_RELATION_TYPES, "relation_type")


class UpdateStructureEdgeRequest(BaseModel):
    """
    In-place edge changes.

    Only fields sent are applied. notes and valid_until accept an
    explicit null (clear the note, reopen the edge).
    """
    parent_part_id: Optional[UUID] = None
    child_part_id: Optional[UUID] = None
    relation_type: Optional[str] = None
    quantity: Optional[Decimal] = None
    notes: Optional[str] = None
    valid_until: Optional[datetime] = None

    @field_validator("relation_type")
    @classmethod
    def _check_type(cls, value):
        return _one_of(value, STRUCTURAL_RELATION_TYPES, "relation_type")

    def changes(self) -> Dict[str, Any]:
        nullable = ("notes", "valid_until")
        return {
            key: getattr(self, key)
            for key in self.model_fields_set
            if key in nullable or getattr(self, key) is not None
        }
