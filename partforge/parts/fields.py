# partforge/parts/fields.py
"""
Fixed registry of writable PartVersion fields.

Every payload key the engine accepts for a part version is listed here
once, with its column, kind and constraints. Validation, the version
INSERT and the per-field UPDATE statements are all derived from this
registry, so no SQL text is ever assembled from caller input.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple


# Enumerations (mirrored by the PostgreSQL enum types in schema.sql)
PART_STATUSES = ("concept", "active", "obsolete", "archived")
LIFECYCLE_STATUSES = (
    "draft", "in_review", "approved", "pre-release", "released",
    "production", "on_hold", "obsolete", "archived",
)
WEIGHT_UNITS = ("mg", "g", "kg", "lb", "oz")
DIMENSION_UNITS = ("mm", "cm", "m", "in", "ft")
TEMPERATURE_UNITS = ("C", "F", "K")
PACKAGE_TYPES = (
    "SMD", "THT", "QFP", "BGA", "DIP", "SOT-23", "TO-220", "SOP", "TSSOP",
    "LQFP", "DFN", "QFN", "DO-35", "DO-41", "SOD", "SC-70", "FCBGA",
)
MOUNTING_TYPES = ("SMT", "THT", "Manual", "Press-fit", "Through-glass")
STRUCTURAL_RELATION_TYPES = ("component", "alternative", "complementary", "substitute")
COMPLIANCE_TYPES = ("RoHS", "REACH", "Conflict_Minerals", "Halogen_Free")
REPRESENTATION_TYPES = ("3D Model", "Footprint", "Schematic Symbol", "Simulation Model")

# Versions may only be edited in place while in one of these statuses
EDITABLE_STATUSES = ("draft", "in_review")
RELEASED_STATUS = "released"
DEFAULT_TEMPERATURE_UNIT = "C"

# Field kinds
TEXT = "text"
JSON = "json"
NUMBER = "number"
INTEGER = "integer"
ENUM = "enum"
IDENTITY = "identity"
VERSION = "version"


@dataclass(frozen=True)
class FieldSpec:
    """One writable PartVersion field."""
    key: str  # payload key
    column: str
    kind: str
    sql_type: str
    choices: Optional[Tuple[str, ...]] = None
    max_length: Optional[int] = None
    non_negative: bool = False

    @property
    def placeholder(self) -> str:
        """Bind expression for this field's value."""
        return f"CAST(:{self.key} AS {self.sql_type})"


def _text(key, max_length=None):
    return FieldSpec(key, key, TEXT, "text", max_length=max_length)


def _json(key):
    return FieldSpec(key, key, JSON, "jsonb")


def _number(key, non_negative=False):
    return FieldSpec(key, key, NUMBER, "numeric", non_negative=non_negative)


def _enum(key, sql_type, choices, column=None):
    return FieldSpec(key, column or key, ENUM, sql_type, choices=choices)


VERSION_FIELDS: Tuple[FieldSpec, ...] = (
    # Identity
    FieldSpec("name", "part_name", IDENTITY, "text", max_length=100),
    FieldSpec("version", "part_version", VERSION, "text"),
    _enum("status", "lifecycle_status_enum", LIFECYCLE_STATUSES, column="version_status"),

    # Descriptions
    _text("short_description", max_length=200),
    _json("long_description"),
    _text("functional_description"),

    # Structured property bags
    _json("technical_specifications"),
    _json("properties"),
    _json("electrical_properties"),
    _json("mechanical_properties"),
    _json("thermal_properties"),
    _json("material_composition"),
    _json("environmental_data"),

    # Physical
    _number("weight", non_negative=True),
    _enum("weight_unit", "weight_unit_enum", WEIGHT_UNITS),
    _json("dimensions"),
    _enum("dimensions_unit", "dimension_unit_enum", DIMENSION_UNITS),
    _number("tolerance", non_negative=True),
    _text("tolerance_unit"),

    # Electrical ratings
    _number("voltage_rating_min"),
    _number("voltage_rating_max"),
    _number("current_rating_min"),
    _number("current_rating_max"),
    _number("power_rating_max", non_negative=True),

    # Packaging
    _enum("package_type", "package_type_enum", PACKAGE_TYPES),
    _enum("mounting_type", "mounting_type_enum", MOUNTING_TYPES),
    FieldSpec("pin_count", "pin_count", INTEGER, "integer", non_negative=True),

    # Thermal
    _number("operating_temperature_min"),
    _number("operating_temperature_max"),
    _number("storage_temperature_min"),
    _number("storage_temperature_max"),
    _enum("temperature_unit", "temperature_unit_enum", TEMPERATURE_UNITS),

    _text("revision_notes"),
)

FIELDS_BY_KEY: Dict[str, FieldSpec] = {spec.key: spec for spec in VERSION_FIELDS}
FIELD_KEYS: Tuple[str, ...] = tuple(spec.key for spec in VERSION_FIELDS)

# Technical fields exclude the identity triple (name, version, status)
TECHNICAL_FIELDS: Tuple[FieldSpec, ...] = tuple(
    spec for spec in VERSION_FIELDS if spec.key not in ("name", "version", "status")
)

# (value, unit): both present or both absent
PAIRED_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("weight", "weight_unit"),
    ("dimensions", "dimensions_unit"),
    ("tolerance", "tolerance_unit"),
)

# (min, max): max >= min when both present
RANGE_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("voltage_rating_min", "voltage_rating_max"),
    ("current_rating_min", "current_rating_max"),
    ("operating_temperature_min", "operating_temperature_max"),
    ("storage_temperature_min", "storage_temperature_max"),
)

TEMPERATURE_FIELDS: Tuple[str, ...] = (
    "operating_temperature_min",
    "operating_temperature_max",
    "storage_temperature_min",
    "storage_temperature_max",
)

DIMENSION_AXES: Tuple[str, ...] = ("length", "width", "height")
