# partforge/parts/validation.py
"""
Validation grammar for part version payloads.

validate_payload() never touches the database. It coerces every known
field, checks it against the field registry and, outside PATCH mode,
applies the cross-field rules (unit pairing, min/max ranges and the
temperature unit default). All violations are collected; nothing stops
at the first failure.

Modes:
- CREATE: name required (3-100 chars), all rules
- EDIT:   name 1-100 chars when present, all rules (merged records)
- PATCH:  per-field rules only (sparse patches, before any lock is taken)
"""

import json
import math
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from .errors import ValidationError
from .fields import (
    FIELDS_BY_KEY,
    FieldSpec,
    PAIRED_FIELDS,
    RANGE_FIELDS,
    TEMPERATURE_FIELDS,
    DIMENSION_AXES,
    DEFAULT_TEMPERATURE_UNIT,
    TEXT,
    JSON,
    NUMBER,
    INTEGER,
    ENUM,
    IDENTITY,
    VERSION,
)

VERSION_PATTERN = re.compile(r"[0-9]+\.[0-9]+\.[0-9]+")

CREATE_NAME_MIN_LENGTH = 3
EDIT_NAME_MIN_LENGTH = 1
NAME_MAX_LENGTH = 100


class ValidationMode(Enum):
    """Which rule set validate_payload() applies."""
    CREATE = "CREATE"
    EDIT = "EDIT"
    PATCH = "PATCH"


@dataclass
class ValidationReport:
    """
    Result of validating a payload.

    Attributes:
        values: Coerced values for every registry key that was supplied
            (plus defaults the rules add, e.g. temperature_unit)
        violations: Field key -> message
    """
    values: Dict[str, Any] = field(default_factory=dict)
    violations: Dict[str, str] = field(default_factory=dict)

    @property
    def valid(self) -> bool:
        return not self.violations

    def add(self, key: str, message: str):
        # First violation per field wins
        self.violations.setdefault(key, message)

    def raise_if_invalid(self, entity_id: Any = None, operation: Optional[str] = None):
        if self.violations:
            raise ValidationError(self.violations, entity_id=entity_id, operation=operation)


class _Invalid(Exception):
    """Internal: a single field failed coercion."""


def validate_payload(payload: Mapping[str, Any], mode: ValidationMode) -> ValidationReport:
    """
    Validate and coerce a part version payload.

    Keys that are not in the field registry are ignored (relationship
    arrays and Part-level fields are handled elsewhere).

    Args:
        payload: Field key -> raw value
        mode: Rule set to apply

    Returns:
        ValidationReport with coerced values and collected violations
    """
    report = ValidationReport()

    for key, raw in payload.items():
        spec = FIELDS_BY_KEY.get(key)
        if spec is None:
            continue
        try:
            report.values[key] = coerce_field(spec, raw)
        except _Invalid as exc:
            report.add(key, str(exc))

    _check_name(payload, report, mode)

    if mode is not ValidationMode.PATCH:
        if "version" not in report.values and "version" not in report.violations:
            report.add("version", "Version is required")
        _check_pairs(report)
        _check_ranges(report)
        _apply_temperature_unit_default(report)

    return report


def coerce_field(spec: FieldSpec, raw: Any) -> Any:
    """Coerce one raw value according to its field spec."""
    if spec.kind == IDENTITY:
        return _coerce_name(raw)
    if spec.kind == VERSION:
        return _coerce_version(raw)
    if spec.kind == ENUM:
        return _coerce_enum(spec, raw)
    if spec.kind == NUMBER:
        return _coerce_number(spec, raw)
    if spec.kind == INTEGER:
        return _coerce_integer(spec, raw)
    if spec.kind == JSON:
        value = coerce_json(raw)
        if spec.key == "dimensions" and value is not None:
            _check_dimensions(value)
        return value
    if spec.kind == TEXT:
        return _coerce_text(spec, raw)
    raise ValueError(f"Unknown field kind: {spec.kind}")


def coerce_json(raw: Any) -> Any:
    """
    Normalize a JSON field value.

    - dict/list: kept as-is
    - string parsing to an object or array: parsed
    - any other string: {"value": s, "raw": True}
    - other scalars: {"value": v, "type": <kind>}
    - None/"": None
    """
    if raw is None or raw == "":
        return None
    if isinstance(raw, (dict, list)):
        return raw
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except ValueError:
            return {"value": raw, "raw": True}
        if isinstance(parsed, (dict, list)):
            return parsed
        return {"value": raw, "raw": True}
    if isinstance(raw, bool):
        return {"value": raw, "type": "boolean"}
    if isinstance(raw, (int, float, Decimal)):
        return {"value": float(raw) if isinstance(raw, Decimal) else raw, "type": "number"}
    return {"value": str(raw), "type": type(raw).__name__}


def _coerce_name(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise _Invalid("Name must be a string")
    return raw


def _coerce_version(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    if not isinstance(raw, str) or not VERSION_PATTERN.fullmatch(raw):
        raise _Invalid("Version must be in format x.y.z (e.g., 1.0.0)")
    return raw


def _coerce_enum(spec: FieldSpec, raw: Any) -> Optional[str]:
    # An empty enum value means "not provided"
    if raw is None or raw == "":
        return None
    if raw not in spec.choices:
        raise _Invalid(f"Invalid {spec.key}: must be one of {', '.join(spec.choices)}")
    return raw


def _to_decimal(spec: FieldSpec, raw: Any) -> Optional[Decimal]:
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise _Invalid(f"{spec.key} must be a number")
    if isinstance(raw, str):
        raw = raw.strip()
        if raw == "":
            return None
    if isinstance(raw, float):
        if not math.isfinite(raw):
            raise _Invalid(f"{spec.key} must be a finite number")
        raw = repr(raw)
    if not isinstance(raw, (int, str, Decimal)):
        raise _Invalid(f"{spec.key} must be a number")
    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise _Invalid(f"{spec.key} must be a number")
    if not value.is_finite():
        raise _Invalid(f"{spec.key} must be a finite number")
    if spec.non_negative and value < 0:
        raise _Invalid(f"{spec.key} must be greater than or equal to 0")
    return value


def _coerce_number(spec: FieldSpec, raw: Any) -> Optional[Decimal]:
    return _to_decimal(spec, raw)


def _coerce_integer(spec: FieldSpec, raw: Any) -> Optional[int]:
    value = _to_decimal(spec, raw)
    if value is None:
        return None
    if value != value.to_integral_value():
        raise _Invalid(f"{spec.key} must be a whole number")
    return int(value)


def _coerce_text(spec: FieldSpec, raw: Any) -> Optional[str]:
    if raw is None or raw == "":
        return None
    if not isinstance(raw, str):
        raise _Invalid(f"{spec.key} must be a string")
    if spec.max_length is not None and len(raw) > spec.max_length:
        raise _Invalid(f"{spec.key} must be at most {spec.max_length} characters")
    return raw


def _check_dimensions(value: Any):
    if not isinstance(value, dict):
        raise _Invalid("Dimensions must be an object with length, width and height")
    for axis in DIMENSION_AXES:
        number = value.get(axis)
        if isinstance(number, bool) or not isinstance(number, (int, float)):
            raise _Invalid(f"Dimensions {axis} must be a number")
        if number < 0:
            raise _Invalid(f"Dimensions {axis} must be greater than or equal to 0")


def _check_name(payload: Mapping[str, Any], report: ValidationReport, mode: ValidationMode):
    if "name" in report.violations:
        return

    if mode is ValidationMode.CREATE:
        min_length = CREATE_NAME_MIN_LENGTH
        if report.values.get("name") is None:
            report.add("name", "Name is required")
            return
    else:
        min_length = EDIT_NAME_MIN_LENGTH
        if "name" not in payload:
            return
        if report.values.get("name") is None:
            report.add("name", "Name cannot be empty")
            return

    name = report.values["name"]
    if len(name) < min_length:
        report.add("name", f"Name must be at least {min_length} characters")
    elif len(name) > NAME_MAX_LENGTH:
        report.add("name", f"Name must be at most {NAME_MAX_LENGTH} characters")


def _present(report: ValidationReport, key: str) -> bool:
    return report.values.get(key) is not None


def _check_pairs(report: ValidationReport):
    for value_key, unit_key in PAIRED_FIELDS:
        if value_key in report.violations or unit_key in report.violations:
            continue
        has_value = _present(report, value_key)
        has_unit = _present(report, unit_key)
        if has_value and not has_unit:
            report.add(unit_key, f"{unit_key} is required when {value_key} is provided")
        elif has_unit and not has_value:
            report.add(value_key, f"{value_key} is required when {unit_key} is provided")


def _check_ranges(report: ValidationReport):
    for min_key, max_key in RANGE_FIELDS:
        if not (_present(report, min_key) and _present(report, max_key)):
            continue
        if report.values[max_key] < report.values[min_key]:
            report.add(max_key, f"{max_key} must be greater than or equal to {min_key}")


def _apply_temperature_unit_default(report: ValidationReport):
    if "temperature_unit" in report.violations:
        return
    if any(_present(report, key) for key in TEMPERATURE_FIELDS):
        if not _present(report, "temperature_unit"):
            report.values["temperature_unit"] = DEFAULT_TEMPERATURE_UNIT
    elif "temperature_unit" in report.values:
        report.values["temperature_unit"] = None
