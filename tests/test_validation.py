# tests/test_validation.py
"""
Test the part version validation grammar.

Pure functions; no database required.
"""

from decimal import Decimal

import pytest

from partforge.parts.errors import ValidationError
from partforge.parts.validation import ValidationMode, coerce_json, validate_payload


def _create(**fields):
    payload = {"name": "Resistor 10k", "version": "0.1.0"}
    payload.update(fields)
    return validate_payload(payload, ValidationMode.CREATE)


class TestNameAndVersion:
    """Identity fields per mode."""

    def test_minimal_create_payload_is_valid(self):
        """Name and version alone are enough to create."""
        report = _create()
        assert report.valid
        assert report.values["name"] == "Resistor 10k"

    def test_create_requires_name(self):
        """CREATE without a name reports the name field."""
        report = validate_payload({"version": "0.1.0"}, ValidationMode.CREATE)
        assert "name" in report.violations

    def test_create_name_minimum_three_characters(self):
        """Two-character names are rejected on create."""
        report = _create(name="R1")
        assert "name" in report.violations

    def test_edit_allows_one_character_name(self):
        """EDIT only requires a non-empty name."""
        report = validate_payload({"name": "R", "version": "1.0.0"}, ValidationMode.EDIT)
        assert report.valid

    def test_name_longer_than_100_rejected(self):
        """Names are capped at 100 characters in every mode."""
        for mode in ValidationMode:
            report = validate_payload({"name": "x" * 101, "version": "1.0.0"}, mode)
            assert "name" in report.violations

    def test_patch_rejects_clearing_name(self):
        """An explicit empty name cannot be patched in."""
        report = validate_payload({"name": ""}, ValidationMode.PATCH)
        assert "name" in report.violations

    @pytest.mark.parametrize("version", ["1", "1.0", "1.0.0-beta", "v1.0.0", "1.0.0\n", ""])
    def test_malformed_versions_rejected(self, version):
        """Versions must be three dot-separated integers."""
        report = _create(version=version)
        assert "version" in report.violations

    def test_patch_without_version_is_valid(self):
        """PATCH does not require a version."""
        assert validate_payload({"short_description": "Thick film"}, ValidationMode.PATCH).valid


class TestPairing:
    """Value/unit pairs are both present or both absent."""

    def test_weight_without_unit_reports_unit(self):
        """The violation is reported on the missing member."""
        report = _create(weight=12.5)
        assert "weight_unit" in report.violations
        assert "weight" not in report.violations

    def test_unit_without_weight_reports_weight(self):
        report = _create(weight_unit="g")
        assert "weight" in report.violations

    def test_complete_pairs_pass(self):
        """All three pairs can be supplied together."""
        report = _create(
            weight=1.2, weight_unit="g",
            dimensions={"length": 6.3, "width": 3.2, "height": 0.6}, dimensions_unit="mm",
            tolerance=1, tolerance_unit="%",
        )
        assert report.valid
        assert report.values["weight"] == Decimal("1.2")

    def test_tolerance_pair(self):
        report = _create(tolerance=5)
        assert "tolerance_unit" in report.violations

    def test_dimensions_pair(self):
        report = _create(dimensions_unit="mm")
        assert "dimensions" in report.violations

    def test_patch_skips_pairing(self):
        """Pairing is checked on the merged record, not the sparse patch."""
        report = validate_payload({"weight": 12.5}, ValidationMode.PATCH)
        assert report.valid


class TestRanges:
    """max >= min when both ends are present."""

    @pytest.mark.parametrize("low,high,ok", [
        (1, 2, True),
        (2, 2, True),
        (3, 2, False),
        (-40, 85, True),
    ])
    def test_voltage_range(self, low, high, ok):
        report = _create(voltage_rating_min=low, voltage_rating_max=high)
        assert report.valid is ok
        if not ok:
            assert "voltage_rating_max" in report.violations

    def test_temperature_ranges(self):
        report = _create(
            operating_temperature_min=85, operating_temperature_max=-40,
            storage_temperature_min=-55, storage_temperature_max=150,
        )
        assert "operating_temperature_max" in report.violations
        assert "storage_temperature_max" not in report.violations

    def test_current_range_one_end_only(self):
        """A single bound is never a range violation."""
        assert _create(current_rating_max=0.5).valid


class TestCoercion:
    """Per-field coercion rules."""

    def test_empty_enum_means_not_provided(self):
        """"" for an enum is None, never a failure."""
        report = _create(package_type="", mounting_type="")
        assert report.valid
        assert report.values["package_type"] is None

    def test_unknown_enum_value(self):
        report = _create(package_type="TO-92")
        assert "package_type" in report.violations

    def test_numeric_strings_accepted(self):
        report = _create(power_rating_max="0.25", pin_count="2")
        assert report.values["power_rating_max"] == Decimal("0.25")
        assert report.values["pin_count"] == 2

    def test_non_numeric_rejected(self):
        report = _create(voltage_rating_max="fifty")
        assert "voltage_rating_max" in report.violations

    def test_booleans_are_not_numbers(self):
        report = _create(pin_count=True)
        assert "pin_count" in report.violations

    def test_negative_weight_rejected(self):
        report = _create(weight=-1, weight_unit="g")
        assert "weight" in report.violations

    def test_fractional_pin_count_rejected(self):
        report = _create(pin_count=2.5)
        assert "pin_count" in report.violations

    def test_non_finite_rejected(self):
        report = _create(power_rating_max=float("inf"))
        assert "power_rating_max" in report.violations

    def test_short_description_length(self):
        report = _create(short_description="x" * 201)
        assert "short_description" in report.violations

    def test_dimensions_must_have_numeric_axes(self):
        report = _create(dimensions={"length": 1, "width": "wide", "height": 1}, dimensions_unit="mm")
        assert "dimensions" in report.violations

    def test_dimensions_json_string_parsed(self):
        report = _create(dimensions='{"length": 1, "width": 2, "height": 3}', dimensions_unit="mm")
        assert report.valid
        assert report.values["dimensions"] == {"length": 1, "width": 2, "height": 3}

    def test_collects_all_violations(self):
        """Validation does not stop at the first failure."""
        report = _create(name="R", version="x", package_type="nope", pin_count=-1)
        assert {"name", "version", "package_type", "pin_count"} <= set(report.violations)

    def test_raise_if_invalid(self):
        report = _create(weight=1)
        with pytest.raises(ValidationError) as exc_info:
            report.raise_if_invalid(operation="create_part")
        assert exc_info.value.code == "VALIDATION_ERROR"
        assert "weight_unit" in exc_info.value.violations


class TestJsonCoercion:
    """JSON fields accept objects, JSON text, raw strings and scalars."""

    def test_object_kept(self):
        assert coerce_json({"a": 1}) == {"a": 1}

    def test_json_text_parsed(self):
        assert coerce_json('[1, 2]') == [1, 2]

    def test_plain_string_wrapped(self):
        assert coerce_json("hand soldered") == {"value": "hand soldered", "raw": True}

    def test_json_scalar_text_wrapped_raw(self):
        assert coerce_json("42") == {"value": "42", "raw": True}

    def test_scalars_wrapped_with_type(self):
        assert coerce_json(3) == {"value": 3, "type": "number"}
        assert coerce_json(False) == {"value": False, "type": "boolean"}

    def test_empty_is_none(self):
        assert coerce_json("") is None
        assert coerce_json(None) is None


class TestTemperatureUnitDefault:
    """temperature_unit follows the presence of temperature values."""

    def test_defaults_to_celsius(self):
        report = _create(operating_temperature_min=-40)
        assert report.values["temperature_unit"] == "C"

    def test_explicit_unit_kept(self):
        report = _create(operating_temperature_max=185, temperature_unit="F")
        assert report.values["temperature_unit"] == "F"

    def test_cleared_without_temperatures(self):
        report = _create(temperature_unit="K")
        assert report.values["temperature_unit"] is None

    def test_patch_does_not_default(self):
        report = validate_payload({"storage_temperature_min": -55}, ValidationMode.PATCH)
        assert "temperature_unit" not in report.values
