# partforge/parts/identity.py
"""
Identifier allocation and MAJOR.MINOR.PATCH version handling.

Identifiers are random UUID4s allocated before any row is written, so a
Part and its first PartVersion can reference each other inside one
transaction.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple
from uuid import UUID, uuid4

from .errors import ValidationError
from .validation import VERSION_PATTERN

VERSION_COMPONENTS = ("major", "minor", "patch")


@dataclass(frozen=True)
class NewPartIds:
    """Identifiers for a Part and its first version."""
    part_id: UUID
    part_version_id: UUID


def begin_new_part() -> NewPartIds:
    """Allocate identifiers for a new Part and its first PartVersion."""
    return NewPartIds(part_id=uuid4(), part_version_id=uuid4())


def is_valid_version(version: object) -> bool:
    return isinstance(version, str) and VERSION_PATTERN.fullmatch(version) is not None


def parse_version(version: str) -> Tuple[int, int, int]:
    """
    Parse a version string into its numeric triple.

    Raises:
        ValidationError: If the string is not MAJOR.MINOR.PATCH
    """
    if not is_valid_version(version):
        raise ValidationError(
            {"version": "Version must be in format x.y.z (e.g., 1.0.0)"},
            operation="parse_version",
        )
    major, minor, patch = (int(part) for part in version.split("."))
    return major, minor, patch


def compare_versions(a: str, b: str) -> int:
    """Numeric comparison: -1 if a < b, 0 if equal, 1 if a > b."""
    left, right = parse_version(a), parse_version(b)
    return (left > right) - (left < right)


def highest_version(versions: Iterable[str]) -> Optional[str]:
    """Numerically highest version string, or None for an empty input."""
    valid = [v for v in versions if is_valid_version(v)]
    if not valid:
        return None
    return max(valid, key=parse_version)


def bump_version(version: str, component: str = "patch") -> str:
    """
    Increment one component of a version; lower components reset to 0.

    Example:
        bump_version("1.4.2", "minor") -> "1.5.0"
    """
    if component not in VERSION_COMPONENTS:
        raise ValueError(f"component must be one of {VERSION_COMPONENTS}")
    major, minor, patch = parse_version(version)
    if component == "major":
        return f"{major + 1}.0.0"
    if component == "minor":
        return f"{major}.{minor + 1}.0"
    return f"{major}.{minor}.{patch + 1}"


def require_version_after(
    part_id: UUID,
    prior_version: Optional[str],
    version: str,
    operation: str = "begin_next_version",
):
    """
    Raise unless version is well formed and greater than prior_version.

    Raises:
        ValidationError: Malformed version, or not greater than prior_version
    """
    if not is_valid_version(version):
        raise ValidationError(
            {"version": "Version must be in format x.y.z (e.g., 1.0.0)"},
            entity_id=part_id,
            operation=operation,
        )
    if prior_version is not None and compare_versions(version, prior_version) <= 0:
        raise ValidationError(
            {"version": f"Version {version} must be greater than {prior_version}"},
            entity_id=part_id,
            operation=operation,
        )


def begin_next_version(
    part_id: UUID,
    prior_version: Optional[str],
    version: str,
    enforce_monotonic: bool = True,
) -> UUID:
    """
    Validate a new version string for a Part and allocate its identifier.

    Args:
        part_id: Part receiving the version
        prior_version: Highest existing version of the Part (None if none)
        version: Requested version string
        enforce_monotonic: Require version > prior_version

    Returns:
        New PartVersion UUID

    Raises:
        ValidationError: Malformed version, or not greater than prior_version
    """
    require_version_after(part_id, prior_version if enforce_monotonic else None, version)
    return uuid4()
