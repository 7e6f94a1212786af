# partforge/structure/validity.py
"""
Temporal validity predicates for structure edges.

SINGLE SOURCE OF TRUTH for edge time filtering. Every structure query
uses these predicates with an explicit :at parameter, never now(), so
the database and the caller agree on what "currently valid" means.

An edge is:
- current at T when it is open-ended or closes after T
- in effect at T when it is current at T and opened at or before T
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def edge_current_at(table_alias: str = "ps") -> str:
    """
    SQL predicate: edge has not been closed as of :at.

    This is the predicate the cycle check and duplicate check use.
    """
    a = table_alias
    return f"({a}.valid_until IS NULL OR {a}.valid_until > :at)"


def edge_in_effect_at(table_alias: str = "ps") -> str:
    """SQL predicate: edge window [valid_from, valid_until) contains :at."""
    a = table_alias
    return f"({a}.valid_from <= :at AND {edge_current_at(a)})"


def get_validity_params(at: Optional[datetime] = None) -> Dict[str, Any]:
    """Parameters for the predicates above."""
    return {"at": at or utcnow()}


def is_current(valid_until: Optional[datetime], at: datetime) -> bool:
    """Python mirror of edge_current_at()."""
    return valid_until is None or valid_until > at


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
