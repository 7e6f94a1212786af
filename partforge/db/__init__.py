# Database module
from .engine import (
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
    transaction,
    apply_schema,
)

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "transaction",
    "apply_schema",
]
