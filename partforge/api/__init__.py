# partforge/api/__init__.py
"""API routes package."""

from .routes_parts import router as parts_router
from .routes_structure import router as structure_router

__all__ = [
    "parts_router",
    "structure_router",
]
