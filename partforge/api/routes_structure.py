# partforge/api/routes_structure.py
"""
Structure graph API routes.

Edge writes go through PartWriter so each one is its own transaction.
"""

from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db.engine import get_session
from ..parts.requests import (
    AddStructureEdgeRequest,
    SupersedeStructureEdgeRequest,
    UpdateStructureEdgeRequest,
)
from ..parts.writer import PartWriter
from ..structure.graph import StructureGraph
from .retry import call_with_lock_retry
from .routes_parts import get_actor_id, get_writer

router = APIRouter(prefix="/structure", tags=["structure"])


def get_graph(session: Session = Depends(get_session)) -> StructureGraph:
    return StructureGraph(session)


@router.post("", status_code=201)
def add_structure_edge(
    request: AddStructureEdgeRequest,
    writer: PartWriter = Depends(get_writer),
    actor_id: UUID = Depends(get_actor_id),
) -> Dict[str, Any]:
    """Add a parent/child edge (rejects self references and cycles)."""
    edge = call_with_lock_retry(
        writer.add_structure_edge,
        request.parent_part_id,
        request.child_part_id,
        actor_id,
        relation_type=request.relation_type,
        quantity=request.quantity,
        notes=request.notes,
        valid_from=request.valid_from,
        valid_until=request.valid_until,
    )
    return {"edge": asdict(edge)}


@router.patch("/edges/{part_structure_id}")
def update_structure_edge(
    part_structure_id: UUID,
    request: UpdateStructureEdgeRequest,
    writer: PartWriter = Depends(get_writer),
    actor_id: UUID = Depends(get_actor_id),
) -> Dict[str, Any]:
    """Change an edge in place (re-checks cycles when endpoints change or it reopens)."""
    edge = call_with_lock_retry(
        writer.update_structure_edge,
        part_structure_id,
        actor_id,
        **request.changes(),
    )
    return {"edge": asdict(edge)}


@router.post("/edges/{part_structure_id}/supersede", status_code=201)
def supersede_structure_edge(
    part_structure_id: UUID,
    request: SupersedeStructureEdgeRequest,
    writer: PartWriter = Depends(get_writer),
    actor_id: UUID = Depends(get_actor_id),
) -> Dict[str, Any]:
    """Close an edge and open its replacement."""
    edge = call_with_lock_retry(
        writer.supersede_structure_edge,
        part_structure_id,
        actor_id,
        quantity=request.quantity,
        relation_type=request.relation_type,
        notes=request.notes,
        effective_at=request.effective_at,
    )
    return {"edge": asdict(edge)}


@router.delete("/edges/{part_structure_id}")
def remove_structure_edge(
    part_structure_id: UUID,
    writer: PartWriter = Depends(get_writer),
    actor_id: UUID = Depends(get_actor_id),
) -> Dict[str, Any]:
    """Delete an edge outright."""
    call_with_lock_retry(writer.remove_structure_edge, part_structure_id)
    return {"deleted": True, "part_structure_id": str(part_structure_id)}


@router.get("/{part_id}")
def get_structure(
    part_id: UUID,
    current_only: bool = False,
    in_effect: bool = False,
    at: Optional[datetime] = Query(default=None),
    graph: StructureGraph = Depends(get_graph),
) -> Dict[str, Any]:
    """Edges where the part is parent or child."""
    edges = graph.get_edges_for_part(part_id, current_only=current_only, at=at, in_effect=in_effect)
    return {"part_id": str(part_id), "edges": [asdict(e) for e in edges], "count": len(edges)}


@router.get("/{part_id}/children")
def get_children(part_id: UUID, graph: StructureGraph = Depends(get_graph)) -> Dict[str, Any]:
    """Currently valid child edges."""
    return {"edges": [asdict(e) for e in graph.get_children(part_id)]}


@router.get("/{part_id}/parents")
def get_parents(part_id: UUID, graph: StructureGraph = Depends(get_graph)) -> Dict[str, Any]:
    """Currently valid parent edges."""
    return {"edges": [asdict(e) for e in graph.get_parents(part_id)]}
