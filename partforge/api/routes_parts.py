# partforge/api/routes_parts.py
"""
Part API routes.

Thin adapter over PartWriter and PartStore. Errors are PartErrors and are
rendered by the exception handler registered in main.py; lock timeouts
are retried here, never in the core.
"""

from dataclasses import asdict
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.orm import Session

from ..db.engine import get_session
from ..logging import get_api_logger
from ..parts.models import PartVersion, PartWithVersion
from ..parts.requests import (
    CreatePartRequest,
    CreatePartVersionRequest,
    UpdatePartRequest,
    UpdatePartStatusRequest,
    UpdatePartVersionRequest,
)
from ..parts.revisions import RevisionLedger
from ..parts.store import PartStore
from ..parts.writer import PartWriter
from ..parts.errors import NotFoundError
from .retry import call_with_lock_retry

router = APIRouter(prefix="/parts", tags=["parts"])
logger = get_api_logger()


# ============================================================
# DEPENDENCIES
# ============================================================

def get_writer(session: Session = Depends(get_session)) -> PartWriter:
    return PartWriter(session)


def get_store(session: Session = Depends(get_session)) -> PartStore:
    return PartStore(session)


def get_ledger(session: Session = Depends(get_session)) -> RevisionLedger:
    return RevisionLedger(session)


def get_actor_id(x_actor_id: UUID = Header(..., description="Authenticated actor")) -> UUID:
    """Actor identity is issued upstream; this layer only reads it."""
    return x_actor_id


def version_to_dict(version: Optional[PartVersion]) -> Optional[Dict[str, Any]]:
    return asdict(version) if version is not None else None


def part_to_dict(item: PartWithVersion) -> Dict[str, Any]:
    return {
        "part": asdict(item.part),
        "current_version": version_to_dict(item.current_version),
    }


# ============================================================
# WRITES
# ============================================================

@router.post("", status_code=201)
def create_part(
    request: CreatePartRequest,
    writer: PartWriter = Depends(get_writer),
    actor_id: UUID = Depends(get_actor_id),
) -> Dict[str, Any]:
    """
    Create a part with its first version.

    Relationship rows that could not be written are listed in
    relationship_failures; the part itself is still created.
    """
    result = call_with_lock_retry(writer.create_part, request, actor_id)
    return {
        "part": asdict(result.part),
        "version": asdict(result.version),
        "relationship_failures": [f.to_dict() for f in result.relationship_failures],
    }


@router.post("/{part_id}/versions", status_code=201)
def create_part_version(
    part_id: UUID,
    request: CreatePartVersionRequest,
    copy_current: bool = True,
    writer: PartWriter = Depends(get_writer),
    actor_id: UUID = Depends(get_actor_id),
) -> Dict[str, Any]:
    """Create a new draft version of a part."""
    version = call_with_lock_retry(writer.create_part_version, part_id, request, actor_id, copy_current)
    return {"version": asdict(version)}


@router.patch("/versions/{part_version_id}")
def update_part_version(
    part_version_id: UUID,
    request: UpdatePartVersionRequest,
    writer: PartWriter = Depends(get_writer),
    store: PartStore = Depends(get_store),
    actor_id: UUID = Depends(get_actor_id),
) -> Dict[str, Any]:
    """Apply a sparse patch to an editable version."""
    revision = call_with_lock_retry(writer.update_part_version, part_version_id, request, actor_id)
    return {
        "version": version_to_dict(store.get_part_version(part_version_id)),
        "revision": asdict(revision) if revision is not None else None,
    }


@router.post("/{part_id}/status")
def update_part_status(
    part_id: UUID,
    request: UpdatePartStatusRequest,
    writer: PartWriter = Depends(get_writer),
    actor_id: UUID = Depends(get_actor_id),
) -> Dict[str, Any]:
    """Point the part at a version and set its BOM status."""
    part = call_with_lock_retry(
        writer.update_part_with_status, part_id, request.new_version_id, request.new_status, actor_id,
    )
    return {"part": asdict(part)}


@router.patch("/{part_id}")
def update_part(
    part_id: UUID,
    request: UpdatePartRequest,
    writer: PartWriter = Depends(get_writer),
    actor_id: UUID = Depends(get_actor_id),
) -> Dict[str, Any]:
    """Update part-level metadata."""
    part = call_with_lock_retry(writer.update_part, part_id, actor_id, **request.changes())
    return {"part": asdict(part)}


@router.delete("/{part_id}")
def delete_part(
    part_id: UUID,
    writer: PartWriter = Depends(get_writer),
    actor_id: UUID = Depends(get_actor_id),
) -> Dict[str, Any]:
    """Delete a part, its versions and every structure edge touching it."""
    removed = call_with_lock_retry(writer.delete_part, part_id)
    logger.info("part_delete_requested", part_id=str(part_id), actor_id=str(actor_id))
    return {"deleted": True, "part_id": str(part_id), "structure_edges_removed": removed}


# ============================================================
# READS
# ============================================================

@router.get("")
def list_parts(
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    store: PartStore = Depends(get_store),
) -> Dict[str, Any]:
    """List parts with their current versions, newest first."""
    items = store.list_parts(limit=limit, offset=offset)
    return {"parts": [part_to_dict(item) for item in items], "count": len(items)}


@router.get("/{part_id}")
def get_part(part_id: UUID, store: PartStore = Depends(get_store)) -> Dict[str, Any]:
    """Get a part and its current version."""
    return part_to_dict(store.get_part_with_current_version(part_id))


@router.get("/{part_id}/versions")
def list_part_versions(part_id: UUID, store: PartStore = Depends(get_store)) -> Dict[str, Any]:
    """All versions of a part, oldest first."""
    if store.get_part(part_id) is None:
        raise NotFoundError("Part", part_id, operation="list_part_versions")
    versions: List[PartVersion] = store.list_versions(part_id)
    return {"versions": [asdict(v) for v in versions]}


@router.get("/versions/{part_version_id}/revisions")
def list_revisions(
    part_version_id: UUID,
    ledger: RevisionLedger = Depends(get_ledger),
) -> Dict[str, Any]:
    """Revision history of a version, newest first."""
    return {"revisions": [asdict(r) for r in ledger.list_for_version(part_version_id)]}
