import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_current_actor
from ..schemas.tools import EntityType
from ..services import lifecycle
from ..services.capabilities import Actor
from .responses import ok

router = APIRouter(prefix="/deleted", tags=["deleted"])


@router.get("")
def list_deleted(
    type: Optional[EntityType] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Soft-deleted tools with their deleted children, then orphans"""
    result = lifecycle.list_deleted(db, actor, type.value if type else None, page, limit)
    return ok(
        result["items"],
        pagination=result["pagination"],
        summary=result["summary"],
        orphans=result["orphans"],
    )


@router.post("/{entity_type}/{entity_id}/restore")
def restore(
    entity_type: EntityType,
    entity_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return ok(lifecycle.restore(db, actor, entity_type, entity_id), "Restored")


@router.delete("/{entity_type}/{entity_id}")
def permanent_delete(
    entity_type: EntityType,
    entity_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Irreversible; descendants go too"""
    return ok(lifecycle.permanent_delete(db, actor, entity_type, entity_id), "Permanently deleted")
