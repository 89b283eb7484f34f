import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_admin_position_cache, get_current_actor
from ..schemas.employees import PositionPermissionsUpdate
from ..services.capabilities import Actor
from ..services.positions import AdminPositionCache, update_position_permissions
from .responses import ok

router = APIRouter(prefix="/positions", tags=["positions"])


@router.put("/{position_id}/permissions")
def set_position_permissions(
    position_id: uuid.UUID,
    body: PositionPermissionsUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    cache: AdminPositionCache = Depends(get_admin_position_cache),
):
    position = update_position_permissions(db, actor, position_id, body.permissions, cache)
    return ok(
        {"id": str(position.id), "name": position.name, "permissions": position.permissions, "level": position.level},
        "Permissions updated",
    )
