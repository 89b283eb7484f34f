import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_current_actor
from ..schemas.tools import (
    AccessoryCreate,
    AccessoryUpdate,
    AccessoryUpgrade,
    AssignAccessoryRequest,
    EntityType,
    RevokeRequest,
    ToolStatus,
)
from ..services import accessories as accessory_store, assignment, lifecycle
from ..services.capabilities import Actor
from .responses import ok

router = APIRouter(prefix="/accessories", tags=["accessories"])


@router.get("")
def list_accessories(
    sub_tool_id: Optional[uuid.UUID] = None,
    parent_tool_id: Optional[uuid.UUID] = None,
    status: Optional[ToolStatus] = None,
    keyword: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    result = accessory_store.list_accessories(
        db,
        actor,
        sub_tool_id=sub_tool_id,
        parent_tool_id=parent_tool_id,
        status=status.value if status else None,
        keyword=keyword,
        page=page,
        limit=limit,
    )
    return ok(result["accessories"], pagination=result["pagination"])


@router.get("/{accessory_id}")
def get_accessory(accessory_id: uuid.UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return ok(accessory_store.get_accessory(db, actor, accessory_id))


@router.post("")
def create_accessory(body: AccessoryCreate, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return ok(accessory_store.create_accessory(db, actor, body), "Accessory created")


@router.put("/{accessory_id}")
def update_accessory(
    accessory_id: uuid.UUID,
    body: AccessoryUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return ok(accessory_store.update_accessory(db, actor, accessory_id, body), "Accessory updated")


@router.post("/{accessory_id}/upgrade")
def upgrade_accessory(
    accessory_id: uuid.UUID,
    body: AccessoryUpgrade,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return ok(accessory_store.upgrade_accessory(db, actor, accessory_id, body), "Accessory upgraded")


@router.delete("/{accessory_id}")
def delete_accessory(accessory_id: uuid.UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return ok(lifecycle.soft_delete(db, actor, EntityType.accessory, accessory_id), "Accessory deleted")


@router.post("/{accessory_id}/assign")
def assign_accessory(
    accessory_id: uuid.UUID,
    body: AssignAccessoryRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    result = assignment.assign_accessory(
        db, actor, accessory_id, body.employee_id, body.target_sub_tool_id, body.condition, body.notes
    )
    return ok(result, "Accessory assigned")


@router.post("/{accessory_id}/revoke")
def revoke_accessory(
    accessory_id: uuid.UUID,
    body: Optional[RevokeRequest] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    body = body or RevokeRequest()
    return ok(assignment.revoke_accessory(db, actor, accessory_id, body.condition, body.notes), "Accessory revoked")
