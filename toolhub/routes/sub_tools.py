import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_current_actor
from ..schemas.tools import (
    AssignSubToolRequest,
    EntityType,
    RevokeRequest,
    SubToolCreate,
    SubToolUpdate,
    ToolStatus,
)
from ..services import assignment, lifecycle, sub_tools as sub_tool_store
from ..services.capabilities import Actor
from .responses import ok

router = APIRouter(prefix="/sub-tools", tags=["sub-tools"])


@router.get("")
def list_sub_tools(
    parent_tool_id: Optional[uuid.UUID] = None,
    status: Optional[ToolStatus] = None,
    keyword: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    result = sub_tool_store.list_sub_tools(
        db,
        actor,
        parent_tool_id=parent_tool_id,
        status=status.value if status else None,
        keyword=keyword,
        page=page,
        limit=limit,
    )
    return ok(result["sub_tools"], pagination=result["pagination"])


@router.get("/{sub_tool_id}")
def get_sub_tool(sub_tool_id: uuid.UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return ok(sub_tool_store.get_sub_tool(db, actor, sub_tool_id))


@router.post("")
def create_sub_tool(body: SubToolCreate, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return ok(sub_tool_store.create_sub_tool(db, actor, body), "Sub-tool created")


@router.put("/{sub_tool_id}")
def update_sub_tool(
    sub_tool_id: uuid.UUID,
    body: SubToolUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return ok(sub_tool_store.update_sub_tool(db, actor, sub_tool_id, body), "Sub-tool updated")


@router.delete("/{sub_tool_id}")
def delete_sub_tool(sub_tool_id: uuid.UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return ok(lifecycle.soft_delete(db, actor, EntityType.sub_tool, sub_tool_id), "Sub-tool deleted")


@router.post("/{sub_tool_id}/assign")
def assign_sub_tool(
    sub_tool_id: uuid.UUID,
    body: AssignSubToolRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Assign, transfer, or move the sub-tool under another tool"""
    result = assignment.assign_sub_tool(
        db, actor, sub_tool_id, body.employee_id, body.target_tool_id, body.condition, body.notes
    )
    return ok(result, "Sub-tool assigned")


@router.post("/{sub_tool_id}/revoke")
def revoke_sub_tool(
    sub_tool_id: uuid.UUID,
    body: Optional[RevokeRequest] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    body = body or RevokeRequest()
    return ok(assignment.revoke_sub_tool(db, actor, sub_tool_id, body.condition, body.notes), "Sub-tool revoked")
