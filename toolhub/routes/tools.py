import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_current_actor
from ..schemas.tools import (
    AssignToolRequest,
    EntityType,
    RevokeRequest,
    ToolCondition,
    ToolCreate,
    ToolStatus,
    ToolUpdate,
)
from ..services import assignment, lifecycle, tools as tool_store
from ..services.capabilities import Actor
from .responses import ok

router = APIRouter(prefix="/tools", tags=["tools"])


# ---------- READ ----------

@router.get("")
def list_tools(
    status: Optional[ToolStatus] = None,
    condition: Optional[ToolCondition] = None,
    category_id: Optional[uuid.UUID] = None,
    department_id: Optional[uuid.UUID] = None,
    assigned_to: Optional[uuid.UUID] = None,
    keyword: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1),
    sort_by: str = "created_at",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    result = tool_store.list_tools(
        db,
        actor,
        status=status.value if status else None,
        condition=condition.value if condition else None,
        category_id=category_id,
        department_id=department_id,
        assigned_to=assigned_to,
        keyword=keyword,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return ok(result["tools"], pagination=result["pagination"])


@router.get("/search")
def search_tools(keyword: str, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return ok(tool_store.search_tools(db, actor, keyword))


@router.get("/statistics")
def tool_statistics(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return ok(tool_store.tool_statistics(db, actor))


@router.get("/{tool_id}")
def get_tool(tool_id: uuid.UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return ok(tool_store.get_tool(db, actor, tool_id))


@router.get("/{tool_id}/configuration")
def tool_configuration(tool_id: uuid.UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    """Sub-tools and in-use accessories of a tool, with value summary"""
    return ok(tool_store.tool_configuration(db, actor, tool_id))


# ---------- WRITE ----------

@router.post("")
def create_tool(body: ToolCreate, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return ok(tool_store.create_tool(db, actor, body), "Tool created")


@router.put("/{tool_id}")
def update_tool(
    tool_id: uuid.UUID,
    body: ToolUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return ok(tool_store.update_tool(db, actor, tool_id, body), "Tool updated")


@router.delete("/{tool_id}")
def delete_tool(tool_id: uuid.UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    """Soft delete; sub-tools and accessories follow"""
    return ok(lifecycle.soft_delete(db, actor, EntityType.tool, tool_id), "Tool deleted")


# ---------- CUSTODY ----------

@router.post("/{tool_id}/assign")
def assign_tool(
    tool_id: uuid.UUID,
    body: AssignToolRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    result = assignment.assign_tool(db, actor, tool_id, body.employee_id, body.condition, body.notes)
    return ok(result, "Tool assigned")


@router.post("/{tool_id}/revoke")
def revoke_tool(
    tool_id: uuid.UUID,
    body: Optional[RevokeRequest] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    body = body or RevokeRequest()
    result = assignment.revoke_tool(db, actor, tool_id, body.condition, body.notes)
    return ok(result, "Tool revoked")
