import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_current_actor
from ..schemas.history import HistoryAction, HistoryCreate, HistoryUpdate
from ..services import history as history_store
from ..services.capabilities import Actor
from .responses import ok

router = APIRouter(prefix="/history", tags=["history"])


@router.get("")
def list_history(
    tool_id: Optional[uuid.UUID] = None,
    sub_tool_id: Optional[uuid.UUID] = None,
    accessory_id: Optional[uuid.UUID] = None,
    employee_id: Optional[uuid.UUID] = None,
    action: Optional[HistoryAction] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    result = history_store.list_history(
        db,
        actor,
        tool_id=tool_id,
        sub_tool_id=sub_tool_id,
        accessory_id=accessory_id,
        employee_id=employee_id,
        action=action,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return ok(result["events"], pagination=result["pagination"])


@router.get("/stats")
def history_stats(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return ok(history_store.history_stats(db, actor, start_date, end_date))


@router.get("/upgrades")
def upgrade_history(
    tool_id: Optional[uuid.UUID] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return ok(history_store.upgrade_history(db, actor, tool_id))


@router.get("/tools/{tool_id}/timeline")
def tool_timeline(tool_id: uuid.UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return ok(history_store.tool_timeline(db, actor, tool_id))


@router.get("/{history_id}")
def get_history(history_id: uuid.UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return ok(history_store.get_history(db, actor, history_id))


@router.post("")
def create_history(body: HistoryCreate, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return ok(history_store.create_history(db, actor, body), "History entry created")


@router.put("/{history_id}")
def update_history(
    history_id: uuid.UUID,
    body: HistoryUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return ok(history_store.update_history(db, actor, history_id, body), "History entry updated")


@router.delete("/{history_id}")
def purge_history(history_id: uuid.UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    history_store.purge_history(db, actor, history_id)
    return ok(None, "History entry deleted")
