"""
Tool history service.
Append-only ledger of asset lifecycle events.
"""
import uuid
from collections import OrderedDict
from datetime import datetime
from typing import Optional, Dict, Any, List

import structlog
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..db import transaction
from ..errors import NotFoundError, ValidationError
from ..models.models import Tool, ToolHistory
from ..schemas.history import HistoryAction, HistoryCreate, HistoryUpdate, UPGRADE_ACTIONS
from .capabilities import (
    Actor,
    UPDATE_TOOL,
    MANAGE_SYSTEM,
    DELETE_HISTORY,
    VIEW_HISTORY,
    require_capability,
)
from .common import employee_brief, iso, paginate, utcnow
from .scoping import Scope, apply_scope, resolve_scope


logger = structlog.get_logger(__name__)

EDITABLE_FIELDS = ("condition", "condition_before", "condition_after", "notes", "description")


def _value(v):
    return v.value if hasattr(v, "value") else v


def record_event(
    db: Session,
    *,
    tool_id: uuid.UUID,
    action: HistoryAction,
    performed_by: uuid.UUID,
    sub_tool_id: Optional[uuid.UUID] = None,
    accessory_id: Optional[uuid.UUID] = None,
    employee_id: Optional[uuid.UUID] = None,
    previous_employee_id: Optional[uuid.UUID] = None,
    condition: Optional[str] = None,
    condition_before: Optional[str] = None,
    condition_after: Optional[str] = None,
    notes: Optional[str] = None,
    description: Optional[str] = None,
    upgrade_info: Optional[Dict[str, Any]] = None,
    attachments: Optional[List[str]] = None,
) -> ToolHistory:
    """
    Append a history entry inside the caller's transaction.

    Nothing is committed here: the entry lands or disappears together with the
    state change it describes.

    Args:
        db: Database session
        tool_id: Tool the event belongs to (always required)
        action: Closed-vocabulary action
        performed_by: Employee who performed the operation
        sub_tool_id: Sub-tool involved, if any
        accessory_id: Accessory involved, if any
        employee_id: New custodian
        previous_employee_id: Custodian before the operation
        condition: Condition recorded with the event (defaults to Mới)
        notes: Human readable sentence

    Returns:
        The pending ToolHistory row
    """
    if tool_id is None:
        raise ValidationError("History entry requires a tool")
    entry = ToolHistory(
        tool_id=tool_id,
        sub_tool_id=sub_tool_id,
        accessory_id=accessory_id,
        employee_id=employee_id,
        previous_employee_id=previous_employee_id,
        action=_value(action),
        condition=_value(condition) or "Mới",
        condition_before=_value(condition_before),
        condition_after=_value(condition_after),
        notes=notes,
        description=description,
        upgrade_info=upgrade_info,
        attachments=attachments,
        performed_by=performed_by,
        created_at=utcnow(),
    )
    db.add(entry)
    db.flush()
    return entry


def serialize_history(entry: ToolHistory) -> dict:
    tool = entry.tool
    sub_tool = entry.sub_tool
    accessory = entry.accessory
    return {
        "id": str(entry.id),
        "action": entry.action,
        "tool": {"id": str(entry.tool_id), "name": tool.name if tool else None, "code": tool.code if tool else None},
        "sub_tool": {"id": str(entry.sub_tool_id), "name": sub_tool.name if sub_tool else None} if entry.sub_tool_id else None,
        "accessory": {"id": str(entry.accessory_id), "name": accessory.name if accessory else None} if entry.accessory_id else None,
        "employee": employee_brief(entry.employee),
        "previous_employee": employee_brief(entry.previous_employee),
        "performed_by": employee_brief(entry.performer),
        "condition": entry.condition,
        "condition_before": entry.condition_before,
        "condition_after": entry.condition_after,
        "notes": entry.notes,
        "description": entry.description,
        "upgrade_info": entry.upgrade_info,
        "attachments": entry.attachments or [],
        "created_at": iso(entry.created_at),
        "updated_at": iso(entry.updated_at),
    }


def _scoped_history(db: Session, actor: Actor):
    query = db.query(ToolHistory)
    # Auditors read the whole ledger without any tool tier
    if actor.can(VIEW_HISTORY):
        return query
    scope = resolve_scope(actor)
    if scope == Scope.all:
        return query
    visible_tools = apply_scope(db.query(Tool.id), Tool, actor, scope).statement
    if scope == Scope.assigned:
        # Own events stay visible after the tool moves on
        return query.filter(
            or_(
                ToolHistory.tool_id.in_(visible_tools),
                ToolHistory.employee_id == actor.id,
                ToolHistory.previous_employee_id == actor.id,
            )
        )
    return query.filter(ToolHistory.tool_id.in_(visible_tools))


def list_history(
    db: Session,
    actor: Actor,
    *,
    tool_id: Optional[uuid.UUID] = None,
    sub_tool_id: Optional[uuid.UUID] = None,
    accessory_id: Optional[uuid.UUID] = None,
    employee_id: Optional[uuid.UUID] = None,
    action: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: Optional[int] = None,
    limit: Optional[int] = None,
) -> dict:
    """
    List history events, newest first.

    Args:
        db: Database session
        actor: Caller; view_history sees the whole log, anyone else
            follows their tool visibility tier
        employee_id: Matches either the new or the previous custodian
        start_date: Inclusive lower bound on created_at
        end_date: Inclusive upper bound on created_at

    Returns:
        Dict with ``events`` and ``pagination``
    """
    query = _scoped_history(db, actor)
    if tool_id:
        query = query.filter(ToolHistory.tool_id == tool_id)
    if sub_tool_id:
        query = query.filter(ToolHistory.sub_tool_id == sub_tool_id)
    if accessory_id:
        query = query.filter(ToolHistory.accessory_id == accessory_id)
    if employee_id:
        query = query.filter(
            or_(ToolHistory.employee_id == employee_id, ToolHistory.previous_employee_id == employee_id)
        )
    if action:
        query = query.filter(ToolHistory.action == _value(action))
    if start_date:
        query = query.filter(ToolHistory.created_at >= start_date)
    if end_date:
        query = query.filter(ToolHistory.created_at <= end_date)
    query = query.order_by(ToolHistory.created_at.desc())
    rows, pagination = paginate(query, page, limit)
    return {"events": [serialize_history(r) for r in rows], "pagination": pagination}


def get_history(db: Session, actor: Actor, history_id: uuid.UUID) -> dict:
    entry = _scoped_history(db, actor).filter(ToolHistory.id == history_id).first()
    if not entry:
        raise NotFoundError("History entry not found")
    return serialize_history(entry)


def history_stats(
    db: Session,
    actor: Actor,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> dict:
    query = _scoped_history(db, actor)
    if start_date:
        query = query.filter(ToolHistory.created_at >= start_date)
    if end_date:
        query = query.filter(ToolHistory.created_at <= end_date)
    total = query.count()
    by_action = (
        query.with_entities(ToolHistory.action, func.count(ToolHistory.id))
        .group_by(ToolHistory.action)
        .order_by(func.count(ToolHistory.id).desc())
        .all()
    )
    recent = query.order_by(ToolHistory.created_at.desc()).limit(10).all()
    return {
        "total": total,
        "by_action": [{"action": a, "count": c} for a, c in by_action],
        "recent": [serialize_history(r) for r in recent],
    }


def upgrade_history(db: Session, actor: Actor, tool_id: Optional[uuid.UUID] = None) -> List[dict]:
    query = _scoped_history(db, actor).filter(ToolHistory.action.in_([a.value for a in UPGRADE_ACTIONS]))
    if tool_id:
        query = query.filter(ToolHistory.tool_id == tool_id)
    return [serialize_history(r) for r in query.order_by(ToolHistory.created_at.desc()).all()]


def tool_timeline(db: Session, actor: Actor, tool_id: uuid.UUID) -> dict:
    """All events of one tool, oldest first, grouped by year."""
    rows = (
        _scoped_history(db, actor)
        .filter(ToolHistory.tool_id == tool_id)
        .order_by(ToolHistory.created_at.asc())
        .all()
    )
    by_year: "OrderedDict[str, list]" = OrderedDict()
    for r in rows:
        year = str(r.created_at.year) if r.created_at else "unknown"
        by_year.setdefault(year, []).append(serialize_history(r))
    upgrade_values = {a.value for a in UPGRADE_ACTIONS}
    return {
        "tool_id": str(tool_id),
        "timeline": [{"year": y, "events": events} for y, events in by_year.items()],
        "stats": {
            "total_events": len(rows),
            "tool_actions": sum(1 for r in rows if not r.sub_tool_id and not r.accessory_id),
            "sub_tool_actions": sum(1 for r in rows if r.sub_tool_id and not r.accessory_id),
            "accessory_actions": sum(1 for r in rows if r.accessory_id),
            "upgrades": sum(1 for r in rows if r.action in upgrade_values),
        },
    }


def create_history(db: Session, actor: Actor, data: HistoryCreate) -> dict:
    """Manual entry (maintenance, repair, ...) written by an operator."""
    require_capability(actor, UPDATE_TOOL)
    with transaction(db):
        tool = db.query(Tool).filter(Tool.id == data.tool_id, Tool.is_delete == False).first()  # noqa: E712
        if not tool:
            raise NotFoundError("Tool not found")
        entry = record_event(
            db,
            tool_id=tool.id,
            action=data.action,
            performed_by=actor.id,
            sub_tool_id=data.sub_tool_id,
            accessory_id=data.accessory_id,
            employee_id=data.employee_id or tool.assigned_to,
            condition=data.condition or tool.condition,
            condition_before=data.condition_before,
            condition_after=data.condition_after,
            notes=data.notes,
            description=data.description,
            upgrade_info=data.upgrade_info,
            attachments=data.attachments,
        )
    db.refresh(entry)
    logger.info("history_created", history_id=str(entry.id), action=entry.action)
    return serialize_history(entry)


def update_history(db: Session, actor: Actor, history_id: uuid.UUID, data: HistoryUpdate) -> dict:
    """Only descriptive fields are writable; the event itself is immutable."""
    require_capability(actor, UPDATE_TOOL)
    changes = data.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("Nothing to update")
    with transaction(db):
        entry = db.query(ToolHistory).filter(ToolHistory.id == history_id).with_for_update().first()
        if not entry:
            raise NotFoundError("History entry not found")
        for k in EDITABLE_FIELDS:
            if k in changes:
                setattr(entry, k, _value(changes[k]))
        entry.updated_at = utcnow()
    db.refresh(entry)
    return serialize_history(entry)


def purge_history(db: Session, actor: Actor, history_id: uuid.UUID) -> None:
    require_capability(actor, MANAGE_SYSTEM, DELETE_HISTORY)
    with transaction(db):
        entry = db.query(ToolHistory).filter(ToolHistory.id == history_id).first()
        if not entry:
            raise NotFoundError("History entry not found")
        db.delete(entry)
    logger.info("history_purged", history_id=str(history_id), performed_by=str(actor.id))
