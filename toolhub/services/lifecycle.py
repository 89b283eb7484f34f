"""
Lifecycle engine: cascading soft delete, restore and permanent delete across
the Tool -> SubTool -> Accessory hierarchy, plus the review tree of deleted rows.
"""
import uuid
from typing import Optional, List

import structlog
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from ..db import transaction
from ..errors import NotFoundError, PermissionDeniedError, PreconditionFailedError, ValidationError
from ..models.models import Accessory, Employee, SubTool, Tool
from ..schemas.history import HistoryAction
from ..schemas.tools import EntityType, ENTITY_TYPE_LABELS, ENTITY_TYPE_LEVELS, RETIRED_STATUSES, ToolStatus
from .capabilities import (
    Actor,
    DELETE_TOOL,
    RESTORE_TOOL,
    PERMANENT_DELETE_TOOL,
    VIEW_ALL_TOOLS,
    VIEW_DEPARTMENT_TOOLS,
    require_capability,
)
from .common import clamp_page, employee_brief, iso, require_id, utcnow
from .history import record_event
from .scoping import Scope, apply_scope, ensure_department_access
from .sub_tools import refresh_has_accessorys


logger = structlog.get_logger(__name__)

_MODELS = {
    EntityType.tool: Tool,
    EntityType.sub_tool: SubTool,
    EntityType.accessory: Accessory,
}

_LABELS = {
    EntityType.tool: "Tool",
    EntityType.sub_tool: "Sub-tool",
    EntityType.accessory: "Accessory",
}


def _entity_type(value) -> EntityType:
    try:
        return EntityType(value)
    except ValueError:
        raise ValidationError(f"Unknown entity type: {value}")


def _load(db: Session, entity_type: EntityType, entity_id: uuid.UUID):
    model = _MODELS[entity_type]
    row = db.query(model).filter(model.id == entity_id).with_for_update().first()
    if not row:
        raise NotFoundError(f"{_LABELS[entity_type]} not found")
    return row


def _mark_deleted(row, actor: Actor, now) -> None:
    row.is_delete = True
    row.deleted_at = now
    row.deleted_by = actor.id
    row.updated_at = now


def _mark_restored(row, actor: Actor, now) -> None:
    row.is_delete = False
    row.deleted_at = None
    row.deleted_by = None
    row.restored_at = now
    row.restored_by = actor.id
    row.updated_at = now


def _sync_custody(row, parent) -> bool:
    """Copy custody from a live parent; without one the row comes back unassigned.

    Broken or liquidated rows take the parent's location but never a custodian.
    """
    if parent is not None and not parent.is_delete:
        retired = row.status in RETIRED_STATUSES
        row.assigned_to = None if retired else parent.assigned_to
        row.assigned_date = None if retired else parent.assigned_date
        row.unit_id = parent.unit_id
        row.department_id = parent.department_id
        synced = True
    else:
        row.assigned_to = None
        row.assigned_date = None
        row.unit_id = None
        row.department_id = None
        synced = False
    if row.status in (ToolStatus.available.value, ToolStatus.in_use.value):
        row.status = (ToolStatus.in_use if row.assigned_to else ToolStatus.available).value
    return synced


# ---------- SOFT DELETE ----------

def soft_delete(db: Session, actor: Actor, entity_type, entity_id) -> dict:
    """
    Hide an entity and everything beneath it.

    Children are not permission-checked individually; the check on the
    entity authorises the subtree.

    Returns:
        Dict with ``type``, ``id`` and ``deleted`` cascade counts
    """
    require_capability(actor, DELETE_TOOL)
    entity_type = _entity_type(entity_type)
    entity_id = require_id(entity_id, "id")
    sub_count = 0
    acc_count = 0
    with transaction(db):
        row = _load(db, entity_type, entity_id)
        if row.is_delete:
            raise NotFoundError(f"{_LABELS[entity_type]} not found")
        ensure_department_access(row, actor, _LABELS[entity_type])
        now = utcnow()
        _mark_deleted(row, actor, now)

        if entity_type == EntityType.tool:
            sub_tools = (
                db.query(SubTool)
                .filter(SubTool.parent_tool_id == row.id, SubTool.is_delete == False)  # noqa: E712
                .with_for_update()
                .all()
            )
            for s in sub_tools:
                _mark_deleted(s, actor, now)
            accessories = (
                db.query(Accessory)
                .filter(Accessory.parent_tool_id == row.id, Accessory.is_delete == False)  # noqa: E712
                .with_for_update()
                .all()
            )
            for a in accessories:
                _mark_deleted(a, actor, now)
            sub_count, acc_count = len(sub_tools), len(accessories)
        elif entity_type == EntityType.sub_tool:
            accessories = (
                db.query(Accessory)
                .filter(Accessory.sub_tool_id == row.id, Accessory.is_delete == False)  # noqa: E712
                .with_for_update()
                .all()
            )
            for a in accessories:
                _mark_deleted(a, actor, now)
            acc_count = len(accessories)
        else:
            sub_tool = db.query(SubTool).filter(SubTool.id == row.sub_tool_id).with_for_update().first()
            if sub_tool is not None:
                refresh_has_accessorys(db, sub_tool)
        db.flush()
    logger.info(
        "entity_soft_deleted",
        entity_type=entity_type.value,
        entity_id=str(entity_id),
        sub_tools=sub_count,
        accessories=acc_count,
    )
    return {
        "type": entity_type.value,
        "id": str(entity_id),
        "deleted": {"sub_tools": sub_count, "accessories": acc_count, "total": 1 + sub_count + acc_count},
    }


# ---------- RESTORE ----------

def restore(db: Session, actor: Actor, entity_type, entity_id) -> dict:
    """
    Bring back a soft-deleted entity and its deleted descendants.

    Restored sub-tools and accessories take custody from the current state of
    their live parent, not from what they held before deletion.

    Returns:
        Dict with ``type``, ``id``, ``restored`` counts, ``synced_with_parent``,
        ``assigned_to`` and ``history_id``
    """
    require_capability(actor, RESTORE_TOOL)
    entity_type = _entity_type(entity_type)
    entity_id = require_id(entity_id, "id")
    sub_count = 0
    acc_count = 0
    synced = True
    with transaction(db):
        row = _load(db, entity_type, entity_id)
        if not row.is_delete:
            raise PreconditionFailedError(f"{_LABELS[entity_type]} is not deleted")
        ensure_department_access(row, actor, _LABELS[entity_type])
        now = utcnow()
        _mark_restored(row, actor, now)

        if entity_type == EntityType.tool:
            tool_id, sub_tool_id, accessory_id = row.id, None, None
            sub_tools = (
                db.query(SubTool)
                .filter(SubTool.parent_tool_id == row.id, SubTool.is_delete == True)  # noqa: E712
                .with_for_update()
                .all()
            )
            for s in sub_tools:
                _mark_restored(s, actor, now)
                _sync_custody(s, row)
            accessories = (
                db.query(Accessory)
                .filter(Accessory.parent_tool_id == row.id, Accessory.is_delete == True)  # noqa: E712
                .with_for_update()
                .all()
            )
            db.flush()
            for a in accessories:
                _mark_restored(a, actor, now)
                _sync_custody(a, db.get(SubTool, a.sub_tool_id))
            sub_count, acc_count = len(sub_tools), len(accessories)
            touched = {s.id for s in sub_tools} | {a.sub_tool_id for a in accessories}
            for sid in touched:
                holder = db.get(SubTool, sid)
                if holder is not None and not holder.is_delete:
                    refresh_has_accessorys(db, holder)
        elif entity_type == EntityType.sub_tool:
            tool_id, sub_tool_id, accessory_id = row.parent_tool_id, row.id, None
            parent = db.query(Tool).filter(Tool.id == row.parent_tool_id).with_for_update().first()
            synced = _sync_custody(row, parent)
            accessories = (
                db.query(Accessory)
                .filter(Accessory.sub_tool_id == row.id, Accessory.is_delete == True)  # noqa: E712
                .with_for_update()
                .all()
            )
            for a in accessories:
                _mark_restored(a, actor, now)
                _sync_custody(a, row)
            acc_count = len(accessories)
            refresh_has_accessorys(db, row)
        else:
            tool_id, sub_tool_id, accessory_id = row.parent_tool_id, row.sub_tool_id, row.id
            sub_tool = db.query(SubTool).filter(SubTool.id == row.sub_tool_id).with_for_update().first()
            synced = _sync_custody(row, sub_tool)
            if sub_tool is not None and not sub_tool.is_delete:
                refresh_has_accessorys(db, sub_tool)
        db.flush()

        entry = record_event(
            db,
            tool_id=tool_id,
            sub_tool_id=sub_tool_id,
            accessory_id=accessory_id,
            action=HistoryAction.restore,
            performed_by=actor.id,
            employee_id=row.assigned_to,
            condition=row.condition,
            notes=f"Restore {_LABELS[entity_type].lower()} {row.name}"
            + ("" if synced else " without a live parent; left unassigned"),
        )
        assignee = employee_brief(db.get(Employee, row.assigned_to)) if row.assigned_to else None
    logger.info(
        "entity_restored",
        entity_type=entity_type.value,
        entity_id=str(entity_id),
        synced_with_parent=synced,
        sub_tools=sub_count,
        accessories=acc_count,
    )
    return {
        "type": entity_type.value,
        "id": str(entity_id),
        "restored": {"sub_tools": sub_count, "accessories": acc_count, "total": 1 + sub_count + acc_count},
        "synced_with_parent": synced,
        "assigned_to": assignee,
        "history_id": str(entry.id),
    }


# ---------- PERMANENT DELETE ----------

def permanent_delete(db: Session, actor: Actor, entity_type, entity_id) -> dict:
    """
    Irrevocably remove an entity and its descendants.

    Tools may be purged while live; sub-tools and accessories must be
    soft-deleted first. History entries are kept and none is written.
    """
    require_capability(actor, PERMANENT_DELETE_TOOL)
    entity_type = _entity_type(entity_type)
    entity_id = require_id(entity_id, "id")
    sub_count = 0
    acc_count = 0
    with transaction(db):
        row = _load(db, entity_type, entity_id)
        if entity_type != EntityType.tool and not row.is_delete:
            raise PreconditionFailedError(
                f"{_LABELS[entity_type]} must be deleted before it can be removed permanently"
            )
        ensure_department_access(row, actor, _LABELS[entity_type])

        if entity_type == EntityType.tool:
            sub_ids = select(SubTool.id).where(SubTool.parent_tool_id == row.id)
            acc_count = (
                db.query(Accessory)
                .filter(or_(Accessory.parent_tool_id == row.id, Accessory.sub_tool_id.in_(sub_ids)))
                .delete(synchronize_session=False)
            )
            sub_count = (
                db.query(SubTool)
                .filter(SubTool.parent_tool_id == row.id)
                .delete(synchronize_session=False)
            )
            db.query(Tool).filter(Tool.id == row.id).delete(synchronize_session=False)
        elif entity_type == EntityType.sub_tool:
            acc_count = (
                db.query(Accessory)
                .filter(Accessory.sub_tool_id == row.id)
                .delete(synchronize_session=False)
            )
            db.query(SubTool).filter(SubTool.id == row.id).delete(synchronize_session=False)
        else:
            sub_tool_id = row.sub_tool_id
            db.query(Accessory).filter(Accessory.id == row.id).delete(synchronize_session=False)
            sub_tool = db.query(SubTool).filter(SubTool.id == sub_tool_id).with_for_update().first()
            if sub_tool is not None and not sub_tool.is_delete:
                refresh_has_accessorys(db, sub_tool)
        db.expunge(row)
    total = 1 + sub_count + acc_count
    logger.info(
        "entity_permanently_deleted",
        entity_type=entity_type.value,
        entity_id=str(entity_id),
        sub_tools=sub_count,
        accessories=acc_count,
    )
    return {
        "type": entity_type.value,
        "id": str(entity_id),
        "deleted_items": {
            "tool": 1 if entity_type == EntityType.tool else 0,
            "sub_tools": sub_count + (1 if entity_type == EntityType.sub_tool else 0),
            "accessories": acc_count + (1 if entity_type == EntityType.accessory else 0),
            "total": total,
        },
    }


# ---------- DELETED TREE ----------

def _deleted_item(row, entity_type: EntityType) -> dict:
    return {
        "id": str(row.id),
        "type": entity_type.value,
        "type_label": ENTITY_TYPE_LABELS[entity_type],
        "level": ENTITY_TYPE_LEVELS[entity_type],
        "code": row.code,
        "name": row.name,
        "status": row.status,
        "condition": row.condition,
        "assigned_to": employee_brief(row.assignee),
        "deleted_at": iso(row.deleted_at),
        "deleted_by": str(row.deleted_by) if row.deleted_by else None,
    }


def list_deleted(
    db: Session,
    actor: Actor,
    entity_type: Optional[str] = None,
    page: Optional[int] = None,
    limit: Optional[int] = None,
) -> dict:
    """
    Soft-deleted rows as a review tree.

    Deleted tools carry their deleted sub-tools (with their accessories) and
    ``children_count``. Deleted sub-tools and accessories whose parent is not
    itself deleted are listed as orphans at the top level.
    """
    if actor.can(VIEW_ALL_TOOLS):
        scope = Scope.all
    elif actor.can(VIEW_DEPARTMENT_TOOLS):
        scope = Scope.department
    else:
        raise PermissionDeniedError("You do not have permission to view deleted items")
    only = _entity_type(entity_type) if entity_type else None

    tools = apply_scope(db.query(Tool).filter(Tool.is_delete == True), Tool, actor, scope).all()  # noqa: E712
    sub_tools = apply_scope(db.query(SubTool).filter(SubTool.is_delete == True), SubTool, actor, scope).all()  # noqa: E712
    accessories = apply_scope(db.query(Accessory).filter(Accessory.is_delete == True), Accessory, actor, scope).all()  # noqa: E712

    tool_ids = {t.id for t in tools}
    sub_ids = {s.id for s in sub_tools}
    acc_by_sub = {}
    for a in accessories:
        acc_by_sub.setdefault(a.sub_tool_id, []).append(a)

    def sub_node(s: SubTool) -> dict:
        node = _deleted_item(s, EntityType.sub_tool)
        node["parent_tool_id"] = str(s.parent_tool_id)
        node["children"] = [_deleted_item(a, EntityType.accessory) for a in acc_by_sub.get(s.id, [])]
        return node

    items: List[dict] = []
    for t in tools:
        node = _deleted_item(t, EntityType.tool)
        children = [sub_node(s) for s in sub_tools if s.parent_tool_id == t.id]
        loose = [
            _deleted_item(a, EntityType.accessory)
            for a in accessories
            if a.parent_tool_id == t.id and a.sub_tool_id not in sub_ids
        ]
        acc_total = sum(len(c["children"]) for c in children) + len(loose)
        node["children"] = children
        node["accessories"] = loose
        node["children_count"] = {
            "sub_tools": len(children),
            "accessories": acc_total,
            "total": len(children) + acc_total,
        }
        items.append(node)

    orphan_sub_tools = [sub_node(s) for s in sub_tools if s.parent_tool_id not in tool_ids]
    orphan_accessories = [
        _deleted_item(a, EntityType.accessory)
        for a in accessories
        if a.sub_tool_id not in sub_ids and a.parent_tool_id not in tool_ids
    ]
    for node in orphan_sub_tools + orphan_accessories:
        node["orphan"] = True
    items.extend(orphan_sub_tools)
    items.extend(orphan_accessories)

    if only is not None:
        items = [i for i in items if i["type"] == only.value]
    items.sort(key=lambda i: i["deleted_at"] or "", reverse=True)

    page, limit = clamp_page(page, limit)
    total = len(items)
    start = (page - 1) * limit
    return {
        "items": items[start:start + limit],
        "orphans": {
            "sub_tools": len(orphan_sub_tools),
            "accessories": len(orphan_accessories),
        },
        "summary": {
            "tools": len(tools),
            "sub_tools": len(sub_tools),
            "accessories": len(accessories),
            "total": len(tools) + len(sub_tools) + len(accessories),
        },
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": -(-total // limit) if total else 0,
        },
    }
