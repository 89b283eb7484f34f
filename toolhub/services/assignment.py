"""
Assignment engine.

Assign, transfer and revoke custody of tools, sub-tools and accessories.
Each call is one transaction: the gating reads, every row update and the
history entry are committed together or not at all.
"""
import uuid
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from ..db import transaction
from ..errors import NotFoundError, PreconditionFailedError
from ..models.models import Accessory, Employee, SubTool, Tool
from ..schemas.history import HistoryAction
from ..schemas.tools import RETIRED_STATUSES, ToolStatus
from .accessories import get_live_accessory, serialize_accessory
from .capabilities import Actor, ASSIGN_TOOL, REVOKE_TOOL, require_capability
from .common import employee_brief, get_employee, require_id, utcnow
from .history import record_event
from .scoping import ensure_department_access
from .sub_tools import get_live_sub_tool, live_accessories_of, refresh_has_accessorys, serialize_sub_tool
from .tools import get_live_tool, serialize_tool


logger = structlog.get_logger(__name__)

UNASSIGNED = "unassigned"


def _value(v):
    return v.value if hasattr(v, "value") else v


# ---------- NOTES ----------

def with_caller_notes(text: str, notes: Optional[str]) -> str:
    if notes and notes.strip():
        return f"{text}. {notes.strip()}"
    return text


def tool_assign_note(tool_name: str, old_name: Optional[str], new_name: str) -> str:
    if old_name:
        return f"Transfer tool {tool_name} from {old_name} to {new_name}"
    return f"Assign tool {tool_name} to {new_name}"


def sub_tool_assign_note(
    part_name: str,
    old_name: Optional[str],
    new_name: str,
    moved_from_tool: Optional[str] = None,
    migrated: int = 0,
) -> str:
    if moved_from_tool:
        text = f"Move part {part_name} from tool {moved_from_tool} to new tool and assign to {new_name}"
        if old_name:
            text += f" (from {old_name})"
        if migrated:
            text += f". Moved {migrated} accessories along"
        return text
    if old_name:
        text = f"Transfer part {part_name} from {old_name} to {new_name}"
        if migrated:
            text += f". {migrated} accessories also transferred"
        return text
    text = f"Assign part {part_name} to {new_name}"
    if migrated:
        text += f" (including {migrated} accessories)"
    return text


def accessory_assign_note(
    accessory_name: str,
    old_name: Optional[str],
    new_name: str,
    moved_from: Optional[str] = None,
    moved_to: Optional[str] = None,
    chained: Optional[str] = None,
) -> str:
    if moved_from:
        text = f"Move accessory {accessory_name} from {moved_from} to {moved_to} and assign to {new_name}"
        if old_name:
            text += f" (from {old_name})"
    elif old_name:
        text = f"Transfer accessory {accessory_name} from {old_name} to {new_name}"
    else:
        text = f"Assign accessory {accessory_name} to {new_name}"
    if chained:
        text += f". Sub-tool {chained} assigned to {new_name} first"
    return text


# ---------- HELPERS ----------

def _take_custody(row, employee: Employee, now, condition=None) -> None:
    row.assigned_to = employee.id
    row.assigned_date = now
    row.unit_id = employee.unit_id
    row.department_id = employee.department_id
    row.status = ToolStatus.in_use.value
    if condition:
        row.condition = _value(condition)
    row.updated_at = now


def _release_custody(row, now, condition=None, keep_location: bool = False) -> None:
    row.assigned_to = None
    row.assigned_date = None
    if not keep_location:
        row.unit_id = None
        row.department_id = None
    row.status = ToolStatus.available.value
    if condition:
        row.condition = _value(condition)
    row.updated_at = now


def _lock_tool(db: Session, tool_id: uuid.UUID) -> Tool:
    tool = db.query(Tool).filter(Tool.id == tool_id).with_for_update().first()
    if not tool or tool.is_delete:
        raise NotFoundError("Parent tool not found")
    return tool


# ---------- TOOL ----------

def assign_tool(
    db: Session,
    actor: Actor,
    tool_id,
    employee_id,
    condition: Optional[str] = None,
    notes: Optional[str] = None,
) -> dict:
    """
    Assign a tool to an employee, or transfer it if someone already holds it.

    Every live sub-tool and accessory under the tool follows silently, except
    broken or liquidated parts; only the tool itself gets a history entry.

    Returns:
        Dict with the updated ``tool``, ``cascaded`` counts and ``history_id``
    """
    require_capability(actor, ASSIGN_TOOL)
    tool_id = require_id(tool_id, "tool_id")
    employee_id = require_id(employee_id, "employee_id")
    with transaction(db):
        tool = get_live_tool(db, tool_id, lock=True)
        ensure_department_access(tool, actor, "Tool")
        employee = get_employee(db, employee_id)
        if tool.assigned_to == employee.id:
            raise PreconditionFailedError(f"Tool {tool.code} is already assigned to {employee.name}")
        previous = tool.assignee
        previous_id = tool.assigned_to
        condition_before = tool.condition
        now = utcnow()

        _take_custody(tool, employee, now, condition)

        sub_tools = (
            db.query(SubTool)
            .filter(
                SubTool.parent_tool_id == tool.id,
                SubTool.is_delete == False,  # noqa: E712
                SubTool.status.notin_(RETIRED_STATUSES),
            )
            .order_by(SubTool.created_at)
            .with_for_update()
            .all()
        )
        for s in sub_tools:
            _take_custody(s, employee, now, condition)
        accessories = (
            db.query(Accessory)
            .filter(
                Accessory.parent_tool_id == tool.id,
                Accessory.is_delete == False,  # noqa: E712
                Accessory.status.notin_(RETIRED_STATUSES),
            )
            .order_by(Accessory.created_at)
            .with_for_update()
            .all()
        )
        for a in accessories:
            _take_custody(a, employee, now, condition)
        db.flush()

        entry = record_event(
            db,
            tool_id=tool.id,
            action=HistoryAction.transfer if previous_id else HistoryAction.assign,
            performed_by=actor.id,
            employee_id=employee.id,
            previous_employee_id=previous_id,
            condition=_value(condition) or tool.condition,
            condition_before=condition_before,
            condition_after=tool.condition,
            notes=with_caller_notes(
                tool_assign_note(tool.name, previous.name if previous else None, employee.name), notes
            ),
        )
    db.refresh(tool)
    logger.info(
        "tool_assigned",
        tool_id=str(tool.id),
        employee_id=str(employee.id),
        previous_employee_id=str(previous_id) if previous_id else None,
        sub_tools=len(sub_tools),
        accessories=len(accessories),
    )
    return {
        "tool": serialize_tool(tool),
        "cascaded": {"sub_tools": len(sub_tools), "accessories": len(accessories)},
        "history_id": str(entry.id),
    }


def revoke_tool(
    db: Session,
    actor: Actor,
    tool_id,
    condition: Optional[str] = None,
    notes: Optional[str] = None,
) -> dict:
    """
    Take a tool back from its holder.

    Sub-tools and accessories held by the same employee come back with it;
    parts delegated to someone else stay where they are.
    """
    require_capability(actor, ASSIGN_TOOL)
    tool_id = require_id(tool_id, "tool_id")
    with transaction(db):
        tool = get_live_tool(db, tool_id, lock=True)
        ensure_department_access(tool, actor, "Tool")
        if not tool.assigned_to:
            raise PreconditionFailedError(f"Tool {tool.code} is not assigned to anyone")
        previous = tool.assignee
        previous_id = tool.assigned_to
        condition_before = tool.condition
        now = utcnow()

        _release_custody(tool, now, condition)

        sub_tools = (
            db.query(SubTool)
            .filter(
                SubTool.parent_tool_id == tool.id,
                SubTool.assigned_to == previous_id,
                SubTool.is_delete == False,  # noqa: E712
            )
            .with_for_update()
            .all()
        )
        for s in sub_tools:
            _release_custody(s, now)
        accessories = (
            db.query(Accessory)
            .filter(
                Accessory.parent_tool_id == tool.id,
                Accessory.assigned_to == previous_id,
                Accessory.is_delete == False,  # noqa: E712
            )
            .with_for_update()
            .all()
        )
        for a in accessories:
            _release_custody(a, now)
        db.flush()

        text = with_caller_notes(f"Revoke tool {tool.name} from {previous.name}", notes)
        entry = record_event(
            db,
            tool_id=tool.id,
            action=HistoryAction.revoke,
            performed_by=actor.id,
            employee_id=None,
            previous_employee_id=previous_id,
            condition=tool.condition,
            condition_before=condition_before,
            condition_after=tool.condition,
            notes=text,
        )
    db.refresh(tool)
    logger.info(
        "tool_revoked",
        tool_id=str(tool.id),
        previous_employee_id=str(previous_id),
        sub_tools=len(sub_tools),
        accessories=len(accessories),
    )
    return {
        "tool": serialize_tool(tool),
        "previous_assignee": employee_brief(previous),
        "cascaded": {"sub_tools": len(sub_tools), "accessories": len(accessories)},
        "notes": text,
        "history_id": str(entry.id),
    }


# ---------- SUB-TOOL ----------

def assign_sub_tool(
    db: Session,
    actor: Actor,
    sub_tool_id,
    employee_id,
    target_tool_id=None,
    condition: Optional[str] = None,
    notes: Optional[str] = None,
) -> dict:
    """
    Assign or transfer a sub-tool, optionally moving it under another tool.

    The destination tool (the current parent when no target is given) must
    already be held by the employee. A move between tools also requires both
    tools to share a category. Accessories of the sub-tool move with it.

    Returns:
        Dict with ``sub_tool``, ``migrated_count``, ``changes`` and ``history_id``
    """
    require_capability(actor, ASSIGN_TOOL)
    sub_tool_id = require_id(sub_tool_id, "sub_tool_id")
    employee_id = require_id(employee_id, "employee_id")
    target_tool_id = require_id(target_tool_id, "target_tool_id") if target_tool_id else None
    with transaction(db):
        sub_tool = get_live_sub_tool(db, sub_tool_id, lock=True)
        ensure_department_access(sub_tool, actor, "Sub-tool")
        employee = get_employee(db, employee_id)
        current_parent = _lock_tool(db, sub_tool.parent_tool_id)
        moving = target_tool_id is not None and target_tool_id != sub_tool.parent_tool_id

        if moving:
            target = db.query(Tool).filter(Tool.id == target_tool_id).with_for_update().first()
            if not target or target.is_delete:
                raise NotFoundError("Target tool not found")
            if target.assigned_to != employee.id:
                raise PreconditionFailedError(
                    f"Target tool ({target.code}) is not assigned to employee {employee.name}"
                )
            category_id = sub_tool.category_id or current_parent.category_id
            if target.category_id != category_id:
                raise PreconditionFailedError(
                    f"Target tool ({target.code}) belongs to a different category than sub-tool {sub_tool.code}"
                )
            destination = target
        else:
            if sub_tool.assigned_to == employee.id:
                raise PreconditionFailedError(f"Sub-tool {sub_tool.code} is already assigned to {employee.name}")
            if current_parent.assigned_to != employee.id:
                raise PreconditionFailedError(
                    f"Parent tool ({current_parent.code}) is not assigned to employee {employee.name}"
                )
            destination = current_parent

        previous = sub_tool.assignee
        previous_id = sub_tool.assigned_to
        condition_before = sub_tool.condition
        now = utcnow()

        _take_custody(sub_tool, employee, now, condition)
        if moving:
            sub_tool.parent_tool_id = destination.id

        migrated = 0
        if sub_tool.has_accessorys:
            for a in live_accessories_of(db, sub_tool.id, lock=True):
                a.parent_tool_id = destination.id
                if a.status in RETIRED_STATUSES:
                    continue
                _take_custody(a, employee, now)
                migrated += 1
        db.flush()

        if moving:
            action = HistoryAction.move_part
        elif previous_id:
            action = HistoryAction.transfer
        else:
            action = HistoryAction.assign
        entry = record_event(
            db,
            tool_id=destination.id,
            sub_tool_id=sub_tool.id,
            action=action,
            performed_by=actor.id,
            employee_id=employee.id,
            previous_employee_id=previous_id,
            condition=_value(condition) or sub_tool.condition,
            condition_before=condition_before,
            condition_after=sub_tool.condition,
            notes=with_caller_notes(
                sub_tool_assign_note(
                    sub_tool.name,
                    previous.name if previous else None,
                    employee.name,
                    moved_from_tool=current_parent.name if moving else None,
                    migrated=migrated,
                ),
                notes,
            ),
        )
        changes = {
            "old_parent_tool": {"id": str(current_parent.id), "code": current_parent.code, "name": current_parent.name},
            "new_parent_tool": {"id": str(destination.id), "code": destination.code, "name": destination.name},
            "old_employee": previous.name if previous else UNASSIGNED,
            "new_employee": employee.name,
            "transferred": moving,
        }
    db.refresh(sub_tool)
    logger.info(
        "sub_tool_assigned",
        sub_tool_id=str(sub_tool.id),
        employee_id=str(employee.id),
        moved=moving,
        migrated=migrated,
    )
    return {
        "sub_tool": serialize_sub_tool(sub_tool),
        "migrated_count": migrated,
        "changes": changes,
        "history_id": str(entry.id),
    }


def revoke_sub_tool(
    db: Session,
    actor: Actor,
    sub_tool_id,
    condition: Optional[str] = None,
    notes: Optional[str] = None,
) -> dict:
    """Clear a sub-tool's own custody; the parent tool is left as it is."""
    require_capability(actor, REVOKE_TOOL)
    sub_tool_id = require_id(sub_tool_id, "sub_tool_id")
    with transaction(db):
        sub_tool = get_live_sub_tool(db, sub_tool_id, lock=True)
        ensure_department_access(sub_tool, actor, "Sub-tool")
        if not sub_tool.assigned_to:
            raise PreconditionFailedError(f"Sub-tool {sub_tool.code} is not assigned to anyone")
        previous = sub_tool.assignee
        previous_id = sub_tool.assigned_to
        condition_before = sub_tool.condition
        _release_custody(sub_tool, utcnow(), condition, keep_location=True)
        db.flush()
        entry = record_event(
            db,
            tool_id=sub_tool.parent_tool_id,
            sub_tool_id=sub_tool.id,
            action=HistoryAction.revoke,
            performed_by=actor.id,
            employee_id=None,
            previous_employee_id=previous_id,
            condition=sub_tool.condition,
            condition_before=condition_before,
            condition_after=sub_tool.condition,
            notes=with_caller_notes(f"Revoke part {sub_tool.name} from {previous.name}", notes),
        )
    db.refresh(sub_tool)
    logger.info("sub_tool_revoked", sub_tool_id=str(sub_tool.id), previous_employee_id=str(previous_id))
    return {
        "sub_tool": serialize_sub_tool(sub_tool),
        "previous_assignee": employee_brief(previous),
        "history_id": str(entry.id),
    }


# ---------- ACCESSORY ----------

def assign_accessory(
    db: Session,
    actor: Actor,
    accessory_id,
    employee_id,
    target_sub_tool_id=None,
    condition: Optional[str] = None,
    notes: Optional[str] = None,
) -> dict:
    """
    Assign or transfer an accessory, optionally moving it into another sub-tool.

    The destination sub-tool must be held by the employee, or its parent tool
    must be; in the latter case the sub-tool is handed to the employee first.

    Returns:
        Dict with ``accessory``, ``migrated_count`` (always 0, accessories have
        no children), ``chain_established``, ``changes`` and ``history_id``
    """
    require_capability(actor, ASSIGN_TOOL)
    accessory_id = require_id(accessory_id, "accessory_id")
    employee_id = require_id(employee_id, "employee_id")
    target_sub_tool_id = require_id(target_sub_tool_id, "target_sub_tool_id") if target_sub_tool_id else None
    with transaction(db):
        accessory = get_live_accessory(db, accessory_id, lock=True)
        ensure_department_access(accessory, actor, "Accessory")
        employee = get_employee(db, employee_id)
        current_sub_tool = get_live_sub_tool(db, accessory.sub_tool_id, lock=True)
        moving = target_sub_tool_id is not None and target_sub_tool_id != accessory.sub_tool_id

        if moving:
            container = db.query(SubTool).filter(SubTool.id == target_sub_tool_id).with_for_update().first()
            if not container or container.is_delete:
                raise NotFoundError("Target sub-tool not found")
        else:
            if accessory.assigned_to == employee.id:
                raise PreconditionFailedError(f"Accessory {accessory.name} is already assigned to {employee.name}")
            container = current_sub_tool
        container_parent = _lock_tool(db, container.parent_tool_id)

        now = utcnow()
        chained = None
        if container.assigned_to != employee.id:
            if container_parent.assigned_to != employee.id:
                raise PreconditionFailedError(
                    f"Neither sub-tool ({container.code}) nor its tool ({container_parent.code}) "
                    f"is assigned to employee {employee.name}"
                )
            _take_custody(container, employee, now)
            chained = container.code

        previous = accessory.assignee
        previous_id = accessory.assigned_to
        condition_before = accessory.condition

        _take_custody(accessory, employee, now, condition)
        if moving:
            accessory.sub_tool_id = container.id
            accessory.parent_tool_id = container.parent_tool_id
            container.has_accessorys = True
            refresh_has_accessorys(db, current_sub_tool)
        db.flush()

        if previous_id:
            action = HistoryAction.transfer
        elif moving:
            action = HistoryAction.move_accessory_into
        else:
            action = HistoryAction.assign_accessory
        entry = record_event(
            db,
            tool_id=container.parent_tool_id,
            sub_tool_id=container.id,
            accessory_id=accessory.id,
            action=action,
            performed_by=actor.id,
            employee_id=employee.id,
            previous_employee_id=previous_id,
            condition=_value(condition) or accessory.condition,
            condition_before=condition_before,
            condition_after=accessory.condition,
            notes=with_caller_notes(
                accessory_assign_note(
                    accessory.name,
                    previous.name if previous else None,
                    employee.name,
                    moved_from=current_sub_tool.name if moving else None,
                    moved_to=container.name if moving else None,
                    chained=chained,
                ),
                notes,
            ),
        )
        changes = {
            "old_sub_tool": {"id": str(current_sub_tool.id), "code": current_sub_tool.code, "name": current_sub_tool.name},
            "new_sub_tool": {"id": str(container.id), "code": container.code, "name": container.name},
            "new_parent_tool": {"id": str(container_parent.id), "code": container_parent.code, "name": container_parent.name},
            "old_employee": previous.name if previous else UNASSIGNED,
            "new_employee": employee.name,
            "transferred": moving,
        }
    db.refresh(accessory)
    logger.info(
        "accessory_assigned",
        accessory_id=str(accessory.id),
        employee_id=str(employee.id),
        moved=moving,
        chain_established=chained is not None,
    )
    return {
        "accessory": serialize_accessory(accessory),
        "migrated_count": 0,
        "chain_established": chained is not None,
        "changes": changes,
        "history_id": str(entry.id),
    }


def revoke_accessory(
    db: Session,
    actor: Actor,
    accessory_id,
    condition: Optional[str] = None,
    notes: Optional[str] = None,
) -> dict:
    require_capability(actor, REVOKE_TOOL)
    accessory_id = require_id(accessory_id, "accessory_id")
    with transaction(db):
        accessory = get_live_accessory(db, accessory_id, lock=True)
        ensure_department_access(accessory, actor, "Accessory")
        if accessory.status == ToolStatus.available.value or not accessory.assigned_to:
            raise PreconditionFailedError(f"Accessory {accessory.name} is not assigned to anyone")
        previous = accessory.assignee
        previous_id = accessory.assigned_to
        condition_before = accessory.condition
        _release_custody(accessory, utcnow(), condition, keep_location=True)
        db.flush()
        entry = record_event(
            db,
            tool_id=accessory.parent_tool_id,
            sub_tool_id=accessory.sub_tool_id,
            accessory_id=accessory.id,
            action=HistoryAction.revoke_accessory,
            performed_by=actor.id,
            employee_id=None,
            previous_employee_id=previous_id,
            condition=accessory.condition,
            condition_before=condition_before,
            condition_after=accessory.condition,
            notes=with_caller_notes(f"Revoke accessory {accessory.name} from {previous.name}", notes),
        )
    db.refresh(accessory)
    logger.info("accessory_revoked", accessory_id=str(accessory.id), previous_employee_id=str(previous_id))
    return {
        "accessory": serialize_accessory(accessory),
        "previous_assignee": employee_brief(previous),
        "history_id": str(entry.id),
    }
