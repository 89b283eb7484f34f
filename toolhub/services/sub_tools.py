"""
SubTool store.
"""
import time
import uuid
from typing import Optional

import structlog
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..db import transaction
from ..errors import ConflictError, NotFoundError, PreconditionFailedError, ValidationError
from ..models.models import Accessory, SubTool, SubToolType
from ..schemas.history import HistoryAction
from ..schemas.tools import SubToolCreate, SubToolUpdate, ToolStatus
from .capabilities import Actor, CREATE_TOOL, UPDATE_TOOL, require_capability
from .common import employee_brief, get_employee, iso, money, paginate, ref_brief, reject_nulls, utcnow
from .history import record_event
from .scoping import apply_scope, ensure_department_access, ensure_visible, resolve_scope
from .tools import code_base, get_live_tool, is_under_warranty


logger = structlog.get_logger(__name__)

# Four-digit suffix after the type prefix
CODE_SPACE = 10000


def generate_sub_tool_code(db: Session, type_name: Optional[str]) -> str:
    base = code_base(type_name, "SUB")
    start = int(time.time() * 1000) % CODE_SPACE
    for offset in range(CODE_SPACE):
        code = f"{base}_{(start + offset) % CODE_SPACE:04d}"
        if not db.query(SubTool.id).filter(SubTool.code == code).first():
            return code
    raise ConflictError(f"No free sub-tool code left for {base}")


def live_sub_tools(db: Session):
    return db.query(SubTool).filter(SubTool.is_delete == False)  # noqa: E712


def get_live_sub_tool(db: Session, sub_tool_id: uuid.UUID, lock: bool = False) -> SubTool:
    query = live_sub_tools(db).filter(SubTool.id == sub_tool_id)
    if lock:
        query = query.with_for_update()
    sub_tool = query.first()
    if not sub_tool:
        raise NotFoundError("Sub-tool not found")
    return sub_tool


def live_accessories_of(db: Session, sub_tool_id: uuid.UUID, lock: bool = False):
    query = db.query(Accessory).filter(
        Accessory.sub_tool_id == sub_tool_id,
        Accessory.is_delete == False,  # noqa: E712
    ).order_by(Accessory.created_at)
    if lock:
        query = query.with_for_update()
    return query.all()


def refresh_has_accessorys(db: Session, sub_tool: SubTool) -> None:
    """Recompute the cached flag from the live accessories now in the session."""
    db.flush()
    count = db.query(Accessory.id).filter(
        Accessory.sub_tool_id == sub_tool.id,
        Accessory.is_delete == False,  # noqa: E712
    ).count()
    if sub_tool.has_accessorys != (count > 0):
        sub_tool.has_accessorys = count > 0


def serialize_sub_tool(sub_tool: SubTool, detail: bool = False) -> dict:
    parent = sub_tool.parent_tool
    data = {
        "id": str(sub_tool.id),
        "code": sub_tool.code,
        "name": sub_tool.name,
        "brand": sub_tool.brand,
        "model": sub_tool.model,
        "serial_number": sub_tool.serial_number,
        "unit_oc": sub_tool.unit_oc,
        "quantity": sub_tool.quantity,
        "parent_tool": {"id": str(parent.id), "code": parent.code, "name": parent.name} if parent else None,
        "sub_tool_type": ref_brief(sub_tool.sub_tool_type),
        "category": ref_brief(sub_tool.category),
        "department": ref_brief(sub_tool.department),
        "assigned_to": employee_brief(sub_tool.assignee),
        "assigned_date": iso(sub_tool.assigned_date),
        "specifications": sub_tool.specifications,
        "status": sub_tool.status,
        "condition": sub_tool.condition,
        "purchase_price": money(sub_tool.purchase_price),
        "purchase_date": iso(sub_tool.purchase_date),
        "warranty_until": iso(sub_tool.warranty_until),
        "is_under_warranty": is_under_warranty(sub_tool),
        "has_accessorys": sub_tool.has_accessorys,
        "notes": sub_tool.notes,
        "description": sub_tool.description,
        "images": sub_tool.images or [],
        "is_delete": sub_tool.is_delete,
        "created_at": iso(sub_tool.created_at),
        "updated_at": iso(sub_tool.updated_at),
    }
    if detail:
        data["accessories"] = [
            {
                "id": str(a.id),
                "code": a.code,
                "name": a.name,
                "slot": a.slot,
                "status": a.status,
                "condition": a.condition,
            }
            for a in sub_tool.accessories
            if not a.is_delete
        ]
    return data


def create_sub_tool(db: Session, actor: Actor, data: SubToolCreate) -> dict:
    """
    Add a component to a live tool.

    Without an explicit assignee the component follows the parent tool's
    custodian, unit and department.
    """
    require_capability(actor, CREATE_TOOL)
    with transaction(db):
        parent = get_live_tool(db, data.parent_tool_id, lock=True)
        ensure_department_access(parent, actor, "Parent tool")
        type_name = None
        if data.sub_tool_type_id:
            sub_tool_type = db.query(SubToolType).filter(SubToolType.id == data.sub_tool_type_id).first()
            if not sub_tool_type:
                raise ValidationError("Sub-tool type not found")
            type_name = sub_tool_type.name
        sub_tool = SubTool(
            code=(data.code or "").strip() or generate_sub_tool_code(db, type_name or data.name),
            name=data.name.strip(),
            brand=data.brand,
            model=data.model,
            serial_number=data.serial_number,
            unit_oc=data.unit_oc.value,
            quantity=data.quantity,
            parent_tool_id=parent.id,
            sub_tool_type_id=data.sub_tool_type_id,
            category_id=data.category_id or parent.category_id,
            specifications=data.specifications,
            condition=data.condition.value,
            purchase_price=data.purchase_price,
            purchase_date=data.purchase_date,
            warranty_until=data.warranty_until,
            notes=data.notes,
            description=data.description,
            images=data.images,
            created_at=utcnow(),
        )
        if data.assigned_to:
            employee = get_employee(db, data.assigned_to)
            sub_tool.assigned_to = employee.id
            sub_tool.assigned_date = utcnow()
            sub_tool.unit_id = employee.unit_id
            sub_tool.department_id = employee.department_id
        else:
            sub_tool.assigned_to = parent.assigned_to
            sub_tool.assigned_date = parent.assigned_date
            sub_tool.unit_id = parent.unit_id
            sub_tool.department_id = parent.department_id
        sub_tool.status = (ToolStatus.in_use if sub_tool.assigned_to else ToolStatus.available).value
        db.add(sub_tool)
        db.flush()
        record_event(
            db,
            tool_id=parent.id,
            sub_tool_id=sub_tool.id,
            action=HistoryAction.add_sub_tool,
            performed_by=actor.id,
            employee_id=sub_tool.assigned_to,
            condition=sub_tool.condition,
            notes=f"Add part {sub_tool.name} to tool {parent.name}",
        )
    db.refresh(sub_tool)
    logger.info("sub_tool_created", sub_tool_id=str(sub_tool.id), parent_tool_id=str(parent.id))
    return serialize_sub_tool(sub_tool, detail=True)


def update_sub_tool(db: Session, actor: Actor, sub_tool_id: uuid.UUID, data: SubToolUpdate) -> dict:
    require_capability(actor, UPDATE_TOOL)
    changes = data.model_dump(exclude_unset=True)
    reject_nulls(changes)
    with transaction(db):
        sub_tool = get_live_sub_tool(db, sub_tool_id, lock=True)
        ensure_department_access(sub_tool, actor, "Sub-tool")
        status = changes.get("status")
        if status == ToolStatus.in_use and not sub_tool.assigned_to:
            raise PreconditionFailedError("Assign the sub-tool to an employee to mark it in use")
        if status == ToolStatus.available and sub_tool.assigned_to:
            raise PreconditionFailedError("Revoke the sub-tool before marking it available")
        for k, v in changes.items():
            if k == "name" and not (v or "").strip():
                raise ValidationError("name is required")
            setattr(sub_tool, k, v.value if hasattr(v, "value") else v)
        sub_tool.updated_at = utcnow()
    db.refresh(sub_tool)
    return serialize_sub_tool(sub_tool, detail=True)


def get_sub_tool(db: Session, actor: Actor, sub_tool_id: uuid.UUID) -> dict:
    scope = resolve_scope(actor)
    sub_tool = get_live_sub_tool(db, sub_tool_id)
    ensure_visible(sub_tool, actor, scope, "Sub-tool")
    return serialize_sub_tool(sub_tool, detail=True)


def list_sub_tools(
    db: Session,
    actor: Actor,
    *,
    parent_tool_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    keyword: Optional[str] = None,
    page: Optional[int] = None,
    limit: Optional[int] = None,
) -> dict:
    scope = resolve_scope(actor)
    query = apply_scope(live_sub_tools(db), SubTool, actor, scope)
    if parent_tool_id:
        query = query.filter(SubTool.parent_tool_id == parent_tool_id)
    if status:
        query = query.filter(SubTool.status == status)
    if keyword:
        like = f"%{keyword.strip()}%"
        query = query.filter(
            or_(SubTool.name.ilike(like), SubTool.code.ilike(like), SubTool.serial_number.ilike(like))
        )
    rows, pagination = paginate(query.order_by(SubTool.created_at.desc()), page, limit)
    return {"sub_tools": [serialize_sub_tool(s) for s in rows], "pagination": pagination}
