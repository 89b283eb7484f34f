"""
Tool store: create, read, update, search and reporting over top-level assets.
Assignment and deletion live in the assignment and lifecycle engines.
"""
import uuid
from typing import Optional

import structlog
from slugify import slugify
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..config import settings
from ..db import transaction
from ..errors import NotFoundError, PreconditionFailedError, ValidationError
from ..models.models import Accessory, Category, SubTool, Tool
from ..schemas.history import HistoryAction
from ..schemas.tools import ToolCreate, ToolStatus, ToolUpdate
from .capabilities import Actor, CREATE_TOOL, UPDATE_TOOL, require_capability
from .common import (
    as_utc,
    employee_brief,
    get_employee,
    iso,
    money,
    paginate,
    ref_brief,
    reject_nulls,
    REQUIRED_ASSET_FIELDS,
    utcnow,
)
from .history import record_event
from .scoping import apply_scope, ensure_department_access, ensure_visible, resolve_scope


logger = structlog.get_logger(__name__)

SORTABLE_FIELDS = {
    "created_at": Tool.created_at,
    "name": Tool.name,
    "code": Tool.code,
    "purchase_price": Tool.purchase_price,
    "status": Tool.status,
}


def code_base(name: Optional[str], fallback: str) -> str:
    """Upper-case code stem: tone marks removed, spaces and punctuation dropped."""
    base = slugify(name or "", separator="", regex_pattern=r"[^A-Za-z0-9]+").upper()
    return base or fallback


def generate_tool_code(db: Session, category_name: Optional[str]) -> str:
    base = code_base(category_name, "TOOL")
    taken = db.query(func.count(Tool.id)).filter(Tool.code.like(f"{base}-%")).scalar() or 0
    n = taken + 1
    while db.query(Tool.id).filter(Tool.code == f"{base}-{n:03d}").first():
        n += 1
    return f"{base}-{n:03d}"


def live_tools(db: Session):
    return db.query(Tool).filter(Tool.is_delete == False)  # noqa: E712


def get_live_tool(db: Session, tool_id: uuid.UUID, lock: bool = False) -> Tool:
    query = live_tools(db).filter(Tool.id == tool_id)
    if lock:
        query = query.with_for_update()
    tool = query.first()
    if not tool:
        raise NotFoundError("Tool not found")
    return tool


def is_under_warranty(row) -> bool:
    until = as_utc(row.warranty_until)
    return bool(until and until > utcnow())


def serialize_tool(tool: Tool, detail: bool = False) -> dict:
    data = {
        "id": str(tool.id),
        "code": tool.code,
        "name": tool.name,
        "category": ref_brief(tool.category),
        "unit": ref_brief(tool.unit),
        "department": ref_brief(tool.department),
        "assigned_to": employee_brief(tool.assignee),
        "assigned_date": iso(tool.assigned_date),
        "unit_oc": tool.unit_oc,
        "quantity": tool.quantity,
        "status": tool.status,
        "condition": tool.condition,
        "purchase_price": money(tool.purchase_price),
        "purchase_date": iso(tool.purchase_date),
        "date_of_receipt": iso(tool.date_of_receipt),
        "warranty_until": iso(tool.warranty_until),
        "is_under_warranty": is_under_warranty(tool),
        "notes": tool.notes,
        "description": tool.description,
        "images": tool.images or [],
        "is_delete": tool.is_delete,
        "deleted_at": iso(tool.deleted_at),
        "restored_at": iso(tool.restored_at),
        "created_at": iso(tool.created_at),
        "updated_at": iso(tool.updated_at),
    }
    if detail:
        sub_tools = [s for s in tool.sub_tools if not s.is_delete]
        data["sub_tools"] = [
            {
                "id": str(s.id),
                "code": s.code,
                "name": s.name,
                "status": s.status,
                "condition": s.condition,
                "assigned_to": employee_brief(s.assignee),
                "accessory_count": sum(1 for a in s.accessories if not a.is_delete),
            }
            for s in sub_tools
        ]
    return data


# ---------- CRUD ----------

def create_tool(db: Session, actor: Actor, data: ToolCreate) -> dict:
    """Create a tool, optionally handing it straight to an employee."""
    require_capability(actor, CREATE_TOOL)
    with transaction(db):
        category = db.query(Category).filter(Category.id == data.category_id).first()
        if not category:
            raise ValidationError("Category not found")
        code = (data.code or "").strip() or generate_tool_code(db, category.name)
        tool = Tool(
            code=code,
            name=data.name,
            category_id=category.id,
            unit_oc=data.unit_oc.value,
            quantity=data.quantity,
            status=ToolStatus.available.value,
            condition=data.condition.value,
            purchase_price=data.purchase_price,
            purchase_date=data.purchase_date,
            date_of_receipt=data.date_of_receipt,
            warranty_until=data.warranty_until,
            notes=data.notes,
            description=data.description,
            images=data.images,
            created_at=utcnow(),
        )
        if data.assigned_to:
            employee = get_employee(db, data.assigned_to)
            tool.assigned_to = employee.id
            tool.assigned_date = utcnow()
            tool.unit_id = employee.unit_id
            tool.department_id = employee.department_id
            tool.status = ToolStatus.in_use.value
        db.add(tool)
        db.flush()
        if tool.assigned_to:
            record_event(
                db,
                tool_id=tool.id,
                action=HistoryAction.assign,
                performed_by=actor.id,
                employee_id=tool.assigned_to,
                condition=tool.condition,
                notes=f"Assign tool {tool.name} to {employee.name}",
            )
    db.refresh(tool)
    logger.info("tool_created", tool_id=str(tool.id), code=tool.code)
    return serialize_tool(tool, detail=True)


def update_tool(db: Session, actor: Actor, tool_id: uuid.UUID, data: ToolUpdate) -> dict:
    """
    Update descriptive fields of a tool.

    The code is immutable and custody fields only move through assignment.
    A status or condition change is written to history.
    """
    require_capability(actor, UPDATE_TOOL)
    changes = data.model_dump(exclude_unset=True)
    reject_nulls(changes, REQUIRED_ASSET_FIELDS + ("category_id",))
    with transaction(db):
        tool = get_live_tool(db, tool_id, lock=True)
        ensure_department_access(tool, actor, "Tool")
        if "code" in changes and changes["code"] not in (None, tool.code):
            raise PreconditionFailedError("Tool code cannot be changed")
        changes.pop("code", None)
        status = changes.get("status")
        if status == ToolStatus.in_use and not tool.assigned_to:
            raise PreconditionFailedError("Assign the tool to an employee to mark it in use")
        if status == ToolStatus.available and tool.assigned_to:
            raise PreconditionFailedError("Revoke the tool before marking it available")
        if "category_id" in changes:
            if not db.query(Category.id).filter(Category.id == changes["category_id"]).first():
                raise ValidationError("Category not found")
        before_status, before_condition = tool.status, tool.condition
        for k, v in changes.items():
            if k == "name" and not (v or "").strip():
                raise ValidationError("name is required")
            setattr(tool, k, v.value if hasattr(v, "value") else v)
        tool.updated_at = utcnow()
        if tool.status != before_status or tool.condition != before_condition:
            record_event(
                db,
                tool_id=tool.id,
                action=HistoryAction.update,
                performed_by=actor.id,
                employee_id=tool.assigned_to,
                condition=tool.condition,
                condition_before=before_condition,
                condition_after=tool.condition,
                notes=f"Status {before_status} -> {tool.status}" if tool.status != before_status else None,
            )
    db.refresh(tool)
    return serialize_tool(tool, detail=True)


def get_tool(db: Session, actor: Actor, tool_id: uuid.UUID) -> dict:
    scope = resolve_scope(actor)
    tool = get_live_tool(db, tool_id)
    ensure_visible(tool, actor, scope, "Tool")
    return serialize_tool(tool, detail=True)


def list_tools(
    db: Session,
    actor: Actor,
    *,
    status: Optional[str] = None,
    condition: Optional[str] = None,
    category_id: Optional[uuid.UUID] = None,
    department_id: Optional[uuid.UUID] = None,
    assigned_to: Optional[uuid.UUID] = None,
    keyword: Optional[str] = None,
    page: Optional[int] = None,
    limit: Optional[int] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> dict:
    scope = resolve_scope(actor)
    query = apply_scope(live_tools(db), Tool, actor, scope)
    if status:
        query = query.filter(Tool.status == status)
    if condition:
        query = query.filter(Tool.condition == condition)
    if category_id:
        query = query.filter(Tool.category_id == category_id)
    if department_id:
        query = query.filter(Tool.department_id == department_id)
    if assigned_to:
        query = query.filter(Tool.assigned_to == assigned_to)
    if keyword:
        like = f"%{keyword.strip()}%"
        query = query.filter(or_(Tool.name.ilike(like), Tool.code.ilike(like), Tool.description.ilike(like)))
    column = SORTABLE_FIELDS.get(sort_by, Tool.created_at)
    query = query.order_by(column.asc() if sort_order == "asc" else column.desc())
    rows, pagination = paginate(query, page, limit)
    return {"tools": [serialize_tool(t) for t in rows], "pagination": pagination}


def search_tools(db: Session, actor: Actor, keyword: str) -> list:
    if not keyword or not keyword.strip():
        raise ValidationError("keyword is required")
    scope = resolve_scope(actor)
    like = f"%{keyword.strip()}%"
    rows = (
        apply_scope(live_tools(db), Tool, actor, scope)
        .filter(or_(Tool.name.ilike(like), Tool.code.ilike(like), Tool.description.ilike(like)))
        .order_by(Tool.created_at.desc())
        .limit(settings.search_limit)
        .all()
    )
    return [serialize_tool(t) for t in rows]


# ---------- REPORTING ----------

def tool_statistics(db: Session, actor: Actor) -> dict:
    """Totals over the tools the actor can see."""
    scope = resolve_scope(actor)
    query = apply_scope(live_tools(db), Tool, actor, scope)
    total = query.count()
    assigned = query.filter(Tool.assigned_to.isnot(None)).count()
    total_value, avg_value = query.with_entities(
        func.coalesce(func.sum(Tool.purchase_price), 0),
        func.coalesce(func.avg(Tool.purchase_price), 0),
    ).one()
    by_status = dict(query.with_entities(Tool.status, func.count(Tool.id)).group_by(Tool.status).all())
    by_condition = dict(query.with_entities(Tool.condition, func.count(Tool.id)).group_by(Tool.condition).all())
    by_category = (
        query.join(Category, Tool.category_id == Category.id)
        .with_entities(Category.name, func.count(Tool.id), func.coalesce(func.sum(Tool.purchase_price), 0))
        .group_by(Category.name)
        .order_by(func.count(Tool.id).desc())
        .all()
    )
    return {
        "total": total,
        "available": by_status.get(ToolStatus.available.value, 0),
        "in_use": by_status.get(ToolStatus.in_use.value, 0),
        "broken": by_status.get(ToolStatus.broken.value, 0),
        "liquidated": by_status.get(ToolStatus.liquidated.value, 0),
        "assigned": assigned,
        "unassigned": total - assigned,
        "total_value": money(total_value),
        "avg_value": round(money(avg_value), 2),
        "by_status": [{"status": k, "count": v} for k, v in by_status.items()],
        "by_condition": [{"condition": k, "count": v} for k, v in by_condition.items()],
        "by_category": [
            {"category": name, "count": count, "total_value": money(value)}
            for name, count, value in by_category
        ],
    }


def tool_configuration(db: Session, actor: Actor, tool_id: uuid.UUID) -> dict:
    """Live sub-tools of a tool with the accessories currently in use."""
    scope = resolve_scope(actor)
    tool = get_live_tool(db, tool_id)
    ensure_visible(tool, actor, scope, "Tool")
    sub_tools = (
        db.query(SubTool)
        .filter(SubTool.parent_tool_id == tool.id, SubTool.is_delete == False)  # noqa: E712
        .order_by(SubTool.created_at)
        .all()
    )
    components = []
    sub_value = 0.0
    acc_value = 0.0
    acc_total = 0
    for s in sub_tools:
        accessories = (
            db.query(Accessory)
            .filter(
                Accessory.sub_tool_id == s.id,
                Accessory.is_delete == False,  # noqa: E712
                Accessory.status == ToolStatus.in_use.value,
            )
            .order_by(Accessory.slot, Accessory.created_at)
            .all()
        )
        sub_value += money(s.purchase_price)
        acc_value += sum(money(a.purchase_price) for a in accessories)
        acc_total += len(accessories)
        components.append({
            "id": str(s.id),
            "code": s.code,
            "name": s.name,
            "brand": s.brand,
            "model": s.model,
            "serial_number": s.serial_number,
            "specifications": s.specifications,
            "status": s.status,
            "condition": s.condition,
            "accessories": [
                {
                    "id": str(a.id),
                    "code": a.code,
                    "name": a.name,
                    "slot": a.slot,
                    "model": a.model,
                    "specifications": a.specifications,
                    "purchase_price": money(a.purchase_price),
                }
                for a in accessories
            ],
        })
    tool_value = money(tool.purchase_price)
    return {
        "tool": serialize_tool(tool),
        "sub_tools": components,
        "summary": {
            "total_sub_tools": len(sub_tools),
            "total_accessories": acc_total,
            "total_value": tool_value + sub_value + acc_value,
            "value_breakdown": {
                "tool": tool_value,
                "sub_tools": sub_value,
                "accessories": acc_value,
            },
        },
    }
