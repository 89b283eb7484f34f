"""
Accessory store.
"""
import uuid
from typing import Optional

import structlog
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..db import transaction
from ..errors import NotFoundError, PreconditionFailedError, ValidationError
from ..models.models import Accessory, AccessoryType
from ..schemas.history import HistoryAction
from ..schemas.tools import AccessoryCreate, AccessoryUpdate, AccessoryUpgrade, ToolStatus
from .capabilities import Actor, CREATE_TOOL, UPDATE_TOOL, require_capability
from .common import employee_brief, iso, money, paginate, ref_brief, reject_nulls, utcnow
from .history import record_event
from .scoping import apply_scope, ensure_department_access, ensure_visible, resolve_scope
from .sub_tools import get_live_sub_tool
from .tools import is_under_warranty


logger = structlog.get_logger(__name__)


def live_accessories(db: Session):
    return db.query(Accessory).filter(Accessory.is_delete == False)  # noqa: E712


def get_live_accessory(db: Session, accessory_id: uuid.UUID, lock: bool = False) -> Accessory:
    query = live_accessories(db).filter(Accessory.id == accessory_id)
    if lock:
        query = query.with_for_update()
    accessory = query.first()
    if not accessory:
        raise NotFoundError("Accessory not found")
    return accessory


def serialize_accessory(accessory: Accessory) -> dict:
    sub_tool = accessory.sub_tool
    parent = accessory.parent_tool
    return {
        "id": str(accessory.id),
        "code": accessory.code,
        "name": accessory.name,
        "serial_number": accessory.serial_number,
        "model": accessory.model,
        "brand": accessory.brand,
        "sub_tool": {"id": str(sub_tool.id), "code": sub_tool.code, "name": sub_tool.name} if sub_tool else None,
        "parent_tool": {"id": str(parent.id), "code": parent.code, "name": parent.name} if parent else None,
        "accessory_type": ref_brief(accessory.accessory_type),
        "department": ref_brief(accessory.department),
        "assigned_to": employee_brief(accessory.assignee),
        "assigned_date": iso(accessory.assigned_date),
        "unit_oc": accessory.unit_oc,
        "quantity": accessory.quantity,
        "specifications": accessory.specifications,
        "slot": accessory.slot,
        "status": accessory.status,
        "condition": accessory.condition,
        "purchase_price": money(accessory.purchase_price),
        "purchase_date": iso(accessory.purchase_date),
        "warranty_until": iso(accessory.warranty_until),
        "is_under_warranty": is_under_warranty(accessory),
        "upgraded_from": str(accessory.upgraded_from) if accessory.upgraded_from else None,
        "upgraded_to": str(accessory.upgraded_to) if accessory.upgraded_to else None,
        "upgrade_date": iso(accessory.upgrade_date),
        "upgrade_reason": accessory.upgrade_reason,
        "notes": accessory.notes,
        "description": accessory.description,
        "images": accessory.images or [],
        "is_delete": accessory.is_delete,
        "created_at": iso(accessory.created_at),
        "updated_at": iso(accessory.updated_at),
    }


def create_accessory(db: Session, actor: Actor, data: AccessoryCreate) -> dict:
    """Install a part into a live sub-tool; it takes over the sub-tool's custody."""
    require_capability(actor, CREATE_TOOL)
    with transaction(db):
        sub_tool = get_live_sub_tool(db, data.sub_tool_id, lock=True)
        ensure_department_access(sub_tool, actor, "Sub-tool")
        if data.accessory_type_id and not db.query(AccessoryType.id).filter(AccessoryType.id == data.accessory_type_id).first():
            raise ValidationError("Accessory type not found")
        accessory = Accessory(
            code=data.code,
            name=data.name.strip(),
            serial_number=data.serial_number,
            model=data.model,
            brand=data.brand,
            sub_tool_id=sub_tool.id,
            parent_tool_id=sub_tool.parent_tool_id,
            accessory_type_id=data.accessory_type_id,
            category_id=data.category_id or sub_tool.category_id,
            unit_id=sub_tool.unit_id,
            department_id=sub_tool.department_id,
            assigned_to=sub_tool.assigned_to,
            assigned_date=sub_tool.assigned_date,
            unit_oc=data.unit_oc.value,
            quantity=data.quantity,
            specifications=data.specifications,
            slot=data.slot,
            status=(ToolStatus.in_use if sub_tool.assigned_to else ToolStatus.available).value,
            condition=data.condition.value,
            purchase_price=data.purchase_price,
            purchase_date=data.purchase_date,
            warranty_until=data.warranty_until,
            notes=data.notes,
            description=data.description,
            images=data.images,
            created_at=utcnow(),
        )
        db.add(accessory)
        sub_tool.has_accessorys = True
        db.flush()
        record_event(
            db,
            tool_id=sub_tool.parent_tool_id,
            sub_tool_id=sub_tool.id,
            accessory_id=accessory.id,
            action=HistoryAction.add_accessory,
            performed_by=actor.id,
            employee_id=accessory.assigned_to,
            condition=accessory.condition,
            notes=f"Add accessory {accessory.name} to {sub_tool.name}",
        )
    db.refresh(accessory)
    logger.info("accessory_created", accessory_id=str(accessory.id), sub_tool_id=str(sub_tool.id))
    return serialize_accessory(accessory)


def update_accessory(db: Session, actor: Actor, accessory_id: uuid.UUID, data: AccessoryUpdate) -> dict:
    require_capability(actor, UPDATE_TOOL)
    changes = data.model_dump(exclude_unset=True)
    reject_nulls(changes)
    with transaction(db):
        accessory = get_live_accessory(db, accessory_id, lock=True)
        ensure_department_access(accessory, actor, "Accessory")
        status = changes.get("status")
        if status == ToolStatus.in_use and not accessory.assigned_to:
            raise PreconditionFailedError("Assign the accessory to an employee to mark it in use")
        if status == ToolStatus.available and accessory.assigned_to:
            raise PreconditionFailedError("Revoke the accessory before marking it available")
        for k, v in changes.items():
            if k == "name" and not (v or "").strip():
                raise ValidationError("name is required")
            setattr(accessory, k, v.value if hasattr(v, "value") else v)
        accessory.updated_at = utcnow()
    db.refresh(accessory)
    return serialize_accessory(accessory)


def upgrade_accessory(db: Session, actor: Actor, accessory_id: uuid.UUID, data: AccessoryUpgrade) -> dict:
    """
    Replace an accessory with a new part in the same slot.

    The old part is liquidated and linked forward to the new one; a part can be
    upgraded only once, which keeps every upgrade chain linear.
    """
    require_capability(actor, UPDATE_TOOL)
    with transaction(db):
        old = get_live_accessory(db, accessory_id, lock=True)
        ensure_department_access(old, actor, "Accessory")
        if old.upgraded_to:
            raise PreconditionFailedError("Accessory has already been upgraded")
        now = utcnow()
        new = Accessory(
            code=data.code,
            name=data.name.strip(),
            serial_number=data.serial_number,
            model=data.model,
            brand=data.brand,
            sub_tool_id=old.sub_tool_id,
            parent_tool_id=old.parent_tool_id,
            accessory_type_id=old.accessory_type_id,
            category_id=old.category_id,
            unit_id=old.unit_id,
            department_id=old.department_id,
            assigned_to=old.assigned_to,
            assigned_date=now if old.assigned_to else None,
            unit_oc=old.unit_oc,
            quantity=old.quantity,
            specifications=data.specifications,
            slot=old.slot,
            status=(ToolStatus.in_use if old.assigned_to else ToolStatus.available).value,
            condition="Mới",
            purchase_price=data.purchase_price,
            purchase_date=data.purchase_date,
            warranty_until=data.warranty_until,
            upgraded_from=old.id,
            upgrade_date=now,
            upgrade_reason=data.reason,
            notes=data.notes,
            created_at=now,
        )
        db.add(new)
        db.flush()
        previous_holder = old.assigned_to
        old.upgraded_to = new.id
        old.upgrade_date = now
        old.upgrade_reason = data.reason
        old.status = ToolStatus.liquidated.value
        old.assigned_to = None
        old.assigned_date = None
        old.updated_at = now
        record_event(
            db,
            tool_id=old.parent_tool_id,
            sub_tool_id=old.sub_tool_id,
            accessory_id=new.id,
            action=HistoryAction.upgrade_accessory,
            performed_by=actor.id,
            employee_id=new.assigned_to,
            previous_employee_id=previous_holder,
            condition_before=old.condition,
            condition_after=new.condition,
            upgrade_info={
                "from": {"id": str(old.id), "name": old.name, "specifications": old.specifications},
                "to": {"id": str(new.id), "name": new.name, "specifications": new.specifications},
                "reason": data.reason,
            },
            notes=f"Upgrade {old.name} to {new.name}" + (f". {data.notes}" if data.notes else ""),
        )
    db.refresh(new)
    logger.info("accessory_upgraded", old_id=str(old.id), new_id=str(new.id))
    return serialize_accessory(new)


def get_accessory(db: Session, actor: Actor, accessory_id: uuid.UUID) -> dict:
    scope = resolve_scope(actor)
    accessory = get_live_accessory(db, accessory_id)
    ensure_visible(accessory, actor, scope, "Accessory")
    return serialize_accessory(accessory)


def list_accessories(
    db: Session,
    actor: Actor,
    *,
    sub_tool_id: Optional[uuid.UUID] = None,
    parent_tool_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    keyword: Optional[str] = None,
    page: Optional[int] = None,
    limit: Optional[int] = None,
) -> dict:
    scope = resolve_scope(actor)
    query = apply_scope(live_accessories(db), Accessory, actor, scope)
    if sub_tool_id:
        query = query.filter(Accessory.sub_tool_id == sub_tool_id)
    if parent_tool_id:
        query = query.filter(Accessory.parent_tool_id == parent_tool_id)
    if status:
        query = query.filter(Accessory.status == status)
    if keyword:
        like = f"%{keyword.strip()}%"
        query = query.filter(
            or_(Accessory.name.ilike(like), Accessory.code.ilike(like), Accessory.serial_number.ilike(like))
        )
    rows, pagination = paginate(query.order_by(Accessory.created_at.desc()), page, limit)
    return {"accessories": [serialize_accessory(a) for a in rows], "pagination": pagination}
