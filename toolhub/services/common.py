import math
import uuid
from datetime import datetime, timezone
from typing import Optional, Tuple, List

from sqlalchemy.orm import Session, Query

from ..config import settings
from ..errors import NotFoundError, ValidationError
from ..models.models import Employee


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def money(value) -> float:
    return float(value) if value is not None else 0.0


def clamp_page(page: Optional[int], limit: Optional[int]) -> Tuple[int, int]:
    page = page if page and page > 0 else 1
    limit = limit if limit and limit > 0 else settings.default_page_size
    return page, min(limit, settings.max_page_size)


def paginate(query: Query, page: Optional[int], limit: Optional[int]) -> Tuple[List, dict]:
    page, limit = clamp_page(page, limit)
    total = query.order_by(None).count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    return items, {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": math.ceil(total / limit) if total else 0,
    }


def require_id(value, field: str) -> uuid.UUID:
    if value is None or value == "":
        raise ValidationError(f"{field} is required")
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise ValidationError(f"{field} is not a valid id")


REQUIRED_ASSET_FIELDS = ("name", "unit_oc", "quantity", "status", "condition")


def reject_nulls(changes: dict, fields=REQUIRED_ASSET_FIELDS) -> None:
    """An explicit null for a required column is a bad request, not a store conflict."""
    for field in fields:
        if field in changes and changes[field] is None:
            raise ValidationError(f"{field} cannot be null")


def get_employee(db: Session, employee_id: uuid.UUID, lock: bool = False) -> Employee:
    query = db.query(Employee).filter(Employee.id == employee_id)
    if lock:
        query = query.with_for_update()
    employee = query.first()
    if not employee:
        raise NotFoundError("Employee not found")
    return employee


def employee_brief(employee: Optional[Employee]) -> Optional[dict]:
    if employee is None:
        return None
    return {
        "id": str(employee.id),
        "name": employee.name,
        "code": employee.code,
        "email": employee.email,
        "department_id": str(employee.department_id) if employee.department_id else None,
    }


def ref_brief(row) -> Optional[dict]:
    if row is None:
        return None
    return {"id": str(row.id), "name": row.name}
