import uuid
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..errors import PermissionDeniedError
from ..models.models import Employee, Position
from .capabilities import (
    Actor,
    VIEW_ALL_EMPLOYEES,
    VIEW_EMPLOYEES,
    VIEW_DEPARTMENT_EMPLOYEES,
)
from .common import paginate, ref_brief
from .positions import AdminPositionCache


def serialize_employee(employee: Employee) -> dict:
    return {
        "id": str(employee.id),
        "code": employee.code,
        "name": employee.name,
        "email": employee.email,
        "unit": ref_brief(employee.unit),
        "department": ref_brief(employee.department),
        "position": ref_brief(employee.position),
        "is_active": employee.is_active,
    }


def list_employees(
    db: Session,
    actor: Actor,
    cache: AdminPositionCache,
    *,
    department_id: Optional[uuid.UUID] = None,
    keyword: Optional[str] = None,
    page: Optional[int] = None,
    limit: Optional[int] = None,
) -> dict:
    """
    Employees the actor may see.

    view_all_employees sees everyone; view_employees everyone but holders of
    admin positions; view_department_employees only the own department, also
    without admins.
    """
    query = db.query(Employee).outerjoin(Position, Employee.position_id == Position.id)
    if actor.can(VIEW_ALL_EMPLOYEES):
        pass
    elif actor.can(VIEW_EMPLOYEES, VIEW_DEPARTMENT_EMPLOYEES):
        admin_ids = cache.get(db)
        if admin_ids:
            query = query.filter(or_(Employee.position_id.is_(None), Employee.position_id.notin_(list(admin_ids))))
        if not actor.can(VIEW_EMPLOYEES):
            query = query.filter(Employee.department_id == actor.department_id)
    else:
        raise PermissionDeniedError("You do not have permission to view employees")
    if department_id:
        query = query.filter(Employee.department_id == department_id)
    if keyword:
        like = f"%{keyword.strip()}%"
        query = query.filter(or_(Employee.name.ilike(like), Employee.code.ilike(like), Employee.email.ilike(like)))
    query = query.order_by(Position.level.desc(), Employee.name.asc())
    rows, pagination = paginate(query, page, limit)
    return {"employees": [serialize_employee(e) for e in rows], "pagination": pagination}
