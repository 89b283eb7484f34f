import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_admin_position_cache, get_current_actor
from ..services.capabilities import Actor
from ..services.employees import list_employees as list_visible_employees
from ..services.positions import AdminPositionCache
from .responses import ok

router = APIRouter(prefix="/employees", tags=["employees"])


@router.get("")
def list_employees(
    department_id: Optional[uuid.UUID] = None,
    q: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    cache: AdminPositionCache = Depends(get_admin_position_cache),
):
    """Employees visible to the caller; admin positions hidden below view_all_employees"""
    result = list_visible_employees(
        db, actor, cache, department_id=department_id, keyword=q, page=page, limit=limit
    )
    return ok(result["employees"], pagination=result["pagination"])
