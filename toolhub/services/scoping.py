"""
Visibility tiers applied before any asset list, detail or search is returned.
"""
from enum import Enum

from sqlalchemy import or_, false
from sqlalchemy.orm import Query, aliased

from ..errors import NotFoundError, PermissionDeniedError
from ..models.models import Employee
from .capabilities import (
    Actor,
    VIEW_ALL_TOOLS,
    VIEW_DEPARTMENT_TOOLS,
    VIEW_ASSIGNED_TOOLS,
)


class Scope(str, Enum):
    all = "all"
    department = "department"
    assigned = "assigned"


def resolve_scope(actor: Actor) -> Scope:
    """Widest tier the actor holds; no tier at all is a permission error."""
    if actor.can(VIEW_ALL_TOOLS):
        return Scope.all
    if actor.can(VIEW_DEPARTMENT_TOOLS):
        return Scope.department
    if actor.can(VIEW_ASSIGNED_TOOLS):
        return Scope.assigned
    raise PermissionDeniedError("You do not have permission to view tools")


def apply_scope(query: Query, model, actor: Actor, scope: Scope) -> Query:
    """Filter a Tool/SubTool/Accessory query to the rows the actor may see.

    Department scope matches on the row's own department or on the department
    of its current assignee.
    """
    if scope == Scope.all:
        return query
    if scope == Scope.assigned:
        return query.filter(model.assigned_to == actor.id)
    if actor.department_id is None:
        return query.filter(false())
    assignee = aliased(Employee)
    return query.outerjoin(assignee, model.assigned_to == assignee.id).filter(
        or_(
            model.department_id == actor.department_id,
            assignee.department_id == actor.department_id,
        )
    )


def is_visible(row, actor: Actor, scope: Scope) -> bool:
    if scope == Scope.all:
        return True
    if scope == Scope.assigned:
        return row.assigned_to == actor.id
    if actor.department_id is None:
        return False
    if row.department_id == actor.department_id:
        return True
    assignee = getattr(row, "assignee", None)
    return assignee is not None and assignee.department_id == actor.department_id


def ensure_visible(row, actor: Actor, scope: Scope, label: str) -> None:
    # Out-of-scope rows look exactly like missing ones
    if not is_visible(row, actor, scope):
        raise NotFoundError(f"{label} not found")


def ensure_department_access(row, actor: Actor, label: str) -> None:
    """Department-tier callers may only change rows of their own department."""
    if actor.can(VIEW_ALL_TOOLS):
        return
    if actor.can(VIEW_DEPARTMENT_TOOLS):
        ensure_visible(row, actor, Scope.department, label)
