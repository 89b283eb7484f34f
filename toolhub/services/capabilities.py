"""
Capability resolution.
Turns a position's stored permission payload into one normalised set and
wraps the calling employee into an Actor passed through every engine call.
"""
import json
import uuid
from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Any

from ..errors import PermissionDeniedError
from ..models.models import Employee


VIEW_ALL_TOOLS = "view_all_tools"
VIEW_DEPARTMENT_TOOLS = "view_department_tools"
VIEW_ASSIGNED_TOOLS = "view_assigned_tools"
CREATE_TOOL = "create_tool"
UPDATE_TOOL = "update_tool"
DELETE_TOOL = "delete_tool"
ASSIGN_TOOL = "assign_tool"
REVOKE_TOOL = "revoke_tool"
RESTORE_TOOL = "restore_tool"
PERMANENT_DELETE_TOOL = "permanent_delete_tool"
MANAGE_SYSTEM = "manage_system"
DELETE_HISTORY = "delete_history"
VIEW_HISTORY = "view_history"
VIEW_ALL_EMPLOYEES = "view_all_employees"
VIEW_EMPLOYEES = "view_employees"
VIEW_DEPARTMENT_EMPLOYEES = "view_department_employees"


def normalize_capabilities(raw: Any) -> FrozenSet[str]:
    """
    Normalise a stored permission payload.

    Accepts a list/tuple/set of names, a {name: bool} map, a JSON array string,
    or a comma separated string. Names are stripped and lower-cased.
    """
    if raw is None:
        return frozenset()
    if isinstance(raw, str):
        text = raw.strip()
        if text.startswith("["):
            try:
                raw = json.loads(text)
            except ValueError:
                raw = text.strip("[]").split(",")
        else:
            raw = text.split(",")
    if isinstance(raw, dict):
        raw = [k for k, v in raw.items() if v]
    caps = set()
    for item in raw:
        if not isinstance(item, str):
            continue
        name = item.strip().strip('"').lower()
        if name:
            caps.add(name)
    return frozenset(caps)


def resolve_capabilities(employee: Employee) -> FrozenSet[str]:
    position = getattr(employee, "position", None)
    if position is None:
        return frozenset()
    return normalize_capabilities(position.permissions)


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as seen by the stores and engines."""
    id: uuid.UUID
    name: str
    unit_id: Optional[uuid.UUID] = None
    department_id: Optional[uuid.UUID] = None
    position_id: Optional[uuid.UUID] = None
    capabilities: FrozenSet[str] = field(default_factory=frozenset)

    def can(self, *capabilities: str) -> bool:
        """True when the actor holds at least one of the capabilities."""
        return any(c in self.capabilities for c in capabilities)


def actor_for(employee: Employee) -> Actor:
    return Actor(
        id=employee.id,
        name=employee.name,
        unit_id=employee.unit_id,
        department_id=employee.department_id,
        position_id=employee.position_id,
        capabilities=resolve_capabilities(employee),
    )


def require_capability(actor: Actor, *capabilities: str) -> None:
    if not actor.can(*capabilities):
        raise PermissionDeniedError(
            f"Missing permission: {' or '.join(capabilities)}"
        )
