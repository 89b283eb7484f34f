"""
Positions: admin-position cache and permission updates.
"""
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, FrozenSet, Optional

import structlog
from sqlalchemy.orm import Session

from ..db import transaction
from ..errors import NotFoundError
from ..models.models import Position
from .capabilities import (
    Actor,
    MANAGE_SYSTEM,
    normalize_capabilities,
    require_capability,
)


logger = structlog.get_logger(__name__)


class AdminPositionCache:
    """Ids of positions whose capability set contains manage_system.

    Entries live for ``ttl_seconds``; ``invalidate()`` drops them at once and is
    called whenever a position's permissions change.
    """

    def __init__(self, ttl_seconds: int = 300, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._ids: Optional[FrozenSet[uuid.UUID]] = None
        self._loaded_at = 0.0

    def get(self, db: Session) -> FrozenSet[uuid.UUID]:
        with self._lock:
            now = self._clock()
            if self._ids is not None and now - self._loaded_at < self.ttl_seconds:
                return self._ids
        ids = frozenset(
            p.id
            for p in db.query(Position).all()
            if MANAGE_SYSTEM in normalize_capabilities(p.permissions)
        )
        with self._lock:
            self._ids = ids
            self._loaded_at = self._clock()
        logger.debug("admin_positions_loaded", count=len(ids))
        return ids

    def invalidate(self) -> None:
        with self._lock:
            self._ids = None
            self._loaded_at = 0.0


def update_position_permissions(
    db: Session,
    actor: Actor,
    position_id: uuid.UUID,
    permissions: list,
    cache: AdminPositionCache,
) -> Position:
    """
    Replace a position's capability list.

    Args:
        db: Database session
        actor: Caller, must hold manage_system
        position_id: Position to update
        permissions: New capability names
        cache: Admin-position cache to invalidate once committed

    Returns:
        Updated Position
    """
    require_capability(actor, MANAGE_SYSTEM)
    with transaction(db):
        position = db.query(Position).filter(Position.id == position_id).with_for_update().first()
        if not position:
            raise NotFoundError("Position not found")
        position.permissions = sorted(normalize_capabilities(permissions))
        position.updated_at = datetime.now(timezone.utc)
    cache.invalidate()
    db.refresh(position)
    logger.info("position_permissions_updated", position_id=str(position_id), count=len(position.permissions))
    return position
