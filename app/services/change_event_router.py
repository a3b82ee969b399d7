from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from app.auth import Role
from app.services.change_feed import ChangeEvent, EntityTable, EventType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoutedEvent:
    table: EntityTable
    event_type: EventType
    entity_id: str
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    is_own_record: bool


def _owner_matches(snapshot: dict[str, Any] | None, viewer_id: str) -> bool:
    if not snapshot:
        return False
    owner = snapshot.get('user_id')
    return owner is not None and str(owner) == str(viewer_id)


def route_change_event(event: ChangeEvent, viewer_id: str, role: Role) -> RoutedEvent | None:
    if role not in (Role.MANAGER, Role.EMPLOYEE) or not viewer_id:
        return None

    if event.before is None and event.after is None:
        logger.debug('Dropping %s on %s with no snapshots', event.event_type.value, event.table.value)
        return None

    entity_id = event.entity_id
    if entity_id is None:
        logger.debug('Dropping %s on %s without an id', event.event_type.value, event.table.value)
        return None

    if event.table == EntityTable.ORDERS:
        is_own_record = _owner_matches(event.after, viewer_id) or _owner_matches(event.before, viewer_id)
        if role == Role.EMPLOYEE and not is_own_record:
            return None
    elif event.table == EntityTable.ORDER_ITEMS:
        if role != Role.MANAGER:
            return None
        is_own_record = False
    else:
        return None

    return RoutedEvent(
        table=event.table,
        event_type=event.event_type,
        entity_id=entity_id,
        before=event.before,
        after=event.after,
        is_own_record=is_own_record,
    )
