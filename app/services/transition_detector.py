from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from app.config import settings
from app.models import OrderStatus
from app.services.change_event_router import RoutedEvent
from app.services.change_feed import EntityTable, EventType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transition:
    entity_id: str
    from_status: str | None
    to_status: str
    is_own_record: bool
    order_number: int | None = None
    owner_id: str | None = None
    is_creation: bool = False


class StatusMemory:
    """Last observed status per entity, bounded by size and age.

    Entries are kept in observation order; the least recently observed entity
    is evicted first once ``max_entries`` is reached.
    """

    def __init__(
        self,
        max_entries: int | None = None,
        ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_entries = settings.status_memory_max_entries if max_entries is None else max_entries
        self.ttl = settings.status_memory_ttl_seconds if ttl is None else ttl
        self._clock = clock
        self._entries: OrderedDict[str, tuple[str, float]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entity_id: str) -> bool:
        return self.get(entity_id) is not None

    def get(self, entity_id: str) -> str | None:
        entry = self._entries.get(entity_id)
        if entry is None:
            return None
        status, observed_at = entry
        if self.ttl > 0 and self._clock() - observed_at > self.ttl:
            del self._entries[entity_id]
            return None
        return status

    def record(self, entity_id: str, status: str) -> None:
        self._entries[entity_id] = (status, self._clock())
        self._entries.move_to_end(entity_id)
        while self.max_entries > 0 and len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def forget(self, entity_id: str) -> None:
        self._entries.pop(entity_id, None)

    def clear(self) -> None:
        self._entries.clear()


def _status_of(snapshot: dict[str, Any] | None) -> str | None:
    if not snapshot:
        return None
    status = snapshot.get('status')
    if status is None or status == '':
        return None
    return status.value if isinstance(status, OrderStatus) else str(status)


def _order_number_of(snapshot: dict[str, Any] | None) -> int | None:
    value = (snapshot or {}).get('order_number')
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class TransitionDetector:
    def __init__(self, memory: StatusMemory | None = None) -> None:
        self.memory = memory if memory is not None else StatusMemory()

    def observe(self, event: RoutedEvent) -> Transition | None:
        if event.table != EntityTable.ORDERS:
            return None

        if event.event_type == EventType.DELETE:
            self.memory.forget(event.entity_id)
            return None

        current = _status_of(event.after)
        if current is None:
            return None

        remembered = self.memory.get(event.entity_id)

        if event.event_type == EventType.INSERT:
            self.memory.record(event.entity_id, current)
            if current != OrderStatus.SUBMITTED.value or remembered is not None:
                return None
            return self._transition(event, None, current, is_creation=True)

        previous = _status_of(event.before) or remembered
        self.memory.record(event.entity_id, current)

        if previous is None:
            logger.debug('Baseline status %s recorded for order %s', current, event.entity_id)
            return None
        # Memory already at the new status means this exact change was seen before.
        # A genuine move back to that status after a missed event is suppressed too.
        if previous == current or remembered == current:
            return None
        return self._transition(event, previous, current)

    def _transition(self, event: RoutedEvent, previous: str | None, current: str, *, is_creation: bool = False) -> Transition:
        owner = (event.after or {}).get('user_id') or (event.before or {}).get('user_id')
        return Transition(
            entity_id=event.entity_id,
            from_status=previous,
            to_status=current,
            is_own_record=event.is_own_record,
            order_number=_order_number_of(event.after) or _order_number_of(event.before),
            owner_id=str(owner) if owner is not None else None,
            is_creation=is_creation,
        )

    def reset(self) -> None:
        self.memory.clear()
