from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class EntityTable(str, Enum):
    ORDERS = 'orders'
    ORDER_ITEMS = 'order_items'


class EventType(str, Enum):
    INSERT = 'INSERT'
    UPDATE = 'UPDATE'
    DELETE = 'DELETE'


@dataclass(frozen=True)
class ChangeEvent:
    table: EntityTable
    event_type: EventType
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None

    @property
    def entity_id(self) -> str | None:
        for snapshot in (self.after, self.before):
            if snapshot and snapshot.get('id') is not None:
                return str(snapshot['id'])
        return None


EventCallback = Callable[[ChangeEvent], Awaitable[None]]


class Channel:
    def __init__(self, feed: ChangeFeed, name: str, tables: frozenset[EntityTable], callback: EventCallback) -> None:
        self.feed = feed
        self.name = name
        self.tables = tables
        self.callback = callback
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.feed._remove(self)
        logger.info('Channel %s closed', self.name)


class ChangeFeed:
    """In-process fan-out of row-level change events to named channels."""

    def __init__(self) -> None:
        self._channels: dict[str, Channel] = {}

    def subscribe(self, name: str, tables: Iterable[EntityTable], callback: EventCallback) -> Channel:
        existing = self._channels.get(name)
        if existing is not None:
            existing.close()
        channel = Channel(self, name, frozenset(tables), callback)
        self._channels[name] = channel
        logger.info('Channel %s subscribed to %s', name, ', '.join(sorted(t.value for t in channel.tables)))
        return channel

    def _remove(self, channel: Channel) -> None:
        if self._channels.get(channel.name) is channel:
            del self._channels[channel.name]

    @property
    def channel_names(self) -> list[str]:
        return list(self._channels)

    async def publish(self, event: ChangeEvent) -> int:
        delivered = 0
        for channel in list(self._channels.values()):
            if channel.closed or event.table not in channel.tables:
                continue
            try:
                await channel.callback(event)
            except Exception:
                logger.exception('Channel %s failed to handle %s on %s', channel.name, event.event_type.value, event.table.value)
                continue
            delivered += 1
        return delivered


def parse_webhook_payload(payload: dict[str, Any]) -> ChangeEvent:
    """Convert a database-webhook body into a ChangeEvent.

    Expected shape: ``{"type": "UPDATE", "table": "orders", "record": {...}, "old_record": {...}}``.
    """
    if not isinstance(payload, dict):
        raise ValueError('Webhook payload must be a JSON object')

    raw_type = str(payload.get('type') or payload.get('eventType') or '').strip().upper()
    try:
        event_type = EventType(raw_type)
    except ValueError as exc:
        raise ValueError(f'Unsupported event type: {raw_type or None!r}') from exc

    raw_table = str(payload.get('table') or '').strip().lower()
    try:
        table = EntityTable(raw_table)
    except ValueError as exc:
        raise ValueError(f'Unsupported table: {raw_table or None!r}') from exc

    after = payload.get('record')
    before = payload.get('old_record')
    if after is not None and not isinstance(after, dict):
        raise ValueError('record must be an object or null')
    if before is not None and not isinstance(before, dict):
        raise ValueError('old_record must be an object or null')

    # Update/delete webhooks may send an empty old_record when replica identity is default.
    return ChangeEvent(table=table, event_type=event_type, before=before or None, after=after or None)


change_feed = ChangeFeed()
