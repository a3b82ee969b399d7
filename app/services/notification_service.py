from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Protocol
from zoneinfo import ZoneInfo

from app.auth import Audience, Role
from app.config import settings
from app.models import OrderStatus
from app.services.quiet_hours_service import is_quiet
from app.services.transition_detector import Transition

logger = logging.getLogger(__name__)

ORDER_STATUS_MESSAGES = {
    OrderStatus.SUBMITTED.value: 'Your order has been submitted and is being processed.',
    OrderStatus.PROCESSING.value: 'Your order is now being processed.',
    OrderStatus.FULFILLED.value: 'Your order has been fulfilled!',
    OrderStatus.CANCELLED.value: 'Your order has been cancelled.',
    OrderStatus.CANCEL_REQUESTED.value: 'A cancellation has been requested for your order.',
}
NEW_ORDER_MESSAGE = 'A new order has been submitted.'


@dataclass(frozen=True)
class QuietHours:
    enabled: bool = False
    start_time: str = '22:00'
    end_time: str = '07:00'


@dataclass(frozen=True)
class NotificationPreferences:
    push_enabled: bool = True
    order_status_changed: bool = True
    new_order_created: bool = True
    daily_summary: bool = False
    sound_enabled: bool = True
    vibration_enabled: bool = True
    quiet_hours: QuietHours = field(default_factory=QuietHours)

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> NotificationPreferences:
        raw = raw or {}
        defaults = cls()

        def pick(snake: str, camel: str, default: bool) -> bool:
            value = raw.get(snake, raw.get(camel, default))
            return bool(value)

        quiet_raw = raw.get('quiet_hours', raw.get('quietHours')) or {}
        quiet = QuietHours(
            enabled=bool(quiet_raw.get('enabled', defaults.quiet_hours.enabled)),
            start_time=str(quiet_raw.get('start_time', quiet_raw.get('startTime', defaults.quiet_hours.start_time))),
            end_time=str(quiet_raw.get('end_time', quiet_raw.get('endTime', defaults.quiet_hours.end_time))),
        )
        return cls(
            push_enabled=pick('push_enabled', 'pushEnabled', defaults.push_enabled),
            order_status_changed=pick('order_status_changed', 'orderStatusChanged', defaults.order_status_changed),
            new_order_created=pick('new_order_created', 'newOrderCreated', defaults.new_order_created),
            daily_summary=pick('daily_summary', 'dailySummary', defaults.daily_summary),
            sound_enabled=pick('sound_enabled', 'soundEnabled', defaults.sound_enabled),
            vibration_enabled=pick('vibration_enabled', 'vibrationEnabled', defaults.vibration_enabled),
            quiet_hours=quiet,
        )


@dataclass(frozen=True)
class LocalNotification:
    title: str
    body: str
    data: dict[str, Any]
    sound: bool = True
    prominent: bool = True
    # None means deliver immediately.
    trigger: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class NotificationSink(Protocol):
    async def deliver(self, viewer_id: str, notification: LocalNotification) -> None: ...


class LoggingNotificationSink:
    async def deliver(self, viewer_id: str, notification: LocalNotification) -> None:
        logger.info('Notification for %s: %s - %s', viewer_id, notification.title, notification.body)


def format_order_status_message(status: str, order_number: int | None = None) -> str:
    status = status.value if isinstance(status, OrderStatus) else str(status)
    return ORDER_STATUS_MESSAGES.get(status, f'Order status updated to: {status}')


def _order_title(order_number: int | None, *, prefix: str = 'Order') -> str:
    if order_number is None:
        return prefix
    return f'{prefix} #{order_number}'


def _now() -> datetime:
    if settings.quiet_hours_timezone:
        return datetime.now(tz=ZoneInfo(settings.quiet_hours_timezone))
    return datetime.now()


class NotificationDispatcher:
    def __init__(self, sink: NotificationSink, clock: Callable[[], datetime] = _now) -> None:
        self.sink = sink
        self._clock = clock

    def build_notification(
        self,
        transition: Transition,
        audience: Audience,
        role: Role,
        preferences: NotificationPreferences,
    ) -> LocalNotification | None:
        if not preferences.push_enabled:
            return None
        if transition.to_status == OrderStatus.DRAFT.value:
            return None

        if (
            transition.is_own_record
            and role != Role.MANAGER
            and preferences.order_status_changed
            and not transition.is_creation
        ):
            title = _order_title(transition.order_number)
            body = format_order_status_message(transition.to_status, transition.order_number)
            kind = 'order-status'
        elif (
            not transition.is_own_record
            and role == Role.MANAGER
            and transition.to_status == OrderStatus.SUBMITTED.value
            and preferences.new_order_created
        ):
            title = _order_title(transition.order_number, prefix='New order')
            body = NEW_ORDER_MESSAGE
            kind = 'new-order'
        else:
            return None

        quiet = is_quiet(
            preferences.quiet_hours.enabled,
            preferences.quiet_hours.start_time,
            preferences.quiet_hours.end_time,
            self._clock(),
        )
        return LocalNotification(
            title=title,
            body=body,
            data={
                'type': kind,
                'orderId': transition.entity_id,
                'orderNumber': transition.order_number,
                'status': transition.to_status,
                'previousStatus': transition.from_status,
                'audience': audience.value,
                'quiet': quiet,
            },
            sound=preferences.sound_enabled and not quiet,
            prominent=not quiet,
        )

    async def maybe_notify(
        self,
        transition: Transition,
        audience: Audience,
        role: Role,
        preferences: NotificationPreferences,
        *,
        viewer_id: str,
    ) -> LocalNotification | None:
        notification = self.build_notification(transition, audience, role, preferences)
        if notification is None:
            return None

        try:
            await self.sink.deliver(viewer_id, notification)
        except Exception:
            logger.warning('Failed to deliver notification for order %s to %s', transition.entity_id, viewer_id, exc_info=True)
            return notification

        logger.info(
            'Notified %s: %s %s -> %s%s',
            viewer_id,
            notification.data['type'],
            transition.from_status,
            transition.to_status,
            ' (quiet hours)' if not notification.prominent else '',
        )
        return notification
