from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from app.auth import Audience, Role, audience_for_role
from app.services.change_event_router import route_change_event
from app.services.change_feed import ChangeEvent, ChangeFeed, Channel, EntityTable, change_feed
from app.services.notification_service import LoggingNotificationSink, NotificationDispatcher, NotificationSink
from app.services.ordering_service import (
    ORDERS_CACHE_PREFIX,
    employee_cache_key,
    fetch_employee_orders,
    fetch_manager_orders,
)
from app.services.preference_service import PreferenceStore, preference_store
from app.services.query_cache import QueryCache, query_cache
from app.services.refresh_coalescer import RefreshCoalescer
from app.services.transition_detector import StatusMemory, TransitionDetector

logger = logging.getLogger(__name__)

WATCHED_TABLES = (EntityTable.ORDERS, EntityTable.ORDER_ITEMS)

RefreshListener = Callable[['Subscription', Any], None]


class AppState(str, Enum):
    ACTIVE = 'active'
    BACKGROUND = 'background'
    INACTIVE = 'inactive'


def channel_name_for(viewer_id: str) -> str:
    return f'order-changes-{viewer_id}'


class Subscription:
    """Owned state of one viewer's live channel and its pipeline."""

    def __init__(
        self,
        *,
        viewer_id: str,
        role: Role,
        coalescer_factory: Callable[[Subscription], RefreshCoalescer],
        dispatcher: NotificationDispatcher,
        preferences: PreferenceStore,
        detector: TransitionDetector,
        cache: QueryCache,
        on_refresh: RefreshListener | None = None,
    ) -> None:
        self.viewer_id = viewer_id
        self.role = role
        self.audience: Audience = audience_for_role(role)
        self.channel_name = channel_name_for(viewer_id)
        self.channel: Channel | None = None
        self.dispatcher = dispatcher
        self.preferences = preferences
        self.detector = detector
        self.cache = cache
        self.on_refresh = on_refresh
        self.app_state = AppState.ACTIVE
        self.active = True
        self.orders: Any = None
        self.refreshed_at: datetime | None = None
        self.coalescer = coalescer_factory(self)

    async def handle_event(self, event: ChangeEvent) -> None:
        if not self.active:
            return

        routed = route_change_event(event, self.viewer_id, self.role)
        if routed is None:
            return

        self.coalescer.schedule(self.audience)

        transition = self.detector.observe(routed)
        if transition is None:
            return

        await self.dispatcher.maybe_notify(
            transition,
            self.audience,
            self.role,
            self.preferences.get(self.viewer_id),
            viewer_id=self.viewer_id,
        )

    def receive_refresh(self, audience: Audience, result: Any) -> None:
        if not self.active:
            return
        self.orders = result
        self.refreshed_at = datetime.now(tz=timezone.utc)
        if self.on_refresh is not None:
            self.on_refresh(self, result)

    def force_refresh(self) -> asyncio.Task | None:
        if not self.active:
            return None
        if self.audience == Role.MANAGER:
            self.cache.invalidate_by_prefix(f'{ORDERS_CACHE_PREFIX}manager:')
        else:
            self.cache.invalidate(employee_cache_key(self.viewer_id))
        return self.coalescer.refresh_now(self.audience)

    def close(self) -> None:
        self.active = False
        self.coalescer.cancel_all()
        if self.channel is not None:
            self.channel.close()
            self.channel = None
        self.detector.reset()
        self.on_refresh = None


class SubscriptionManager:
    def __init__(
        self,
        *,
        feed: ChangeFeed = change_feed,
        sink: NotificationSink | None = None,
        preferences: PreferenceStore = preference_store,
        cache: QueryCache = query_cache,
        fetch_manager: Callable[..., Awaitable[Any]] = fetch_manager_orders,
        fetch_employee: Callable[..., Awaitable[Any]] = fetch_employee_orders,
        debounce_window: float | None = None,
        status_memory_factory: Callable[[], StatusMemory] = StatusMemory,
        on_refresh: RefreshListener | None = None,
    ) -> None:
        self.feed = feed
        self.dispatcher = NotificationDispatcher(sink or LoggingNotificationSink())
        self.preferences = preferences
        self.cache = cache
        self.fetch_manager = fetch_manager
        self.fetch_employee = fetch_employee
        self.debounce_window = debounce_window
        self.status_memory_factory = status_memory_factory
        self.on_refresh = on_refresh
        self._subscriptions: dict[str, Subscription] = {}

    def get(self, viewer_id: str) -> Subscription | None:
        return self._subscriptions.get(viewer_id)

    @property
    def active_viewers(self) -> list[str]:
        return list(self._subscriptions)

    def _build_coalescer(self, subscription: Subscription) -> RefreshCoalescer:
        viewer_id = subscription.viewer_id
        # A refresh follows a change, so it always bypasses cached lists.
        if subscription.audience == Role.MANAGER:
            fetchers = {Role.MANAGER: lambda: self.fetch_manager(force=True, cache=self.cache)}
        else:
            fetchers = {Role.EMPLOYEE: lambda: self.fetch_employee(viewer_id, force=True, cache=self.cache)}
        return RefreshCoalescer(fetchers, window=self.debounce_window, on_result=subscription.receive_refresh)

    def start(self, viewer_id: str, role: Role) -> Subscription:
        existing = self._subscriptions.get(viewer_id)
        if existing is not None and existing.active:
            if existing.role == role:
                return existing
            logger.info('Role for %s changed from %s to %s; reopening channel', viewer_id, existing.role.value, role.value)
            self.stop(existing)

        subscription = Subscription(
            viewer_id=viewer_id,
            role=role,
            coalescer_factory=self._build_coalescer,
            dispatcher=self.dispatcher,
            preferences=self.preferences,
            detector=TransitionDetector(self.status_memory_factory()),
            cache=self.cache,
            on_refresh=self.on_refresh,
        )
        subscription.channel = self.feed.subscribe(subscription.channel_name, WATCHED_TABLES, subscription.handle_event)
        self._subscriptions[viewer_id] = subscription
        logger.info('Started %s subscription for %s on %s', role.value, viewer_id, subscription.channel_name)
        return subscription

    def stop(self, subscription: Subscription | None) -> None:
        if subscription is None or not subscription.active:
            return
        subscription.close()
        if self._subscriptions.get(subscription.viewer_id) is subscription:
            del self._subscriptions[subscription.viewer_id]
        logger.info('Stopped subscription for %s', subscription.viewer_id)

    def stop_viewer(self, viewer_id: str) -> None:
        self.stop(self._subscriptions.get(viewer_id))

    def stop_all(self) -> None:
        for subscription in list(self._subscriptions.values()):
            self.stop(subscription)

    def handle_app_state_change(self, subscription: Subscription | None, next_state: AppState) -> asyncio.Task | None:
        if subscription is None or not subscription.active:
            return None
        previous = subscription.app_state
        subscription.app_state = next_state
        if previous in (AppState.BACKGROUND, AppState.INACTIVE) and next_state == AppState.ACTIVE:
            logger.info('Resyncing orders for %s after returning to foreground', subscription.viewer_id)
            return subscription.force_refresh()
        return None
