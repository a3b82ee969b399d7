from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import event, select
from sqlalchemy.orm import Session, selectinload, sessionmaker

from app.db import SessionLocal
from app.models import Order, OrderStatus
from app.services.query_cache import QueryCache, query_cache

ORDERS_CACHE_PREFIX = 'orders:'
MANAGER_ORDERS_LIMIT = 100
EMPLOYEE_ORDERS_LIMIT = 50


@dataclass(frozen=True)
class OrderItemSummary:
    id: str
    inventory_item_id: str
    quantity: Decimal
    unit_type: str


@dataclass(frozen=True)
class OrderSummary:
    id: str
    order_number: int
    user_id: str
    location_id: str
    status: OrderStatus
    notes: str | None
    created_at: datetime | None
    fulfilled_at: datetime | None
    fulfilled_by: str | None
    items: tuple[OrderItemSummary, ...] = ()


def _summarize(order: Order) -> OrderSummary:
    return OrderSummary(
        id=order.id,
        order_number=order.order_number,
        user_id=order.user_id,
        location_id=order.location_id,
        status=order.status,
        notes=order.notes,
        created_at=order.created_at,
        fulfilled_at=order.fulfilled_at,
        fulfilled_by=order.fulfilled_by,
        items=tuple(
            OrderItemSummary(
                id=item.id,
                inventory_item_id=item.inventory_item_id,
                quantity=item.quantity,
                unit_type=item.unit_type.value,
            )
            for item in order.items
        ),
    )


def manager_cache_key(location_id: str | None = None, status: OrderStatus | None = None) -> str:
    status_key = status.value if status is not None else '*'
    return f'{ORDERS_CACHE_PREFIX}manager:{location_id or "*"}:{status_key}'


def employee_cache_key(user_id: str) -> str:
    return f'{ORDERS_CACHE_PREFIX}employee:{user_id}'


def list_manager_orders(
    db: Session,
    *,
    location_id: str | None = None,
    status: OrderStatus | None = None,
    limit: int = MANAGER_ORDERS_LIMIT,
) -> list[OrderSummary]:
    query = (
        select(Order)
        .options(selectinload(Order.items))
        .where(Order.status != OrderStatus.DRAFT)
        .order_by(Order.created_at.desc(), Order.order_number.desc())
        .limit(limit)
    )
    if location_id:
        query = query.where(Order.location_id == location_id)
    if status is not None:
        query = query.where(Order.status == status)
    return [_summarize(order) for order in db.execute(query).scalars().all()]


def list_employee_orders(db: Session, *, user_id: str, limit: int = EMPLOYEE_ORDERS_LIMIT) -> list[OrderSummary]:
    rows = db.execute(
        select(Order)
        .options(selectinload(Order.items))
        .where(Order.user_id == user_id, Order.status != OrderStatus.DRAFT)
        .order_by(Order.created_at.desc(), Order.order_number.desc())
        .limit(limit)
    ).scalars().all()
    return [_summarize(order) for order in rows]


async def fetch_manager_orders(
    location_id: str | None = None,
    status: OrderStatus | None = None,
    *,
    force: bool = False,
    session_factory: sessionmaker = SessionLocal,
    cache: QueryCache = query_cache,
) -> list[OrderSummary]:
    key = manager_cache_key(location_id, status)
    if force:
        cache.invalidate(key)

    def _load() -> list[OrderSummary]:
        with session_factory() as db:
            return list_manager_orders(db, location_id=location_id, status=status)

    return await cache.cached_fetch(key, lambda: asyncio.to_thread(_load))


async def fetch_employee_orders(
    user_id: str,
    *,
    force: bool = False,
    session_factory: sessionmaker = SessionLocal,
    cache: QueryCache = query_cache,
) -> list[OrderSummary]:
    key = employee_cache_key(user_id)
    if force:
        cache.invalidate(key)

    def _load() -> list[OrderSummary]:
        with session_factory() as db:
            return list_employee_orders(db, user_id=user_id)

    return await cache.cached_fetch(key, lambda: asyncio.to_thread(_load))


def update_order_status(
    db: Session,
    *,
    order_id: str,
    status: OrderStatus,
    actor_id: str | None = None,
    cache: QueryCache = query_cache,
) -> Order:
    order = db.execute(select(Order).where(Order.id == order_id)).scalar_one_or_none()
    if not order:
        raise ValueError('Order not found')

    order.status = status
    if status == OrderStatus.FULFILLED:
        order.fulfilled_at = datetime.now(tz=timezone.utc)
        order.fulfilled_by = actor_id
    db.flush()
    # Cached lists are dropped only once the change is visible to other sessions.
    event.listen(db, 'after_commit', lambda _session: cache.invalidate_by_prefix(ORDERS_CACHE_PREFIX), once=True)
    return order
