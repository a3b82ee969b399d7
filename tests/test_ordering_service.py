from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.models import Base, Location, Order, OrderItem, OrderStatus, User, UserRole
from app.services.ordering_service import (
    employee_cache_key,
    fetch_employee_orders,
    fetch_manager_orders,
    list_employee_orders,
    list_manager_orders,
    manager_cache_key,
    update_order_status,
)
from app.services.query_cache import QueryCache

BASE_TIME = datetime(2026, 2, 1, 9, 0, tzinfo=timezone.utc)


def build_session_factory() -> sessionmaker:
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False)

    with factory() as db:
        db.add_all(
            [
                Location(id='loc-1', name='Sushi Bar', short_code='SB'),
                Location(id='loc-2', name='Poke Shop', short_code='PK'),
                User(id='emp-a', email='a@example.com', name='Ana', role=UserRole.EMPLOYEE),
                User(id='emp-b', email='b@example.com', name='Ben', role=UserRole.EMPLOYEE),
                User(id='mgr', email='m@example.com', name='Mia', role=UserRole.MANAGER),
            ]
        )
        rows = [
            ('o1', 1, 'emp-a', 'loc-1', OrderStatus.SUBMITTED),
            ('o2', 2, 'emp-a', 'loc-1', OrderStatus.DRAFT),
            ('o3', 3, 'emp-b', 'loc-2', OrderStatus.FULFILLED),
            ('o4', 4, 'emp-a', 'loc-2', OrderStatus.PROCESSING),
        ]
        for offset, (order_id, number, user_id, location_id, status) in enumerate(rows):
            db.add(
                Order(
                    id=order_id,
                    order_number=number,
                    user_id=user_id,
                    location_id=location_id,
                    status=status,
                    created_at=BASE_TIME + timedelta(minutes=offset),
                )
            )
        db.add(OrderItem(id='i1', order_id='o1', inventory_item_id='salmon', quantity=Decimal('2')))
        db.commit()
    return factory


class OrderingQueryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.factory = build_session_factory()

    def test_manager_list_excludes_drafts_newest_first(self) -> None:
        with self.factory() as db:
            orders = list_manager_orders(db)
        self.assertEqual([order.id for order in orders], ['o4', 'o3', 'o1'])
        self.assertEqual(orders[-1].items[0].inventory_item_id, 'salmon')

    def test_manager_list_filters(self) -> None:
        with self.factory() as db:
            by_location = list_manager_orders(db, location_id='loc-2')
            by_status = list_manager_orders(db, status=OrderStatus.SUBMITTED)
        self.assertEqual([order.id for order in by_location], ['o4', 'o3'])
        self.assertEqual([order.id for order in by_status], ['o1'])

    def test_employee_list_is_scoped_to_owner(self) -> None:
        with self.factory() as db:
            orders = list_employee_orders(db, user_id='emp-a')
        self.assertEqual([order.id for order in orders], ['o4', 'o1'])

    def test_fulfilling_stamps_and_invalidates(self) -> None:
        cache = QueryCache(default_ttl=60)
        cache.set_cached(manager_cache_key(), ['cached'])
        cache.set_cached(employee_cache_key('emp-a'), ['cached'])
        with self.factory() as db:
            order = update_order_status(db, order_id='o1', status=OrderStatus.FULFILLED, actor_id='mgr', cache=cache)
            self.assertEqual(cache.get_cached(manager_cache_key()), (True, ['cached']))
            db.commit()
        self.assertEqual(order.status, OrderStatus.FULFILLED)
        self.assertEqual(order.fulfilled_by, 'mgr')
        self.assertIsNotNone(order.fulfilled_at)
        self.assertEqual(cache.get_cached(manager_cache_key()), (False, None))
        self.assertEqual(cache.get_cached(employee_cache_key('emp-a')), (False, None))

    def test_rolled_back_change_keeps_cached_lists(self) -> None:
        cache = QueryCache(default_ttl=60)
        cache.set_cached(employee_cache_key('emp-a'), ['cached'])
        with self.factory() as db:
            update_order_status(db, order_id='o1', status=OrderStatus.CANCELLED, cache=cache)
            db.rollback()
        self.assertEqual(cache.get_cached(employee_cache_key('emp-a')), (True, ['cached']))

    def test_unknown_order_raises(self) -> None:
        with self.factory() as db, self.assertRaises(ValueError):
            update_order_status(db, order_id='missing', status=OrderStatus.CANCELLED, cache=QueryCache())


class OrderingFetchTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.factory = build_session_factory()
        self.cache = QueryCache(default_ttl=60)

    async def test_fetches_are_cached_until_forced(self) -> None:
        first = await fetch_employee_orders('emp-a', session_factory=self.factory, cache=self.cache)
        with self.factory() as db:
            update_order_status(db, order_id='o4', status=OrderStatus.FULFILLED, cache=QueryCache())
            db.commit()

        cached = await fetch_employee_orders('emp-a', session_factory=self.factory, cache=self.cache)
        forced = await fetch_employee_orders('emp-a', force=True, session_factory=self.factory, cache=self.cache)

        self.assertIs(cached, first)
        self.assertEqual(first[0].status, OrderStatus.PROCESSING)
        self.assertEqual(forced[0].status, OrderStatus.FULFILLED)

    async def test_manager_fetch_uses_its_own_key(self) -> None:
        orders = await fetch_manager_orders(session_factory=self.factory, cache=self.cache)
        self.assertEqual(len(orders), 3)
        self.assertEqual(self.cache.get_cached(manager_cache_key())[0], True)


if __name__ == '__main__':
    unittest.main()
