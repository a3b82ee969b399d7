from __future__ import annotations

import unittest

from app.services.change_event_router import RoutedEvent
from app.services.change_feed import EntityTable, EventType
from app.services.transition_detector import StatusMemory, Transition, TransitionDetector


def routed(
    event_type: EventType,
    *,
    after: dict | None = None,
    before: dict | None = None,
    entity_id: str = 'o1',
    own: bool = True,
    table: EntityTable = EntityTable.ORDERS,
) -> RoutedEvent:
    return RoutedEvent(table=table, event_type=event_type, entity_id=entity_id, before=before, after=after, is_own_record=own)


def order(status: str, **extra) -> dict:
    return {'id': 'o1', 'user_id': 'A', 'order_number': 42, 'status': status, **extra}


class TransitionDetectorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.detector = TransitionDetector(StatusMemory(max_entries=100, ttl=0))

    def test_insert_records_baseline_without_transition(self) -> None:
        self.assertIsNone(self.detector.observe(routed(EventType.INSERT, after=order('draft'))))
        self.assertEqual(self.detector.memory.get('o1'), 'draft')

    def test_update_with_before_snapshot_is_a_transition(self) -> None:
        transition = self.detector.observe(routed(EventType.UPDATE, before=order('submitted'), after=order('fulfilled')))
        self.assertEqual(
            transition,
            Transition(entity_id='o1', from_status='submitted', to_status='fulfilled', is_own_record=True, order_number=42, owner_id='A'),
        )

    def test_update_uses_memory_when_before_is_missing(self) -> None:
        self.detector.observe(routed(EventType.INSERT, after=order('draft')))
        transition = self.detector.observe(routed(EventType.UPDATE, after=order('submitted')))
        self.assertEqual((transition.from_status, transition.to_status), ('draft', 'submitted'))

    def test_same_update_delivered_twice_yields_one_transition(self) -> None:
        event = routed(EventType.UPDATE, before=order('submitted'), after=order('fulfilled'))
        self.assertIsNotNone(self.detector.observe(event))
        self.assertIsNone(self.detector.observe(event))
        self.assertEqual(self.detector.memory.get('o1'), 'fulfilled')

    def test_unchanged_status_is_ignored(self) -> None:
        self.detector.observe(routed(EventType.INSERT, after=order('submitted')))
        self.assertIsNone(self.detector.observe(routed(EventType.UPDATE, after=order('submitted', notes='edited'))))

    def test_unknown_history_only_sets_baseline(self) -> None:
        self.assertIsNone(self.detector.observe(routed(EventType.UPDATE, after=order('processing'))))
        self.assertEqual(self.detector.memory.get('o1'), 'processing')

    def test_rapid_flip_produces_two_transitions(self) -> None:
        self.detector.observe(routed(EventType.INSERT, after=order('processing')))
        first = self.detector.observe(routed(EventType.UPDATE, after=order('cancel_requested')))
        second = self.detector.observe(routed(EventType.UPDATE, after=order('processing')))
        self.assertEqual((first.from_status, first.to_status), ('processing', 'cancel_requested'))
        self.assertEqual((second.from_status, second.to_status), ('cancel_requested', 'processing'))

    def test_return_to_remembered_status_after_missed_event_is_suppressed(self) -> None:
        self.detector.observe(routed(EventType.INSERT, after=order('processing')))
        # The processing -> cancel_requested update never arrived.
        transition = self.detector.observe(
            routed(EventType.UPDATE, before=order('cancel_requested'), after=order('processing'))
        )
        self.assertIsNone(transition)
        self.assertEqual(self.detector.memory.get('o1'), 'processing')

    def test_delete_forgets_entity(self) -> None:
        self.detector.observe(routed(EventType.INSERT, after=order('submitted')))
        self.assertIsNone(self.detector.observe(routed(EventType.DELETE, before=order('submitted'))))
        self.assertIsNone(self.detector.memory.get('o1'))

    def test_submitted_insert_is_a_creation_transition(self) -> None:
        transition = self.detector.observe(routed(EventType.INSERT, after=order('submitted'), own=False))
        self.assertTrue(transition.is_creation)
        self.assertIsNone(transition.from_status)
        self.assertEqual(transition.to_status, 'submitted')
        self.assertIsNone(self.detector.observe(routed(EventType.INSERT, after=order('submitted'), own=False)))

    def test_order_item_events_never_transition(self) -> None:
        event = routed(EventType.UPDATE, after={'id': 'i1', 'order_id': 'o1'}, entity_id='i1', table=EntityTable.ORDER_ITEMS)
        self.assertIsNone(self.detector.observe(event))
        self.assertEqual(len(self.detector.memory), 0)


class StatusMemoryTests(unittest.TestCase):
    def test_evicts_least_recently_observed(self) -> None:
        memory = StatusMemory(max_entries=2, ttl=0)
        memory.record('a', 'draft')
        memory.record('b', 'draft')
        memory.record('a', 'submitted')
        memory.record('c', 'draft')
        self.assertEqual(memory.get('a'), 'submitted')
        self.assertIsNone(memory.get('b'))
        self.assertEqual(len(memory), 2)

    def test_expired_entries_read_as_unknown(self) -> None:
        now = [0.0]
        memory = StatusMemory(max_entries=10, ttl=60, clock=lambda: now[0])
        memory.record('a', 'submitted')
        now[0] = 59
        self.assertIn('a', memory)
        now[0] = 61
        self.assertIsNone(memory.get('a'))
        self.assertEqual(len(memory), 0)


if __name__ == '__main__':
    unittest.main()
