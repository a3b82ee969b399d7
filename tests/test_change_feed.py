from __future__ import annotations

import unittest

from app.services.change_feed import ChangeEvent, ChangeFeed, EntityTable, EventType, parse_webhook_payload


class ParseWebhookPayloadTests(unittest.TestCase):
    def test_update_payload(self) -> None:
        event = parse_webhook_payload(
            {
                'type': 'UPDATE',
                'table': 'orders',
                'schema': 'public',
                'record': {'id': 'o1', 'status': 'fulfilled'},
                'old_record': {'id': 'o1', 'status': 'submitted'},
            }
        )
        self.assertEqual(event.table, EntityTable.ORDERS)
        self.assertEqual(event.event_type, EventType.UPDATE)
        self.assertEqual(event.before, {'id': 'o1', 'status': 'submitted'})
        self.assertEqual(event.entity_id, 'o1')

    def test_delete_payload_has_no_after(self) -> None:
        event = parse_webhook_payload({'type': 'delete', 'table': 'order_items', 'record': None, 'old_record': {'id': 'i1'}})
        self.assertEqual(event.event_type, EventType.DELETE)
        self.assertIsNone(event.after)
        self.assertEqual(event.entity_id, 'i1')

    def test_empty_snapshots_still_parse(self) -> None:
        event = parse_webhook_payload({'type': 'UPDATE', 'table': 'orders', 'record': {}, 'old_record': {}})
        self.assertIsNone(event.before)
        self.assertIsNone(event.after)

    def test_rejects_unknown_table_and_type(self) -> None:
        with self.assertRaises(ValueError):
            parse_webhook_payload({'type': 'UPDATE', 'table': 'inventory_items', 'record': {'id': 'x'}})
        with self.assertRaises(ValueError):
            parse_webhook_payload({'type': 'TRUNCATE', 'table': 'orders'})
        with self.assertRaises(ValueError):
            parse_webhook_payload({'type': 'INSERT', 'table': 'orders', 'record': 'not-an-object'})


class ChangeFeedTests(unittest.IsolatedAsyncioTestCase):
    async def test_publish_respects_table_filter_and_close(self) -> None:
        feed = ChangeFeed()
        received: list[ChangeEvent] = []

        async def on_event(event: ChangeEvent) -> None:
            received.append(event)

        channel = feed.subscribe('order-changes-u1', [EntityTable.ORDERS], on_event)
        order_event = ChangeEvent(EntityTable.ORDERS, EventType.INSERT, after={'id': 'o1'})
        item_event = ChangeEvent(EntityTable.ORDER_ITEMS, EventType.INSERT, after={'id': 'i1'})

        self.assertEqual(await feed.publish(order_event), 1)
        self.assertEqual(await feed.publish(item_event), 0)
        self.assertEqual(received, [order_event])

        channel.close()
        channel.close()
        self.assertEqual(await feed.publish(order_event), 0)
        self.assertEqual(feed.channel_names, [])

    async def test_failing_channel_does_not_block_others(self) -> None:
        feed = ChangeFeed()
        received: list[str] = []

        async def broken(event: ChangeEvent) -> None:
            raise RuntimeError('bad handler')

        async def healthy(event: ChangeEvent) -> None:
            received.append(event.entity_id)

        feed.subscribe('a', [EntityTable.ORDERS], broken)
        feed.subscribe('b', [EntityTable.ORDERS], healthy)
        with self.assertLogs('app.services.change_feed', level='ERROR'):
            delivered = await feed.publish(ChangeEvent(EntityTable.ORDERS, EventType.UPDATE, after={'id': 'o9'}))
        self.assertEqual(delivered, 1)
        self.assertEqual(received, ['o9'])


if __name__ == '__main__':
    unittest.main()
