from __future__ import annotations

import unittest

from queuepoint.services.change_feed import DELETE, INSERT, UPDATE, ChangeFeed


class ChangeFeedTests(unittest.TestCase):
    def test_subscribers_only_see_their_table_and_events(self) -> None:
        feed = ChangeFeed()
        seen = []
        feed.subscribe('pcs', seen.append, events=[UPDATE])

        feed.publish('pcs', INSERT, {'id': 1})
        feed.publish('sessions', UPDATE, {'id': 2})
        feed.publish('pcs', UPDATE, {'id': 1, 'status': 'online'})

        self.assertEqual([(change.table, change.event, change.row['id']) for change in seen], [('pcs', UPDATE, 1)])
        self.assertEqual(seen[0].as_dict()['row']['status'], 'online')

    def test_unsubscribe_stops_delivery(self) -> None:
        feed = ChangeFeed()
        seen = []
        unsubscribe = feed.subscribe('detected_ips', seen.append)
        self.assertEqual(feed.subscriber_count('detected_ips'), 1)

        unsubscribe()
        unsubscribe()
        feed.publish('detected_ips', DELETE, {'id': 3})

        self.assertEqual(seen, [])
        self.assertEqual(feed.subscriber_count(), 0)

    def test_failing_subscriber_does_not_block_others(self) -> None:
        feed = ChangeFeed()
        seen = []

        def broken(_change) -> None:
            raise RuntimeError('socket closed')

        feed.subscribe('pcs', broken)
        feed.subscribe('pcs', seen.append)
        with self.assertLogs('queuepoint.services.change_feed', level='ERROR'):
            feed.publish('pcs', UPDATE, {'id': 1})

        self.assertEqual(len(seen), 1)

    def test_unknown_event_name_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            ChangeFeed().subscribe('pcs', print, events=['TRUNCATE'])


if __name__ == '__main__':
    unittest.main()
