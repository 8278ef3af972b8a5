"""Tests for notification fan-out to stream subscribers."""

import unittest

from runtimebridge.supervisor.broadcaster import NotificationBroadcaster
from runtimebridge.supervisor.models import Notification


def _note(kind: str = "event", **payload) -> Notification:
    return Notification(kind=kind, payload=payload, timestamp="2026-01-01T00:00:00+00:00")


class NotificationBroadcasterTests(unittest.IsolatedAsyncioTestCase):
    async def test_every_subscriber_receives_in_order(self) -> None:
        broadcaster = NotificationBroadcaster()
        first, _ = broadcaster.subscribe()
        second, _ = broadcaster.subscribe()
        broadcaster.publish(_note(n=1))
        broadcaster.publish(_note("status", n=2))

        for subscription in (first, second):
            self.assertEqual((await subscription.get()).payload, {"n": 1})
            self.assertEqual((await subscription.get()).kind, "status")

    async def test_unsubscribe_stops_delivery_and_ends_iteration(self) -> None:
        broadcaster = NotificationBroadcaster()
        subscription, unsubscribe = broadcaster.subscribe()
        broadcaster.publish(_note(n=1))
        unsubscribe()
        unsubscribe()
        broadcaster.publish(_note(n=2))
        self.assertEqual(broadcaster.subscriber_count, 0)

        received = [notification.payload["n"] async for notification in subscription]
        self.assertEqual(received, [1])

    async def test_full_queue_drops_for_slow_subscriber_only(self) -> None:
        broadcaster = NotificationBroadcaster(max_queue_size=2)
        slow, _ = broadcaster.subscribe()
        for index in range(3):
            broadcaster.publish(_note(n=index))
        self.assertEqual(slow.dropped, 1)

        fast, _ = broadcaster.subscribe()
        broadcaster.publish(_note(n=9))
        self.assertEqual((await fast.get()).payload, {"n": 9})

    async def test_close_ends_every_subscription(self) -> None:
        broadcaster = NotificationBroadcaster(max_queue_size=1)
        subscription, _ = broadcaster.subscribe()
        broadcaster.publish(_note(n=1))
        broadcaster.close()
        self.assertEqual(broadcaster.subscriber_count, 0)
        self.assertIsNone(await subscription.get())
        self.assertIsNone(await subscription.get())

    def test_notification_rejects_unknown_kind(self) -> None:
        with self.assertRaises(ValueError):
            _note("chatter")
        self.assertEqual(
            _note(n=1).to_dict(),
            {"kind": "event", "payload": {"n": 1}, "timestamp": "2026-01-01T00:00:00+00:00"},
        )


if __name__ == "__main__":
    unittest.main()
