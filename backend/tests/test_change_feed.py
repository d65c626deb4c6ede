"""Tests for the in-process change feed."""

import asyncio

import pytest

from unichat.exceptions import FeedClosed
from unichat.schemas.realtime import ChangeEvent
from unichat.services.change_feed import ANY_TABLE, ChangeFeed


def event(table="messages", type="INSERT", **row):
    return ChangeEvent(table=table, type=type, new=row or {"id": "m1"})


class TestSubscriptions:

    @pytest.mark.asyncio
    async def test_filters_by_table_and_type(self, feed):
        inserts, everything, other = [], [], []
        feed.subscribe("messages", inserts.append, event="INSERT")
        feed.subscribe("messages", everything.append)
        feed.subscribe("typing_status", other.append)

        await feed.publish(event(type="INSERT"))
        await feed.publish(event(type="UPDATE"))
        await feed.drain()

        assert [e.type for e in inserts] == ["INSERT"]
        assert [e.type for e in everything] == ["INSERT", "UPDATE"]
        assert other == []

    @pytest.mark.asyncio
    async def test_delivery_in_publish_order(self, feed):
        seen = []
        feed.subscribe("messages", lambda e: seen.append(e.new["id"]))

        await feed.publish_many([event(id=str(i)) for i in range(20)])
        await feed.drain()

        assert seen == [str(i) for i in range(20)]

    @pytest.mark.asyncio
    async def test_any_table_keeps_order_across_tables(self, feed):
        seen = []
        feed.subscribe(ANY_TABLE, lambda e: seen.append(e.table))

        await feed.publish(event(table="conversations", id="c1"))
        await feed.publish(event(table="messages", id="m1"))
        await feed.publish(event(table="typing_status", id="t1"))
        await feed.drain()

        assert seen == ["conversations", "messages", "typing_status"]

    @pytest.mark.asyncio
    async def test_async_handler(self, feed):
        seen = []

        async def handler(e):
            await asyncio.sleep(0)
            seen.append(e.table)

        feed.subscribe("messages", handler)
        await feed.publish(event())
        await feed.drain()

        assert seen == ["messages"]

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_delivery(self, feed):
        seen = []

        def handler(e):
            if e.new["id"] == "bad":
                raise RuntimeError("boom")
            seen.append(e.new["id"])

        feed.subscribe("messages", handler)
        await feed.publish_many([event(id="bad"), event(id="good")])
        await feed.drain()

        assert seen == ["good"]

    @pytest.mark.asyncio
    async def test_handler_publishing_more_events(self, feed):
        """drain waits for events published from inside handlers too."""
        seen = []

        async def relay(e):
            await feed.publish(event(table="message_status", id=e.new["id"]))

        feed.subscribe("messages", relay)
        feed.subscribe("message_status", seen.append)

        await feed.publish(event(id="m9"))
        await feed.drain()

        assert [e.new["id"] for e in seen] == ["m9"]

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_delivery(self, feed):
        seen = []
        subscription = feed.subscribe("messages", seen.append)

        await subscription.unsubscribe()
        await feed.publish(event())
        await feed.drain()

        assert seen == []
        assert subscription not in feed.subscriptions
        assert subscription.active is False


class TestClose:

    @pytest.mark.asyncio
    async def test_closed_feed_rejects_subscribe_and_publish(self):
        feed = ChangeFeed()
        feed.subscribe("messages", lambda e: None)

        await feed.close()

        assert feed.closed
        assert feed.subscriptions == []
        with pytest.raises(FeedClosed):
            feed.subscribe("messages", lambda e: None)
        with pytest.raises(FeedClosed):
            await feed.publish(event())

    @pytest.mark.asyncio
    async def test_store_keeps_working_without_feed(self, store, feed, conversation_id):
        """Writes still commit after the feed is gone; only the events are dropped."""
        await feed.close()

        message = await store.insert_message(conversation_id, "user-alice", "still here")

        page = await store.list_messages(conversation_id, "user-bob")
        assert [m.id for m in page.messages] == [message.id]

    def test_record_prefers_new_values(self):
        update = ChangeEvent(table="t", type="UPDATE", new={"v": 2}, old={"v": 1})
        delete = ChangeEvent(table="t", type="DELETE", old={"v": 1})

        assert update.record == {"v": 2}
        assert delete.record == {"v": 1}
