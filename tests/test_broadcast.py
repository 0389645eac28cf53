from __future__ import annotations

import asyncio

import pytest

from gsirelay.broadcast import Broadcaster, Subscription, Topic, extract_updates


async def _collect(subscription: Subscription, count: int) -> list[str]:
    return [await asyncio.wait_for(subscription.get(), timeout=1.0) for _ in range(count)]


def test_extract_updates_keeps_only_present_delta_keys() -> None:
    payload = {"auth": {"token": "T"}, "added": {"hero": {"level": True}}, "map": {}}

    assert extract_updates(payload) == {"added": {"hero": {"level": True}}}


def test_extract_updates_with_both_keys() -> None:
    payload = {"added": {"a": 1}, "previously": {"b": 2}, "hero": {}}

    assert extract_updates(payload) == {"added": {"a": 1}, "previously": {"b": 2}}


def test_extract_updates_without_delta_is_none() -> None:
    assert extract_updates({"map": {"matchid": "1"}}) is None
    assert extract_updates([{"added": 1}]) is None


@pytest.mark.asyncio
async def test_subscribers_receive_messages_in_publish_order() -> None:
    topic = Topic("full", capacity=16)
    first = topic.subscribe()
    second = topic.subscribe()

    for n in range(5):
        topic.publish(str(n))

    assert await _collect(first, 5) == ["0", "1", "2", "3", "4"]
    assert await _collect(second, 5) == ["0", "1", "2", "3", "4"]


@pytest.mark.asyncio
async def test_late_subscriber_only_sees_future_messages() -> None:
    topic = Topic("updates", capacity=16)
    topic.publish("before")
    subscription = topic.subscribe()
    topic.publish("after")

    assert await _collect(subscription, 1) == ["after"]
    assert subscription.pending == 0


@pytest.mark.asyncio
async def test_lagging_subscriber_drops_backlog_and_resumes() -> None:
    topic = Topic("full", capacity=3)
    slow = topic.subscribe()
    fast = topic.subscribe()

    received_fast: list[str] = []
    for n in range(7):
        assert topic.publish(str(n)) == 2
        received_fast.append(await fast.get())

    # Backlog 0..2 dropped when 3 arrived, then 3..5 dropped when 6 arrived.
    assert slow.lagged == 6
    assert await _collect(slow, 1) == ["6"]
    assert received_fast == [str(n) for n in range(7)]


@pytest.mark.asyncio
async def test_closed_subscription_is_removed_and_iteration_ends() -> None:
    topic = Topic("full", capacity=4)
    subscription = topic.subscribe()
    other = topic.subscribe()

    topic.publish("a")
    subscription.close()
    topic.publish("b")

    assert topic.subscriber_count == 1
    assert [message async for message in subscription] == []
    assert await _collect(other, 2) == ["a", "b"]


@pytest.mark.asyncio
async def test_close_wakes_a_waiting_consumer() -> None:
    topic = Topic("full", capacity=4)
    subscription = topic.subscribe()

    waiter = asyncio.create_task(subscription.get())
    await asyncio.sleep(0)
    topic.close()

    assert await asyncio.wait_for(waiter, timeout=1.0) is None
    assert topic.subscriber_count == 0


@pytest.mark.asyncio
async def test_full_subscriber_gets_snapshot_then_live_messages() -> None:
    broadcaster = Broadcaster(capacity=8)
    broadcaster.publish_full('{"v":"X"}')

    with broadcaster.subscribe_full('{"v":"X"}') as subscription:
        broadcaster.publish_full('{"v":"Y"}')
        assert await _collect(subscription, 2) == ['{"v":"X"}', '{"v":"Y"}']

    assert broadcaster.full.subscriber_count == 0


@pytest.mark.asyncio
async def test_update_subscriber_has_no_replay() -> None:
    broadcaster = Broadcaster(capacity=8)
    broadcaster.publish_update('{"added":{}}')
    subscription = broadcaster.subscribe_updates()

    assert subscription.pending == 0
    broadcaster.publish_update('{"previously":{}}')
    assert await _collect(subscription, 1) == ['{"previously":{}}']


def test_publish_without_subscribers_never_blocks() -> None:
    topic = Topic("full", capacity=1)

    assert topic.publish("x") == 0
    assert topic.published == 1


def test_capacity_must_be_positive() -> None:
    with pytest.raises(ValueError):
        Topic("full", capacity=0)
