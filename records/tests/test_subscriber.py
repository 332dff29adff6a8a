import asyncio

import pytest
from channels.layers import InMemoryChannelLayer

from conftest import FakeStore, wait_until
from records.exceptions import StoreUnavailable
from records.realtime.subscriber import ChangeFeedSubscriber, backoff_delay
from records.services.feed import ChangeFeed, group_name

PATIENTS = [
    {'id': 2, 'first_name': 'Ann', 'status': 'pending', 'added_by_id': 1},
    {'id': 1, 'first_name': 'Jane', 'status': 'approved', 'added_by_id': 1},
    {'id': 3, 'first_name': 'Bob', 'status': 'pending', 'added_by_id': 9},
]


@pytest.fixture
def layer():
    return InMemoryChannelLayer()


@pytest.fixture
def feed(layer):
    return ChangeFeed(channel_layer=layer)


def subscriber(store, layer, filters=None, **kwargs):
    kwargs.setdefault('base_delay', 0)
    return ChangeFeedSubscriber('patients', filters, store=store, channel_layer=layer, **kwargs)


def ids(sub):
    return [r['id'] for r in sub.rows]


def test_backoff_delay_jitter_stays_under_the_cap():
    assert backoff_delay(0, 0, 8) == 0
    for _ in range(20):
        assert 2.0 <= backoff_delay(2, 0.5, 8) <= 3.0
        assert backoff_delay(10, 0.5, 8) == 8.0
        assert backoff_delay(3, 0.5, 5) <= 5.0


@pytest.mark.asyncio
async def test_snapshot_then_live_deltas(layer, feed):
    sub = subscriber(FakeStore({'patients': PATIENTS}), layer, {'added_by_id': 1})
    seen = []
    sub.add_listener(lambda s: seen.append(ids(s)))
    await sub.subscribe()
    try:
        assert sub.loading is False and ids(sub) == [2, 1]

        await feed.apublish(feed.stamp('patients', 'insert', new={'id': 4, 'status': 'pending', 'added_by_id': 1}))
        await wait_until(lambda: ids(sub) == [4, 2, 1])

        # another student's patient never shows up
        await feed.apublish(feed.stamp('patients', 'insert', new={'id': 5, 'status': 'pending', 'added_by_id': 9}))
        await feed.apublish(feed.stamp('patients', 'update', new={'id': 2, 'status': 'approved', 'added_by_id': 1}))
        await wait_until(lambda: sub.rows[1]['status'] == 'approved')
        assert ids(sub) == [4, 2, 1]

        await feed.apublish(feed.stamp('patients', 'delete', old={'id': 1, 'status': 'approved', 'added_by_id': 1}))
        await wait_until(lambda: ids(sub) == [4, 2])
        assert seen[0] == [2, 1] and seen[-1] == [4, 2]
    finally:
        await sub.unsubscribe()


@pytest.mark.asyncio
async def test_events_during_snapshot_are_not_lost(layer, feed):
    store = FakeStore({'patients': PATIENTS[:2]})

    async def commit_while_reading():
        await feed.apublish(feed.stamp('patients', 'insert', new={'id': 7, 'status': 'pending', 'added_by_id': 1}))

    store.before_return = commit_while_reading
    sub = subscriber(store, layer)
    await sub.subscribe()
    try:
        await wait_until(lambda: ids(sub) == [7, 2, 1])
    finally:
        await sub.unsubscribe()


@pytest.mark.asyncio
async def test_snapshot_retries_transient_failures(layer):
    store = FakeStore({'patients': PATIENTS}, failures=2)
    sub = subscriber(store, layer, attempts=4)
    await sub.subscribe()
    try:
        assert store.calls == 3
        assert sub.error is None and len(sub.rows) == 3
    finally:
        await sub.unsubscribe()


@pytest.mark.asyncio
async def test_exhausted_retries_surface_error_and_keep_listening(layer, feed):
    store = FakeStore({'patients': PATIENTS}, failures=10)
    sub = subscriber(store, layer, attempts=3)
    await sub.subscribe()
    try:
        assert store.calls == 3
        assert isinstance(sub.error, StoreUnavailable)
        assert sub.loading is False and sub.rows == []

        await feed.apublish(feed.stamp('patients', 'insert', new={'id': 8, 'status': 'pending'}))
        await wait_until(lambda: ids(sub) == [8])

        store.failures = 0
        await sub.refresh()
        assert sub.error is None and len(sub.rows) == 3
    finally:
        await sub.unsubscribe()


@pytest.mark.asyncio
async def test_unsubscribe_stops_delivery(layer, feed):
    sub = subscriber(FakeStore({'patients': PATIENTS}), layer)
    calls = []
    sub.add_listener(lambda s: calls.append(1))
    await sub.subscribe()
    await sub.unsubscribe()
    await sub.unsubscribe()
    before = len(calls)

    await feed.apublish(feed.stamp('patients', 'insert', new={'id': 9, 'status': 'pending'}))
    assert sub.apply(feed.stamp('patients', 'insert', new={'id': 10})) is False
    assert len(calls) == before and 9 not in ids(sub)
    assert sub.channel_name not in layer.groups.get(group_name('patients'), {})


@pytest.mark.asyncio
async def test_events_for_other_tables_are_ignored(layer, feed):
    sub = subscriber(FakeStore({'patients': PATIENTS}), layer)
    await sub.subscribe()
    try:
        assert sub.apply(feed.stamp('treatments', 'insert', new={'id': 99})) is False
        assert 99 not in ids(sub)
    finally:
        await sub.unsubscribe()


class FlakyLayer(InMemoryChannelLayer):
    """Fails the first ``failures`` receives like a dropped Redis connection."""

    def __init__(self, failures=1, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures

    async def receive(self, channel):
        if self.failures:
            self.failures -= 1
            raise ConnectionError('connection to channel layer lost')
        return await super().receive(channel)


@pytest.mark.asyncio
async def test_failing_listener_does_not_stop_delivery(layer, feed):
    sub = subscriber(FakeStore({'patients': PATIENTS}), layer)
    await sub.subscribe()
    blown = []

    def flaky(s):
        if not blown:
            blown.append(True)
            raise RuntimeError('listener blew up once')

    delivered = []
    sub.add_listener(flaky)
    sub.add_listener(lambda s: delivered.append(ids(s)))
    try:
        await feed.apublish(feed.stamp('patients', 'insert', new={'id': 4, 'status': 'pending'}))
        await feed.apublish(feed.stamp('patients', 'insert', new={'id': 5, 'status': 'pending'}))
        await wait_until(lambda: ids(sub)[:2] == [5, 4])
        # the second listener still saw the change the first one choked on
        assert delivered[0] == [4, 2, 1, 3]
        assert sub.error is None
        assert not sub._task.done()
    finally:
        await sub.unsubscribe()
    assert sub.channel_name not in layer.groups.get(group_name('patients'), {})


@pytest.mark.asyncio
async def test_lost_receive_surfaces_error_then_rejoins():
    layer = FlakyLayer(failures=1)
    feed = ChangeFeed(channel_layer=layer)
    store = FakeStore({'patients': PATIENTS})
    sub = subscriber(store, layer)
    errors = []
    sub.add_listener(lambda s: errors.append(s.error))
    await sub.subscribe()
    try:
        await wait_until(lambda: store.calls == 2)
        assert any(isinstance(e, ConnectionError) for e in errors)
        # the snapshot reload cleared the error
        assert sub.error is None and len(sub.rows) == 3

        await feed.apublish(feed.stamp('patients', 'insert', new={'id': 6, 'status': 'pending'}))
        await wait_until(lambda: 6 in ids(sub))
    finally:
        await sub.unsubscribe()


@pytest.mark.asyncio
async def test_unsubscribe_leaves_group_even_if_pump_died(layer):
    sub = subscriber(FakeStore({'patients': PATIENTS}), layer)
    await sub.subscribe()
    sub._task.cancel()
    dead = asyncio.get_running_loop().create_future()
    dead.set_exception(RuntimeError('pump crashed'))
    sub._task = dead

    await sub.unsubscribe()
    await sub.unsubscribe()
    assert sub.channel_name not in layer.groups.get(group_name('patients'), {})
