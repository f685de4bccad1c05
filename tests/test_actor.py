import pytest

from traveller.actor import (
    POOL_GROW,
    POOL_LIMIT,
    POOL_TRIM,
    Actor,
    ActorEvent,
    ActorFactory,
    Channel,
    subscribe_channel,
    unsubscribe_channel,
)


def _recorder(calls):
    def proc(actor, args):
        calls.append((actor, list(args)))

    return proc


def test_new_event_grows_pool():
    factory = ActorFactory()
    event = factory.new_event()
    assert event.receiver is None
    assert event.channel == ""
    assert len(factory.event_pool) == POOL_GROW - 1


def test_new_event_is_cleared():
    factory = ActorFactory()
    event = factory.new_event()
    event.channel = "news"
    event.mail_args = [1, 2]
    factory.recycle_event(event)
    again = None
    while factory.event_pool:
        candidate = factory.new_event()
        if candidate is event:
            again = candidate
            break
    assert again is event
    assert again.channel == ""
    assert again.mail_args == []


def test_recycle_event_trims_large_pool():
    factory = ActorFactory()
    factory.event_pool = [ActorEvent() for _ in range(POOL_LIMIT + 1)]
    extra = ActorEvent()
    factory.recycle_event(extra)
    assert len(factory.event_pool) == POOL_LIMIT + 1 - POOL_TRIM + 1
    assert factory.event_pool[-1] is extra


def test_append_event_queues_waiting():
    factory = ActorFactory()
    event = factory.new_event()
    factory.append_event(event)
    assert factory.waiting_events == [event]


def test_process_event_calls_receiver():
    calls = []
    factory = ActorFactory()
    actor = Actor(proc=_recorder(calls))
    event = ActorEvent(receiver=actor, mail_args=["hello"])
    factory.process_event(event)
    assert calls == [(actor, ["hello"])]


def test_process_event_broadcasts_channel():
    calls = []
    factory = ActorFactory()
    channel = Channel(key="room")
    factory.append_channel(channel)
    first = Actor(proc=_recorder(calls))
    second = Actor(proc=_recorder(calls))
    subscribe_channel(first, channel)
    subscribe_channel(second, channel)
    factory.process_event(ActorEvent(channel="room", mail_args=["x"]))
    assert [c[0] for c in calls] == [first, second]
    assert all(c[1] == ["x"] for c in calls)


def test_process_event_unknown_channel_is_ignored():
    calls = []
    factory = ActorFactory()
    actor = Actor(proc=_recorder(calls))
    subscribe_channel(actor, Channel(key="other"))
    factory.process_event(ActorEvent(channel="missing"))
    assert calls == []


def test_remove_channel():
    factory = ActorFactory()
    channel = Channel(key="room")
    factory.append_channel(channel)
    assert factory.channels["room"] is channel
    factory.remove_channel(channel)
    assert "room" not in factory.channels


def test_append_channel_keeps_existing():
    factory = ActorFactory()
    first = Channel(key="room")
    factory.append_channel(first)
    factory.append_channel(Channel(key="room"))
    assert factory.channels["room"] is first


def test_subscribe_and_unsubscribe_links_both_sides():
    actor = Actor()
    channel = Channel(key="c")
    subscribe_channel(actor, channel)
    assert actor.channels == [channel]
    assert channel.subscribers == [actor]
    unsubscribe_channel(actor, channel)
    assert actor.channels == []
    assert channel.subscribers == []


def test_new_actor_grows_pool():
    factory = ActorFactory()
    actor = factory.new_actor()
    assert actor.proc is None
    assert actor.channels == []
    assert len(factory.actor_pool) == POOL_GROW - 1


def test_recycle_actor_unsubscribes():
    factory = ActorFactory()
    actor = factory.new_actor()
    channel = Channel(key="c")
    subscribe_channel(actor, channel)
    factory.recycle_actor(actor)
    assert channel.subscribers == []
    assert actor.channels == []
    assert factory.actor_pool[-1] is actor


def test_recycle_actor_trims_large_pool():
    factory = ActorFactory()
    factory.actor_pool = [Actor() for _ in range(POOL_LIMIT + 1)]
    factory.recycle_actor(Actor())
    assert len(factory.actor_pool) == POOL_LIMIT + 1 - POOL_TRIM + 1


@pytest.mark.parametrize("count", [1, 5])
def test_actor_reset_leaves_all_channels(count):
    actor = Actor(proc=lambda a, args: None)
    channels = [Channel(key=str(i)) for i in range(count)]
    for channel in channels:
        subscribe_channel(actor, channel)
    actor.reset()
    assert actor.proc is None
    assert all(c.subscribers == [] for c in channels)