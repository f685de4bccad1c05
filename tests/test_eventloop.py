import socket

import pytest

from traveller.actor import Actor
from traveller.device import Device
from traveller.eventloop import (
    ALL_EVENTS,
    DONT_WAIT,
    FILE_EVENTS,
    NOMORE,
    TIME_EVENTS,
    EventLoop,
    EventLoopError,
    wait,
)
from traveller.poller import NONE, READABLE, WRITABLE


@pytest.fixture
def pair():
    a, b = socket.socketpair()
    yield a, b
    a.close()
    b.close()


def test_api_name_is_select():
    assert EventLoop().api_name == "select"


def test_file_event_out_of_range_raises():
    loop = EventLoop(setsize=4)
    with pytest.raises(EventLoopError):
        loop.create_file_event(4, READABLE, lambda *a: None)


def test_readable_event_fires(pair):
    a, b = pair
    loop = EventLoop()
    calls = []
    loop.create_file_event(a.fileno(), READABLE, lambda el, fd, data, mask: calls.append((fd, data, mask)), "ctx")
    b.sendall(b"x")
    assert loop.process_events(FILE_EVENTS | DONT_WAIT) == 1
    assert calls == [(a.fileno(), "ctx", READABLE)]


def test_same_proc_for_read_and_write_called_once(pair):
    a, b = pair
    loop = EventLoop()
    calls = []

    def proc(el, fd, data, mask):
        calls.append(mask)

    loop.create_file_event(a.fileno(), READABLE | WRITABLE, proc)
    b.sendall(b"x")
    assert loop.process_events(FILE_EVENTS | DONT_WAIT) == 1
    assert calls == [READABLE | WRITABLE]


def test_get_and_delete_file_events(pair):
    a, b = pair
    loop = EventLoop()
    loop.create_file_event(a.fileno(), READABLE, lambda *x: None)
    loop.create_file_event(a.fileno(), WRITABLE, lambda *x: None)
    assert loop.get_file_events(a.fileno()) == READABLE | WRITABLE
    loop.delete_file_event(a.fileno(), READABLE)
    assert loop.get_file_events(a.fileno()) == WRITABLE
    loop.delete_file_event(a.fileno(), WRITABLE)
    assert loop.get_file_events(a.fileno()) == NONE


def test_maxfd_tracks_highest_registered(pair):
    a, b = pair
    loop = EventLoop()
    low, high = sorted([a.fileno(), b.fileno()])
    loop.create_file_event(low, READABLE, lambda *x: None)
    loop.create_file_event(high, READABLE, lambda *x: None)
    assert loop.maxfd == high
    loop.delete_file_event(high, READABLE)
    assert loop.maxfd == low
    loop.delete_file_event(low, READABLE)
    assert loop.maxfd == -1


def test_resize(pair):
    a, _ = pair
    loop = EventLoop()
    loop.create_file_event(a.fileno(), READABLE, lambda *x: None)
    with pytest.raises(EventLoopError):
        loop.resize(a.fileno())
    with pytest.raises(EventLoopError):
        loop.resize(1024)
    loop.resize(a.fileno() + 10)
    assert loop.setsize == a.fileno() + 10


def test_process_events_without_flags_does_nothing():
    loop = EventLoop()
    fired = []
    loop.create_time_event(0, lambda el, i, d: fired.append(i) or NOMORE)
    assert loop.process_events(0) == 0
    assert fired == []


def test_time_event_ids_start_at_zero():
    loop = EventLoop()
    first = loop.create_time_event(1000, lambda *x: NOMORE)
    second = loop.create_time_event(1000, lambda *x: NOMORE)
    assert (first, second) == (0, 1)


def test_one_shot_timer_runs_finalizer():
    loop = EventLoop()
    fired, finalized = [], []
    event_id = loop.create_time_event(
        0,
        lambda el, i, data: fired.append((i, data)) or NOMORE,
        "data",
        lambda el, data: finalized.append(data),
    )
    assert loop.process_events(TIME_EVENTS | DONT_WAIT) == 1
    assert fired == [(event_id, "data")]
    assert finalized == ["data"]
    with pytest.raises(EventLoopError):
        loop.delete_time_event(event_id)


def test_rescheduled_timer_stays_pending():
    loop = EventLoop()
    fired = []

    def proc(el, i, data):
        fired.append(i)
        return 60_000

    event_id = loop.create_time_event(0, proc)
    assert loop.process_events(TIME_EVENTS | DONT_WAIT) == 1
    assert loop.process_events(TIME_EVENTS | DONT_WAIT) == 0
    assert fired == [event_id]
    loop.delete_time_event(event_id)


def test_newest_timer_fires_first():
    loop = EventLoop()
    order = []
    first = loop.create_time_event(0, lambda el, i, d: order.append(i) or NOMORE)
    second = loop.create_time_event(0, lambda el, i, d: order.append(i) or NOMORE)
    loop.process_events(TIME_EVENTS | DONT_WAIT)
    assert order == [second, first]


def test_delete_unknown_time_event_raises():
    with pytest.raises(EventLoopError):
        EventLoop().delete_time_event(42)


def test_wait_reports_writable_and_timeout(pair):
    a, b = pair
    assert wait(a.fileno(), WRITABLE, 100) & WRITABLE == WRITABLE
    assert wait(a.fileno(), READABLE, 10) == NONE
    b.sendall(b"y")
    assert wait(a.fileno(), READABLE, 100) & READABLE == READABLE


def test_run_drives_device_and_stops():
    loop = EventLoop()
    device = Device()
    received = []
    actor = Actor(proc=lambda act, args: received.append(args))
    event = device.factory.new_event()
    event.receiver = actor
    event.mail_args = ["hello"]
    device.append_event(event)

    sleeps = []
    loop.set_before_sleep(lambda el: sleeps.append(1))

    def stopper(el, i, data):
        el.stop()
        return NOMORE

    loop.create_time_event(0, stopper)
    loop.run(device)
    assert received == [["hello"]]
    assert len(sleeps) == 1
    assert loop.stopped is True
    assert loop.process_events(ALL_EVENTS | DONT_WAIT) == 0