"""A single-threaded event loop for file readiness and timers."""

from __future__ import annotations

import select
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from traveller.poller import NONE, READABLE, WRITABLE, SelectPoller

FILE_EVENTS = 1
TIME_EVENTS = 2
ALL_EVENTS = FILE_EVENTS | TIME_EVENTS
DONT_WAIT = 4

NOMORE = -1

FileProc = Callable[["EventLoop", int, Any, int], Any]
TimeProc = Callable[["EventLoop", int, Any], int]
FinalizerProc = Callable[["EventLoop", Any], Any]
BeforeSleepProc = Callable[["EventLoop"], Any]


class EventLoopError(Exception):
    """Raised when the event loop cannot perform a requested operation."""


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(eq=False)
class _FileEvent:
    mask: int = NONE
    rproc: Optional[FileProc] = None
    wproc: Optional[FileProc] = None
    client_data: Any = None


@dataclass(eq=False)
class _TimeEvent:
    id: int
    when: int
    proc: TimeProc
    finalizer: Optional[FinalizerProc] = None
    client_data: Any = field(default=None, repr=False)


class EventLoop:
    """Dispatches file readiness callbacks and timer callbacks."""

    def __init__(self, setsize: int = 1023) -> None:
        self.setsize = setsize
        self.maxfd = -1
        self.stopped = False
        self.before_sleep: Optional[BeforeSleepProc] = None
        self.last_time = int(time.time())
        self._next_id = 0
        self._files: dict[int, _FileEvent] = {}
        self._timers: list[_TimeEvent] = []
        self._poller = SelectPoller(setsize)

    @property
    def api_name(self) -> str:
        """Name of the readiness API in use."""
        return self._poller.name

    def resize(self, setsize: int) -> None:
        """Change the maximum number of descriptors the loop tracks."""
        if setsize == self.setsize:
            return
        if self.maxfd >= setsize:
            raise EventLoopError(
                f"descriptor {self.maxfd} in use does not fit set size {setsize}"
            )
        try:
            self._poller.resize(setsize)
        except ValueError as exc:
            raise EventLoopError(str(exc)) from exc
        self.setsize = setsize

    def create_file_event(
        self, fd: int, mask: int, proc: FileProc, client_data: Any = None
    ) -> None:
        """Call ``proc`` whenever ``fd`` meets a condition in ``mask``."""
        if fd >= self.setsize:
            raise EventLoopError(f"descriptor {fd} out of range")
        self._poller.add_event(fd, mask)
        fe = self._files.setdefault(fd, _FileEvent())
        fe.mask |= mask
        if mask & READABLE:
            fe.rproc = proc
        if mask & WRITABLE:
            fe.wproc = proc
        fe.client_data = client_data
        if fd > self.maxfd:
            self.maxfd = fd

    def delete_file_event(self, fd: int, mask: int) -> None:
        """Stop watching ``fd`` for the conditions in ``mask``."""
        if fd >= self.setsize:
            return
        fe = self._files.get(fd)
        if fe is None or fe.mask == NONE:
            return
        fe.mask &= ~mask
        if fe.mask == NONE:
            del self._files[fd]
            if fd == self.maxfd:
                self.maxfd = max(
                    (other for other, ev in self._files.items() if ev.mask != NONE),
                    default=-1,
                )
        self._poller.del_event(fd, mask)

    def get_file_events(self, fd: int) -> int:
        """Return the mask of conditions watched on ``fd``."""
        if fd >= self.setsize:
            return NONE
        fe = self._files.get(fd)
        return fe.mask if fe is not None else NONE

    def create_time_event(
        self,
        milliseconds: int,
        proc: TimeProc,
        client_data: Any = None,
        finalizer: Optional[FinalizerProc] = None,
    ) -> int:
        """Schedule ``proc`` after ``milliseconds``; returns the timer id.

        ``proc`` returns the delay until its next run, or ``NOMORE``.
        """
        event_id = self._next_id
        self._next_id += 1
        self._timers.insert(
            0,
            _TimeEvent(
                id=event_id,
                when=_now_ms() + milliseconds,
                proc=proc,
                finalizer=finalizer,
                client_data=client_data,
            ),
        )
        return event_id

    def delete_time_event(self, event_id: int) -> None:
        """Remove a timer and run its finalizer."""
        te = next((t for t in self._timers if t.id == event_id), None)
        if te is None:
            raise EventLoopError(f"no time event with id {event_id}")
        self._timers.remove(te)
        if te.finalizer is not None:
            te.finalizer(self, te.client_data)

    def _nearest_timer(self) -> Optional[_TimeEvent]:
        return min(self._timers, key=lambda t: t.when, default=None)

    def _process_time_events(self) -> int:
        processed = 0
        now = int(time.time())
        if now < self.last_time:
            # The clock went backwards: fire everything rather than stall.
            for te in self._timers:
                te.when = 0
        self.last_time = now

        max_id = self._next_id - 1
        while True:
            current = _now_ms()
            te = next(
                (t for t in self._timers if t.id <= max_id and current >= t.when),
                None,
            )
            if te is None:
                break
            retval = te.proc(self, te.id, te.client_data)
            processed += 1
            if retval != NOMORE:
                te.when = _now_ms() + retval
            elif te in self._timers:
                self.delete_time_event(te.id)
        return processed

    def process_events(self, flags: int = ALL_EVENTS) -> int:
        """Handle pending file and/or time events; returns how many ran."""
        if not flags & TIME_EVENTS and not flags & FILE_EVENTS:
            return 0

        processed = 0
        if self.maxfd != -1 or (flags & TIME_EVENTS and not flags & DONT_WAIT):
            shortest = None
            if flags & TIME_EVENTS and not flags & DONT_WAIT:
                shortest = self._nearest_timer()
            if shortest is not None:
                timeout: Optional[float] = max(0, shortest.when - _now_ms()) / 1000
            elif flags & DONT_WAIT:
                timeout = 0
            else:
                timeout = None

            registered = {fd: fe.mask for fd, fe in self._files.items()}
            for fired in self._poller.poll(registered, timeout):
                fe = self._files.get(fired.fd, _FileEvent())
                rfired = False
                if fe.mask & fired.mask & READABLE and fe.rproc is not None:
                    rfired = True
                    fe.rproc(self, fired.fd, fe.client_data, fired.mask)
                if fe.mask & fired.mask & WRITABLE and fe.wproc is not None:
                    if not rfired or fe.wproc is not fe.rproc:
                        fe.wproc(self, fired.fd, fe.client_data, fired.mask)
                processed += 1

        if flags & TIME_EVENTS:
            processed += self._process_time_events()
        return processed

    def set_before_sleep(self, proc: Optional[BeforeSleepProc]) -> None:
        """Set a callback run before each iteration of :meth:`run`."""
        self.before_sleep = proc

    def stop(self) -> None:
        """Make :meth:`run` return after the current iteration."""
        self.stopped = True

    def run(self, device: Any = None) -> None:
        """Loop until stopped, letting ``device`` process its actor events."""
        self.stopped = False
        while not self.stopped:
            if self.before_sleep is not None:
                self.before_sleep(self)
            self.process_events(ALL_EVENTS)
            if device is not None:
                device.loop_once()
        self.close()

    def close(self) -> None:
        """Release the poller and forget all registrations."""
        self._poller.close()
        self._files.clear()
        self._timers.clear()
        self.maxfd = -1


def wait(fd: int, mask: int, milliseconds: int) -> int:
    """Wait up to ``milliseconds`` for ``fd``; returns the ready mask (0 on timeout)."""
    events = 0
    if mask & READABLE:
        events |= select.POLLIN
    if mask & WRITABLE:
        events |= select.POLLOUT
    poller = select.poll()
    poller.register(fd, events)
    result = poller.poll(milliseconds)
    if not result:
        return NONE
    revents = result[0][1]
    retmask = NONE
    if revents & select.POLLIN:
        retmask |= READABLE
    if revents & (select.POLLOUT | select.POLLERR | select.POLLHUP):
        retmask |= WRITABLE
    return retmask