"""A device owns an actor factory, a thread-safe event inbox and worker jobs."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from traveller.actor import ActorEvent, ActorFactory

logger = logging.getLogger(__name__)

_BUSY_THRESHOLD = 20
_IDLE_PAUSE = 0.0003


@dataclass(eq=False)
class DeviceJob:
    """A routine running on its own thread on behalf of a device."""

    routine: Callable[..., Any]
    args: tuple = ()
    index: int = 0
    exit_status: Any = None
    thread: Optional[threading.Thread] = field(default=None, repr=False)

    def join(self, timeout: Optional[float] = None) -> Any:
        """Wait for the job to finish and return its result."""
        if self.thread is not None:
            self.thread.join(timeout)
        return self.exit_status


class Device:
    """Runs actor events, either driven by a looper thread or by hand."""

    def __init__(
        self, looper: Optional[Callable[[Any], Any]] = None, arg: Any = None
    ) -> None:
        self.factory = ActorFactory()
        self.jobs: list[DeviceJob] = []
        self.waiting_events: list[ActorEvent] = []
        self.looper = looper
        self.looper_arg = arg
        self.looper_thread: Optional[threading.Thread] = None
        self.stopped = False
        self._job_lock = threading.Lock()
        self._event_cond = threading.Condition()

    def start(self) -> None:
        """Start the looper on its own thread, if the device has one."""
        if self.looper is not None:
            self.looper_thread = threading.Thread(
                target=self.looper, args=(self.looper_arg,), daemon=True
            )
            self.looper_thread.start()

    def start_job(self, routine: Callable[..., Any], *args: Any) -> DeviceJob:
        """Run ``routine(*args)`` on a new thread tracked in ``jobs``."""
        job = DeviceJob(routine=routine, args=args)
        with self._job_lock:
            self.jobs.append(job)
            job.index = len(self.jobs) - 1
        job.thread = threading.Thread(target=self._run_job, args=(job,), daemon=True)
        job.thread.start()
        return job

    def _run_job(self, job: DeviceJob) -> None:
        try:
            job.exit_status = job.routine(*job.args)
        finally:
            with self._job_lock:
                if job in self.jobs:
                    self.jobs.remove(job)

    def append_event(self, event: ActorEvent) -> None:
        """Post an event from any thread and wake a waiting looper."""
        with self._event_cond:
            self.waiting_events.append(event)
            self._event_cond.notify()

    def pop_events(self) -> list[ActorEvent]:
        """Take all posted events; an empty list when there are none."""
        with self._event_cond:
            events = self.waiting_events
            self.waiting_events = []
        return events

    def wait_events(self, timeout: Optional[float] = None) -> int:
        """Block until an event is posted, the device stops or the timeout ends."""
        with self._event_cond:
            if not self.waiting_events and not self.stopped:
                self._event_cond.wait(timeout)
            count = len(self.waiting_events)
        if count < _BUSY_THRESHOLD:
            time.sleep(_IDLE_PAUSE)
        logger.debug("%d events waiting", count)
        return count

    def loop_once(self) -> None:
        """Process queued factory events, then the events posted to the device."""
        factory = self.factory
        if not factory.running_events:
            factory.running_events, factory.waiting_events = (
                factory.waiting_events,
                factory.running_events,
            )
        while factory.running_events:
            event = factory.running_events.pop(0)
            factory.process_event(event)
            factory.recycle_event(event)
        for event in self.pop_events():
            factory.process_event(event)
            factory.recycle_event(event)

    def run_looper(self) -> None:
        """Process events until :meth:`stop` is called."""
        while not self.stopped:
            self.loop_once()
            if not self.factory.waiting_events:
                self.wait_events()

    def stop(self) -> None:
        """Ask the looper to finish and wake it if it is waiting."""
        with self._event_cond:
            self.stopped = True
            self._event_cond.notify_all()