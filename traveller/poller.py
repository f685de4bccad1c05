"""A select()-based readiness poller for the event loop."""

from __future__ import annotations

import select
from dataclasses import dataclass
from typing import Mapping, Optional

NONE = 0
READABLE = 1
WRITABLE = 2

FD_SETSIZE = 1024


@dataclass(frozen=True)
class FiredEvent:
    """A descriptor reported by a poll, with the conditions that hold for it."""

    fd: int
    mask: int


class SelectPoller:
    """Tracks read and write interest per descriptor and polls with select()."""

    name = "select"

    def __init__(self, setsize: int = FD_SETSIZE - 1) -> None:
        self.setsize = setsize
        self._read: set[int] = set()
        self._write: set[int] = set()

    def resize(self, setsize: int) -> None:
        """Change the set size; select() cannot track FD_SETSIZE or more."""
        if setsize >= FD_SETSIZE:
            raise ValueError(f"set size {setsize} exceeds select() limit")
        self.setsize = setsize

    def add_event(self, fd: int, mask: int) -> None:
        if mask & READABLE:
            self._read.add(fd)
        if mask & WRITABLE:
            self._write.add(fd)

    def del_event(self, fd: int, mask: int) -> None:
        if mask & READABLE:
            self._read.discard(fd)
        if mask & WRITABLE:
            self._write.discard(fd)

    def poll(
        self, registered: Mapping[int, int], timeout: Optional[float]
    ) -> list[FiredEvent]:
        """Wait up to ``timeout`` seconds (None blocks) for readiness.

        ``registered`` maps each descriptor to its registered mask. When any
        descriptor is ready, every registered descriptor is reported with the
        part of its mask that is ready.
        """
        readable, writable, _ = select.select(
            sorted(self._read), sorted(self._write), [], timeout
        )
        if not readable and not writable:
            return []
        ready_read = set(readable)
        ready_write = set(writable)
        fired = []
        for fd in sorted(registered):
            wanted = registered[fd]
            if wanted == NONE:
                continue
            mask = NONE
            if wanted & READABLE and fd in ready_read:
                mask |= READABLE
            if wanted & WRITABLE and fd in ready_write:
                mask |= WRITABLE
            fired.append(FiredEvent(fd, mask))
        return fired

    def close(self) -> None:
        self._read.clear()
        self._write.clear()