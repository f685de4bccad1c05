"""Actors, mail events and publish/subscribe channels, with pooled allocation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

POOL_GROW = 20
POOL_LIMIT = 200
POOL_TRIM = 100

ActorProc = Callable[["Actor", list], Any]


@dataclass(eq=False)
class Channel:
    """A named channel that forwards events to its subscribed actors."""

    key: str = ""
    subscribers: list["Actor"] = field(default_factory=list)


@dataclass(eq=False)
class Actor:
    """An entity that receives mail through its ``proc`` callback."""

    proc: Optional[ActorProc] = None
    channels: list[Channel] = field(default_factory=list)

    def reset(self) -> None:
        """Leave every subscribed channel and forget the callback."""
        for channel in list(self.channels):
            unsubscribe_channel(self, channel)
        self.channels.clear()
        self.proc = None


@dataclass(eq=False)
class ActorEvent:
    """A piece of mail sent to a receiver and/or to a channel."""

    sender: Optional[Actor] = None
    receiver: Optional[Actor] = None
    channel: str = ""
    mail_args: list = field(default_factory=list)

    def reset(self) -> None:
        self.sender = None
        self.receiver = None
        self.channel = ""
        self.mail_args = []


def subscribe_channel(actor: Actor, channel: Channel) -> None:
    """Subscribe ``actor`` to ``channel``."""
    actor.channels.append(channel)
    channel.subscribers.append(actor)


def unsubscribe_channel(actor: Actor, channel: Channel) -> None:
    """Remove the link between ``actor`` and ``channel`` on both sides."""
    if channel in actor.channels:
        actor.channels.remove(channel)
    if actor in channel.subscribers:
        channel.subscribers.remove(actor)


class ActorFactory:
    """Hands out and recycles actors and events, and dispatches events."""

    def __init__(self) -> None:
        self.event_pool: list[ActorEvent] = []
        self.actor_pool: list[Actor] = []
        self.running_events: list[ActorEvent] = []
        self.waiting_events: list[ActorEvent] = []
        self.channels: dict[str, Channel] = {}

    def new_event(self) -> ActorEvent:
        """Take a cleared event from the pool, growing the pool if empty."""
        if not self.event_pool:
            self.event_pool.extend(ActorEvent() for _ in range(POOL_GROW))
        event = self.event_pool.pop(0)
        event.reset()
        return event

    def recycle_event(self, event: ActorEvent) -> None:
        """Return an event to the pool, trimming the pool when it grows large."""
        if len(self.event_pool) > POOL_LIMIT:
            del self.event_pool[:POOL_TRIM]
        event.reset()
        self.event_pool.append(event)

    def append_event(self, event: ActorEvent) -> None:
        """Queue an event for the next processing round."""
        self.waiting_events.append(event)

    def process_event(self, event: ActorEvent) -> None:
        """Deliver an event to its receiver and to its channel's subscribers."""
        if event.receiver is not None and event.receiver.proc is not None:
            event.receiver.proc(event.receiver, event.mail_args)
        if event.channel:
            channel = self.channels.get(event.channel)
            if channel is not None:
                for actor in list(channel.subscribers):
                    if actor.proc is not None:
                        actor.proc(actor, event.mail_args)

    def append_channel(self, channel: Channel) -> None:
        """Register a channel under its key; an existing key is kept."""
        self.channels.setdefault(channel.key, channel)

    def remove_channel(self, channel: Channel) -> None:
        """Forget the channel registered under this channel's key."""
        self.channels.pop(channel.key, None)

    def new_actor(self) -> Actor:
        """Take a cleared actor from the pool, growing the pool if empty."""
        if not self.actor_pool:
            self.actor_pool.extend(Actor() for _ in range(POOL_GROW))
        actor = self.actor_pool.pop(0)
        actor.proc = None
        actor.channels = []
        return actor

    def recycle_actor(self, actor: Actor) -> None:
        """Return an actor to the pool after unsubscribing it everywhere."""
        if len(self.actor_pool) > POOL_LIMIT:
            for old in self.actor_pool[:POOL_TRIM]:
                old.reset()
            del self.actor_pool[:POOL_TRIM]
        actor.reset()
        self.actor_pool.append(actor)