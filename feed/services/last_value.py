"""
Last-value channel: single writer, many readers, newest value wins.

Each publish replaces the whole value and bumps a version counter. Readers
never block the writer; they read the current value at any time or await
the next version. A publish with no live receivers raises
ChannelClosedError so the writer can tell nobody is listening.
"""

import asyncio
import logging
import time
import weakref
from threading import RLock
from typing import Generic, Optional, Tuple, TypeVar

from feed.errors import ChannelClosedError

logger = logging.getLogger("last_value")

T = TypeVar("T")


class _ChannelState(Generic[T]):
    def __init__(self, initial: T):
        self.lock = RLock()
        self.value = initial
        self.version = 0
        self.published_ts = 0.0
        self.sender_closed = False
        self.changed = asyncio.Event()
        self.receivers: "weakref.WeakSet[LastValueReceiver[T]]" = weakref.WeakSet()


class LastValueSender(Generic[T]):
    """Writer side of a last-value channel."""

    def __init__(self, state: _ChannelState[T], name: str = ""):
        self._state = state
        self.name = name

    def publish(self, value: T) -> int:
        """Replace the current value and return its version."""
        state = self._state
        with state.lock:
            if not state.receivers:
                raise ChannelClosedError(
                    f"Channel {self.name or '<unnamed>'} has no live receivers",
                    details={"channel": self.name, "version": state.version},
                )
            state.value = value
            state.version += 1
            state.published_ts = time.time()
            waiters, state.changed = state.changed, asyncio.Event()
            version = state.version
        waiters.set()
        return version

    def subscribe(self) -> "LastValueReceiver[T]":
        return LastValueReceiver(self._state)

    def receiver_count(self) -> int:
        with self._state.lock:
            return len(self._state.receivers)

    @property
    def version(self) -> int:
        with self._state.lock:
            return self._state.version

    def borrow(self) -> T:
        with self._state.lock:
            return self._state.value

    def close(self) -> None:
        """Mark the writer gone; pending and future `changed()` calls raise."""
        state = self._state
        with state.lock:
            state.sender_closed = True
            waiters = state.changed
        waiters.set()


class LastValueReceiver(Generic[T]):
    """Reader side. Tracks the last version it has seen."""

    def __init__(self, state: _ChannelState[T]):
        self._state = state
        self._closed = False
        with state.lock:
            self._seen = state.version
            state.receivers.add(self)

    def borrow(self) -> T:
        """Current value without marking it seen."""
        with self._state.lock:
            return self._state.value

    def borrow_and_update(self) -> T:
        with self._state.lock:
            self._seen = self._state.version
            return self._state.value

    def read(self) -> Tuple[int, T]:
        with self._state.lock:
            return self._state.version, self._state.value

    @property
    def version(self) -> int:
        with self._state.lock:
            return self._state.version

    @property
    def published_ts(self) -> float:
        with self._state.lock:
            return self._state.published_ts

    def has_changed(self) -> bool:
        with self._state.lock:
            return self._state.version > self._seen

    async def changed(self, timeout: Optional[float] = None) -> T:
        """Wait for a version newer than the last one seen and return its value."""
        while True:
            state = self._state
            with state.lock:
                if state.version > self._seen:
                    self._seen = state.version
                    return state.value
                if state.sender_closed:
                    raise ChannelClosedError("Sender closed", details={"version": state.version})
                waiters = state.changed
            if timeout is None:
                await waiters.wait()
            else:
                await asyncio.wait_for(waiters.wait(), timeout=timeout)

    def clone(self) -> "LastValueReceiver[T]":
        other = LastValueReceiver(self._state)
        other._seen = self._seen
        return other

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with self._state.lock:
            self._state.receivers.discard(self)

    @property
    def closed(self) -> bool:
        return self._closed


def channel(initial: T, name: str = "") -> Tuple[LastValueSender[T], LastValueReceiver[T]]:
    """Create a channel holding `initial` at version 0."""
    state = _ChannelState(initial)
    return LastValueSender(state, name=name), LastValueReceiver(state)
