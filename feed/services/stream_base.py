"""
Session and supervisor logic shared by the feed pipelines.

A pipeline runs sessions forever. A session seeds its state, subscribes,
and streams: each feed message is classified, applied, published, and
followed by a fixed tick pause. When the session policy is exhausted the
subscription is renewed in place. Any exception ends the session; the
supervisor tears the source down (best-effort), waits out the restart
policy's delay and starts a fresh session. The last published value stays
on the channel the whole time.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

from hyperliquid.utils.types import Subscription

from feed.errors import CatalogInconsistencyError, ProtocolError, create_structured_error_response
from feed.observability.logs import log_event
from feed.observability.metrics import record_feed_event, record_publish, record_resubscribe, record_restart
from feed.protocols import StreamEventLog, SubscriptionSource
from feed.services.feed_classifier import FeedEvent, FeedEventKind, classify
from feed.services.last_value import LastValueSender

T = TypeVar("T")

SourceFactory = Callable[[], SubscriptionSource]
SleepFn = Callable[[float], Awaitable[Any]]


class StreamState(str, Enum):
    IDLE = "idle"
    SEEDING = "seeding"
    STREAMING = "streaming"
    RESUBSCRIBING = "resubscribing"
    FAILED = "failed"
    RESTARTING = "restarting"
    STOPPED = "stopped"


@dataclass(frozen=True)
class SessionPolicy:
    """When to renew a subscription: after `max_ticks` messages or `max_age_seconds`, whichever first."""
    max_ticks: int = 100_000
    max_age_seconds: float = 72_000.0

    def exhausted(self, ticks: int, age_seconds: float) -> bool:
        return ticks >= self.max_ticks or age_seconds >= self.max_age_seconds


@dataclass(frozen=True)
class RestartPolicy:
    """Delay before restarting a failed session.

    Fixed `delay_s` by default; with `factor > 1` the delay grows per
    consecutive failure up to `max_delay_s`.
    """
    delay_s: float = 5.0
    factor: float = 1.0
    max_delay_s: float = 60.0

    def delay_for(self, consecutive_failures: int) -> float:
        if self.factor <= 1.0:
            return self.delay_s
        exponent = max(0, consecutive_failures - 1)
        return min(self.delay_s * (self.factor ** exponent), max(self.max_delay_s, self.delay_s))


class SupervisedStream(Generic[T]):
    """Supervisor loop: run sessions until stopped, restarting on any failure."""

    def __init__(
        self,
        name: str,
        sender: LastValueSender[T],
        *,
        restart_policy: Optional[RestartPolicy] = None,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ):
        self.name = name
        self.sender = sender
        self.restart_policy = restart_policy or RestartPolicy()
        self._sleep = sleep
        self._clock = clock
        self.log = logger or logging.getLogger(name)

        self.state = StreamState.IDLE
        self.session = 0
        self.ticks = 0
        self.restarts = 0
        self.consecutive_failures = 0
        self.last_error: Optional[BaseException] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def stop(self) -> None:
        """Ask the loop to exit after the current step."""
        self._running = False

    def _set_state(self, state: StreamState) -> None:
        if state is not self.state:
            self.log.debug(f"[{self.name}] {self.state.value} -> {state.value}")
            self.state = state

    def _event(self, evt: str, level: int = logging.INFO, delay_s: Optional[float] = None,
               error: Optional[BaseException] = None) -> StreamEventLog:
        payload: StreamEventLog = {
            "evt": evt,
            "stream": self.name,
            "state": self.state.value,
            "session": self.session,
            "ticks": self.ticks,
            "version": self.sender.version,
            "delay_s": delay_s,
            "error": create_structured_error_response(error) if error is not None else None,
        }
        log_event(self.log, level=level, **payload)
        return payload

    def publish(self, value: T) -> int:
        version = self.sender.publish(value)
        record_publish(self.name, version)
        return version

    async def run_session(self) -> None:
        raise NotImplementedError

    async def teardown(self) -> None:
        """Release per-session resources. Must not raise."""

    def close_channels(self) -> None:
        """Called once the loop ends; waiting receivers see ChannelClosedError."""
        self.sender.close()

    async def run(self) -> None:
        """Run sessions until `stop()`; never returns on failure."""
        self._running = True
        try:
            while self._running:
                self.session += 1
                self.ticks = 0
                try:
                    await self.run_session()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self._set_state(StreamState.FAILED)
                    self.last_error = e
                    self.consecutive_failures += 1
                    if isinstance(e, CatalogInconsistencyError):
                        self.log.error(f"[{self.name}] Catalog inconsistency: {e}", exc_info=True)
                    else:
                        self.log.warning(f"[{self.name}] Session {self.session} failed: {e}")
                finally:
                    await self.teardown()

                if not self._running:
                    break

                delay = self.restart_policy.delay_for(self.consecutive_failures)
                self._set_state(StreamState.RESTARTING)
                self.restarts += 1
                record_restart(self.name, delay)
                self._event("stream_restart", level=logging.WARNING, delay_s=delay, error=self.last_error)
                await self._sleep(delay)
        finally:
            self._running = False
            self._set_state(StreamState.STOPPED)
            self.close_channels()


class SubscriptionStream(SupervisedStream[T]):
    """A pipeline fed by one live subscription.

    Subclasses provide `subscription()`, `seed()`, `apply(event)` and
    `snapshot()`; `publishes(event)` may skip publishing for some
    messages. `publish_on_seed` controls whether the freshly seeded
    state is published before the first feed message.
    """

    publish_on_seed = True

    def __init__(
        self,
        name: str,
        sender: LastValueSender[T],
        source_factory: SourceFactory,
        *,
        tick_interval_s: float = 0.8,
        resubscribe_pause_s: float = 1.0,
        session_policy: Optional[SessionPolicy] = None,
        **kwargs: Any,
    ):
        super().__init__(name, sender, **kwargs)
        self._source_factory = source_factory
        self.tick_interval_s = tick_interval_s
        self.resubscribe_pause_s = resubscribe_pause_s
        self.session_policy = session_policy or SessionPolicy()
        self.source: Optional[SubscriptionSource] = None
        self.subscription_id: Optional[int] = None
        self.resubscribes = 0
        self._session_started = 0.0

    def subscription(self) -> Subscription:
        raise NotImplementedError

    async def seed(self) -> None:
        raise NotImplementedError

    def apply(self, event: FeedEvent) -> None:
        raise NotImplementedError

    def snapshot(self) -> T:
        raise NotImplementedError

    def publishes(self, event: FeedEvent) -> bool:
        return True

    def _start_session_clock(self) -> None:
        self.ticks = 0
        self._session_started = self._clock()

    def session_age(self) -> float:
        return self._clock() - self._session_started

    async def run_session(self) -> None:
        self._set_state(StreamState.SEEDING)
        self.source = self._source_factory()
        await self.seed()
        self.subscription_id = await self.source.subscribe(self.subscription())
        if self.publish_on_seed:
            self.publish(self.snapshot())
        self._event("stream_seeded")

        self._set_state(StreamState.STREAMING)
        self._start_session_clock()
        while self._running:
            if self.session_policy.exhausted(self.ticks, self.session_age()):
                await self._resubscribe()

            message = await self.source.next_message()
            event = classify(message)
            record_feed_event(self.name, event.kind.value)
            if event.kind is FeedEventKind.PROTOCOL_ERROR:
                raise ProtocolError(f"Exchange error on {self.name}: {event.error}", details={"error": event.error})

            self.apply(event)
            if self.publishes(event):
                self.publish(self.snapshot())
            self.ticks += 1
            # a session that reached streaming counts as healthy again
            self.consecutive_failures = 0
            await self._sleep(self.tick_interval_s)

    async def _resubscribe(self) -> None:
        self._set_state(StreamState.RESUBSCRIBING)
        self._event("stream_resubscribe")
        await self.source.unsubscribe(self.subscription_id)
        self.subscription_id = None
        self.subscription_id = await self.source.subscribe(self.subscription())
        self.resubscribes += 1
        record_resubscribe(self.name)
        await self._sleep(self.resubscribe_pause_s)
        self._start_session_clock()
        self._set_state(StreamState.STREAMING)

    async def teardown(self) -> None:
        source, subscription_id = self.source, self.subscription_id
        self.source = None
        self.subscription_id = None
        if source is None:
            return
        if subscription_id is not None:
            try:
                await source.unsubscribe(subscription_id)
            except Exception as e:
                self.log.warning(f"[{self.name}] Unsubscribe during teardown failed (ignored): {e}")
        try:
            await source.close()
        except Exception as e:
            self.log.warning(f"[{self.name}] Source close failed (ignored): {e}")

    def get_health(self) -> Dict[str, Any]:
        return {
            "stream": self.name,
            "state": self.state.value,
            "session": self.session,
            "ticks": self.ticks,
            "restarts": self.restarts,
            "resubscribes": self.resubscribes,
            "version": self.sender.version,
            "last_error": str(self.last_error) if self.last_error else None,
        }
