"""
REST polling variant of the price pipeline.

Every tick requests the combined metadata + asset context snapshot,
rebuilds the price table and publishes it. The perp instance also
publishes open interest per coin on a second channel. Used where a live
socket is unavailable; failures restart under the same policy as the
streaming pipelines.
"""

import logging
from typing import Any, Optional, Tuple

from common.meta import MarketKind
from common.price import NameToPriceMap
from feed.protocols import RequestFn
from feed.services.catalog import CoinToOiValueMap, fetch_snapshot, seed_table
from feed.services.last_value import LastValueReceiver, LastValueSender, channel
from feed.services.stream_base import StreamState, SupervisedStream
from feed.util.async_tools import create_supervised_task

logger = logging.getLogger("rest_sampler")


class RestPriceStream(SupervisedStream[NameToPriceMap]):
    """Polls `/info` on a fixed interval."""

    def __init__(
        self,
        kind: MarketKind,
        fetch: RequestFn,
        sender: LastValueSender[NameToPriceMap],
        *,
        oi_sender: Optional[LastValueSender[CoinToOiValueMap]] = None,
        poll_interval_s: float = 0.8,
        **kwargs: Any,
    ):
        kwargs.setdefault("logger", logger)
        super().__init__(f"rest_prices.{kind.value}", sender, **kwargs)
        self.kind = kind
        self.fetch = fetch
        self.oi_sender = oi_sender
        self.poll_interval_s = poll_interval_s

    async def poll_once(self) -> int:
        snapshot = await fetch_snapshot(self.fetch, self.kind)
        table = seed_table(snapshot.catalog, snapshot.prices)
        version = self.publish(table)
        if self.oi_sender is not None and self.kind is MarketKind.PERP:
            self.oi_sender.publish(dict(snapshot.open_interest))
        return version

    async def run_session(self) -> None:
        self._set_state(StreamState.SEEDING)
        await self.poll_once()
        self.log.info(f"[{self.name}] First poll published")
        self._set_state(StreamState.STREAMING)
        while self._running:
            await self._sleep(self.poll_interval_s)
            await self.poll_once()
            self.ticks += 1
            self.consecutive_failures = 0

    def close_channels(self) -> None:
        super().close_channels()
        if self.oi_sender is not None:
            self.oi_sender.close()


def start_rest_price_task(
    kind: MarketKind,
    fetch: RequestFn,
    *,
    task_name: Optional[str] = None,
    **kwargs: Any,
) -> Tuple[LastValueReceiver[NameToPriceMap], Optional[LastValueReceiver[CoinToOiValueMap]]]:
    """Start a supervised REST poller; the OI receiver is None for spot."""
    sender, receiver = channel({}, name=f"rest_prices.{kind.value}")
    oi_sender, oi_receiver = (None, None)
    if kind is MarketKind.PERP:
        oi_sender, oi_receiver = channel({}, name="open_interest")
    stream = RestPriceStream(kind, fetch, sender, oi_sender=oi_sender, **kwargs)
    create_supervised_task(stream.run(), name=task_name or stream.name)
    return receiver, oi_receiver
