"""
Price ingestion pipeline.

Seeds a per-instrument price table from one `/info` snapshot, then keeps
it current from the `allMids` feed and publishes a copy of the whole
table after every message. Spot and perp markets run as separate
instances, each with its own catalog, table and channel.
"""

import logging
from typing import Any, Optional

from hyperliquid.utils.types import Subscription

from common.meta import MarketKind
from common.price import NameToPriceMap, snapshot_table
from feed.protocols import RequestFn
from feed.services.catalog import Catalog, fetch_snapshot, seed_table
from feed.services.feed_classifier import FeedEvent, FeedEventKind
from feed.services.last_value import LastValueReceiver, LastValueSender, channel
from feed.services.stream_base import SourceFactory, SubscriptionStream
from feed.util.async_tools import create_supervised_task

logger = logging.getLogger("price_stream")


class PriceStream(SubscriptionStream[NameToPriceMap]):
    """Live price table for one market kind."""

    def __init__(
        self,
        kind: MarketKind,
        fetch: RequestFn,
        source_factory: SourceFactory,
        sender: LastValueSender[NameToPriceMap],
        **kwargs: Any,
    ):
        kwargs.setdefault("logger", logger)
        super().__init__(f"price_stream.{kind.value}", sender, source_factory, **kwargs)
        self.kind = kind
        self.fetch = fetch
        self.catalog: Catalog = {}
        self.table: NameToPriceMap = {}

    def subscription(self) -> Subscription:
        return {"type": "allMids"}

    async def seed(self) -> None:
        snapshot = await fetch_snapshot(self.fetch, self.kind)
        # a new session always gets fresh metadata; the old table stays published until replaced
        self.catalog = snapshot.catalog
        self.table = seed_table(snapshot.catalog, snapshot.prices)
        self.log.info(f"[{self.name}] Seeded {len(self.table)} instruments")

    def apply(self, event: FeedEvent) -> None:
        if event.kind is not FeedEventKind.PRICE_BATCH:
            return
        # allMids carries both markets; keys outside this table are ignored
        for name, raw_price in event.prices.items():
            price = self.table.get(name)
            if price is not None:
                price.update(raw_price)

    def snapshot(self) -> NameToPriceMap:
        return snapshot_table(self.table)


def start_price_stream_task(
    kind: MarketKind,
    fetch: RequestFn,
    source_factory: SourceFactory,
    *,
    task_name: Optional[str] = None,
    **kwargs: Any,
) -> LastValueReceiver[NameToPriceMap]:
    """Start a supervised price stream and return a receiver for its table."""
    sender, receiver = channel({}, name=f"prices.{kind.value}")
    stream = PriceStream(kind, fetch, source_factory, sender, **kwargs)
    create_supervised_task(stream.run(), name=task_name or stream.name)
    return receiver
