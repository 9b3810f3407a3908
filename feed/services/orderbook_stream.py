"""
Orderbook mirror: one pipeline per coin fed by `l2Book` snapshots.

Each snapshot replaces both sides of the book. The book starts empty
with every subscription and only the coin's own snapshots are published,
so consumers keep the last published book until the fresh subscription
delivers one.
"""

import logging
from typing import Any, Optional

from hyperliquid.utils.types import Subscription

from common.orderbook import NameToOrderbookMap, Orderbook
from feed.services.feed_classifier import FeedEvent, FeedEventKind
from feed.services.last_value import LastValueReceiver, LastValueSender, channel
from feed.services.stream_base import SourceFactory, SubscriptionStream
from feed.util.async_tools import create_supervised_task

logger = logging.getLogger("orderbook_stream")


class OrderbookStream(SubscriptionStream[NameToOrderbookMap]):
    publish_on_seed = False

    def __init__(
        self,
        coin: str,
        source_factory: SourceFactory,
        sender: LastValueSender[NameToOrderbookMap],
        **kwargs: Any,
    ):
        kwargs.setdefault("logger", logger)
        super().__init__(f"orderbook_stream.{coin}", sender, source_factory, **kwargs)
        self.coin = coin
        self.book = Orderbook(coin=coin)

    def subscription(self) -> Subscription:
        return {"type": "l2Book", "coin": self.coin}

    async def seed(self) -> None:
        self.book = Orderbook(coin=self.coin)

    async def _resubscribe(self) -> None:
        self.book = Orderbook(coin=self.coin)
        await super()._resubscribe()

    def apply(self, event: FeedEvent) -> None:
        if event.kind is not FeedEventKind.BOOK_SNAPSHOT:
            return
        if event.coin != self.coin:
            self.log.debug(f"[{self.name}] Ignoring book for {event.coin}")
            return
        self.book.update_from_stream(event.bids, event.asks)

    def publishes(self, event: FeedEvent) -> bool:
        return event.kind is FeedEventKind.BOOK_SNAPSHOT and event.coin == self.coin

    def snapshot(self) -> NameToOrderbookMap:
        return {self.coin: self.book.copy()}


def start_orderbook_stream_task(
    coin: str,
    source_factory: SourceFactory,
    *,
    task_name: Optional[str] = None,
    **kwargs: Any,
) -> LastValueReceiver[NameToOrderbookMap]:
    """Start a supervised orderbook mirror for `coin` and return a receiver for it."""
    sender, receiver = channel({coin: Orderbook(coin=coin)}, name=f"orderbook.{coin}")
    stream = OrderbookStream(coin, source_factory, sender, **kwargs)
    create_supervised_task(stream.run(), name=task_name or stream.name)
    return receiver
