"""
hl-price-feed - Main entry point.

Streams Hyperliquid spot/perp price tables and per-coin order books into
last-value channels and logs a periodic summary.
"""

import asyncio
import logging
import argparse
from typing import List

from common.hl_client import InfoClient
from common.meta import MarketKind, PerpMeta
from common.price import PerpPrice
from feed.config import settings
from feed.observability.logs import setup_logging
from feed.observability.metrics import get_metrics
from feed.services.hyperliquid_ws import HyperliquidWSSource
from feed.services.last_value import LastValueReceiver
from feed.services.orderbook_stream import start_orderbook_stream_task
from feed.services.price_stream import start_price_stream_task
from feed.services.rest_prices import start_rest_price_task
from feed.util.async_tools import shutdown_supervised_tasks

logger = logging.getLogger("feed")


def _source_factory():
    return HyperliquidWSSource(
        settings.ws_url,
        queue_size=settings.FEED_WS_QUEUE_SIZE,
        ping_interval=settings.FEED_WS_PING_INTERVAL_S,
    )


def _stream_kwargs():
    return {
        "tick_interval_s": settings.tick_interval_s,
        "resubscribe_pause_s": settings.resubscribe_pause_s,
        "session_policy": settings.session_policy(),
        "restart_policy": settings.restart_policy(),
    }


async def _log_summaries(receivers: List[LastValueReceiver], every_s: float) -> None:
    while True:
        await asyncio.sleep(every_s)
        for receiver in receivers:
            version, value = receiver.read()
            logger.info(f"[feed] v{version}: {len(value)} entries")
        logger.debug(get_metrics())


async def run_stream(summary_every_s: float, coins: List[str]) -> None:
    info = InfoClient(settings.base_url, timeout=settings.HL_INFO_TIMEOUT_S)
    receivers: List[LastValueReceiver] = []
    try:
        for kind in (MarketKind.SPOT, MarketKind.PERP):
            receivers.append(start_price_stream_task(kind, info, _source_factory, **_stream_kwargs()))
        for coin in coins:
            receivers.append(start_orderbook_stream_task(coin, _source_factory, **_stream_kwargs()))
        logger.info(f"[feed] Streaming {settings.HL_NETWORK} prices and books for {coins}")
        await _log_summaries(receivers, summary_every_s)
    finally:
        await shutdown_supervised_tasks()
        await info.aclose()


async def run_poll(summary_every_s: float) -> None:
    info = InfoClient(settings.base_url, timeout=settings.HL_INFO_TIMEOUT_S)
    receivers: List[LastValueReceiver] = []
    try:
        for kind in (MarketKind.SPOT, MarketKind.PERP):
            prices, open_interest = start_rest_price_task(
                kind,
                info,
                poll_interval_s=settings.tick_interval_s,
                restart_policy=settings.restart_policy(),
            )
            receivers.append(prices)
            if open_interest is not None:
                receivers.append(open_interest)
        logger.info(f"[feed] Polling {settings.HL_NETWORK} /info every {settings.tick_interval_s}s")
        await _log_summaries(receivers, summary_every_s)
    finally:
        await shutdown_supervised_tasks()
        await info.aclose()


def run_round(price: float, sz_decimals: int) -> float:
    meta = PerpMeta(name="CLI", sz_decimals=sz_decimals, max_leverage=1)
    rounded = PerpPrice.new(price, meta)
    print(f"{price} (sz_decimals={sz_decimals}) -> {rounded}")
    return rounded.value()


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="hl-price-feed - Hyperliquid market data feed")
    sub = parser.add_subparsers(dest="command")

    stream = sub.add_parser("stream", help="Stream prices and order books over the websocket feed")
    stream.add_argument("--coins", default=None, help="Comma-separated order book coins (default FEED_ORDERBOOK_COINS)")
    stream.add_argument("--summary-every", type=float, default=30.0, help="Seconds between summary log lines")

    poll = sub.add_parser("poll", help="Poll /info snapshots instead of streaming")
    poll.add_argument("--summary-every", type=float, default=30.0, help="Seconds between summary log lines")

    rnd = sub.add_parser("round", help="Round a perp price with the exchange tick rules")
    rnd.add_argument("price", type=float)
    rnd.add_argument("--sz-decimals", type=int, default=5)

    args = parser.parse_args(argv)
    setup_logging(settings.LOG_LEVEL, settings.LOG_FILE or None)

    try:
        if args.command == "round":
            run_round(args.price, args.sz_decimals)
        elif args.command == "poll":
            asyncio.run(run_poll(args.summary_every))
        else:
            summary_every = getattr(args, "summary_every", 30.0)
            coin_arg = getattr(args, "coins", None)
            coins = [c.strip() for c in coin_arg.split(",") if c.strip()] if coin_arg else settings.orderbook_coins()
            asyncio.run(run_stream(summary_every, coins))
    except KeyboardInterrupt:
        logger.info("[feed] Stopped by user")


if __name__ == "__main__":
    main()
