"""
Feed message classifier.

The only module that looks at raw live-feed message shapes. Everything
downstream works on FeedEvent.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from hyperliquid.utils.types import WsMsg

from common.orderbook import parse_levels

logger = logging.getLogger("feed_classifier")

PRICE_CHANNEL = "allMids"
BOOK_CHANNEL = "l2Book"
ERROR_CHANNEL = "error"


class FeedEventKind(str, Enum):
    PRICE_BATCH = "price_batch"
    BOOK_SNAPSHOT = "book_snapshot"
    NO_DATA = "no_data"
    PROTOCOL_ERROR = "protocol_error"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class FeedEvent:
    kind: FeedEventKind
    prices: Dict[str, float] = field(default_factory=dict)
    coin: Optional[str] = None
    bids: List[Tuple[float, float]] = field(default_factory=list)
    asks: List[Tuple[float, float]] = field(default_factory=list)
    error: Optional[str] = None
    channel: Optional[str] = None


def _to_float(value: Any) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return 0.0
    return parsed if math.isfinite(parsed) else 0.0


def _classify_mids(data: Any) -> FeedEvent:
    mids = data.get("mids") if isinstance(data, dict) else None
    if not mids or not isinstance(mids, dict):
        return FeedEvent(FeedEventKind.NO_DATA, channel=PRICE_CHANNEL)
    prices = {str(name): _to_float(px) for name, px in mids.items()}
    return FeedEvent(FeedEventKind.PRICE_BATCH, prices=prices, channel=PRICE_CHANNEL)


def _classify_book(data: Any) -> FeedEvent:
    if not isinstance(data, dict) or not data.get("coin"):
        return FeedEvent(FeedEventKind.NO_DATA, channel=BOOK_CHANNEL)
    levels = data.get("levels")
    if not isinstance(levels, (list, tuple)) or len(levels) < 2:
        return FeedEvent(FeedEventKind.NO_DATA, coin=data["coin"], channel=BOOK_CHANNEL)
    # levels[0] is the bid side, levels[1] the ask side
    return FeedEvent(
        FeedEventKind.BOOK_SNAPSHOT,
        coin=data["coin"],
        bids=parse_levels(levels[0]),
        asks=parse_levels(levels[1]),
        channel=BOOK_CHANNEL,
    )


def classify(message: Optional[WsMsg]) -> FeedEvent:
    """Categorize one live-feed message."""
    if message is None:
        logger.info("[feed_classifier] No data from feed")
        return FeedEvent(FeedEventKind.NO_DATA)

    if not isinstance(message, dict):
        logger.debug(f"[feed_classifier] Unrecognized message: {message!r}")
        return FeedEvent(FeedEventKind.UNRECOGNIZED)

    channel = message.get("channel")
    data = message.get("data")

    if channel == ERROR_CHANNEL:
        error = data if isinstance(data, str) else repr(data)
        logger.warning(f"[feed_classifier] Exchange error: {error}")
        return FeedEvent(FeedEventKind.PROTOCOL_ERROR, error=error, channel=channel)

    if channel == PRICE_CHANNEL:
        event = _classify_mids(data)
    elif channel == BOOK_CHANNEL:
        event = _classify_book(data)
    else:
        logger.debug(f"[feed_classifier] Ignoring {channel!r} message")
        return FeedEvent(FeedEventKind.UNRECOGNIZED, channel=channel)

    if event.kind is FeedEventKind.NO_DATA:
        logger.info(f"[feed_classifier] Empty {channel} message")
    return event
