"""
Protocols for the two external collaborators of the feed pipelines.
"""

from .market_feed import RequestFn, SubscriptionSource
from .logging_models import StreamEventLog

__all__ = [
    "RequestFn",
    "SubscriptionSource",
    "StreamEventLog",
]
