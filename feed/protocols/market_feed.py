"""
Market Feed Protocols.
Defines the live subscription source and the one-shot request function.
"""

from typing import Any, Optional, Protocol
from abc import abstractmethod

from hyperliquid.utils.types import Subscription, WsMsg


class SubscriptionSource(Protocol):
    """Live feed: subscribe, read messages, unsubscribe."""

    @abstractmethod
    async def subscribe(self, subscription: Subscription) -> int:
        """Subscribe and return a local subscription id."""
        ...

    @abstractmethod
    async def unsubscribe(self, subscription_id: int) -> None:
        ...

    @abstractmethod
    async def next_message(self) -> Optional[WsMsg]:
        """Wait for the next feed message. Raises SubscriptionError once the feed is gone."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class RequestFn(Protocol):
    """One-shot `/info` request returning decoded JSON."""

    @abstractmethod
    async def __call__(self, request_type: str) -> Any:
        ...
