"""
Centralized exceptions for the price feed.
Error taxonomy and structured error rendering for log lines.
"""

from typing import Dict, Any, Optional


class FeedError(Exception):
    """Base exception for the price feed."""

    def __init__(self, message: str, error_code: str = "UNKNOWN", details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class ProtocolError(FeedError):
    """The exchange reported an error on the live feed."""

    def __init__(self, message: str = "Exchange reported an error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "PROTOCOL_ERROR", details)


class SubscriptionError(FeedError):
    """Subscribing, unsubscribing or reading the live feed failed."""

    def __init__(self, message: str = "Subscription failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "SUBSCRIPTION_ERROR", details)


class ChannelClosedError(FeedError):
    """A publish found no live receivers."""

    def __init__(self, message: str = "No live receivers", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CHANNEL_CLOSED", details)


class CatalogInconsistencyError(FeedError):
    """Metadata and price snapshot disagree about an instrument."""

    def __init__(self, message: str = "Catalog inconsistency", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CATALOG_INCONSISTENCY", details)


class NetworkError(FeedError):
    """Network connectivity error on a one-shot request."""

    def __init__(self, message: str = "Network error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "NETWORK_ERROR", details)


class ConfigurationError(FeedError):
    """Configuration error."""

    def __init__(self, message: str = "Configuration error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIG_ERROR", details)


class MetaMismatchError(TypeError):
    """A price variant was constructed with metadata of the other variant."""


def create_structured_error_response(error: Exception) -> Dict[str, Any]:
    """Create structured error payload for logging."""
    if isinstance(error, FeedError):
        return {
            "error_type": error.error_code,
            "message": error.message,
            "details": error.details,
        }
    return {
        "error_type": type(error).__name__,
        "message": str(error),
        "details": {},
    }
