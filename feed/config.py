# feed/config.py
from dotenv import load_dotenv, find_dotenv
import os
import logging
from typing import List

from hyperliquid.utils import constants

from common.hl_client import base_url_for
from feed.errors import ConfigurationError
from feed.services.stream_base import RestartPolicy, SessionPolicy

# Load nearest .env from project tree, don't override existing process env
load_dotenv(find_dotenv(usecwd=True), override=False)

logger = logging.getLogger(__name__)

_NETWORKS = ("mainnet", "testnet")


def _int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}", details={"name": name}) from e


def _float_env(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}", details={"name": name}) from e


def ws_url_for(network: str) -> str:
    n = (network or "mainnet").strip().lower()
    if n == "testnet":
        return constants.TESTNET_API_URL.replace("https://", "wss://") + "/ws"
    return constants.MAINNET_API_URL.replace("https://", "wss://") + "/ws"


class Settings:
    """Feed configuration read from the environment."""

    def __init__(self):
        self.reload()

    def reload(self) -> None:
        # Network
        self.HL_NETWORK = (os.getenv("HL_NETWORK") or "mainnet").strip().lower()
        self.HL_INFO_TIMEOUT_S = _float_env("HL_INFO_TIMEOUT_S", 10.0)

        # Stream cadence and session lifetime
        self.FEED_TICK_MS = _int_env("FEED_TICK_MS", 800)
        self.FEED_SESSION_MAX_TICKS = _int_env("FEED_SESSION_MAX_TICKS", 100_000)
        self.FEED_SESSION_MAX_SECONDS = _float_env("FEED_SESSION_MAX_SECONDS", 72_000.0)  # 20h
        self.FEED_RESUBSCRIBE_PAUSE_MS = _int_env("FEED_RESUBSCRIBE_PAUSE_MS", 1000)

        # Restart backoff
        self.FEED_RESTART_BACKOFF_MS = _int_env("FEED_RESTART_BACKOFF_MS", 5000)
        self.FEED_RESTART_BACKOFF_FACTOR = _float_env("FEED_RESTART_BACKOFF_FACTOR", 1.0)
        self.FEED_RESTART_BACKOFF_MAX_MS = _int_env("FEED_RESTART_BACKOFF_MAX_MS", 60_000)

        # WebSocket source
        self.FEED_WS_QUEUE_SIZE = _int_env("FEED_WS_QUEUE_SIZE", 256)
        self.FEED_WS_PING_INTERVAL_S = _float_env("FEED_WS_PING_INTERVAL_S", 50.0)

        self.FEED_ORDERBOOK_COINS = (os.getenv("FEED_ORDERBOOK_COINS") or "BTC,ETH").strip()

        # Logging
        self.LOG_LEVEL = (os.getenv("LOG_LEVEL") or "INFO").strip().upper()
        self.LOG_FILE = (os.getenv("LOG_FILE") or "").strip()

        self._validate()

    def _validate(self) -> None:
        if self.HL_NETWORK not in _NETWORKS:
            raise ConfigurationError(f"HL_NETWORK must be one of {_NETWORKS}, got {self.HL_NETWORK!r}")
        if self.FEED_TICK_MS < 0:
            raise ConfigurationError("FEED_TICK_MS must be >= 0")
        if self.FEED_SESSION_MAX_TICKS <= 0:
            raise ConfigurationError("FEED_SESSION_MAX_TICKS must be > 0")
        if self.FEED_SESSION_MAX_SECONDS <= 0:
            raise ConfigurationError("FEED_SESSION_MAX_SECONDS must be > 0")
        if self.FEED_RESTART_BACKOFF_MS < 0 or self.FEED_RESTART_BACKOFF_MAX_MS < 0:
            raise ConfigurationError("Restart backoff must be >= 0")
        if self.FEED_RESTART_BACKOFF_FACTOR < 1.0:
            raise ConfigurationError("FEED_RESTART_BACKOFF_FACTOR must be >= 1.0")
        if self.FEED_WS_QUEUE_SIZE <= 0:
            raise ConfigurationError("FEED_WS_QUEUE_SIZE must be > 0")
        if self.FEED_WS_PING_INTERVAL_S <= 0 or self.FEED_WS_PING_INTERVAL_S >= 60:
            raise ConfigurationError("FEED_WS_PING_INTERVAL_S must be in (0, 60)")

    @property
    def ws_url(self) -> str:
        return ws_url_for(self.HL_NETWORK)

    @property
    def base_url(self) -> str:
        return base_url_for(self.HL_NETWORK)

    @property
    def tick_interval_s(self) -> float:
        return self.FEED_TICK_MS / 1000.0

    @property
    def resubscribe_pause_s(self) -> float:
        return self.FEED_RESUBSCRIBE_PAUSE_MS / 1000.0

    def orderbook_coins(self) -> List[str]:
        return [c.strip() for c in self.FEED_ORDERBOOK_COINS.split(",") if c.strip()]

    def session_policy(self) -> SessionPolicy:
        return SessionPolicy(max_ticks=self.FEED_SESSION_MAX_TICKS, max_age_seconds=self.FEED_SESSION_MAX_SECONDS)

    def restart_policy(self) -> RestartPolicy:
        return RestartPolicy(
            delay_s=self.FEED_RESTART_BACKOFF_MS / 1000.0,
            factor=self.FEED_RESTART_BACKOFF_FACTOR,
            max_delay_s=self.FEED_RESTART_BACKOFF_MAX_MS / 1000.0,
        )


settings = Settings()
