"""
Logging setup for the feed process.
Console output plus an optional daily-rotated file.
"""

import json
import logging
import os
from logging.handlers import TimedRotatingFileHandler
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure the root logger; add a rotating file handler when `log_file` is set."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    logging.getLogger().setLevel(level.upper())
    # websockets logs every frame at DEBUG
    logging.getLogger("websockets").setLevel(logging.INFO)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    if log_file:
        setup_log_rotation(log_file)


def setup_log_rotation(log_file: str) -> None:
    """Daily rotation, keep 7 days."""
    directory = os.path.dirname(log_file)
    if directory:
        os.makedirs(directory, exist_ok=True)

    handler = TimedRotatingFileHandler(
        filename=log_file,
        when="midnight",
        interval=1,
        backupCount=7,
        encoding="utf-8"
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(handler)
    logger.info(f"Log rotation configured for {log_file} (daily, keep 7 days)")


def log_event(log: logging.Logger, evt: str, level: int = logging.INFO, **fields: Any) -> Dict[str, Any]:
    """Emit one structured JSON event line and return the payload."""
    payload: Dict[str, Any] = {"evt": evt, **fields}
    log.log(level, json.dumps(payload, default=str))
    return payload
