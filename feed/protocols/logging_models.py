"""
TypedDict models for structured stream log lines.
"""

from typing import Any, Dict, Optional, TypedDict


class StreamEventLog(TypedDict):
    """One structured lifecycle event of a stream pipeline."""
    evt: str  # "stream_seeded", "stream_resubscribe", "stream_restart"
    stream: str
    state: str
    session: int
    ticks: int
    version: int
    delay_s: Optional[float]
    error: Optional[Dict[str, Any]]
