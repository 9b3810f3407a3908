"""
Supervised task management for the long-running feed tasks.
"""

import asyncio
import logging
from typing import Coroutine, Any, Dict, TypeVar

logger = logging.getLogger(__name__)

# Global registry for supervised tasks
_supervised_tasks: Dict[str, asyncio.Task] = {}

T = TypeVar('T')


def create_supervised_task(coro: Coroutine[Any, Any, T], *, name: str) -> "asyncio.Task[T]":
    """
    Create a named task that is cancelled by `shutdown_supervised_tasks`.

    Raises:
        ValueError: If a live task with the same name already exists
    """
    existing = _supervised_tasks.get(name)
    if existing is not None and not existing.done():
        coro.close()
        raise ValueError(f"Task '{name}' already exists")

    async def _supervised_wrapper():
        try:
            return await coro
        except asyncio.CancelledError:
            logger.info(f"[async_tools] Task '{name}' cancelled")
            raise
        except Exception as e:
            logger.error(f"[async_tools] Task '{name}' failed: {e}")
            raise

    task = asyncio.create_task(_supervised_wrapper(), name=name)
    _supervised_tasks[name] = task
    return task


async def shutdown_supervised_tasks():
    """Cancel all supervised tasks and wait for them to complete."""
    if not _supervised_tasks:
        return

    logger.info(f"[async_tools] Shutting down {len(_supervised_tasks)} supervised tasks")

    for task in _supervised_tasks.values():
        if not task.done():
            task.cancel()

    await asyncio.gather(*_supervised_tasks.values(), return_exceptions=True)

    _supervised_tasks.clear()
    logger.info("[async_tools] All supervised tasks shut down")


def get_supervised_tasks() -> Dict[str, asyncio.Task]:
    """Get the current supervised tasks registry."""
    return _supervised_tasks.copy()
