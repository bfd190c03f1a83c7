"""
Async wrapper for blocking Docker SDK calls.

The Docker SDK is synchronous (requests under the hood). Every daemon call made
from async code goes through async_docker_call so the event loop is never
blocked while the daemon answers.
"""

import asyncio
from typing import Any, Callable


async def async_docker_call(sync_fn: Callable[..., Any], *args, **kwargs) -> Any:
    """
    Run a synchronous Docker SDK call in the default thread pool.

    Args:
        sync_fn: Bound SDK method (e.g. client.api.inspect_container)
        *args, **kwargs: Passed through to sync_fn

    Returns:
        Whatever sync_fn returns
    """
    return await asyncio.to_thread(sync_fn, *args, **kwargs)
