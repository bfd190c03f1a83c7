"""
Bounded image puller.

Streams an image pull and races it against two timers:
- idle timer: reset on every progress event (default 60s, floor 1s)
- total timer: fixed when the pull starts (default 600s, never below idle)

Slow transfers that keep making progress are tolerated, while a stalled pull
or a runaway one is cut off. The worst-case tick duration stays bounded either way.

The Docker SDK stream is blocking, so it is consumed in a worker thread that
hands each event to the event loop through an asyncio.Queue. Once a timer
fires the worker is told to stop and its remaining events are discarded.

The stop flag is only checked between events. A worker blocked on a stalled
stream stays in its socket read until the Docker client's read timeout
expires, so the caller must create the client with a finite timeout
(see autoupdate.__main__.client_timeout). The timed-out pull still returns
immediately; only the thread lingers.
"""

import asyncio
import logging
import threading
from typing import Any, Callable, Dict, Optional

import docker

from autoupdate.errors import PullError, PullTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_IDLE_TIMEOUT = 60.0
DEFAULT_TOTAL_TIMEOUT = 600.0
MIN_IDLE_TIMEOUT = 1.0

_PROGRESS = "progress"
_DONE = "done"
_FAILED = "failed"

ProgressCallback = Callable[[Dict[str, Any]], None]


class LayerProgress:
    """Tracks per-layer pull status and derives overall percent complete."""

    def __init__(self):
        self.layers: Dict[str, Dict[str, Any]] = {}

    def update(self, line: Dict[str, Any]) -> Dict[str, Any]:
        layer_id = line.get('id')
        status = line.get('status', '')
        detail = line.get('progressDetail') or {}

        if layer_id:
            existing = self.layers.get(layer_id, {})
            total = detail.get('total') or existing.get('total', 0)
            if status in ('Already exists', 'Pull complete'):
                current = total
            else:
                current = detail.get('current', existing.get('current', 0))
            self.layers[layer_id] = {'status': status, 'current': current, 'total': total}

        return {
            'status': status,
            'layer': layer_id,
            'layers': len(self.layers),
            'percent': self.percent,
        }

    @property
    def percent(self) -> int:
        total_bytes = sum(l['total'] for l in self.layers.values() if l['total'] > 0)
        if total_bytes > 0:
            downloaded = sum(l['current'] for l in self.layers.values())
            return min(100, int(downloaded / total_bytes * 100))
        if not self.layers:
            return 0
        # Fallback: layer completion count
        completed = sum(
            1 for l in self.layers.values()
            if 'complete' in l['status'].lower() or l['status'] == 'Already exists'
        )
        return int(completed / len(self.layers) * 100)


async def pull_image_with_timeout(
    client: docker.DockerClient,
    image: str,
    *,
    auth_config: Optional[Dict[str, str]] = None,
    idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
    total_timeout: float = DEFAULT_TOTAL_TIMEOUT,
    on_progress: Optional[ProgressCallback] = None
) -> int:
    """
    Pull an image, enforcing idle and total timeouts.

    Args:
        client: Docker SDK client
        image: Image reference to pull
        auth_config: Optional registry credentials {username, password}
        idle_timeout: Max seconds between progress events
        total_timeout: Max seconds for the whole pull
        on_progress: Called with a progress dict for every event received
            before completion or timeout

    Returns:
        Number of progress events received

    Raises:
        PullTimeoutError: idle or total timer fired (kind tells which)
        PullError: daemon refused the pull or the stream reported an error
    """
    idle = max(MIN_IDLE_TIMEOUT, float(idle_timeout))
    total = max(idle, float(total_timeout))

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()
    stop = threading.Event()

    def _post(kind: str, payload: Any = None):
        if stop.is_set():
            return
        try:
            loop.call_soon_threadsafe(queue.put_nowait, (kind, payload))
        except RuntimeError:
            # Event loop already closed; nobody is listening any more
            stop.set()

    def _stream():
        stream = None
        try:
            pull_kwargs = {'stream': True, 'decode': True}
            if auth_config:
                pull_kwargs['auth_config'] = auth_config
            stream = client.api.pull(image, **pull_kwargs)
            for line in stream:
                if stop.is_set():
                    break
                _post(_PROGRESS, line)
            else:
                _post(_DONE)
        except Exception as e:
            _post(_FAILED, e)
        finally:
            close = getattr(stream, 'close', None)
            if stop.is_set() and callable(close):
                try:
                    close()
                except Exception as e:
                    logger.debug(f"Error closing pull stream for {image}: {e}")

    logger.info(f"Pulling image {image} (idle timeout {idle:g}s, total timeout {total:g}s)")
    worker = loop.run_in_executor(None, _stream)
    deadline = loop.time() + total
    tracker = LayerProgress()
    events = 0

    try:
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise PullTimeoutError(image, "total", total)

            wait = min(idle, remaining)
            try:
                kind, payload = await asyncio.wait_for(queue.get(), timeout=wait)
            except asyncio.TimeoutError:
                if wait < idle:
                    raise PullTimeoutError(image, "total", total)
                raise PullTimeoutError(image, "idle", idle)

            if kind == _DONE:
                logger.info(f"Pulled {image} ({events} progress events, {len(tracker.layers)} layers)")
                return events

            if kind == _FAILED:
                raise PullError(image, str(payload) or type(payload).__name__) from payload

            if isinstance(payload, dict) and payload.get('error'):
                raise PullError(image, str(payload['error']))

            events += 1
            progress = tracker.update(payload if isinstance(payload, dict) else {})
            if on_progress:
                try:
                    on_progress(progress)
                except Exception as e:
                    logger.debug(f"Pull progress callback failed: {e}")

    except PullTimeoutError as e:
        logger.error(str(e))
        raise
    finally:
        stop.set()
        # The worker finishes on its own once the SDK stream returns; never wait on it here
        worker.add_done_callback(lambda f: f.exception() if not f.cancelled() else None)
