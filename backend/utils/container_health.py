"""
Shared container health check utility.

Used by the auto-update state machine twice per replacement:
- to gate the commit of a freshly started container
- best-effort, to confirm a restored container after rollback

Polling state machine: POLLING -> READY | FAILED | TIMED_OUT. Terminal
states are final; nothing transitions back to POLLING.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum

import docker

from utils.async_docker import async_docker_call

logger = logging.getLogger(__name__)

MIN_POLL_INTERVAL = 0.2
MIN_TIMEOUT = 1.0


class HealthState(Enum):
    """Outcome of a health wait."""
    POLLING = "polling"
    READY = "ready"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class HealthCheckResult:
    state: HealthState
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.state is HealthState.READY


def evaluate_container_state(state: dict) -> HealthCheckResult:
    """
    Classify a single inspection's State block.

    Returns a POLLING result when no terminal condition is reached yet.
    """
    state = state or {}
    running = bool(state.get("Running"))
    exit_code = state.get("ExitCode") or 0
    if not running and exit_code != 0:
        return HealthCheckResult(HealthState.FAILED, f"exited:{exit_code}")

    health_status = ((state.get("Health") or {}).get("Status") or "").lower()
    if health_status == "unhealthy":
        return HealthCheckResult(HealthState.FAILED, "unhealthy")

    if running and health_status in ("", "healthy"):
        return HealthCheckResult(HealthState.READY)

    return HealthCheckResult(HealthState.POLLING)


async def wait_for_container_health(
    client: docker.DockerClient,
    container_id: str,
    timeout: float = 60,
    interval: float = 2
) -> HealthCheckResult:
    """
    Poll a container until it is ready, has failed, or the deadline passes.

    Rules per poll:
    1. Exited with non-zero code -> FAILED ("exited:<code>")
    2. Running with no health check or "healthy" -> READY
    3. Health status "unhealthy" -> FAILED ("unhealthy")
    4. Anything else (created, "starting", ...) -> keep polling

    Any inspection error ends the wait as FAILED with the error text.

    Args:
        client: Docker SDK client instance
        container_id: Container ID or name
        timeout: Deadline in seconds (floor 1s)
        interval: Seconds between polls (floor 200ms)

    Returns:
        HealthCheckResult with terminal state and reason
    """
    timeout = max(MIN_TIMEOUT, float(timeout))
    interval = max(MIN_POLL_INTERVAL, float(interval))
    deadline = time.monotonic() + timeout

    while True:
        try:
            attrs = await async_docker_call(client.api.inspect_container, container_id)
        except docker.errors.NotFound:
            logger.error(f"Container {container_id} not found during health check")
            return HealthCheckResult(HealthState.FAILED, "not_found")
        except Exception as e:
            logger.error(f"Error checking container health for {container_id}: {e}")
            return HealthCheckResult(HealthState.FAILED, str(e) or type(e).__name__)

        result = evaluate_container_state(attrs.get("State"))
        if result.state is HealthState.READY:
            logger.info(f"Container {container_id} is ready")
            return result
        if result.state is HealthState.FAILED:
            logger.error(f"Container {container_id} failed health check: {result.reason}")
            return result

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        logger.debug(f"Container {container_id} not ready yet, polling again in {interval}s")
        await asyncio.sleep(min(interval, remaining))

    logger.error(f"Health check timeout after {timeout}s for container {container_id}")
    return HealthCheckResult(HealthState.TIMED_OUT, "timeout")
