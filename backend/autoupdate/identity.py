"""
Container identity registry.

Other parts of a deployment (dashboard widgets, tags, per-container settings)
key their data by container ID. A committed replacement changes that ID, so the
registry is told old -> new exactly once per successful update.
"""

import logging
from typing import Protocol

from utils.image_id import short_container_id

logger = logging.getLogger(__name__)


class IdentityRegistry(Protocol):
    async def update(self, old_id: str, new_id: str, display_name: str) -> None:
        ...


class LoggingIdentityRegistry:
    """Registry for standalone runs: records the identity change in the log only."""

    async def update(self, old_id: str, new_id: str, display_name: str) -> None:
        logger.info(
            f"Container {display_name.lstrip('/')} replaced: "
            f"{short_container_id(old_id)} -> {short_container_id(new_id)}"
        )
