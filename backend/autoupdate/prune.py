"""
Image pruning.

Removes superseded images by ID, one at a time, never touching an image a
container still uses. Each failure is recorded and the loop moves on.
"""

import logging
from dataclasses import dataclass, field
from typing import AbstractSet, Dict, Iterable, List

import docker

from utils.async_docker import async_docker_call
from utils.image_id import short_image_id

logger = logging.getLogger(__name__)


@dataclass
class PruneOutcome:
    removed: List[str] = field(default_factory=list)
    failed: List[Dict[str, str]] = field(default_factory=list)


async def prune_images_by_id(
    client: docker.DockerClient,
    image_ids: Iterable[str],
    used_image_ids: AbstractSet[str],
    limit: int
) -> PruneOutcome:
    """
    Remove up to limit images from image_ids.

    Args:
        client: Docker SDK client
        image_ids: Candidate image IDs, in preferred removal order
        used_image_ids: IDs referenced by listed containers (never removed)
        limit: Max removals; <= 0 removes nothing

    Returns:
        PruneOutcome with removed IDs and {id, error} failures
    """
    outcome = PruneOutcome()
    if limit <= 0:
        return outcome

    for image_id in image_ids:
        if len(outcome.removed) >= limit:
            break
        if not image_id or image_id in used_image_ids:
            continue
        try:
            await async_docker_call(client.api.remove_image, image_id)
            outcome.removed.append(image_id)
            logger.info(f"Pruned image {short_image_id(image_id)}")
        except docker.errors.NotFound:
            logger.info(f"Image {short_image_id(image_id)} already gone, skipping")
        except Exception as e:
            logger.warning(f"Failed to prune image {short_image_id(image_id)}: {e}")
            outcome.failed.append({"id": image_id, "error": str(e)})

    return outcome
