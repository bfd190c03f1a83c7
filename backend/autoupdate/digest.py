"""
Digest oracle.

Decides whether pulling an image can be skipped by comparing the digest the
daemon recorded locally with the digest the registry currently publishes for
the tag.

Only high-churn tags (by default just "latest") get the comparison. A fixed tag
can be silently repointed by its publisher, so it is always pulled.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

import docker

from autoupdate.image_ref import ImageReference
from utils.async_docker import async_docker_call

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PullDecision:
    pull: bool
    reason: str


def local_repo_digest(image_attrs: dict, repo_name: str) -> str:
    """
    Find the content digest the daemon recorded for repo_name.

    Scans RepoDigests ("nginx@sha256:...") for an entry of this repository,
    falling back to any digest-bearing entry.

    Returns:
        "sha256:..." digest, or "" when none is recorded
    """
    repo_digests = (image_attrs or {}).get("RepoDigests") or []
    prefix = f"{repo_name}@" if repo_name else None

    if prefix:
        for entry in repo_digests:
            if isinstance(entry, str) and entry.startswith(prefix):
                return entry[len(prefix):]

    for entry in repo_digests:
        if isinstance(entry, str) and "@" in entry:
            return entry.split("@", 1)[1]

    return ""


async def remote_tag_digest(
    client: docker.DockerClient,
    image_name: str,
    auth_config: Optional[Dict[str, str]] = None
) -> str:
    """
    Ask the registry (through the daemon) which digest the tag points to.

    Uses the daemon's distribution inspect endpoint, so registry auth and
    mirrors configured on the daemon apply.

    Returns:
        "sha256:..." digest, or "" on any failure
    """
    try:
        data = await async_docker_call(
            client.api.inspect_distribution, image_name, auth_config=auth_config
        )
        digest = ((data or {}).get("Descriptor") or {}).get("digest") or ""
        if not digest:
            logger.warning(f"Registry returned no digest for {image_name}")
        return digest
    except Exception as e:
        logger.warning(f"Could not resolve remote digest for {image_name}: {e}")
        return ""


def should_pull(
    ref: ImageReference,
    local_digest: str,
    remote_digest: str,
    digest_check_tags: Iterable[str] = ("latest",)
) -> PullDecision:
    """
    Apply the pull decision rule.

    A pull is skipped only when the effective tag is a digest-check tag and
    both digests are known and equal. A missing remote digest always pulls.
    """
    if ref.effective_tag not in set(digest_check_tags):
        return PullDecision(True, "fixed_tag")
    if not remote_digest:
        return PullDecision(True, "remote_digest_unavailable")
    if not local_digest:
        return PullDecision(True, "local_digest_unavailable")
    if local_digest == remote_digest:
        return PullDecision(False, "digest_match")
    return PullDecision(True, "digest_changed")
