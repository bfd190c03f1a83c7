"""
Disk guard.

Maps the daemon's data-root directory to a host filesystem mount and reports
its free space. A tick refuses to pull anything when known free space is below
the configured minimum; unknown free space (None) never blocks.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Protocol

import docker
import psutil

from utils.async_docker import async_docker_call

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MountUsage:
    mount: str
    available: Optional[int]


@dataclass(frozen=True)
class DiskStatus:
    root_path: str
    free_bytes: Optional[int]


class MountProvider(Protocol):
    def list_mounts(self) -> List[MountUsage]:
        ...


class PsutilMountProvider:
    """Host mounts with free space, read through psutil."""

    def __init__(self, all_partitions: bool = False):
        self.all_partitions = all_partitions

    def list_mounts(self) -> List[MountUsage]:
        mounts = []
        for partition in psutil.disk_partitions(all=self.all_partitions):
            try:
                usage = psutil.disk_usage(partition.mountpoint)
            except (PermissionError, OSError) as e:
                logger.debug(f"Skipping unreadable mount {partition.mountpoint}: {e}")
                continue
            mounts.append(MountUsage(mount=partition.mountpoint, available=usage.free))
        return mounts


def _normalize_path(path: str) -> str:
    return str(path or "").replace("\\", "/").lower()


def _is_drive_root(mount: str) -> bool:
    return len(mount) == 2 and mount[1] == ":"


def select_mount(root_path: str, mounts: List[MountUsage]) -> Optional[MountUsage]:
    """
    Pick the mount holding root_path.

    The longest mount path that prefixes root_path wins. When the root path is
    unknown a Windows drive root ("C:") matches. With no match at all the first
    reported mount is used.
    """
    if not mounts:
        return None

    root = _normalize_path(root_path)
    best = None
    best_len = -1

    for usage in mounts:
        mount = _normalize_path(usage.mount)
        if not mount:
            continue
        matched = root.startswith(mount) if root else _is_drive_root(mount)
        if matched and len(mount) > best_len:
            best = usage
            best_len = len(mount)

    return best if best is not None else mounts[0]


async def get_docker_root_free_bytes(
    client: docker.DockerClient,
    mounts: MountProvider
) -> DiskStatus:
    """
    Report free bytes on the filesystem holding the daemon's data root.

    Never raises: any failure yields free_bytes=None ("unknown, do not block").
    """
    try:
        info = await async_docker_call(client.api.info)
        root = info.get("DockerRootDir") if isinstance(info, dict) else None
        root = root if isinstance(root, str) else ""

        usages = await async_docker_call(mounts.list_mounts)
        best = select_mount(root, list(usages or []))
        if best is None:
            logger.warning("No filesystem mounts reported, free space unknown")
            return DiskStatus(root_path=root, free_bytes=None)

        available = best.available
        if (
            isinstance(available, bool)
            or not isinstance(available, (int, float))
            or not math.isfinite(available)
            or available < 0
        ):
            return DiskStatus(root_path=root, free_bytes=None)

        logger.debug(f"Docker root {root or '?'} on mount {best.mount}: {int(available)} bytes free")
        return DiskStatus(root_path=root, free_bytes=int(available))

    except Exception as e:
        logger.warning(f"Could not determine free space for docker root: {e}")
        return DiskStatus(root_path="", free_bytes=None)
