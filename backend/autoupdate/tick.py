"""
Tick driver.

One tick = one pass over all containers:
1. Resolve settings (disabled -> return without touching the daemon)
2. Disk gate (known free space below minimum -> skip, never list containers)
3. List containers
4. Run each through the update state machine, sequentially
5. Persist image history once if it changed
6. Emit the tick summary audit event

Serialization of ticks is the caller's job; run_tick must not overlap itself.
"""

import asyncio
import logging
from typing import Any, Optional

import docker

from audit import AuditSink
from autoupdate.config_store import SystemConfigStore
from autoupdate.disk_guard import MountProvider, get_docker_root_free_bytes
from autoupdate.events import AutoUpdateEventEmitter
from autoupdate.identity import IdentityRegistry
from autoupdate.settings import resolve_auto_update_settings
from autoupdate.state_machine import ContainerUpdater, TickContext
from autoupdate.types import ErrorScope, TickError, TickResult
from config.settings import UpdaterConfig
from utils.async_docker import async_docker_call

logger = logging.getLogger(__name__)


class AutoUpdateTicker:
    """
    Runs auto-update ticks against one Docker daemon.

    Collaborators are injected so the scheduler (cron, systemd timer, the
    surrounding application) decides when and how often a tick runs.
    """

    def __init__(
        self,
        client: docker.DockerClient,
        mounts: MountProvider,
        store: SystemConfigStore,
        audit_sink: Optional[AuditSink] = None,
        identity_registry: Optional[IdentityRegistry] = None,
        config: Optional[UpdaterConfig] = None
    ):
        self.client = client
        self.mounts = mounts
        self.store = store
        self.config = config or UpdaterConfig()
        self.emitter = AutoUpdateEventEmitter(audit_sink)
        self.updater = ContainerUpdater(client, self.config, self.emitter, identity_registry)

    async def run_tick(self, admin_data: Any) -> TickResult:
        """
        Run one tick.

        Args:
            admin_data: Admin configuration holding the docker widget settings

        Returns:
            TickResult with counters and collected errors
        """
        settings = resolve_auto_update_settings(admin_data)
        if not settings.enabled:
            logger.debug("Auto-update disabled, nothing to do")
            return TickResult(enabled=False, ran=False)

        result = TickResult(enabled=True)

        disk = await get_docker_root_free_bytes(self.client, self.mounts)
        if disk.free_bytes is not None and disk.free_bytes < settings.min_free_bytes:
            logger.warning(
                f"Skipping auto-update: {disk.free_bytes} bytes free under {disk.root_path or 'docker root'}, "
                f"minimum is {settings.min_free_bytes}"
            )
            result.skipped_due_to_disk = True
            self.emitter.emit_tick_skip("disk", {
                'rootPath': disk.root_path,
                'freeBytes': disk.free_bytes,
                'minFreeBytes': settings.min_free_bytes,
            })
            self.emitter.emit_tick(result)
            return result

        try:
            containers = await async_docker_call(self.client.api.containers, all=True)
        except Exception as e:
            logger.error(f"Failed to list containers: {e}")
            result.errors.append(TickError(ErrorScope.LIST_CONTAINERS, str(e)))
            self.emitter.emit_tick_error("listContainers", str(e))
            self.emitter.emit_tick(result)
            return result

        result.ran = True
        ledger = self.store.ledger(self.config.history_max_len)
        ctx = TickContext(
            settings=settings,
            ledger=ledger,
            containers=list(containers or []),
            prune_remaining=settings.max_prune_per_run,
            system_config=self.store.system_config,
        )

        logger.info(f"Auto-update tick over {len(ctx.containers)} container(s)")
        for summary in ctx.containers:
            record = await self.updater.process(summary, ctx)
            if record.pulled:
                result.pulls += 1
            if record.updated:
                result.updates += 1
            result.pruned += len(record.pruned)
            result.errors.extend(record.errors)

        if ledger.dirty:
            try:
                await asyncio.to_thread(self.store.persist, ledger)
            except Exception as e:
                logger.error(f"Failed to persist image history: {e}")
                result.errors.append(TickError(ErrorScope.PERSIST_SYSTEM_CONFIG, str(e)))

        logger.info(
            f"Auto-update tick done: pulls={result.pulls} updates={result.updates} "
            f"pruned={result.pruned} errors={len(result.errors)}"
        )
        self.emitter.emit_tick(result)
        return result
