"""
Per-container update state machine.

One container, one pass, strictly sequential:

    PENDING -> PRECONDITION -> COMPARING -> [PULLING] -> INSPECTING
            -> BACKING_UP -> STARTING -> HEALTH_CHECKING -> COMMITTING -> COMMITTED

Each state has one transition method returning the next state. Gates exit
early into FILTERED, PRECONDITION_FAILED or UNCHANGED; replacement failures end
in ROLLED_BACK after the compensating actions ran; anything unexpected ends in
ERRORED. A single container's failure never escapes process().
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

import docker

from audit import AuditAction
from autoupdate.container_spec import build_create_options, create_container_from_options
from autoupdate.digest import local_repo_digest, remote_tag_digest, should_pull
from autoupdate.errors import AutoUpdateError, PullError
from autoupdate.events import AutoUpdateEventEmitter
from autoupdate.history import ImageHistoryLedger, compute_prune_candidates
from autoupdate.identity import IdentityRegistry
from autoupdate.image_ref import ImageReference, parse_image_reference
from autoupdate.prune import prune_images_by_id
from autoupdate.puller import pull_image_with_timeout
from autoupdate.types import (
    BackupMode,
    Compensation,
    ContainerUpdateRecord,
    ErrorScope,
    TickError,
    UpdateState,
)
from config.settings import UpdaterConfig
from models.settings_models import AutoUpdateSettings
from utils.async_docker import async_docker_call
from utils.container_health import wait_for_container_health
from utils.image_id import short_container_id, short_image_id
from utils.registry_credentials import get_registry_credentials

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = "__backup__"


@dataclass
class TickContext:
    """State shared by every container in one tick."""
    settings: AutoUpdateSettings
    ledger: ImageHistoryLedger
    containers: List[Dict[str, Any]]
    prune_remaining: int
    system_config: Dict[str, Any] = field(default_factory=dict)


@dataclass
class _Run:
    """Working data for one container while the machine runs."""
    summary: Dict[str, Any]
    ctx: TickContext
    record: ContainerUpdateRecord
    attrs: Dict[str, Any] = field(default_factory=dict)
    ref: Optional[ImageReference] = None
    auth_config: Optional[Dict[str, str]] = None
    retained_options: Optional[Dict[str, Any]] = None
    restored_container_id: str = ""


def display_name(summary: Dict[str, Any]) -> str:
    names = summary.get('Names') or []
    return names[0].lstrip('/') if names and names[0] else ""


class ContainerUpdater:
    """Drives one container at a time through the update protocol."""

    def __init__(
        self,
        client: docker.DockerClient,
        config: UpdaterConfig,
        emitter: AutoUpdateEventEmitter,
        identity_registry: Optional[IdentityRegistry] = None
    ):
        self.client = client
        self.config = config
        self.emitter = emitter
        self.identity_registry = identity_registry

        self._handlers: Dict[UpdateState, Callable[[_Run], Awaitable[UpdateState]]] = {
            UpdateState.PENDING: self._filter,
            UpdateState.PRECONDITION: self._check_preconditions,
            UpdateState.COMPARING: self._compare_digests,
            UpdateState.PULLING: self._pull,
            UpdateState.INSPECTING: self._inspect_pulled_image,
            UpdateState.BACKING_UP: self._back_up,
            UpdateState.STARTING: self._start_replacement,
            UpdateState.HEALTH_CHECKING: self._health_gate,
            UpdateState.COMMITTING: self._commit,
        }

    async def process(self, summary: Dict[str, Any], ctx: TickContext) -> ContainerUpdateRecord:
        """
        Run the state machine for one container summary.

        Returns:
            ContainerUpdateRecord in a terminal state
        """
        record = ContainerUpdateRecord(
            container_id=summary.get('Id', ''),
            name=display_name(summary),
        )
        run = _Run(summary=summary, ctx=ctx, record=record)
        state = UpdateState.PENDING

        try:
            while not state.is_terminal:
                record.state = state
                state = await self._handlers[state](run)
        except Exception as e:
            scope = ErrorScope.PULL if isinstance(e, PullError) else ErrorScope.CONTAINER
            if isinstance(e, AutoUpdateError):
                logger.error(f"Auto-update of {record.name or record.container_id} failed in {state.value}: {e}")
            else:
                logger.error(
                    f"Unexpected error updating {record.name or record.container_id} in {state.value}: {e}",
                    exc_info=True
                )
            record.errors.append(TickError(scope, str(e) or type(e).__name__, name=record.name))
            record.action, record.reason = AuditAction.ERROR.value, state.value
            self.emitter.emit_error(record, str(e), reason=state.value)
            state = UpdateState.ERRORED

        record.state = state
        return record

    # -- gates ---------------------------------------------------------------

    async def _filter(self, run: _Run) -> UpdateState:
        summary = run.summary
        settings = run.ctx.settings

        if summary.get('State') != 'running':
            return UpdateState.FILTERED

        names = [str(n).lstrip('/') for n in (summary.get('Names') or [])]
        container_id = summary.get('Id', '')
        for disabled in settings.disabled_containers:
            if disabled in names or (len(disabled) >= 12 and container_id.startswith(disabled)):
                logger.debug(f"Container {names[0] if names else container_id} has auto-update disabled")
                return UpdateState.FILTERED

        image = str(summary.get('Image') or '').lower()
        lowered_names = [n.lower() for n in names]
        for pattern in self.config.protected_patterns:
            pattern = pattern.lower()
            if pattern and (pattern in image or any(pattern in n for n in lowered_names)):
                logger.debug(f"Container {names[0] if names else container_id} is protected ({pattern})")
                return UpdateState.FILTERED

        return UpdateState.PRECONDITION

    async def _check_preconditions(self, run: _Run) -> UpdateState:
        record = run.record
        run.attrs = await async_docker_call(self.client.api.inspect_container, record.container_id)

        if not record.name:
            # Summary without Names; backup and rename-back need a real name
            record.name = (run.attrs.get('Name') or '').lstrip('/') or short_container_id(record.container_id)

        config = run.attrs.get('Config') or {}
        record.image = config.get('Image') or run.summary.get('Image') or ''
        record.current_image_id = run.attrs.get('Image') or run.summary.get('ImageID') or ''

        if not record.image:
            return self._skip(run, "no_image_reference")

        run.ref = parse_image_reference(record.image)
        if run.ref.is_image_id:
            return self._skip(run, "image_id_reference")
        if run.ref.is_digest_pinned:
            return self._skip(run, "digest_pinned")

        health = ((run.attrs.get('State') or {}).get('Health') or {}).get('Status') or ''
        if health and health != 'healthy':
            return self._skip(run, f"precheck_{health}")

        run.auth_config = get_registry_credentials(run.ctx.system_config, record.image)
        return UpdateState.COMPARING

    def _skip(self, run: _Run, reason: str) -> UpdateState:
        logger.info(f"Skipping {run.record.name}: {reason}")
        run.record.action, run.record.reason = AuditAction.SKIP.value, reason
        self.emitter.emit_skip(run.record, reason)
        return UpdateState.PRECONDITION_FAILED

    # -- pull ----------------------------------------------------------------

    async def _compare_digests(self, run: _Run) -> UpdateState:
        record, ref = run.record, run.ref

        try:
            local_attrs = await async_docker_call(
                self.client.api.inspect_image, record.current_image_id or record.image
            )
            record.local_digest = local_repo_digest(local_attrs, ref.name)
        except Exception as e:
            logger.warning(f"Could not inspect local image for {record.name}: {e}")

        if ref.effective_tag in self.config.digest_check_tags:
            record.remote_digest = await remote_tag_digest(self.client, record.image, run.auth_config)

        decision = should_pull(ref, record.local_digest, record.remote_digest, self.config.digest_check_tags)
        logger.info(f"{record.name} ({record.image}): {'pull' if decision.pull else 'no pull'} ({decision.reason})")
        return UpdateState.PULLING if decision.pull else UpdateState.INSPECTING

    async def _pull(self, run: _Run) -> UpdateState:
        await pull_image_with_timeout(
            self.client,
            run.record.image,
            auth_config=run.auth_config,
            idle_timeout=self.config.pull_idle_timeout,
            total_timeout=self.config.pull_total_timeout,
        )
        run.record.pulled = True
        return UpdateState.INSPECTING

    async def _inspect_pulled_image(self, run: _Run) -> UpdateState:
        record, ledger = run.record, run.ctx.ledger

        try:
            image_attrs = await async_docker_call(self.client.api.inspect_image, record.image)
            record.new_image_id = image_attrs.get('Id') or ''
            record.new_digest = local_repo_digest(image_attrs, run.ref.name)
        except Exception as e:
            logger.warning(f"Could not inspect image {record.image} after pull: {e}")

        # Old first, then new: the newest ID ends up at the head of the history
        ledger.update_image_history(record.image, record.current_image_id)
        ledger.update_image_history(record.image, record.new_image_id)

        if not record.new_image_id:
            return self._no_change(run, AuditAction.CHECKED, "new_image_unavailable")
        if not record.current_image_id:
            return self._no_change(run, AuditAction.CHECKED, "current_image_unknown")
        if record.new_image_id == record.current_image_id:
            if record.pulled:
                return self._no_change(run, AuditAction.CHECKED, "up_to_date")
            return self._no_change(run, AuditAction.SKIPPED, "digest_match")

        logger.info(
            f"New image for {record.name}: {short_image_id(record.current_image_id)} -> "
            f"{short_image_id(record.new_image_id)}"
        )
        return UpdateState.BACKING_UP

    def _no_change(self, run: _Run, action: AuditAction, reason: str) -> UpdateState:
        run.record.action, run.record.reason = action.value, reason
        self.emitter.emit_no_change(run.record, action, reason)
        return UpdateState.UNCHANGED

    # -- replacement ---------------------------------------------------------

    async def _back_up(self, run: _Run) -> UpdateState:
        """Stop the old container and keep it around (renamed) or its options (recreate)."""
        record = run.record
        original_image = (run.attrs.get('Config') or {}).get('Image') or record.image
        run.retained_options = build_create_options(run.attrs, original_image)

        await async_docker_call(self.client.api.stop, record.container_id, timeout=self.config.stop_timeout)
        logger.info(f"Stopped container {record.name}")

        backup_name = f"{record.name}{BACKUP_SUFFIX}{int(time.time())}"
        try:
            await async_docker_call(self.client.api.rename, record.container_id, backup_name)
            record.backup_mode = BackupMode.RENAME
            record.backup_name = backup_name
            logger.info(f"Renamed {record.name} to {backup_name}")
            return UpdateState.STARTING
        except Exception as e:
            logger.warning(f"Rename of {record.name} failed ({e}), falling back to recreate mode")

        try:
            await async_docker_call(self.client.api.remove_container, record.container_id)
        except Exception as e:
            logger.error(f"Could not remove {record.name} for recreate mode: {e}")
            try:
                await async_docker_call(self.client.api.start, record.container_id)
            except Exception as start_error:
                logger.critical(
                    f"CRITICAL: {record.name} is stopped and could not be restarted: {start_error}"
                )
            raise AutoUpdateError(f"Unable to back up {record.name}: {e}") from e

        record.backup_mode = BackupMode.RECREATE
        logger.info(f"Removed {record.name}; original options retained for rollback")
        return UpdateState.STARTING

    async def _start_replacement(self, run: _Run) -> UpdateState:
        record = run.record
        options = build_create_options(run.attrs, record.image)

        try:
            record.new_container_id = await create_container_from_options(self.client, options)
            logger.info(f"Created replacement {short_container_id(record.new_container_id)} for {record.name}")
            await async_docker_call(self.client.api.start, record.new_container_id)
        except Exception as e:
            logger.error(f"Failed to start replacement for {record.name}: {e}")
            await self._rollback(run)
            return self._rolled_back(run, "start_failed", f"start failed: {e}")

        return UpdateState.HEALTH_CHECKING

    async def _health_gate(self, run: _Run) -> UpdateState:
        record = run.record
        result = await wait_for_container_health(
            self.client,
            record.new_container_id,
            timeout=self.config.health_check_timeout,
            interval=self.config.health_check_interval,
        )
        if result.ok:
            return UpdateState.COMMITTING

        logger.error(f"Replacement for {record.name} failed health gate ({result.reason}), rolling back")
        await self._rollback(run)

        restored_health = None
        restored_id = self._restored_container_id(run)
        if restored_id:
            try:
                restored = await wait_for_container_health(
                    self.client,
                    restored_id,
                    timeout=self.config.health_check_timeout,
                    interval=self.config.health_check_interval,
                )
                restored_health = restored.state.value
                logger.info(f"Restored {record.name} health: {restored.state.value} {restored.reason}".rstrip())
            except Exception as e:
                logger.warning(f"Could not check restored {record.name}: {e}")

        return self._rolled_back(run, result.reason, f"health check failed: {result.reason}", restored_health)

    def _rolled_back(
        self,
        run: _Run,
        reason: str,
        error: str,
        restored_health: Optional[str] = None
    ) -> UpdateState:
        record = run.record
        record.action, record.reason = AuditAction.ROLLBACK.value, reason
        record.errors.append(TickError(ErrorScope.CONTAINER, error, name=record.name))
        self.emitter.emit_rollback(record, reason, restored_health)
        return UpdateState.ROLLED_BACK

    # -- rollback ------------------------------------------------------------

    def _restored_container_id(self, run: _Run) -> str:
        if run.record.backup_mode is BackupMode.RENAME:
            return run.record.container_id
        return run.restored_container_id

    async def _recreate_original(self, run: _Run):
        run.restored_container_id = await create_container_from_options(self.client, run.retained_options)

    async def _rollback(self, run: _Run):
        """
        Run every compensating action in order, each one on its own.

        A failing step is logged and recorded; the next step still runs, and
        nothing is raised to the caller.
        """
        record = run.record
        api = self.client.api
        steps = []

        if record.new_container_id:
            new_id = record.new_container_id
            steps.append(("stop_new", lambda: async_docker_call(api.stop, new_id, timeout=self.config.stop_timeout)))
            steps.append(("remove_new", lambda: async_docker_call(api.remove_container, new_id, force=True)))

        if record.backup_mode is BackupMode.RENAME:
            steps.append(("rename_old", lambda: async_docker_call(api.rename, record.container_id, record.name)))
            steps.append(("start_old", lambda: async_docker_call(api.start, record.container_id)))
        elif record.backup_mode is BackupMode.RECREATE:
            steps.append(("recreate_old", lambda: self._recreate_original(run)))
            steps.append(("start_old", lambda: async_docker_call(api.start, run.restored_container_id)))

        logger.warning(f"Rolling back {record.name} ({len(steps)} step(s))")
        for action, step in steps:
            try:
                await step()
                record.compensations.append(Compensation(action, True))
                logger.info(f"Rollback {record.name}: {action} ok")
            except Exception as e:
                record.compensations.append(Compensation(action, False, str(e)))
                logger.warning(f"Rollback {record.name}: {action} failed: {e}")

        if any(not c.ok and c.action in ("rename_old", "recreate_old", "start_old") for c in record.compensations):
            logger.critical(
                f"CRITICAL: Rollback incomplete for {record.name}. Manual intervention required"
                f"{f' - backup: {record.backup_name}' if record.backup_name else ''}"
            )

    # -- commit --------------------------------------------------------------

    async def _commit(self, run: _Run) -> UpdateState:
        record, ctx = run.record, run.ctx
        record.updated = True
        logger.info(f"Updated {record.name} to {short_image_id(record.new_image_id)}")

        if self.identity_registry is not None:
            try:
                await self.identity_registry.update(
                    record.container_id, record.new_container_id, run.attrs.get('Name') or record.name
                )
            except Exception as e:
                logger.error(f"Identity registry update failed for {record.name}: {e}")
                record.errors.append(TickError(ErrorScope.IDENTITY_REGISTRY, str(e), name=record.name))

        if record.backup_mode is BackupMode.RENAME:
            try:
                await async_docker_call(self.client.api.remove_container, record.container_id, force=True)
                logger.info(f"Removed backup container {record.backup_name}")
            except Exception as e:
                logger.warning(f"Failed to remove backup {record.backup_name}: {e}")

        try:
            containers_after = await async_docker_call(self.client.api.containers, all=True)
        except Exception as e:
            logger.warning(f"Could not re-list containers after update, using tick-start listing: {e}")
            containers_after = ctx.containers

        used = frozenset(c.get('ImageID') for c in containers_after if c.get('ImageID'))
        candidates = compute_prune_candidates(
            ctx.ledger.ids_for(record.image), ctx.settings.keep_images, used
        )
        if candidates:
            outcome = await prune_images_by_id(self.client, candidates, used, ctx.prune_remaining)
            ctx.prune_remaining -= len(outcome.removed)
            record.pruned = outcome.removed
            record.prune_failed = outcome.failed
            for failure in outcome.failed:
                record.errors.append(TickError(
                    ErrorScope.PRUNE_IMAGE, failure['error'], name=record.name, image_id=failure['id']
                ))

        record.action = AuditAction.UPDATED.value
        self.emitter.emit_updated(record)
        return UpdateState.COMMITTED
