"""
Tests for the per-container update state machine.

Each test drives ContainerUpdater.process() for a single container summary
against a MagicMock Docker client and checks the terminal state, the daemon
calls made along the way and the audit trail.
"""

from unittest.mock import AsyncMock

import pytest
from docker.errors import APIError

from audit import AuditAction
from autoupdate.events import AutoUpdateEventEmitter
from autoupdate.history import ImageHistoryLedger
from autoupdate.state_machine import BACKUP_SUFFIX, ContainerUpdater, TickContext
from autoupdate.types import BackupMode, ErrorScope, UpdateState
from docker_payloads import (
    NEW_CONTAINER_ID,
    OLD_CONTAINER_ID,
    configure_new_image,
    make_container_attrs,
    make_container_summary,
)
from models.settings_models import AutoUpdateSettings


def make_context(ledger=None, prune_remaining=30, **settings):
    settings.setdefault('enabled', True)
    return TickContext(
        settings=AutoUpdateSettings(**settings),
        ledger=ledger or ImageHistoryLedger(),
        containers=[make_container_summary()],
        prune_remaining=prune_remaining,
    )


@pytest.fixture
def identity_registry():
    registry = AsyncMock()
    registry.update.return_value = None
    return registry


@pytest.fixture
def updater(mock_docker_client, fast_config, audit_sink, identity_registry):
    return ContainerUpdater(
        mock_docker_client, fast_config, AutoUpdateEventEmitter(audit_sink), identity_registry
    )


def _actions(audit_sink):
    return [(e['action'], e.get('reason')) for e in audit_sink.events]


class TestFilterGate:

    @pytest.mark.asyncio
    async def test_stopped_container_filtered(self, updater, mock_docker_client, audit_sink):
        record = await updater.process(make_container_summary(state='exited'), make_context())

        assert record.state is UpdateState.FILTERED
        mock_docker_client.api.inspect_container.assert_not_called()
        assert audit_sink.events == []

    @pytest.mark.asyncio
    async def test_disabled_by_name(self, updater, mock_docker_client):
        record = await updater.process(make_container_summary(), make_context(disabled_containers=['/web']))

        assert record.state is UpdateState.FILTERED
        mock_docker_client.api.inspect_container.assert_not_called()

    @pytest.mark.asyncio
    async def test_disabled_by_id_prefix(self, updater):
        ctx = make_context(disabled_containers=[OLD_CONTAINER_ID[:12]])
        record = await updater.process(make_container_summary(), ctx)

        assert record.state is UpdateState.FILTERED

    @pytest.mark.asyncio
    async def test_short_id_fragment_does_not_disable(self, updater):
        ctx = make_context(disabled_containers=[OLD_CONTAINER_ID[:4]])
        record = await updater.process(make_container_summary(), ctx)

        assert record.state is not UpdateState.FILTERED

    @pytest.mark.asyncio
    async def test_protected_container_filtered(self, updater, mock_docker_client):
        summary = make_container_summary(name='DockWarden', image='ghcr.io/acme/dockwarden:latest')

        record = await updater.process(summary, make_context())

        assert record.state is UpdateState.FILTERED
        mock_docker_client.api.inspect_container.assert_not_called()


class TestPreconditionGate:

    @pytest.mark.asyncio
    async def test_digest_pinned_never_pulled(self, updater, mock_docker_client, audit_sink):
        mock_docker_client.api.inspect_container.return_value = make_container_attrs(
            image='nginx@sha256:abc'
        )

        record = await updater.process(make_container_summary(image='nginx@sha256:abc'), make_context())

        assert record.state is UpdateState.PRECONDITION_FAILED
        assert record.reason == 'digest_pinned'
        mock_docker_client.api.pull.assert_not_called()
        mock_docker_client.api.inspect_distribution.assert_not_called()
        assert _actions(audit_sink) == [('skip', 'digest_pinned')]

    @pytest.mark.asyncio
    async def test_image_id_reference_skipped(self, updater, mock_docker_client):
        mock_docker_client.api.inspect_container.return_value = make_container_attrs(image='sha256:deadbeef')

        record = await updater.process(make_container_summary(image='sha256:deadbeef'), make_context())

        assert record.reason == 'image_id_reference'
        mock_docker_client.api.pull.assert_not_called()

    @pytest.mark.asyncio
    async def test_unhealthy_before_update_skipped(self, updater, mock_docker_client, audit_sink):
        mock_docker_client.api.inspect_container.return_value = make_container_attrs(health='unhealthy')

        record = await updater.process(make_container_summary(), make_context())

        assert record.state is UpdateState.PRECONDITION_FAILED
        assert record.reason == 'precheck_unhealthy'
        assert _actions(audit_sink) == [('skip', 'precheck_unhealthy')]

    @pytest.mark.asyncio
    async def test_registry_credentials_passed_to_pull(self, updater, mock_docker_client):
        mock_docker_client.api.inspect_container.return_value = make_container_attrs(image='ghcr.io/acme/app:1.2')
        mock_docker_client.api.inspect_image.return_value = {'Id': 'sha256:old', 'RepoDigests': []}
        ctx = make_context()
        ctx.system_config = {'dockerAutoUpdate': {'registries': {'ghcr.io': {'username': 'bot', 'password': 's3cret'}}}}

        await updater.process(make_container_summary(image='ghcr.io/acme/app:1.2'), ctx)

        assert mock_docker_client.api.pull.call_args.kwargs['auth_config'] == {'username': 'bot', 'password': 's3cret'}


class TestNoChange:

    @pytest.mark.asyncio
    async def test_digest_match_skips_pull(self, updater, mock_docker_client, audit_sink):
        mock_docker_client.api.inspect_distribution.return_value = {'Descriptor': {'digest': 'sha256:aaa'}}

        record = await updater.process(make_container_summary(), make_context())

        assert record.state is UpdateState.UNCHANGED
        assert record.pulled is False
        assert record.action == 'skipped'
        assert record.reason == 'digest_match'
        mock_docker_client.api.pull.assert_not_called()
        mock_docker_client.api.stop.assert_not_called()

    @pytest.mark.asyncio
    async def test_pulled_but_same_image(self, updater, mock_docker_client, audit_sink):
        """Remote digest differs but the pulled tag resolves to the running image ID."""
        record = await updater.process(make_container_summary(), make_context())

        assert record.state is UpdateState.UNCHANGED
        assert record.pulled is True
        assert _actions(audit_sink) == [('checked', 'up_to_date')]
        mock_docker_client.api.stop.assert_not_called()
        mock_docker_client.api.create_container.assert_not_called()
        mock_docker_client.api.start.assert_not_called()

    @pytest.mark.asyncio
    async def test_fixed_tag_always_pulls(self, updater, mock_docker_client):
        mock_docker_client.api.inspect_container.return_value = make_container_attrs(image='nginx:1.25')

        record = await updater.process(make_container_summary(image='nginx:1.25'), make_context())

        mock_docker_client.api.inspect_distribution.assert_not_called()
        mock_docker_client.api.pull.assert_called_once()
        assert record.pulled is True

    @pytest.mark.asyncio
    async def test_history_records_image_ids(self, updater):
        ledger = ImageHistoryLedger()

        await updater.process(make_container_summary(), make_context(ledger=ledger))

        assert ledger.ids_for('nginx:latest') == ['sha256:old']
        assert ledger.dirty is True


class TestSuccessfulUpdate:

    @pytest.mark.asyncio
    async def test_update_commits_and_notifies_registry(
        self, updater, mock_docker_client, audit_sink, identity_registry
    ):
        configure_new_image(mock_docker_client)

        record = await updater.process(make_container_summary(), make_context())

        assert record.state is UpdateState.COMMITTED
        assert record.updated is True
        assert record.backup_mode is BackupMode.RENAME
        assert record.backup_name.startswith(f'web{BACKUP_SUFFIX}')
        assert record.new_container_id == NEW_CONTAINER_ID

        api = mock_docker_client.api
        api.stop.assert_called_once_with(OLD_CONTAINER_ID, timeout=1)
        api.rename.assert_called_once_with(OLD_CONTAINER_ID, record.backup_name)
        assert api.create_container.call_args.kwargs['image'] == 'nginx:latest'
        assert api.create_container.call_args.kwargs['name'] == 'web'
        api.start.assert_called_once_with(NEW_CONTAINER_ID)
        api.remove_container.assert_called_once_with(OLD_CONTAINER_ID, force=True)
        identity_registry.update.assert_awaited_once_with(OLD_CONTAINER_ID, NEW_CONTAINER_ID, '/web')

        updated = audit_sink.events[-1]
        assert updated['action'] == 'updated'
        assert updated['before'] == {'imageId': 'sha256:old', 'digest': 'sha256:aaa'}
        assert updated['after'] == {'imageId': 'sha256:new', 'digest': 'sha256:bbb'}

    @pytest.mark.asyncio
    async def test_prunes_images_outside_window(self, updater, mock_docker_client):
        configure_new_image(mock_docker_client)
        ledger = ImageHistoryLedger({'nginx:latest': ('sha256:older1', 'sha256:older2')})
        ctx = make_context(ledger=ledger, keep_images=2, prune_remaining=30)

        record = await updater.process(make_container_summary(), ctx)

        assert ledger.ids_for('nginx:latest') == ['sha256:new', 'sha256:old', 'sha256:older1', 'sha256:older2']
        assert record.pruned == ['sha256:older1', 'sha256:older2']
        assert ctx.prune_remaining == 28

    @pytest.mark.asyncio
    async def test_prune_never_removes_image_in_use(self, updater, mock_docker_client):
        configure_new_image(mock_docker_client, relisted=[
            make_container_summary(container_id=NEW_CONTAINER_ID, image_id='sha256:new'),
            make_container_summary(container_id='other', name='web2', image_id='sha256:older1'),
        ])
        ledger = ImageHistoryLedger({'nginx:latest': ('sha256:older1', 'sha256:older2')})

        record = await updater.process(make_container_summary(), make_context(ledger=ledger, keep_images=1))

        assert 'sha256:older1' not in record.pruned
        assert record.pruned == ['sha256:old', 'sha256:older2']

    @pytest.mark.asyncio
    async def test_prune_failure_recorded_but_update_stands(self, updater, mock_docker_client):
        configure_new_image(mock_docker_client)
        mock_docker_client.api.remove_image.side_effect = APIError("image has dependent child images")
        ledger = ImageHistoryLedger({'nginx:latest': ('sha256:older1',)})

        record = await updater.process(make_container_summary(), make_context(ledger=ledger, keep_images=2))

        assert record.state is UpdateState.COMMITTED
        assert record.pruned == []
        assert [e.scope for e in record.errors] == [ErrorScope.PRUNE_IMAGE]
        assert record.errors[0].image_id == 'sha256:older1'

    @pytest.mark.asyncio
    async def test_identity_registry_failure_recorded(self, updater, mock_docker_client, identity_registry):
        configure_new_image(mock_docker_client)
        identity_registry.update.side_effect = RuntimeError("registry offline")

        record = await updater.process(make_container_summary(), make_context())

        assert record.state is UpdateState.COMMITTED
        assert [e.scope for e in record.errors] == [ErrorScope.IDENTITY_REGISTRY]


class TestRollback:

    @pytest.mark.asyncio
    async def test_health_gate_failure_restores_old_container(
        self, updater, mock_docker_client, audit_sink, identity_registry
    ):
        configure_new_image(mock_docker_client, new_health='unhealthy')

        record = await updater.process(make_container_summary(), make_context())

        assert record.state is UpdateState.ROLLED_BACK
        assert record.updated is False
        assert record.reason == 'unhealthy'
        assert [c.action for c in record.compensations] == ['stop_new', 'remove_new', 'rename_old', 'start_old']
        assert all(c.ok for c in record.compensations)

        api = mock_docker_client.api
        api.remove_container.assert_called_once_with(NEW_CONTAINER_ID, force=True)
        assert api.rename.call_args_list[-1].args == (OLD_CONTAINER_ID, 'web')
        assert api.start.call_args_list[-1].args == (OLD_CONTAINER_ID,)
        identity_registry.update.assert_not_called()
        api.remove_image.assert_not_called()

        rollback = audit_sink.events[-1]
        assert rollback['action'] == 'rollback'
        assert rollback['reason'] == 'unhealthy'
        assert rollback['restoredHealth'] == 'ready'
        assert [e.scope for e in record.errors] == [ErrorScope.CONTAINER]

    @pytest.mark.asyncio
    async def test_unnamed_summary_restores_inspected_name(self, updater, mock_docker_client):
        configure_new_image(mock_docker_client, new_health='unhealthy')
        summary = make_container_summary()
        summary['Names'] = []

        record = await updater.process(summary, make_context())

        assert record.state is UpdateState.ROLLED_BACK
        assert record.name == 'web'
        assert record.backup_name.startswith(f'web{BACKUP_SUFFIX}')
        assert mock_docker_client.api.rename.call_args_list[-1].args == (OLD_CONTAINER_ID, 'web')

    @pytest.mark.asyncio
    async def test_start_failure_in_recreate_mode(self, updater, mock_docker_client, audit_sink):
        configure_new_image(mock_docker_client)
        api = mock_docker_client.api
        api.rename.side_effect = APIError("rename not supported")
        api.create_container.side_effect = [APIError("port is already allocated"), {'Id': 'restored123'}]

        record = await updater.process(make_container_summary(), make_context())

        assert record.state is UpdateState.ROLLED_BACK
        assert record.backup_mode is BackupMode.RECREATE
        assert record.reason == 'start_failed'
        assert [c.action for c in record.compensations] == ['recreate_old', 'start_old']
        assert all(c.ok for c in record.compensations)
        api.remove_container.assert_called_once_with(OLD_CONTAINER_ID)
        api.start.assert_called_once_with('restored123')
        assert _actions(audit_sink)[-1] == ('rollback', 'start_failed')

    @pytest.mark.asyncio
    async def test_rollback_steps_run_even_when_one_fails(self, updater, mock_docker_client):
        configure_new_image(mock_docker_client, new_health='unhealthy')
        api = mock_docker_client.api
        api.stop.side_effect = [None, APIError("already stopped")]

        record = await updater.process(make_container_summary(), make_context())

        results = {c.action: c.ok for c in record.compensations}
        assert results == {'stop_new': False, 'remove_new': True, 'rename_old': True, 'start_old': True}
        assert record.state is UpdateState.ROLLED_BACK

    @pytest.mark.asyncio
    async def test_backup_impossible_restarts_old_and_errors(self, updater, mock_docker_client):
        configure_new_image(mock_docker_client)
        api = mock_docker_client.api
        api.rename.side_effect = APIError("rename not supported")
        api.remove_container.side_effect = APIError("removal in progress")

        record = await updater.process(make_container_summary(), make_context())

        assert record.state is UpdateState.ERRORED
        api.start.assert_called_once_with(OLD_CONTAINER_ID)
        api.create_container.assert_not_called()


class TestErrors:

    @pytest.mark.asyncio
    async def test_pull_failure_is_contained(self, updater, mock_docker_client, audit_sink):
        mock_docker_client.api.pull.side_effect = APIError("toomanyrequests: rate limit")

        record = await updater.process(make_container_summary(), make_context())

        assert record.state is UpdateState.ERRORED
        assert [e.scope for e in record.errors] == [ErrorScope.PULL]
        assert record.errors[0].name == 'web'
        assert _actions(audit_sink) == [('error', 'pulling')]
        mock_docker_client.api.stop.assert_not_called()

    @pytest.mark.asyncio
    async def test_inspect_failure_is_contained(self, updater, mock_docker_client):
        mock_docker_client.api.inspect_container.side_effect = APIError("no such container")

        record = await updater.process(make_container_summary(), make_context())

        assert record.state is UpdateState.ERRORED
        assert record.errors[0].scope is ErrorScope.CONTAINER
        assert record.action == AuditAction.ERROR.value
