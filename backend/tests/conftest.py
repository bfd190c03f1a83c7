"""
Shared pytest fixtures for dockwarden tests.

Fixtures provided:
- mock_docker_client: Mock Docker SDK client (low-level client.api stubbed)
- mock_mounts: Mock filesystem metrics provider with plenty of free space
- audit_sink: In-memory audit sink
- fast_config: UpdaterConfig with short timeouts for tests
- admin_data: Factory for admin configuration with the docker widget

Note: nothing here talks to a real Docker daemon. The client is a MagicMock
whose api methods return the dict payloads the Engine API would.
"""

import os
import sys
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))
sys.path.insert(0, os.path.dirname(__file__))

from audit import MemoryAuditSink
from autoupdate.disk_guard import MountUsage
from config.settings import UpdaterConfig
from docker_payloads import NEW_CONTAINER_ID, make_container_attrs

GIB = 1024 * 1024 * 1024


@pytest.fixture
def mock_docker_client():
    """
    Mock Docker SDK client for testing without real Docker daemon.

    Defaults describe one running nginx:latest container whose image did not
    change; tests override individual api methods.
    """
    client = MagicMock()
    api = client.api
    api.api_version = '1.44'

    api.info.return_value = {'DockerRootDir': '/var/lib/docker'}
    api.containers.return_value = []
    api.inspect_container.return_value = make_container_attrs()
    api.inspect_image.return_value = {'Id': 'sha256:old', 'RepoDigests': ['nginx@sha256:aaa']}
    api.inspect_distribution.return_value = {'Descriptor': {'digest': 'sha256:bbb'}}
    api.pull.side_effect = lambda *args, **kwargs: iter([
        {'status': 'Pulling from library/nginx', 'id': 'latest'},
        {'status': 'Pull complete', 'id': 'layer1', 'progressDetail': {}},
        {'status': 'Status: Downloaded newer image for nginx:latest'},
    ])
    api.create_container.return_value = {'Id': NEW_CONTAINER_ID}
    api.stop.return_value = None
    api.start.return_value = None
    api.rename.return_value = None
    api.remove_container.return_value = None
    api.remove_image.return_value = None

    return client


@pytest.fixture
def mock_mounts():
    """Filesystem metrics provider reporting 100 GiB free on /."""
    mounts = MagicMock()
    mounts.list_mounts.return_value = [MountUsage(mount='/', available=100 * GIB)]
    return mounts


@pytest.fixture
def audit_sink():
    return MemoryAuditSink()


@pytest.fixture
def fast_config():
    """Short timeouts so failure paths finish quickly."""
    return UpdaterConfig(
        pull_idle_timeout=1,
        pull_total_timeout=5,
        health_check_timeout=1,
        health_check_interval=0.2,
        stop_timeout=1,
        protected_patterns=('dockwarden',),
    )


@pytest.fixture
def admin_data():
    """Factory: admin configuration with the docker widget data."""
    def _make(**data):
        data.setdefault('autoUpdate', True)
        return {'widgets': [{'id': 'docker', 'type': 'docker', 'data': data}]}
    return _make
