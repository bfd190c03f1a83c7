"""
Run one auto-update tick.

Meant to be invoked by an external timer (cron, systemd timer, a scheduler in
the surrounding application); it never loops on its own.

Usage:
    python -m autoupdate
    python -m autoupdate --system-config ./data/system.json --admin-data ./data/admin.json

Exit status is 0 when the tick reported no errors, 1 otherwise, 2 when the
DOCKWARDEN_* environment configuration is invalid.
"""

import argparse
import asyncio
import json
import logging
import math
import sys

import docker

from audit import JsonlAuditSink
from autoupdate.config_store import SystemConfigStore, load_json_file
from autoupdate.disk_guard import PsutilMountProvider
from autoupdate.identity import LoggingIdentityRegistry
from autoupdate.tick import AutoUpdateTicker
from config import paths
from config.settings import UpdaterConfig, setup_logging

logger = logging.getLogger(__name__)

# Floor for the Docker client read timeout (docker SDK default)
MIN_CLIENT_TIMEOUT = 60


def client_timeout(config: UpdaterConfig) -> int:
    """Socket read timeout that outlasts the pull idle timer.

    A stalled pull stream blocks its worker thread in a socket read; this
    timeout is what eventually releases it after the idle timer has fired.
    """
    return max(MIN_CLIENT_TIMEOUT, math.ceil(config.pull_idle_timeout) + 5)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Run one dockwarden auto-update tick")
    parser.add_argument('--system-config', default=paths.SYSTEM_CONFIG_FILE,
                        help="System config JSON holding image history (written back)")
    parser.add_argument('--admin-data', default=paths.ADMIN_DATA_FILE,
                        help="Admin config JSON holding the docker widget settings")
    parser.add_argument('--audit-log', default=paths.AUDIT_LOG_FILE,
                        help="JSON-lines audit trail")
    parser.add_argument('--log-dir', default=paths.LOG_DIR)
    return parser.parse_args(argv)


async def run_once(args, config: UpdaterConfig) -> dict:
    store = SystemConfigStore.load(args.system_config)
    admin_data = load_json_file(args.admin_data)

    client = docker.from_env(timeout=client_timeout(config))
    try:
        ticker = AutoUpdateTicker(
            client=client,
            mounts=PsutilMountProvider(),
            store=store,
            audit_sink=JsonlAuditSink(args.audit_log),
            identity_registry=LoggingIdentityRegistry(),
            config=config,
        )
        result = await ticker.run_tick(admin_data)
    finally:
        client.close()

    return result.to_dict()


def main(argv=None) -> int:
    args = parse_args(argv)
    config = UpdaterConfig.from_env()
    try:
        config.validate()
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    setup_logging(config.log_level, args.log_dir)

    try:
        summary = asyncio.run(run_once(args, config))
    except (docker.errors.DockerException, ValueError) as e:
        logger.error(f"Auto-update tick could not run: {e}")
        return 1

    print(json.dumps(summary, indent=2))
    return 0 if not summary['errors'] else 1


if __name__ == '__main__':
    sys.exit(main())
