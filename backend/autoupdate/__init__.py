"""
Auto-update module

Unattended container updates: decide, pull, replace, health-gate, roll back,
prune.

Architecture:
- AutoUpdateTicker: one pass over all containers (settings, disk gate, persistence)
- ContainerUpdater: per-container state machine with rollback
- ImageHistoryLedger: per-image history and retention
"""

from autoupdate.history import ImageHistoryLedger, compute_prune_candidates
from autoupdate.image_ref import ImageReference, parse_image_reference
from autoupdate.settings import resolve_auto_update_settings
from autoupdate.state_machine import ContainerUpdater, TickContext
from autoupdate.tick import AutoUpdateTicker
from autoupdate.types import BackupMode, ContainerUpdateRecord, TickResult, UpdateState

__all__ = [
    'AutoUpdateTicker',
    'ContainerUpdater',
    'TickContext',
    'ImageHistoryLedger',
    'compute_prune_candidates',
    'ImageReference',
    'parse_image_reference',
    'resolve_auto_update_settings',
    'BackupMode',
    'ContainerUpdateRecord',
    'TickResult',
    'UpdateState',
]
