"""
Audit event emitter for the auto-update orchestrator.

Centralizes event creation so the state machine and tick driver only say what
happened. Every emit is best-effort; a failing sink is logged, never raised.
"""

import logging
from typing import Any, Dict, Optional

from audit import AuditAction, AuditScope, AuditSink, build_audit_event, log_audit
from autoupdate.types import ContainerUpdateRecord, TickResult

logger = logging.getLogger(__name__)


class AutoUpdateEventEmitter:
    """Emits one audit record per container operation and one per tick."""

    def __init__(self, sink: Optional[AuditSink]):
        self.sink = sink

    def _emit_container(
        self,
        action: AuditAction,
        record: ContainerUpdateRecord,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        event = build_audit_event(
            action=action,
            scope=AuditScope.CONTAINER,
            reason=reason,
            container_id=record.container_id,
            container_name=record.name,
            image=record.image or None,
            details=details,
        )
        log_audit(self.sink, event)

    def emit_skip(self, record: ContainerUpdateRecord, reason: str):
        """Gate skip (digest pinned, unhealthy before update, ...)."""
        self._emit_container(AuditAction.SKIP, record, reason)

    def emit_no_change(self, record: ContainerUpdateRecord, action: AuditAction, reason: str):
        """Checked but nothing to replace ("checked" after a pull, "skipped" without one)."""
        self._emit_container(action, record, reason, {
            'pulled': record.pulled,
            'currentImageId': record.current_image_id,
            'newImageId': record.new_image_id or None,
            'localDigest': record.local_digest or None,
            'remoteDigest': record.remote_digest or None,
        })

    def emit_rollback(self, record: ContainerUpdateRecord, reason: str, restored_health: Optional[str] = None):
        details = {
            'backupMode': record.backup_mode.value if record.backup_mode else None,
            'currentImageId': record.current_image_id,
            'newImageId': record.new_image_id,
            'compensations': [c.to_dict() for c in record.compensations],
        }
        if restored_health is not None:
            details['restoredHealth'] = restored_health
        self._emit_container(AuditAction.ROLLBACK, record, reason, details)

    def emit_updated(self, record: ContainerUpdateRecord):
        self._emit_container(AuditAction.UPDATED, record, None, {
            'newContainerId': record.new_container_id,
            'backupMode': record.backup_mode.value if record.backup_mode else None,
            'before': {'imageId': record.current_image_id, 'digest': record.local_digest or None},
            'after': {'imageId': record.new_image_id, 'digest': record.new_digest or None},
            'remoteDigest': record.remote_digest or None,
            'pruned': list(record.pruned),
            'pruneFailed': list(record.prune_failed),
        })

    def emit_error(self, record: ContainerUpdateRecord, error: str, reason: Optional[str] = None):
        self._emit_container(AuditAction.ERROR, record, reason, {'error': error})

    def emit_tick_skip(self, reason: str, details: Optional[Dict[str, Any]] = None):
        log_audit(self.sink, build_audit_event(
            action=AuditAction.SKIP, scope=AuditScope.TICK, reason=reason, details=details
        ))

    def emit_tick_error(self, reason: str, error: str):
        log_audit(self.sink, build_audit_event(
            action=AuditAction.ERROR, scope=AuditScope.TICK, reason=reason, details={'error': error}
        ))

    def emit_tick(self, result: TickResult):
        """Tick summary; payload is the TickResult itself."""
        log_audit(self.sink, build_audit_event(
            action=AuditAction.TICK, scope=AuditScope.TICK, details=result.to_dict()
        ))
