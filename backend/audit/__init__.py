"""
Audit logging module for dockwarden.

Provides helpers for recording auto-update actions to an append-only sink.
"""

from .audit_logger import (
    AUDIT_EVENT_TYPE,
    AuditAction,
    AuditScope,
    AuditSink,
    JsonlAuditSink,
    MemoryAuditSink,
    build_audit_event,
    log_audit,
)

__all__ = [
    'AUDIT_EVENT_TYPE',
    'AuditAction',
    'AuditScope',
    'AuditSink',
    'JsonlAuditSink',
    'MemoryAuditSink',
    'build_audit_event',
    'log_audit',
]
