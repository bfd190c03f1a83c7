"""
Audit logging helpers for dockwarden.

Records orchestrator actions as append-only JSON objects. Events are built
once and never mutated afterwards; sinks only append.
"""

import json
import logging
import os
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Protocol, Union

logger = logging.getLogger(__name__)

AUDIT_EVENT_TYPE = 'docker_auto_update'


class AuditAction(str, Enum):
    """Audit action types"""
    TICK = 'tick'
    SKIP = 'skip'
    CHECKED = 'checked'
    SKIPPED = 'skipped'
    UPDATED = 'updated'
    ROLLBACK = 'rollback'
    ERROR = 'error'


class AuditScope(str, Enum):
    """What an audit event is about"""
    TICK = 'tick'
    CONTAINER = 'container'


class AuditSink(Protocol):
    def append(self, event: Dict[str, Any]) -> None:
        ...


def build_audit_event(
    action: Union[AuditAction, str],
    scope: Union[AuditScope, str],
    reason: Optional[str] = None,
    container_id: Optional[str] = None,
    container_name: Optional[str] = None,
    image: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Build an audit event record.

    Args:
        action: What happened
        scope: Tick-level or container-level
        reason: Machine-readable reason (e.g. "digest_pinned", "start_failed")
        container_id: Container ID (optional)
        container_name: Human-readable container name (optional)
        image: Image reference (optional)
        details: Additional context (optional)

    Returns:
        New event dict
    """
    event = {
        'ts': datetime.now(timezone.utc).isoformat(),
        'type': AUDIT_EVENT_TYPE,
        'scope': scope.value if isinstance(scope, AuditScope) else scope,
        'action': action.value if isinstance(action, AuditAction) else action,
    }
    if reason:
        event['reason'] = reason
    if container_id:
        event['containerId'] = container_id
    if container_name:
        event['name'] = container_name
    if image:
        event['image'] = image
    if details:
        event.update(details)
    return event


def log_audit(sink: Optional[AuditSink], event: Dict[str, Any]) -> bool:
    """
    Append an event to the sink, best-effort.

    Sink failures are logged and swallowed: auditing never changes the
    outcome of the operation being audited.

    Returns:
        True if the sink accepted the event
    """
    name = event.get('name')
    logger.debug(
        f"Audit: {event.get('action')} on {event.get('scope')}"
        f"{f' ({name})' if name else ''}"
    )
    if sink is None:
        return False
    try:
        sink.append(event)
        return True
    except Exception as e:
        logger.error(f"Error writing audit event {event.get('action')}: {e}")
        return False


class JsonlAuditSink:
    """Appends one JSON object per line to a file."""

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()

    def append(self, event: Dict[str, Any]) -> None:
        line = json.dumps(event, separators=(',', ':'), default=str)
        directory = os.path.dirname(os.path.abspath(self.path))
        with self._lock:
            os.makedirs(directory, exist_ok=True)
            with open(self.path, 'a', encoding='utf-8') as f:
                f.write(line + '\n')


class MemoryAuditSink:
    """Keeps events in a list (tests and dry runs)."""

    def __init__(self):
        self.events = []

    def append(self, event: Dict[str, Any]) -> None:
        self.events.append(dict(event))
