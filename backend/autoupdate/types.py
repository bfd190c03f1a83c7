"""
Shared types for the auto-update orchestrator.

Ephemeral per-tick records. Nothing here is persisted; the only state that
survives a tick is the image history ledger.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class UpdateState(Enum):
    """States of the per-container update state machine."""
    PENDING = "pending"
    PRECONDITION = "precondition"
    COMPARING = "comparing"
    PULLING = "pulling"
    INSPECTING = "inspecting"
    BACKING_UP = "backing_up"
    STARTING = "starting"
    HEALTH_CHECKING = "health_checking"
    COMMITTING = "committing"
    # Terminal states
    FILTERED = "filtered"
    PRECONDITION_FAILED = "precondition_failed"
    UNCHANGED = "unchanged"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    UpdateState.FILTERED,
    UpdateState.PRECONDITION_FAILED,
    UpdateState.UNCHANGED,
    UpdateState.COMMITTED,
    UpdateState.ROLLED_BACK,
    UpdateState.ERRORED,
})


class BackupMode(str, Enum):
    """How the pre-update container is preserved for rollback."""
    RENAME = "rename"
    RECREATE = "recreate"


class ErrorScope(str, Enum):
    LIST_CONTAINERS = "listContainers"
    CONTAINER = "container"
    PULL = "pull"
    PRUNE_IMAGE = "pruneImage"
    IDENTITY_REGISTRY = "identityRegistry"
    PERSIST_SYSTEM_CONFIG = "persistSystemConfig"


@dataclass(frozen=True)
class TickError:
    scope: ErrorScope
    error: str
    name: Optional[str] = None
    image_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"scope": self.scope.value, "error": self.error}
        if self.name is not None:
            result["name"] = self.name
        if self.image_id is not None:
            result["imageId"] = self.image_id
        return result


@dataclass(frozen=True)
class Compensation:
    """Outcome of one rollback step."""
    action: str
    ok: bool
    error: str = ""

    def to_dict(self) -> Dict[str, Any]:
        result = {"action": self.action, "ok": self.ok}
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class ContainerUpdateRecord:
    """Everything learned about one container during one tick."""
    container_id: str
    name: str
    state: UpdateState = UpdateState.PENDING

    image: str = ""
    current_image_id: str = ""
    new_image_id: str = ""
    local_digest: str = ""
    remote_digest: str = ""
    new_digest: str = ""
    pulled: bool = False
    # Set once the new container passed its health gate
    updated: bool = False

    backup_mode: Optional[BackupMode] = None
    backup_name: str = ""
    new_container_id: str = ""

    # Audit outcome ("skip", "checked", "skipped", "updated", "rollback", "error")
    action: str = ""
    reason: str = ""

    pruned: List[str] = field(default_factory=list)
    prune_failed: List[Dict[str, str]] = field(default_factory=list)
    compensations: List[Compensation] = field(default_factory=list)
    errors: List[TickError] = field(default_factory=list)


@dataclass
class TickResult:
    """Aggregate outcome of one tick (returned and audited)."""
    enabled: bool = False
    ran: bool = False
    pulls: int = 0
    updates: int = 0
    pruned: int = 0
    skipped_due_to_disk: bool = False
    errors: List[TickError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "ran": self.ran,
            "pulls": self.pulls,
            "updates": self.updates,
            "pruned": self.pruned,
            "skippedDueToDisk": self.skipped_due_to_disk,
            "errors": [e.to_dict() for e in self.errors],
        }
