"""
Image history and retention ledger.

Per image name, the ledger remembers the image IDs the orchestrator has seen,
most recent first, deduplicated and capped. The retention window (keep_images)
and the set of in-use IDs decide which older images may be pruned.

The ledger is the single owner of the history mapping. Updates go through the
pure apply_history_event(); the store persists snapshot() once per tick.
"""

import logging
from dataclasses import dataclass
from typing import AbstractSet, Dict, Iterable, List, Mapping, Tuple

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_MAX_LEN = 50

HistoryMap = Mapping[str, Tuple[str, ...]]


@dataclass(frozen=True)
class HistoryEvent:
    """An image ID observed for an image name."""
    image_name: str
    image_id: str


def apply_history_event(
    images: HistoryMap,
    event: HistoryEvent,
    max_len: int = DEFAULT_HISTORY_MAX_LEN
) -> Dict[str, Tuple[str, ...]]:
    """
    Return a new history mapping with event applied. The input is not modified.

    The ID moves to the front (any earlier occurrence is dropped) and the list
    is truncated to max_len (at least 1). Empty names or IDs change nothing.
    """
    updated = dict(images)
    if not event.image_name or not event.image_id:
        return updated

    current = images.get(event.image_name, ())
    ids = (event.image_id,) + tuple(x for x in current if x and x != event.image_id)
    updated[event.image_name] = ids[:max(1, max_len)]
    return updated


def compute_prune_candidates(
    history_ids: Iterable[str],
    keep_images: int,
    used_image_ids: AbstractSet[str]
) -> List[str]:
    """
    Image IDs outside the retention window that no container uses.

    Example:
        history [a, b, c, d], keep 2, used {c} -> [d]
    """
    if keep_images <= 0:
        return []

    hist = [x for x in history_ids if x]
    candidates = []
    seen = set()
    for image_id in hist[keep_images:]:
        if image_id in used_image_ids or image_id in seen:
            continue
        seen.add(image_id)
        candidates.append(image_id)
    return candidates


class ImageHistoryLedger:
    """Mutable owner of the image history with a dirty flag for persistence."""

    def __init__(self, images: HistoryMap = None, max_len: int = DEFAULT_HISTORY_MAX_LEN):
        self.max_len = max(1, max_len)
        self._images: Dict[str, Tuple[str, ...]] = {
            name: tuple(ids[:self.max_len]) for name, ids in (images or {}).items()
        }
        self.dirty = False

    @classmethod
    def from_system_config(cls, system_config: dict, max_len: int = DEFAULT_HISTORY_MAX_LEN) -> 'ImageHistoryLedger':
        """Load from {"dockerAutoUpdate": {"history": {"images": {...}}}}, ignoring malformed entries."""
        state = system_config.get("dockerAutoUpdate") if isinstance(system_config, dict) else None
        history = state.get("history") if isinstance(state, dict) else None
        raw_images = history.get("images") if isinstance(history, dict) else None

        images = {}
        if isinstance(raw_images, dict):
            for name, ids in raw_images.items():
                if not isinstance(name, str) or not isinstance(ids, list):
                    logger.warning(f"Ignoring malformed image history entry for {name!r}")
                    continue
                clean = []
                for image_id in ids:
                    if isinstance(image_id, str) and image_id and image_id not in clean:
                        clean.append(image_id)
                images[name] = tuple(clean)

        return cls(images, max_len=max_len)

    def update_image_history(self, image_name: str, image_id: str) -> bool:
        """
        Record image_id as the most recent ID for image_name.

        Returns:
            True if the history changed
        """
        if not image_name or not image_id:
            return False

        updated = apply_history_event(self._images, HistoryEvent(image_name, image_id), self.max_len)
        if updated.get(image_name) == self._images.get(image_name):
            return False

        self._images = updated
        self.dirty = True
        return True

    def ids_for(self, image_name: str) -> List[str]:
        return list(self._images.get(image_name, ()))

    def snapshot(self) -> Dict[str, List[str]]:
        """JSON-ready copy of the history."""
        return {name: list(ids) for name, ids in self._images.items()}

    def mark_clean(self):
        self.dirty = False
