"""
System configuration store.

Holds the loaded system configuration dict (image history, registry
credentials and whatever else the surrounding application keeps there) and
writes it back in one atomic step at the end of a tick.
"""

import json
import logging
import os
from typing import Any, Callable, Optional

from autoupdate.history import ImageHistoryLedger
from utils.file_io import atomic_write_text

logger = logging.getLogger(__name__)

AtomicWrite = Callable[[str, str], None]


def load_json_file(path: Optional[str]) -> Any:
    """
    Read a JSON file, returning {} when it is missing.

    Raises:
        ValueError: File exists but is not valid JSON
    """
    if not path or not os.path.exists(path):
        return {}
    with open(path, 'r', encoding='utf-8') as f:
        try:
            return json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {path}: {e}") from e


def ensure_auto_update_state(system_config: dict) -> dict:
    """Make sure dockerAutoUpdate.history.images exists; returns the images dict."""
    state = system_config.get('dockerAutoUpdate')
    if not isinstance(state, dict):
        state = system_config['dockerAutoUpdate'] = {}
    history = state.get('history')
    if not isinstance(history, dict):
        history = state['history'] = {'images': {}}
    if not isinstance(history.get('images'), dict):
        history['images'] = {}
    return history['images']


class SystemConfigStore:
    """In-memory system configuration plus its file and atomic-write primitive."""

    def __init__(
        self,
        system_config: Optional[dict] = None,
        path: Optional[str] = None,
        atomic_write: AtomicWrite = atomic_write_text
    ):
        self.system_config = system_config if isinstance(system_config, dict) else {}
        self.path = path
        self.atomic_write = atomic_write

    @classmethod
    def load(cls, path: str, atomic_write: AtomicWrite = atomic_write_text) -> 'SystemConfigStore':
        data = load_json_file(path)
        if not isinstance(data, dict):
            logger.warning(f"System config at {path} is not an object, starting empty")
            data = {}
        return cls(data, path=path, atomic_write=atomic_write)

    def ledger(self, max_len: int) -> ImageHistoryLedger:
        return ImageHistoryLedger.from_system_config(self.system_config, max_len=max_len)

    def persist(self, ledger: ImageHistoryLedger) -> bool:
        """
        Write the ledger into the config and flush it atomically.

        Returns:
            False when there is nowhere to write (no path configured)

        Raises:
            Whatever the atomic write raises; the caller records it
        """
        images = ensure_auto_update_state(self.system_config)
        images.clear()
        images.update(ledger.snapshot())

        if not self.path or not self.atomic_write:
            logger.debug("No system config path configured, history kept in memory only")
            return False

        self.atomic_write(self.path, json.dumps(self.system_config, indent=2))
        ledger.mark_clean()
        logger.info(f"Persisted image history for {len(images)} image(s) to {self.path}")
        return True
