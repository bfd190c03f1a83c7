"""
Settings resolver.

Derives AutoUpdateSettings from the loosely-structured admin configuration:

    {"widgets": [{"id": "docker", "type": "docker", "data": {
        "autoUpdate": true,
        "autoUpdateKeepImages": 2,
        "autoUpdateMinFreeGB": 5,
        "autoUpdateMaxPrunePerRun": 30,
        "disabledContainers": ["db", "vpn"]
    }}]}

Missing or unparseable values silently take their default. Never raises.
"""

import logging
import math
from typing import Any, List, Optional

from models.settings_models import (
    AutoUpdateSettings,
    DEFAULT_KEEP_IMAGES,
    DEFAULT_MAX_PRUNE_PER_RUN,
    DEFAULT_MIN_FREE_BYTES,
    GIB,
)

logger = logging.getLogger(__name__)

# Upper bound for the free-space threshold (uint64 range)
MAX_MIN_FREE_BYTES = 2**64 - 1


def _as_number(value: Any) -> Optional[float]:
    """Parse value as a finite number, or None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _clamped_int(value: Any, default: int, lower: int, upper: int) -> int:
    number = _as_number(value)
    if number is None:
        return default
    return max(lower, min(upper, math.floor(number)))


def _as_name_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [part for part in value.split(",")]
    if isinstance(value, (list, tuple)):
        return [item for item in value if isinstance(item, str)]
    return []


def find_docker_widget_data(admin_data: Any) -> dict:
    """Return the data block of the docker widget, or an empty dict."""
    if not isinstance(admin_data, dict):
        return {}
    widgets = admin_data.get("widgets")
    if not isinstance(widgets, list):
        return {}
    for widget in widgets:
        if not isinstance(widget, dict):
            continue
        if widget.get("type") == "docker" or widget.get("id") == "docker":
            data = widget.get("data")
            return data if isinstance(data, dict) else {}
    return {}


def resolve_auto_update_settings(admin_data: Any) -> AutoUpdateSettings:
    """
    Build the settings for one tick.

    Numeric fields are coerced ("parse as number, else default"), floored,
    then clamped: keep_images to [1, 20], max_prune_per_run to [0, 200],
    min free GiB to >= 0 (bytes capped at the uint64 range).

    Args:
        admin_data: Admin configuration object (any shape)

    Returns:
        AutoUpdateSettings (always valid)
    """
    data = find_docker_widget_data(admin_data)

    min_free_gb = _as_number(data.get("autoUpdateMinFreeGB"))
    if min_free_gb is None:
        min_free_bytes = DEFAULT_MIN_FREE_BYTES
    else:
        free_bytes = max(0.0, min_free_gb) * GIB
        min_free_bytes = MAX_MIN_FREE_BYTES if free_bytes >= MAX_MIN_FREE_BYTES else int(free_bytes)

    settings = AutoUpdateSettings(
        enabled=bool(data.get("autoUpdate")),
        keep_images=_clamped_int(data.get("autoUpdateKeepImages"), DEFAULT_KEEP_IMAGES, 1, 20),
        min_free_bytes=min_free_bytes,
        max_prune_per_run=_clamped_int(data.get("autoUpdateMaxPrunePerRun"), DEFAULT_MAX_PRUNE_PER_RUN, 0, 200),
        disabled_containers=_as_name_list(data.get("disabledContainers")),
    )

    logger.debug(
        f"Resolved auto-update settings: enabled={settings.enabled} keep={settings.keep_images} "
        f"min_free={settings.min_free_bytes} max_prune={settings.max_prune_per_run}"
    )
    return settings
