"""
Settings Models for dockwarden
Pydantic models for the auto-update settings derived from admin configuration
"""

from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator

GIB = 1024 * 1024 * 1024

DEFAULT_KEEP_IMAGES = 2
DEFAULT_MIN_FREE_BYTES = 5 * GIB
DEFAULT_MAX_PRUNE_PER_RUN = 30


class AutoUpdateSettings(BaseModel):
    """Auto-update settings for one tick (never persisted)"""
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    keep_images: int = Field(DEFAULT_KEEP_IMAGES, ge=1, le=20)  # Retention window per image name
    min_free_bytes: int = Field(DEFAULT_MIN_FREE_BYTES, ge=0)  # Disk gate threshold
    max_prune_per_run: int = Field(DEFAULT_MAX_PRUNE_PER_RUN, ge=0, le=200)  # 0 disables pruning
    disabled_containers: List[str] = Field(default_factory=list)

    @field_validator('disabled_containers')
    @classmethod
    def normalize_disabled_containers(cls, v: List[str]) -> List[str]:
        """Strip leading slashes and whitespace so names match Docker's /name form either way"""
        normalized = []
        for item in v:
            name = item.strip().lstrip('/')
            if name and name not in normalized:
                normalized.append(name)
        return normalized
