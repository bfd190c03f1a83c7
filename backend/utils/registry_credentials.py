"""
Registry Credentials Utility

Credential lookup for Docker registries, used for both the remote digest query
and the image pull.

Credentials live in the system configuration next to the image history:

    {"dockerAutoUpdate": {"registries": {"ghcr.io": {"username": "...", "password": "..."}}}}
"""

import logging
from typing import Optional, Dict

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY = "docker.io"


def registry_for_image(image_name: str) -> str:
    """
    Extract the registry host from an image reference.

    Examples:
        nginx:1.25 → docker.io
        ghcr.io/user/app:latest → ghcr.io
        registry.example.com:5000/app:v1 → registry.example.com:5000
        localhost/app → localhost
    """
    registry_url = DEFAULT_REGISTRY

    if "/" in image_name:
        first = image_name.split("/", 1)[0]
        # A first segment with a dot, a port or "localhost" names a registry
        if "." in first or ":" in first or first == "localhost":
            registry_url = first

    return registry_url.lower()


def get_registry_credentials(system_config: dict, image_name: str) -> Optional[Dict[str, str]]:
    """
    Get credentials for the registry hosting image_name.

    Args:
        system_config: Loaded system configuration dict
        image_name: Full image reference

    Returns:
        Dict with {username, password} if credentials found, None otherwise
    """
    if not image_name or not isinstance(system_config, dict):
        return None

    registries = (system_config.get("dockerAutoUpdate") or {}).get("registries")
    if not isinstance(registries, dict):
        return None

    registry_url = registry_for_image(image_name)
    cred = registries.get(registry_url)
    if not isinstance(cred, dict):
        return None

    username = cred.get("username")
    password = cred.get("password")
    if not username or not password:
        logger.warning(f"Incomplete credentials for registry '{registry_url}', using anonymous access")
        return None

    logger.debug(f"Using credentials for registry '{registry_url}'")
    return {"username": str(username), "password": str(password)}
