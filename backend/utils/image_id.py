"""
Image ID formatting helpers.

Image IDs are stored in history and audit records in full "sha256:<hex>" form.
Logs use the 12-char short form so lines stay readable.
"""


def short_image_id(image_id: str) -> str:
    """
    Shorten an image ID for display.

    Examples:
        >>> short_image_id("sha256:abc123def456789")
        'abc123def456'
        >>> short_image_id("")
        ''
    """
    if not image_id:
        return ""
    return image_id.replace('sha256:', '')[:12]


def short_container_id(container_id: str) -> str:
    """Shorten a 64-char container ID to Docker's 12-char display form."""
    return (container_id or "")[:12]
