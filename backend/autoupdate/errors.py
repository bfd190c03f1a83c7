"""
Typed errors for the auto-update core.

Only the pull and replacement paths raise these; gate skips are outcomes,
not errors.
"""


class AutoUpdateError(Exception):
    """Base class for auto-update failures."""


class PullError(AutoUpdateError):
    """Image pull failed (daemon error or error entry in the progress stream)."""

    def __init__(self, image: str, message: str):
        self.image = image
        super().__init__(f"Failed to pull {image}: {message}")


class PullTimeoutError(PullError):
    """Image pull exceeded its idle or total timeout."""

    def __init__(self, image: str, kind: str, seconds: float):
        self.kind = kind  # "idle" or "total"
        self.seconds = seconds
        label = "Idle" if kind == "idle" else "Total"
        super().__init__(image, f"{label} timeout pulling image after {seconds:g}s")
