"""
Image reference parsing.

Splits "name[:tag][@digest]" without any registry lookups. A colon only
introduces a tag when it comes after the last slash, so the port in
"registry:5000/app" is never mistaken for a tag.
"""

from dataclasses import dataclass

DEFAULT_TAG = "latest"


@dataclass(frozen=True)
class ImageReference:
    raw: str
    name: str
    tag: str
    digest: str

    @property
    def effective_tag(self) -> str:
        return self.tag or DEFAULT_TAG

    @property
    def is_digest_pinned(self) -> bool:
        """Pinned references name exact content and are never auto-updated."""
        return bool(self.digest)

    @property
    def is_image_id(self) -> bool:
        """Container was created from a bare image ID (no repository to pull)."""
        return self.raw.startswith("sha256:")


def parse_image_reference(raw: str) -> ImageReference:
    """
    Parse an image reference.

    Examples:
        >>> parse_image_reference("nginx:1.25@sha256:abc")
        ImageReference(raw='nginx:1.25@sha256:abc', name='nginx', tag='1.25', digest='sha256:abc')
        >>> parse_image_reference("registry:5000/app").effective_tag
        'latest'
    """
    raw = (raw or "").strip()

    base, digest = raw, ""
    at = raw.rfind("@")
    if at != -1:
        base, digest = raw[:at], raw[at + 1:]

    name, tag = base, ""
    colon = base.rfind(":")
    if colon != -1 and colon > base.rfind("/"):
        name, tag = base[:colon], base[colon + 1:]

    return ImageReference(raw=raw, name=name, tag=tag, digest=digest)
