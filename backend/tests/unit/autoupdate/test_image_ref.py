"""Tests for image reference parsing."""

import pytest

from autoupdate.image_ref import parse_image_reference

pytestmark = pytest.mark.unit



class TestParseImageReference:

    @pytest.mark.parametrize("raw,name,tag,digest", [
        ("nginx", "nginx", "", ""),
        ("nginx:1.25", "nginx", "1.25", ""),
        ("library/nginx:latest", "library/nginx", "latest", ""),
        ("registry:5000/app", "registry:5000/app", "", ""),
        ("registry:5000/team/app:2.0", "registry:5000/team/app", "2.0", ""),
        ("nginx@sha256:abc", "nginx", "", "sha256:abc"),
        ("nginx:1.25@sha256:abc", "nginx", "1.25", "sha256:abc"),
        ("ghcr.io/org/tool:v1", "ghcr.io/org/tool", "v1", ""),
    ])
    def test_splits_components(self, raw, name, tag, digest):
        ref = parse_image_reference(raw)
        assert (ref.name, ref.tag, ref.digest) == (name, tag, digest)

    def test_registry_port_is_not_a_tag(self):
        ref = parse_image_reference("localhost:5000/app")
        assert ref.tag == ""
        assert ref.effective_tag == "latest"

    def test_digest_pinned(self):
        assert parse_image_reference("nginx@sha256:abc").is_digest_pinned
        assert not parse_image_reference("nginx:latest").is_digest_pinned

    def test_image_id_reference(self):
        ref = parse_image_reference("sha256:0123456789ab")
        assert ref.is_image_id
        assert not parse_image_reference("nginx").is_image_id

    def test_whitespace_and_empty(self):
        assert parse_image_reference("  nginx:1 ").name == "nginx"
        empty = parse_image_reference(None)
        assert empty.name == "" and empty.effective_tag == "latest"
