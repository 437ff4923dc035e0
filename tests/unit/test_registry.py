# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Unit tests for image reference parsing.
"""
import pytest

from dak.REGISTRY.image_reference import ImageReference


class TestImageReference:
    """Tests for ImageReference parsing."""

    def test_parse_simple_name(self):
        """Test parsing a simple image name."""
        ref = ImageReference.parse("nginx")
        assert ref.registry == "docker.io"
        assert ref.repository == "library/nginx"
        assert ref.tag == "latest"
        assert ref.name == "nginx"
        assert not ref.explicit_registry

    def test_parse_user_image(self):
        """Test parsing user/image format."""
        ref = ImageReference.parse("myuser/myimage:v1")
        assert ref.registry == "docker.io"
        assert ref.repository == "myuser/myimage"
        assert ref.tag == "v1"

    def test_parse_registry_with_port(self):
        """A port in the registry part is not mistaken for a tag."""
        ref = ImageReference.parse("localhost:5000/myimage")
        assert ref.registry == "localhost:5000"
        assert ref.repository == "myimage"
        assert ref.tag == "latest"
        assert ref.explicit_registry

    def test_parse_with_digest(self):
        """Test parsing image with digest."""
        ref = ImageReference.parse("gcr.io/project/image@sha256:abc123")
        assert ref.registry == "gcr.io"
        assert ref.digest == "sha256:abc123"
        assert ref.tag is None

    @pytest.mark.parametrize("reference", ["", "   ", "bad name:1", "nginx:"])
    def test_invalid_references(self, reference):
        """Empty, blank and malformed references are rejected."""
        with pytest.raises(ValueError):
            ImageReference.parse(reference)

    def test_short_name(self):
        assert ImageReference.parse("nginx:1.21").short_name == "nginx:1.21"
        assert str(ImageReference.parse("myuser/myimage:v1")) == "myuser/myimage:v1"

    def test_full_name(self):
        assert ImageReference.parse("nginx:1.21").full_name == "docker.io/library/nginx:1.21"


class TestRegistryNames:
    """Tests for names used when pushing to or pulling from a registry."""

    def test_registry_prefix_added(self):
        ref = ImageReference.parse("team/app:1.0")
        assert ref.name_with_registry("registry.example.com") == "registry.example.com/team/app:1.0"
        assert ref.repository_name("registry.example.com") == "registry.example.com/team/app"

    def test_explicit_registry_kept(self):
        """A registry in the name wins over the configured one."""
        ref = ImageReference.parse("quay.io/team/app:1.0")
        assert ref.name_with_registry("registry.example.com") == "quay.io/team/app:1.0"
        assert ref.registry_for("registry.example.com") == "quay.io"

    def test_no_registry(self):
        ref = ImageReference.parse("team/app")
        assert ref.name_with_registry(None) == "team/app:latest"
        assert ref.registry_for(None) is None
