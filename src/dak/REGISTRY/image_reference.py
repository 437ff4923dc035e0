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
Image reference parsing and handling.
Parses image names like 'nginx:latest', 'localhost:5000/app:1.0' or
'docker.io/library/nginx:1.21' into registry, repository, tag and digest.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class ImageReference:
    """
    Parsed image reference.

    Examples:
        - nginx -> docker.io/library/nginx:latest
        - myuser/myimage:v1 -> docker.io/myuser/myimage:v1
        - localhost:5000/app -> localhost:5000/app:latest
        - gcr.io/project/image@sha256:abc123 -> gcr.io/project/image@sha256:abc123
    """

    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None
    name: str = ""
    explicit_registry: bool = False

    DEFAULT_REGISTRY = "docker.io"
    DEFAULT_TAG = "latest"

    @classmethod
    def parse(cls, reference: str) -> "ImageReference":
        """
        Parse an image reference string.

        Args:
            reference: Image reference string (e.g., 'nginx:latest', 'myuser/myimage:v1')

        Returns:
            Parsed ImageReference object.

        Raises:
            ValueError: for an empty or malformed reference.
        """
        if not reference or not reference.strip():
            raise ValueError("Empty image reference")
        if any(c.isspace() for c in reference):
            raise ValueError(f"Invalid image reference '{reference}': contains whitespace")

        digest = None
        if "@" in reference:
            reference, digest = reference.rsplit("@", 1)

        # A colon after the last slash separates the tag; before it, it is a registry port
        tag = None
        last_colon = reference.rfind(":")
        if last_colon > reference.rfind("/"):
            tag = reference[last_colon + 1:]
            reference = reference[:last_colon]
            if not tag:
                raise ValueError(f"Invalid image reference: empty tag in '{reference}:'")

        if not reference:
            raise ValueError("Image reference has no repository")

        parts = reference.split("/")
        first = parts[0]
        explicit_registry = len(parts) > 1 and ("." in first or ":" in first or first == "localhost")

        if explicit_registry:
            registry = first
            repository = "/".join(parts[1:])
        elif len(parts) == 1:
            registry = cls.DEFAULT_REGISTRY
            repository = f"library/{first}"
        else:
            registry = cls.DEFAULT_REGISTRY
            repository = reference

        if not tag and not digest:
            tag = cls.DEFAULT_TAG

        return cls(
            registry=registry,
            repository=repository,
            tag=tag,
            digest=digest,
            name=reference,
            explicit_registry=explicit_registry,
        )

    @property
    def full_name(self) -> str:
        """Get full image name with registry."""
        name = f"{self.registry}/{self.repository}"
        if self.digest:
            return f"{name}@{self.digest}"
        if self.tag:
            return f"{name}:{self.tag}"
        return name

    @property
    def short_name(self) -> str:
        """Get short image name (without registry if default)."""
        if self.registry == self.DEFAULT_REGISTRY:
            repo = self.repository
            if repo.startswith("library/"):
                repo = repo[8:]
            if self.digest:
                return f"{repo}@{self.digest}"
            if self.tag:
                return f"{repo}:{self.tag}"
            return repo
        return self.full_name

    def repository_name(self, registry: Optional[str] = None) -> str:
        """Name without tag or digest, prefixed by ``registry`` if it has none."""
        if registry and not self.explicit_registry:
            return f"{registry}/{self.name}"
        return self.name

    def name_with_registry(self, registry: Optional[str]) -> str:
        """
        Name with tag, prefixed by ``registry`` unless the reference
        already names a registry.
        """
        base = self.repository_name(registry)
        if self.digest:
            return f"{base}@{self.digest}"
        return f"{base}:{self.tag}"

    def registry_for(self, registry: Optional[str] = None) -> Optional[str]:
        """The registry a push or pull of this image talks to."""
        if self.explicit_registry:
            return self.registry
        return registry

    def __str__(self) -> str:
        return self.short_name

    def __repr__(self) -> str:
        return f"ImageReference({self.full_name})"
