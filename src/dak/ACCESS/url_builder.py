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
Paths and query parameters of the daemon's REST endpoints.
"""
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote

from ..MODELS.build_config import BuildOptions
from ..REGISTRY.image_reference import ImageReference

Endpoint = Tuple[str, Dict[str, Any]]


def _segment(value: str) -> str:
    return quote(value, safe="")


class UrlBuilder:
    """
    Builds versioned endpoint paths, e.g. ``/v1.41/images/json``.

    Each method returns ``(path, params)``; the HTTP client encodes params.
    """

    def __init__(self, api_version: str):
        self.api_version = api_version.lstrip("v")

    def _path(self, *parts: str) -> str:
        return f"/v{self.api_version}/" + "/".join(parts)

    @staticmethod
    def version() -> Endpoint:
        return "/version", {}

    @staticmethod
    def ping() -> Endpoint:
        return "/_ping", {}

    def build_image(self, options: BuildOptions) -> Endpoint:
        params: Dict[str, Any] = {
            "t": options.tag,
            "dockerfile": options.dockerfile,
            "nocache": options.no_cache or None,
            "forcerm": options.force_remove or None,
        }
        if options.cache_from:
            params["cachefrom"] = list(options.cache_from)
        if options.build_args:
            params["buildargs"] = dict(options.build_args)
        return self._path("build"), params

    def inspect_image(self, name: str) -> Endpoint:
        return self._path("images", _segment(name), "json"), {}

    def list_images(self, all_images: bool = False) -> Endpoint:
        return self._path("images", "json"), {"all": all_images}

    def pull_image(self, image: str) -> Endpoint:
        ref = ImageReference.parse(image)
        return self._path("images", "create"), {
            "fromImage": ref.name,
            "tag": ref.digest or ref.tag,
        }

    def push_image(self, image: str, registry: Optional[str] = None) -> Endpoint:
        ref = ImageReference.parse(image)
        name = ref.repository_name(registry)
        return self._path("images", _segment(name), "push"), {"tag": ref.tag}

    def tag_image(self, source: str, target: str, force: bool = False) -> Endpoint:
        ref = ImageReference.parse(target)
        return self._path("images", _segment(source), "tag"), {
            "repo": ref.name,
            "tag": ref.tag,
            "force": force,
        }

    def delete_image(self, name: str, force: bool = False) -> Endpoint:
        return self._path("images", _segment(name)), {"force": force}

    def load_image(self) -> Endpoint:
        return self._path("images", "load"), {}

    def get_image(self, name: str) -> Endpoint:
        return self._path("images", _segment(name), "get"), {}

    def create_container(self, name: Optional[str] = None) -> Endpoint:
        return self._path("containers", "create"), {"name": name}

    def start_container(self, container_id: str) -> Endpoint:
        return self._path("containers", _segment(container_id), "start"), {}

    def stop_container(self, container_id: str, kill_wait: int = 0) -> Endpoint:
        return self._path("containers", _segment(container_id), "stop"), {"t": kill_wait or None}

    def remove_container(self, container_id: str, remove_volumes: bool = False) -> Endpoint:
        return self._path("containers", _segment(container_id)), {"v": remove_volumes}

    def inspect_container(self, container_id: str) -> Endpoint:
        return self._path("containers", _segment(container_id), "json"), {}

    def list_containers(self, all_containers: bool = False,
                        filters: Optional[Dict[str, Any]] = None) -> Endpoint:
        return self._path("containers", "json"), {"all": all_containers, "filters": filters or None}

    def container_logs(self, container_id: str, follow: bool = False) -> Endpoint:
        return self._path("containers", _segment(container_id), "logs"), {
            "stdout": True,
            "stderr": True,
            "timestamps": True,
            "follow": follow,
        }

    def create_network(self) -> Endpoint:
        return self._path("networks", "create"), {}

    def remove_network(self, network_id: str) -> Endpoint:
        return self._path("networks", _segment(network_id)), {}

    def list_networks(self) -> Endpoint:
        return self._path("networks"), {}

