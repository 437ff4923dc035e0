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
High level access to the Docker daemon: images, containers and networks.

All blocking calls raise DaemonApiError for unexpected statuses and
DaemonUnreachableError when the daemon cannot be reached. Streaming
operations (build, pull, push, logs) return a LogGetHandle right after the
daemon accepted the request; errors found later in the stream are captured
by the handle instead of being raised.
"""
import gzip
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from tenacity import Retrying, retry_if_exception, stop_after_attempt

from ..AUTH.registry_auth import RegistryAuthFactory
from ..MODELS.auth_config import AuthConfig, RegistryAuthKind
from ..MODELS.build_config import BuildOptions
from ..MODELS.container import Container
from ..MODELS.network_config import NetworkCreateConfig
from ..REGISTRY.image_reference import ImageReference
from ..TRANSPORT.http_client import DaemonHttpClient, TransportBuilder
from .chunked import (
    BuildJsonResponseReader,
    ContainerLogReader,
    EventCallback,
    PullOrPushResponseReader,
    stream_in_background,
)
from .exceptions import DaemonApiError, DockerAccessError
from .log_handle import LogGetHandle
from .url_builder import UrlBuilder

logger = logging.getLogger(__name__)

# Used when the daemon does not announce its API version
DEFAULT_API_VERSION = "1.18"

AUTH_HEADER = "X-Registry-Auth"


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, DaemonApiError) and error.status_code == 500


class DockerAccess:
    """
    Facade over the daemon's REST API.

    Example:
        access = DockerAccess.from_settings(load_settings())
        handle = access.pull_image("busybox:latest")
        handle.wait()
    """

    def __init__(self, client: DaemonHttpClient, auth_factory: Optional[RegistryAuthFactory] = None,
                 log: Optional[logging.Logger] = None, api_version: Optional[str] = None):
        """
        :param client: pooled daemon client.
        :param auth_factory: resolves registry credentials for resolve_auth().
        :param log: logger for diagnostics and stream progress.
        :param api_version: API version to use; asked from the daemon when None.
        """
        self.client = client
        self.auth_factory = auth_factory
        self.log = log or logger
        self._api_version = api_version
        self._urls: Optional[UrlBuilder] = None
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings, log: Optional[logging.Logger] = None) -> "DockerAccess":
        """Create a facade for the daemon and credentials named in AccessSettings."""
        builder = TransportBuilder.for_docker_host(
            settings.docker_host,
            max_connections=settings.max_connections,
            log=log,
            timeout=settings.socket_timeout,
            acquire_timeout=settings.acquire_timeout,
        )
        return cls(builder.build(), RegistryAuthFactory.from_settings(settings, log=log), log=log)

    # ------------------------------------------------------------------
    # Version

    @property
    def urls(self) -> UrlBuilder:
        if self._urls is not None:
            return self._urls
        # ask the daemon without holding the lock, a concurrent caller may ask too
        version = self._api_version or self.get_server_api_version()
        with self._lock:
            if self._urls is None:
                self._api_version = version
                self._urls = UrlBuilder(version)
            return self._urls

    def get_server_api_version(self) -> str:
        """
        API version announced in the ``Api-Version`` header of ``/version``.
        """
        path, params = UrlBuilder.version()
        response = self.client.get(path, params=params, expected=(200,))
        version = response.header("Api-Version") or DEFAULT_API_VERSION
        self.log.debug("Docker API version %s", version)
        return version

    def ping(self) -> bool:
        path, params = UrlBuilder.ping()
        response = self.client.get(path, params=params, expected=(200,))
        return response.text().strip() == "OK"

    # ------------------------------------------------------------------
    # Images

    def build_image(self, image: str, archive: Union[str, Path], options: Optional[BuildOptions] = None,
                    callback: Optional[EventCallback] = None) -> LogGetHandle:
        """
        Send a build context archive to the daemon.

        :param image: name the image is tagged with when options carry no tag.
        :param archive: tar file created by ImageArchiveBuilder.
        :param options: build query options.
        :param callback: receives each progress event in order.
        :return: handle whose result is the built image id.
        """
        options = options or BuildOptions(tag=image)
        if options.tag is None:
            options = options.model_copy(update={"tag": image})
        path, params = self.urls.build_image(options)
        response = self.client.stream("POST", path, params=params, body=Path(archive))
        reader = BuildJsonResponseReader(callback, self.log)
        return stream_in_background(response, reader, f"build {image}")

    def pull_image(self, image: str, auth: Optional[AuthConfig] = None, registry: Optional[str] = None,
                   callback: Optional[EventCallback] = None) -> LogGetHandle:
        """
        Pull an image, from ``registry`` when the name does not carry one.

        Without ``auth`` the credentials come from the auth factory, if any.
        """
        if auth is None:
            auth = self.resolve_auth(RegistryAuthKind.PULL, image, registry=registry)
        full_name = ImageReference.parse(image).name_with_registry(registry)
        path, params = self.urls.pull_image(full_name)
        response = self.client.stream("POST", path, params=params, headers=self._auth_headers(auth))
        reader = PullOrPushResponseReader(callback, self.log)
        return stream_in_background(response, reader, f"pull {full_name}")

    def push_image(self, image: str, auth: Optional[AuthConfig] = None, registry: Optional[str] = None,
                   retries: int = 0, callback: Optional[EventCallback] = None) -> LogGetHandle:
        """
        Push an image.

        When ``registry`` is given and the name carries none, the image is
        tagged with the registry first and the temporary tag is removed once
        the push ended. An HTTP 500 on the initial request is retried up to
        ``retries`` times. Without ``auth`` the credentials come from the auth
        factory, if any.
        """
        if auth is None:
            auth = self.resolve_auth(RegistryAuthKind.PUSH, image, registry=registry)
        path, params = self.urls.push_image(image, registry)
        cleanup = self._tag_temporary_image(image, registry)
        retrying = Retrying(
            stop=stop_after_attempt(retries + 1),
            retry=retry_if_exception(_is_retryable),
            before_sleep=lambda state: self.log.warning(
                "Failed to push image %s, retrying (attempt %d of %d)",
                image, state.attempt_number + 1, retries + 1),
            reraise=True,
        )
        try:
            response = retrying(self.client.stream, "POST", path, params=params,
                                headers=self._auth_headers(auth))
        except Exception:
            if cleanup is not None:
                try:
                    cleanup()
                except DockerAccessError as e:
                    self.log.warning("%s", e)
            raise
        reader = PullOrPushResponseReader(callback, self.log)
        return stream_in_background(response, reader, f"push {image}", on_complete=cleanup)

    def _tag_temporary_image(self, image: str, registry: Optional[str]) -> Optional[Callable[[], None]]:
        ref = ImageReference.parse(image)
        source = ref.name_with_registry(None)
        target = ref.name_with_registry(registry)
        if registry is None or ref.explicit_registry or target == source:
            self.log.info("Temporary image tag skipped. Target image '%s' already has registry set "
                          "or no registry is available", target)
            return None

        already_present = self.has_image(target)
        if already_present:
            self.log.warning("Target image '%s' already exists. Tagging of '%s' will replace existing image",
                             target, source)
        self.tag(source, target)
        if already_present:
            return None

        def remove_temporary_tag():
            if not self.remove_image(target, force=True):
                raise DockerAccessError(
                    f"Image {target} could be pushed, but the temporary tag could not be removed"
                )

        return remove_temporary_tag

    def has_image(self, name: str) -> bool:
        path, params = self.urls.inspect_image(name)
        return self.client.get(path, params=params, expected=(200, 404)).status == 200

    def inspect_image(self, name: str) -> Optional[Dict[str, Any]]:
        path, params = self.urls.inspect_image(name)
        response = self.client.get(path, params=params, expected=(200, 404))
        if response.status == 404:
            return None
        return response.json()

    def get_image_id(self, name: str) -> Optional[str]:
        """
        Short (12 character) id of an image, None if it does not exist.
        """
        details = self.inspect_image(name)
        if details is None:
            return None
        image_id = details["Id"]
        if image_id.startswith("sha256:"):
            image_id = image_id[len("sha256:"):]
        return image_id[:12]

    def tag(self, source: str, target: str, force: bool = False):
        path, params = self.urls.tag_image(source, target, force)
        self.client.post(path, params=params, expected=(200, 201))
        self.log.debug("Tagged %s as %s", source, target)

    def remove_image(self, image: str, force: bool = False) -> bool:
        """
        :return: True when the image was removed, False if it did not exist.
        """
        path, params = self.urls.delete_image(image, force)
        response = self.client.delete(path, params=params, expected=(200, 404))
        if response.status == 404:
            return False
        if self.log.isEnabledFor(logging.DEBUG):
            for entry in response.json() or []:
                for key, value in entry.items():
                    self.log.debug("%s: %s", key, value)
        return True

    def load_image(self, archive: Union[str, Path]):
        path, params = self.urls.load_image()
        self.client.post(path, params=params, body=Path(archive), expected=(200,))

    def save_image(self, image: str, filename: Union[str, Path]):
        """
        Write an image tarball to ``filename``; ``.gz`` and ``.tgz`` names are gzip compressed.
        """
        path, params = self.urls.get_image(image)
        filename = str(filename)
        opener = gzip.open if filename.endswith((".gz", ".tgz")) else open
        with self.client.stream("GET", path, params=params) as response:
            try:
                with opener(filename, "wb") as out:
                    while True:
                        chunk = response.read(65536)
                        if not chunk:
                            break
                        out.write(chunk)
            except OSError as e:
                raise DockerAccessError(f"Unable to save '{image}' to '{filename}': {e}") from e

    def list_images(self, all_images: bool = False) -> List[Dict[str, Any]]:
        path, params = self.urls.list_images(all_images)
        return self.client.get(path, params=params, expected=(200,)).json()

    # ------------------------------------------------------------------
    # Containers

    def create_container(self, config: Mapping[str, Any], name: Optional[str] = None) -> str:
        """
        :param config: container create body (``Image``, ``Cmd``, ``HostConfig``...).
        :param name: optional container name.
        :return: id of the new container.
        """
        path, params = self.urls.create_container(name)
        data = self.client.post(path, params=params, body=dict(config), expected=(201,)).json()
        for warning in data.get("Warnings") or []:
            self.log.warning("%s", warning)
        return data["Id"]

    def start_container(self, container_id: str):
        path, params = self.urls.start_container(container_id)
        self.client.post(path, params=params, expected=(204, 304))

    def stop_container(self, container_id: str, kill_wait: int = 0):
        path, params = self.urls.stop_container(container_id, kill_wait)
        self.client.post(path, params=params, expected=(204, 304))

    def remove_container(self, container_id: str, remove_volumes: bool = False):
        path, params = self.urls.remove_container(container_id, remove_volumes)
        self.client.delete(path, params=params, expected=(204,))

    def get_container(self, container_id: str) -> Optional[Container]:
        """
        Fetch a fresh snapshot of a container, None if it does not exist.
        """
        path, params = self.urls.inspect_container(container_id)
        response = self.client.get(path, params=params, expected=(200, 404))
        if response.status == 404:
            return None
        return Container.from_inspect(response.json())

    def list_containers(self, all_containers: bool = False,
                        labels: Optional[Mapping[str, str]] = None) -> List[Container]:
        filters = None
        if labels:
            filters = {"label": [f"{key}={value}" for key, value in labels.items()]}
        path, params = self.urls.list_containers(all_containers, filters)
        entries = self.client.get(path, params=params, expected=(200,)).json()
        return [Container.from_list_entry(entry) for entry in entries]

    def get_logs_async(self, container_id: str, callback: Optional[EventCallback] = None,
                       follow: bool = True) -> LogGetHandle:
        """
        Stream container logs to ``callback`` as ``{"stream", "line"}`` events.
        """
        reader = ContainerLogReader(callback, tty=self._is_tty(container_id))
        path, params = self.urls.container_logs(container_id, follow)
        response = self.client.stream("GET", path, params=params)
        return stream_in_background(response, reader, f"logs {container_id[:12]}")

    def get_log_sync(self, container_id: str, callback: Optional[EventCallback] = None):
        """Read the logs written so far, in the calling thread."""
        reader = ContainerLogReader(callback, tty=self._is_tty(container_id))
        path, params = self.urls.container_logs(container_id, follow=False)
        with self.client.stream("GET", path, params=params) as response:
            reader.read(response)

    def _is_tty(self, container_id: str) -> bool:
        path, params = self.urls.inspect_container(container_id)
        details = self.client.get(path, params=params, expected=(200,)).json()
        return bool((details.get("Config") or {}).get("Tty"))

    # ------------------------------------------------------------------
    # Networks

    def create_network(self, config: NetworkCreateConfig) -> str:
        path, params = self.urls.create_network()
        data = self.client.post(path, params=params, body=config.to_dict(), expected=(201,)).json()
        if data.get("Warning"):
            self.log.warning("%s", data["Warning"])
        return data["Id"]

    def remove_network(self, network_id: str) -> bool:
        path, params = self.urls.remove_network(network_id)
        self.client.delete(path, params=params, expected=(200, 204))
        return True

    def list_networks(self) -> List[Dict[str, Any]]:
        path, params = self.urls.list_networks()
        return self.client.get(path, params=params, expected=(200,)).json()

    # ------------------------------------------------------------------
    # Auth

    def resolve_auth(self, kind: RegistryAuthKind, image: str, user: Optional[str] = None,
                     registry: Optional[str] = None) -> Optional[AuthConfig]:
        """
        Credentials for pushing or pulling ``image``.

        The registry named in the image wins over ``registry``.
        """
        if self.auth_factory is None:
            return None
        target_registry = ImageReference.parse(image).registry_for(registry)
        return self.auth_factory.create_auth_config(kind, user, target_registry)

    @staticmethod
    def _auth_headers(auth: Optional[AuthConfig]) -> Dict[str, str]:
        if auth is None or auth.is_empty():
            return {}
        return {AUTH_HEADER: auth.to_header_value()}

    def shutdown(self):
        self.client.close()
