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
Credential sources for registry authentication.

Each handler has a stable id. The RegistryAuthFactory asks the configured
handlers in order and uses the first one that returns credentials.
"""
import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..ACCESS.exceptions import AuthResolutionError
from ..MODELS.auth_config import AuthConfig, RegistryAuthKind
from .credential_helper import CredentialHelperClient

logger = logging.getLogger(__name__)

Decryptor = Callable[[str], str]

DOCKER_LOGIN_DEFAULT_REGISTRY = "https://index.docker.io/v1/"
DEFAULT_REGISTRIES = ("docker.io", "index.docker.io", "registry.hub.docker.com")


def _decrypt(decryptor: Decryptor, secret: Optional[str]) -> Optional[str]:
    if secret is None:
        return None
    try:
        return decryptor(secret)
    except Exception as e:
        raise AuthResolutionError(f"Cannot decrypt registry password: {e}") from e


class AuthHandler(ABC):
    """Source of registry credentials."""

    id: str = ""

    @abstractmethod
    def create(self, kind: RegistryAuthKind, user: Optional[str], registry: Optional[str],
               decryptor: Decryptor) -> Optional[AuthConfig]:
        """
        Resolve credentials.

        :param kind: push or pull.
        :param user: optional user to pick among several server entries.
        :param registry: registry host, None for the default registry.
        :param decryptor: turns a stored secret into the clear text password.
        :return: credentials, or None when this source has none.
        """


class EnvironmentAuthHandler(AuthHandler):
    """
    Reads ``DAK_DOCKER_PUSH_USERNAME`` / ``DAK_DOCKER_PULL_USERNAME`` and the
    matching ``_PASSWORD``, ``_EMAIL`` and ``_AUTH_TOKEN`` variables, falling
    back to the unprefixed ``DAK_DOCKER_USERNAME`` family.
    """

    id = "environment"
    PREFIX = "DAK_DOCKER_"

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self.environ = environ if environ is not None else os.environ

    def create(self, kind, user, registry, decryptor):
        for prefix in (f"{self.PREFIX}{kind.name}_", self.PREFIX):
            username = self.environ.get(f"{prefix}USERNAME")
            password = self.environ.get(f"{prefix}PASSWORD")
            if username and not password:
                raise AuthResolutionError(f"No {prefix}PASSWORD provided for username {username}")
            if username and password:
                logger.debug("AuthConfig: credentials from environment (%s*)", prefix)
                return AuthConfig(
                    username=username,
                    password=_decrypt(decryptor, password),
                    email=self.environ.get(f"{prefix}EMAIL"),
                    identity_token=self.environ.get(f"{prefix}AUTH_TOKEN"),
                )
        return None


class InlineConfigAuthHandler(AuthHandler):
    """
    Reads an inline configuration map, for example from ``dak.yaml``::

        auth:
          username: ci
          password: "{encrypted}"
          push:
            username: releaser
            password: secret

    The section for the requested direction wins over the top level entries.
    """

    id = "inline"

    def __init__(self, config: Optional[Mapping[str, Any]] = None):
        self.config = config or {}

    def create(self, kind, user, registry, decryptor):
        for section in (self.config.get(kind.value), self.config):
            if not isinstance(section, Mapping) or "username" not in section:
                continue
            if "password" not in section:
                raise AuthResolutionError(
                    f"No 'password' given while using inline auth configuration for mode {kind.value}"
                )
            values = dict(section)
            values["password"] = _decrypt(decryptor, values["password"])
            logger.debug("AuthConfig: credentials from inline configuration")
            return AuthConfig.from_map(values)
        return None


class ServerListAuthHandler(AuthHandler):
    """
    Looks up a list of server entries ``{id, username, password, configuration}``.

    An entry matches when its id equals the registry, or ``registry/user`` when
    a user is given. Without a registry the Docker Hub names are tried.
    """

    id = "servers"

    def __init__(self, servers: Optional[List[Mapping[str, Any]]] = None):
        self.servers = servers or []

    def create(self, kind, user, registry, decryptor):
        default_server = None
        for server in self.servers:
            server_id = server.get("id", "")
            if default_server is None and self._matches(server_id, registry, None):
                default_server = server
            if user and self._matches(server_id, registry, user):
                return self._auth_config(server, decryptor)
        if default_server is not None:
            return self._auth_config(default_server, decryptor)
        return None

    @staticmethod
    def _matches(server_id: str, registry: Optional[str], user: Optional[str]) -> bool:
        registries = (registry,) if registry else DEFAULT_REGISTRIES
        for reg in registries:
            if server_id == (reg if user is None else f"{reg}/{user}"):
                return True
        return False

    @staticmethod
    def _auth_config(server: Mapping[str, Any], decryptor: Decryptor) -> AuthConfig:
        configuration = server.get("configuration") or {}
        logger.debug("AuthConfig: credentials from server entry %s", server.get("id"))
        return AuthConfig(
            username=server.get("username"),
            password=_decrypt(decryptor, server.get("password")),
            email=configuration.get("email"),
            identity_token=configuration.get("auth"),
        )


class DockerConfigAuthHandler(AuthHandler):
    """
    Reads ``~/.docker/config.json`` (or ``$DOCKER_CONFIG/config.json``):
    ``credHelpers`` for the registry first, then ``credsStore``, then the
    static ``auths`` section.
    """

    id = "docker-config"

    def __init__(self, config_path: Optional[Path] = None,
                 helper_factory: Callable[[str], CredentialHelperClient] = CredentialHelperClient):
        self.config_path = config_path
        self.helper_factory = helper_factory

    def create(self, kind, user, registry, decryptor):
        config = read_docker_config(self.config_path)
        if config is None:
            return None
        lookup = registry or DOCKER_LOGIN_DEFAULT_REGISTRY

        helper_name = (config.get("credHelpers") or {}).get(lookup) or config.get("credsStore")
        if helper_name:
            helper = self.helper_factory(helper_name)
            logger.debug("AuthConfig: credentials from credential helper %s", helper.command)
            return helper.get_auth_config(lookup)

        auths = config.get("auths") or {}
        credentials = auths.get(lookup) or auths.get(f"https://{lookup}")
        if not credentials or "auth" not in credentials:
            return None
        logger.debug("AuthConfig: credentials from docker config")
        try:
            return AuthConfig.from_credentials_encoded(credentials["auth"], credentials.get("email"))
        except ValueError as e:
            raise AuthResolutionError(f"Invalid 'auth' entry for {lookup} in docker config: {e}") from e


def docker_config_path() -> Path:
    base = os.environ.get("DOCKER_CONFIG")
    if base:
        return Path(base) / "config.json"
    return Path.home() / ".docker" / "config.json"


def read_docker_config(path: Optional[Path] = None) -> Optional[Dict[str, Any]]:
    """
    Load the docker CLI configuration.

    :return: the parsed JSON, or None when the file does not exist.
    :raises AuthResolutionError: when the file exists but cannot be parsed.
    """
    path = path or docker_config_path()
    if not path.is_file():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise AuthResolutionError(f"Cannot read docker config {path}: {e}") from e
