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
Parsers for Docker Compose YAML files.
"""
import logging
import os
from typing import Any, Dict, List, Optional

import yaml

from ..ACCESS.exceptions import DockerConfigurationError
from ..MODELS.build_config import BuildConfiguration
from ..MODELS.compose_service import ComposeService
from ..MODELS.run_volume_config import RunVolumeConfiguration
from ..UTILS.string_interpolation import EnvironmentInterpolator

logger = logging.getLogger(__name__)

EXTENSION_KEY = "x-dak"
IGNORE_BUILD_KEY = "ignoreBuild"


def _to_flag(value: Any) -> bool:
    """
    YAML booleans as they are; quoted or interpolated ``"true"``/``"false"`` by text.

    :raises DockerConfigurationError: for any other string.
    """
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "false", ""):
            return text == "true"
        raise DockerConfigurationError(f"Invalid {IGNORE_BUILD_KEY} value {value!r}, expected true or false")
    return bool(value)


class ComposeParser:
    """
    Parser for docker-compose.yml files.
    """

    def __init__(self, context: Optional[Dict[str, str]] = None):
        """
        Initializes the parser with an optional environment context for interpolation.

        :param context: A dictionary of environment variables for interpolation.
        """
        self.context = context if context is not None else dict(os.environ)

    def parse(self, compose_path: str) -> Dict[str, ComposeService]:
        """
        Parses a compose file from a path.

        :param compose_path: Path to the compose file.
        :return: Services by name, in file order.
        :raises DockerConfigurationError: if the file cannot be read.
        """
        try:
            with open(compose_path, "r", encoding="utf-8") as f:
                content = f.read()
        except OSError as e:
            raise DockerConfigurationError(f"Cannot read compose file {compose_path}: {e}") from e
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> Dict[str, ComposeService]:
        """
        Parses a compose file from a string.

        :param content: YAML content of the compose file.
        :return: Services by name, in file order.
        :raises DockerConfigurationError: for invalid YAML or a required variable that is unset.
        """
        try:
            content = EnvironmentInterpolator.interpolate(content, self.context, strict=False)
            data = yaml.safe_load(content) or {}
        except KeyError as e:
            raise DockerConfigurationError(f"Compose interpolation failed: {e.args[0]}") from e
        except yaml.YAMLError as e:
            raise DockerConfigurationError(f"Invalid compose file: {e}") from e

        services = {}
        for name, spec in (data.get("services") or {}).items():
            services[name] = self._parse_service(name, spec or {})
        return services

    def _parse_service(self, name: str, spec: Dict[str, Any]) -> ComposeService:
        """
        Parses a single service definition from a compose file.

        :param name: The name of the service.
        :param spec: The service specification dictionary.
        :return: A ComposeService instance.
        """
        volumes = (
            RunVolumeConfiguration.builder()
            .from_(self._to_list(spec.get("volumes_from")))
            .bind(self._volume_bindings(spec.get("volumes")))
            .build()
        )

        depends_on = spec.get("depends_on") or []
        if isinstance(depends_on, dict):
            depends_on = list(depends_on.keys())

        return ComposeService(
            name=name,
            image=spec.get("image"),
            build=self._parse_build(spec.get("build")),
            ignore_build=self._ignore_build(spec),
            command=self._to_list(spec.get("command")),
            entrypoint=self._to_list(spec.get("entrypoint")),
            environment=self._to_dict(spec.get("environment")),
            ports=[str(p) if not isinstance(p, dict) else self._port_from_dict(p)
                   for p in spec.get("ports") or []],
            network_mode=spec.get("network_mode"),
            volumes=volumes,
            depends_on=list(depends_on),
            labels=self._to_dict(spec.get("labels")),
        )

    @staticmethod
    def _ignore_build(spec: Dict[str, Any]) -> bool:
        """
        ``x-dak: {ignoreBuild: true}`` or a service level ``ignoreBuild``.

        Only this exact key is honoured; a legacy ``ignoreBuilder`` is ignored.
        """
        extension = spec.get(EXTENSION_KEY) or {}
        if IGNORE_BUILD_KEY in extension:
            return _to_flag(extension[IGNORE_BUILD_KEY])
        return _to_flag(spec.get(IGNORE_BUILD_KEY, False))

    @staticmethod
    def _parse_build(build: Any) -> Optional[BuildConfiguration]:
        if build is None:
            return None
        if isinstance(build, str):
            return BuildConfiguration(dockerfile_dir=build)
        return BuildConfiguration(
            dockerfile_dir=build.get("context", "."),
            dockerfile=build.get("dockerfile"),
            args=ComposeParser._to_dict(build.get("args")),
            labels=ComposeParser._to_dict(build.get("labels")),
            cache_from=ComposeParser._to_list(build.get("cache_from")),
            no_cache=bool(build.get("no_cache", False)),
        )

    @staticmethod
    def _volume_bindings(volumes: Any) -> List[str]:
        bindings = []
        for v in volumes or []:
            if isinstance(v, dict):
                binding = f"{v['source']}:{v['target']}" if v.get("source") else v["target"]
                if v.get("read_only"):
                    binding += ":ro"
                bindings.append(binding)
            else:
                bindings.append(str(v))
        return bindings

    @staticmethod
    def _port_from_dict(port: Dict[str, Any]) -> str:
        if port.get("published"):
            return f"{port['published']}:{port['target']}"
        return str(port["target"])

    @staticmethod
    def _to_dict(val: Any) -> Dict[str, str]:
        """``KEY=VALUE`` lists and mappings both become a dict of strings."""
        if not val:
            return {}
        if isinstance(val, dict):
            return {str(k): "" if v is None else str(v) for k, v in val.items()}
        result = {}
        for item in val:
            key, _, value = str(item).partition("=")
            result[key] = value
        return result

    @staticmethod
    def _to_list(val: Any) -> List[str]:
        """
        Helper to ensure a value is a list of strings.

        :param val: The value to convert.
        :return: A list of strings.
        """
        if val is None:
            return []
        if isinstance(val, str):
            return [val]
        return [str(v) for v in val]
