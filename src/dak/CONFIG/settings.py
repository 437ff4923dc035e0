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
Settings for daemon access, loaded from dak.yaml, a .env file and the environment.
"""
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from dotenv import dotenv_values
from pydantic import BaseModel, ValidationError, field_validator

from ..ACCESS.exceptions import DockerConfigurationError
from ..AUTH.registry_auth import DEFAULT_HANDLER_ORDER
from ..TRANSPORT.http_client import default_docker_host, parse_docker_host

DEFAULT_CONFIG_FILE = "dak.yaml"
DEFAULT_ENV_FILE = ".env"

# environment variable -> settings field
ENV_MAPPING = {
    "DOCKER_HOST": "docker_host",
    "DAK_DOCKER_HOST": "docker_host",
    "DAK_MAX_CONNECTIONS": "max_connections",
    "DAK_ACQUIRE_TIMEOUT": "acquire_timeout",
    "DAK_SOCKET_TIMEOUT": "socket_timeout",
    "DAK_BASE_DIR": "base_dir",
    "DAK_SOURCE_DIR": "source_dir",
    "DAK_OUTPUT_DIR": "output_dir",
    "DAK_PUSH_RETRIES": "push_retries",
    "DAK_REGISTRY": "registry",
    "DAK_AUTH_HANDLERS": "auth_handlers",
    "DAK_AUTH_EXTENDERS": "auth_extenders",
    "DAK_SKIP_EXTENDED_AUTH": "skip_extended_auth",
    "DAK_CREDENTIAL_HELPER": "credential_helper",
    "DAK_LOG_LEVEL": "log_level",
}

LIST_FIELDS = ("auth_handlers", "auth_extenders")


class AccessSettings(BaseModel):
    """
    Everything needed to talk to the daemon and resolve registry credentials.
    """
    docker_host: str = default_docker_host()
    max_connections: int = 100
    acquire_timeout: Optional[float] = 30.0
    socket_timeout: Optional[float] = None

    base_dir: str = "."
    source_dir: str = "src/main/docker"
    output_dir: str = "target/docker"

    registry: Optional[str] = None
    push_retries: int = 0

    auth_handlers: List[str] = list(DEFAULT_HANDLER_ORDER)
    auth_extenders: List[str] = []
    skip_extended_auth: bool = False
    credential_helper: Optional[str] = None
    auth: Dict[str, Any] = {}
    servers: List[Dict[str, Any]] = []

    log_level: str = "INFO"

    @field_validator("docker_host")
    @classmethod
    def check_docker_host(cls, v: str) -> str:
        parse_docker_host(v)
        return v

    @field_validator("max_connections")
    @classmethod
    def check_max_connections(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_connections must be at least 1")
        return v

    @field_validator("push_retries")
    @classmethod
    def check_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("push_retries must not be negative")
        return v

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level {v}")
        return level


def _env_overrides(environ: Mapping[str, Optional[str]]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for name, field in ENV_MAPPING.items():
        value = environ.get(name)
        if value is None or value == "":
            continue
        if field in LIST_FIELDS:
            overrides[field] = [item.strip() for item in value.split(",") if item.strip()]
        else:
            overrides[field] = value
    return overrides


def read_config_file(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Read a YAML settings file.

    :raises DockerConfigurationError: when the file is unreadable or not a mapping.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise DockerConfigurationError(f"Cannot read settings file {path}: {e}") from e
    if not isinstance(data, dict):
        raise DockerConfigurationError(f"Settings file {path} must contain a mapping")
    # 'dak:' top level section is optional
    return data.get("dak", data)


def load_settings(path: Optional[Union[str, Path]] = None,
                  env_file: Optional[Union[str, Path]] = DEFAULT_ENV_FILE,
                  environ: Optional[Mapping[str, str]] = None,
                  **overrides: Any) -> AccessSettings:
    """
    Load settings. Later sources win: defaults, YAML file, .env file,
    process environment, then keyword overrides.

    Args:
        path: YAML file; ``dak.yaml`` in the working directory is used when it exists.
        env_file: dotenv file to read, None to skip.
        environ: environment mapping, ``os.environ`` by default.
        overrides: explicit values, e.g. from command line options. None values are ignored.

    Returns:
        Validated AccessSettings.

    Raises:
        DockerConfigurationError: for unreadable files or invalid values.
    """
    values: Dict[str, Any] = {}

    if path is not None:
        values.update(read_config_file(path))
    elif Path(DEFAULT_CONFIG_FILE).is_file():
        values.update(read_config_file(DEFAULT_CONFIG_FILE))

    if env_file is not None and Path(env_file).is_file():
        values.update(_env_overrides(dotenv_values(env_file)))

    values.update(_env_overrides(os.environ if environ is None else environ))
    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return AccessSettings(**values)
    except (ValidationError, DockerConfigurationError) as e:
        raise DockerConfigurationError(f"Invalid settings: {e}") from e
