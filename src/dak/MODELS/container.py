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
Snapshots of containers as reported by the daemon.
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict


class PortBinding(BaseModel):
    """
    Host side of a published container port.
    """
    model_config = ConfigDict(frozen=True)

    host_port: Optional[int] = None
    host_ip: Optional[str] = None


class Container(BaseModel):
    """
    Immutable view of a container at the time it was fetched.

    A new snapshot has to be fetched to observe any state change; the
    daemon is the only source of truth.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    image: str = ""
    name: str = ""
    labels: Dict[str, str] = {}
    network_mode: Optional[str] = None
    port_bindings: Dict[str, PortBinding] = {}
    running: bool = False
    ip_address: Optional[str] = None
    custom_network_ip_addresses: Dict[str, str] = {}
    exit_code: Optional[int] = None

    @property
    def short_id(self) -> str:
        return self.id[:12]

    @classmethod
    def from_inspect(cls, data: Dict[str, Any]) -> "Container":
        """
        Build from a ``GET /containers/{id}/json`` response.

        :param data: decoded inspect JSON.
        :return: a Container snapshot.
        """
        config = data.get("Config") or {}
        state = data.get("State") or {}
        host_config = data.get("HostConfig") or {}
        network_settings = data.get("NetworkSettings") or {}

        running = bool(state.get("Running", False))
        exit_code = None
        if not running and state.get("ExitCode") is not None:
            exit_code = int(state["ExitCode"])

        return cls(
            id=data.get("Id", ""),
            image=config.get("Image", ""),
            name=(data.get("Name") or "").lstrip("/"),
            labels=config.get("Labels") or {},
            network_mode=host_config.get("NetworkMode"),
            port_bindings=cls._parse_inspect_ports(network_settings.get("Ports")),
            running=running,
            ip_address=network_settings.get("IPAddress") or None,
            custom_network_ip_addresses=cls._parse_networks(network_settings.get("Networks")),
            exit_code=exit_code,
        )

    @classmethod
    def from_list_entry(cls, data: Dict[str, Any]) -> "Container":
        """
        Build from one element of ``GET /containers/json``.

        List entries carry no exit code, so ``exit_code`` is always None here.
        """
        names = data.get("Names") or [""]
        network_settings = data.get("NetworkSettings") or {}
        host_config = data.get("HostConfig") or {}

        bindings: Dict[str, PortBinding] = {}
        for port in data.get("Ports") or []:
            if "PrivatePort" not in port:
                continue
            key = f"{port['PrivatePort']}/{port.get('Type', 'tcp')}"
            bindings[key] = PortBinding(host_port=port.get("PublicPort"), host_ip=port.get("IP"))

        return cls(
            id=data.get("Id", ""),
            image=data.get("Image", ""),
            name=names[0].lstrip("/"),
            labels=data.get("Labels") or {},
            network_mode=host_config.get("NetworkMode"),
            port_bindings=bindings,
            running=data.get("State") == "running",
            custom_network_ip_addresses=cls._parse_networks(network_settings.get("Networks")),
        )

    @staticmethod
    def _parse_inspect_ports(ports: Optional[Dict[str, Any]]) -> Dict[str, PortBinding]:
        result: Dict[str, PortBinding] = {}
        for container_port, bindings in (ports or {}).items():
            if not bindings:
                result[container_port] = PortBinding()
                continue
            first = bindings[0]
            host_port = first.get("HostPort")
            result[container_port] = PortBinding(
                host_port=int(host_port) if host_port else None,
                host_ip=first.get("HostIp") or None,
            )
        return result

    @staticmethod
    def _parse_networks(networks: Optional[Dict[str, Any]]) -> Dict[str, str]:
        return {
            name: settings["IPAddress"]
            for name, settings in (networks or {}).items()
            if settings and settings.get("IPAddress")
        }
