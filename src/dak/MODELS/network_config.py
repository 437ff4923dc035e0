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
Request body for creating a daemon network.
"""
import json
from typing import Any, Dict, Optional


class NetworkCreateConfig:
    """
    Network creation request. The name is fixed at construction, other
    properties of the daemon's network-create body can be added freely.
    """

    def __init__(self, name: str, driver: Optional[str] = None, **properties: Any):
        if not name:
            raise ValueError("Network name must not be empty")
        self._name = name
        self._properties: Dict[str, Any] = {}
        if driver:
            self._properties["Driver"] = driver
        self._properties.update(properties)

    @property
    def name(self) -> str:
        return self._name

    def set(self, key: str, value: Any) -> "NetworkCreateConfig":
        if key == "Name":
            raise ValueError("The network name cannot be changed after construction")
        self._properties[key] = value
        return self

    def to_dict(self) -> Dict[str, Any]:
        body = {"Name": self._name}
        body.update(self._properties)
        return body

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    def __repr__(self) -> str:
        return f"NetworkCreateConfig({self._name!r})"
