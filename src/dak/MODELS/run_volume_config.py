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
Volume settings for running a container.
"""
from typing import Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RunVolumeConfiguration(BaseModel):
    """
    Volumes to mount into a container.

    ``from_`` lists containers whose volumes are shared (``volumes_from``),
    ``bind`` lists host bindings in ``host:container[:mode]`` form.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    from_: List[str] = Field(default_factory=list, alias="from")
    bind: List[str] = Field(default_factory=list)

    @classmethod
    def builder(cls) -> "RunVolumeConfigurationBuilder":
        return RunVolumeConfigurationBuilder()

    def to_host_config(self) -> dict:
        """Fragment of a HostConfig body for container creation."""
        config = {}
        if self.bind:
            config["Binds"] = list(self.bind)
        if self.from_:
            config["VolumesFrom"] = list(self.from_)
        return config


class RunVolumeConfigurationBuilder:
    """
    Accumulates volume settings. Every call appends to what was given
    before; nothing is ever replaced.
    """

    def __init__(self):
        self._from: List[str] = []
        self._bind: List[str] = []

    def from_(self, containers: Optional[Iterable[str]]) -> "RunVolumeConfigurationBuilder":
        if containers:
            self._from.extend(containers)
        return self

    def bind(self, bindings: Optional[Iterable[str]]) -> "RunVolumeConfigurationBuilder":
        if bindings:
            self._bind.extend(bindings)
        return self

    def build(self) -> RunVolumeConfiguration:
        return RunVolumeConfiguration(from_=list(self._from), bind=list(self._bind))
