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
Data model for services read from a compose style file.
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .build_config import BuildConfiguration
from .run_volume_config import RunVolumeConfiguration


class ComposeService(BaseModel):
    """
    A single service of a compose file, reduced to what image builds and
    container runs need.
    """
    name: str
    image: Optional[str] = None
    build: Optional[BuildConfiguration] = None
    ignore_build: bool = False

    # Execution
    command: List[str] = []
    entrypoint: List[str] = []
    environment: Dict[str, str] = {}

    # Networking
    ports: List[str] = []
    network_mode: Optional[str] = None

    # Storage
    volumes: RunVolumeConfiguration = Field(default_factory=RunVolumeConfiguration)

    # Lifecycle
    depends_on: List[str] = []
    labels: Dict[str, str] = {}

    @property
    def needs_build(self) -> bool:
        return self.build is not None and not self.ignore_build

    @property
    def image_name(self) -> str:
        return self.image or self.name
