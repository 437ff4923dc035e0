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
Models describing how an image is built.
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class AssemblyEntry(BaseModel):
    """
    A file or directory from the project copied into the build context.
    """
    source: str
    target: str
    mode: Optional[str] = None  # octal, e.g. "0755"


class BuildConfiguration(BaseModel):
    """
    Build instructions for one image.

    When ``dockerfile`` is set the build runs in Dockerfile mode and the
    Dockerfile's directory is the build context. Otherwise a Dockerfile is
    generated from the remaining fields.
    """
    dockerfile: Optional[str] = None
    dockerfile_dir: Optional[str] = None

    from_image: Optional[str] = None
    maintainer: Optional[str] = None
    labels: Dict[str, str] = {}
    env: Dict[str, str] = {}
    ports: List[str] = []
    run_commands: List[str] = []
    workdir: Optional[str] = None
    user: Optional[str] = None
    cmd: List[str] = []
    entrypoint: List[str] = []
    volumes: List[str] = []

    assembly: List[AssemblyEntry] = []
    assembly_target_dir: str = "/deployments"
    excludes: List[str] = []

    args: Dict[str, str] = {}
    tags: List[str] = []
    no_cache: bool = False
    cache_from: List[str] = []

    @property
    def is_dockerfile_mode(self) -> bool:
        return self.dockerfile is not None or self.dockerfile_dir is not None


class BuildOptions(BaseModel):
    """
    Query options for the daemon's build endpoint.
    """
    tag: Optional[str] = None
    dockerfile: Optional[str] = None
    no_cache: bool = False
    force_remove: bool = False
    cache_from: List[str] = Field(default_factory=list)
    build_args: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def for_build(cls, image_name: str, config: BuildConfiguration,
                  dockerfile_name: Optional[str] = None) -> "BuildOptions":
        return cls(
            tag=image_name,
            dockerfile=dockerfile_name,
            no_cache=config.no_cache,
            cache_from=list(config.cache_from),
            build_args=dict(config.args),
        )
