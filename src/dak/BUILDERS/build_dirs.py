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
Per-image working directories for archive creation.
"""
import os
from pathlib import Path
from typing import Union

from ..ACCESS.exceptions import ArchiveError


class BuildDirs:
    """
    Directories used while preparing the build context of one image.

    The image name becomes a relative path below the output directory; the
    colon of the tag turns into a path separator so ``foo/bar:1.0`` lands in
    ``<output>/foo/bar/1.0``.
    """

    def __init__(self, image_name: str, output_dir: Union[str, Path]):
        self.image_name = image_name
        self.output_dir = Path(output_dir)

    @property
    def image_path(self) -> str:
        return self.image_name.replace(":", os.sep)

    @property
    def top_dir(self) -> Path:
        """
        :raises ArchiveError: when the image name leads outside the output directory.
        """
        top = self.output_dir / self.image_path
        output = self.output_dir.resolve()
        resolved = top.resolve()
        if resolved == output or output not in resolved.parents:
            raise ArchiveError(f"Image name {self.image_name!r} points outside of {self.output_dir}")
        return top

    @property
    def build_dir(self) -> Path:
        return self.top_dir / "build"

    @property
    def work_dir(self) -> Path:
        return self.top_dir / "work"

    @property
    def tmp_dir(self) -> Path:
        return self.top_dir / "tmp"

    def create(self) -> "BuildDirs":
        """
        Create all directories; existing ones are left alone.

        :raises ArchiveError: when a directory cannot be created.
        """
        for directory in (self.build_dir, self.work_dir, self.tmp_dir):
            try:
                os.makedirs(directory, exist_ok=True)
            except OSError as e:
                raise ArchiveError(f"Cannot create directory {directory}: {e}") from e
        return self

    def __repr__(self) -> str:
        return f"BuildDirs({self.image_name!r}, {str(self.output_dir)!r})"
