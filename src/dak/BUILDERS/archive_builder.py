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
Creation of the tar archive sent to the daemon's build endpoint.

The archive is reproducible: entries are sorted and carry no timestamps or
ownership, so the same inputs always give the same bytes.
"""
import io
import logging
import os
import tarfile
from fnmatch import fnmatch
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional, Tuple, Union

from ..ACCESS.exceptions import ArchiveError
from ..MODELS.build_config import AssemblyEntry, BuildConfiguration
from .build_dirs import BuildDirs
from .dockerfile_generator import DockerfileGenerator

logger = logging.getLogger(__name__)

ARCHIVE_NAME = "docker-build.tar"
DOCKERIGNORE = ".dockerignore"
DEFAULT_DOCKERFILE = "Dockerfile"
GENERATED_ASSEMBLY_DIR = "assembly"

DIR_MODE = 0o755
GENERATED_FILE_MODE = 0o644

# arcname -> (source file or generated content, permission bits)
Entries = Dict[str, Tuple[Union[Path, bytes], int]]


def parse_ignore_patterns(content: str) -> List[str]:
    """Non-empty, non-comment lines of a .dockerignore file."""
    patterns = []
    for line in content.splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            patterns.append(line)
    return patterns


def _raise_unreadable(error: OSError):
    raise ArchiveError(f"Cannot read {error.filename}: {error}") from error


def is_excluded(path: str, patterns: List[str]) -> bool:
    """
    Match a relative POSIX path against .dockerignore style patterns.

    A pattern matches the path itself or any of its parent directories.
    ``!pattern`` re-includes; the last matching pattern wins.
    """
    excluded = False
    parts = PurePosixPath(path).parts
    prefixes = ["/".join(parts[:i]) for i in range(1, len(parts) + 1)]
    for pattern in patterns:
        negate = pattern.startswith("!")
        if negate:
            pattern = pattern[1:].strip()
        pattern = pattern.strip("/")
        if pattern.startswith("./"):
            pattern = pattern[2:]
        if not pattern:
            continue
        if any(fnmatch(prefix, pattern) for prefix in prefixes):
            excluded = not negate
    return excluded


class ImageArchiveBuilder:
    """
    Prepares build contexts below a project base directory.

    Dockerfile mode uses the Dockerfile's directory as the build context;
    generated mode renders a Dockerfile and packs only the assembly entries.
    """

    def __init__(self, base_dir: Union[str, Path] = ".", source_dir: str = "src/main/docker",
                 output_dir: str = "target/docker", log: Optional[logging.Logger] = None):
        """
        :param base_dir: project base directory; every other path is relative to it.
        :param source_dir: directory holding Dockerfiles.
        :param output_dir: directory for build dirs and archives.
        :param log: logger for diagnostics.
        """
        self.base_dir = Path(base_dir).resolve()
        self.source_dir = source_dir
        self.output_dir = output_dir
        self.log = log or logger

    def resolve(self, path: Union[str, Path], root: Optional[Path] = None) -> Path:
        """
        Resolve ``path`` against ``root`` (the base dir by default).

        :raises ArchiveError: when the result lies outside ``root``.
        """
        root = root or self.base_dir
        resolved = (root / path).resolve()
        if resolved != root and root not in resolved.parents:
            raise ArchiveError(f"Path {path} points outside of {root}")
        return resolved

    def source_path(self) -> Path:
        return self.resolve(self.source_dir)

    def output_path(self) -> Path:
        return self.resolve(self.output_dir)

    def subdir(self, name: str) -> Path:
        return self.resolve(name)

    def build_dirs(self, image_name: str) -> BuildDirs:
        return BuildDirs(image_name, self.output_path())

    def dockerfile_name(self, config: BuildConfiguration) -> str:
        """Path of the Dockerfile inside the archive."""
        if not config.is_dockerfile_mode:
            return DEFAULT_DOCKERFILE
        dockerfile, context = self._dockerfile_and_context(config)
        return dockerfile.relative_to(context).as_posix()

    def create_archive(self, image_name: str, config: BuildConfiguration) -> Path:
        """
        Build the tar archive for ``image_name``.

        :param image_name: image the archive is built for; names the build dirs.
        :param config: build instructions.
        :return: path of ``docker-build.tar`` in the image's tmp dir.
        :raises ArchiveError: for missing, unreadable or escaping paths.
        """
        dirs = self.build_dirs(image_name).create()

        if config.is_dockerfile_mode:
            entries = self._dockerfile_mode_entries(config)
        else:
            entries = self._generated_mode_entries(config, dirs)

        archive = dirs.tmp_dir / ARCHIVE_NAME
        self._write_tar(archive, entries)
        self.log.info("Created build archive %s (%d entries)", archive, len(entries))
        return archive

    def _dockerfile_and_context(self, config: BuildConfiguration) -> Tuple[Path, Path]:
        if config.dockerfile_dir:
            context = self.resolve(config.dockerfile_dir)
            dockerfile = self.resolve(config.dockerfile or DEFAULT_DOCKERFILE, context)
        else:
            dockerfile = self.resolve(config.dockerfile, self.source_path())
            context = dockerfile.parent
        return dockerfile, context

    def _dockerfile_mode_entries(self, config: BuildConfiguration) -> Entries:
        dockerfile, context = self._dockerfile_and_context(config)
        if not dockerfile.is_file():
            raise ArchiveError(f"Dockerfile {dockerfile} does not exist")

        patterns = list(config.excludes)
        ignore_file = context / DOCKERIGNORE
        if ignore_file.is_file():
            patterns = parse_ignore_patterns(self._read_text(ignore_file)) + patterns

        output = self.output_path()
        entries: Entries = {}
        for root, dirnames, filenames in os.walk(context, onerror=_raise_unreadable):
            # never pack our own output, it may live inside the context
            dirnames[:] = sorted(d for d in dirnames if (Path(root) / d).resolve() != output)
            for filename in sorted(filenames):
                path = Path(root) / filename
                arcname = path.relative_to(context).as_posix()
                if is_excluded(arcname, patterns):
                    continue
                self._add_file(entries, arcname, path, context)

        # the daemon always needs the Dockerfile, even if an ignore rule hides it
        dockerfile_arcname = dockerfile.relative_to(context).as_posix()
        if dockerfile_arcname not in entries:
            self._add_file(entries, dockerfile_arcname, dockerfile, context)

        for entry in config.assembly:
            self._add_assembly_entry(entries, entry, PurePosixPath("."))
        return entries

    def _generated_mode_entries(self, config: BuildConfiguration, dirs: BuildDirs) -> Entries:
        if not config.from_image:
            self.log.warning("No base image configured, using the generator default")
        content = DockerfileGenerator(config, GENERATED_ASSEMBLY_DIR).render()
        generated = dirs.build_dir / DEFAULT_DOCKERFILE
        try:
            generated.write_text(content, encoding="utf-8")
        except OSError as e:
            raise ArchiveError(f"Cannot write {generated}: {e}") from e

        entries: Entries = {DEFAULT_DOCKERFILE: (content.encode("utf-8"), GENERATED_FILE_MODE)}
        for entry in config.assembly:
            self._add_assembly_entry(entries, entry, PurePosixPath(GENERATED_ASSEMBLY_DIR))
        return entries

    def _add_assembly_entry(self, entries: Entries, entry: AssemblyEntry, prefix: PurePosixPath):
        source = self.resolve(entry.source)
        target = PurePosixPath(entry.target.lstrip("/"))
        mode = int(entry.mode, 8) if entry.mode else None
        if source.is_dir():
            for root, dirnames, filenames in os.walk(source, onerror=_raise_unreadable):
                dirnames.sort()
                for filename in sorted(filenames):
                    path = Path(root) / filename
                    arcname = (prefix / target / path.relative_to(source).as_posix()).as_posix()
                    self._add_file(entries, arcname, path, self.base_dir, mode)
        elif source.is_file():
            self._add_file(entries, (prefix / target).as_posix(), source, self.base_dir, mode)
        else:
            raise ArchiveError(f"Assembly source {entry.source} does not exist")

    def _add_file(self, entries: Entries, arcname: str, path: Path, root: Path,
                  mode: Optional[int] = None):
        resolved = path.resolve()
        if resolved != root and root not in resolved.parents:
            raise ArchiveError(f"{path} points outside of {root}")
        if not os.access(resolved, os.R_OK):
            raise ArchiveError(f"Cannot read {path}")
        if mode is None:
            mode = resolved.stat().st_mode & 0o777
        if arcname.startswith("./"):
            arcname = arcname[2:]
        entries[arcname] = (resolved, mode)

    @staticmethod
    def _read_text(path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise ArchiveError(f"Cannot read {path}: {e}") from e

    @staticmethod
    def _write_tar(archive: Path, entries: Entries):
        directories = set()
        for arcname in entries:
            parent = PurePosixPath(arcname).parent
            while str(parent) not in (".", ""):
                directories.add(parent.as_posix())
                parent = parent.parent

        names = sorted(set(entries) | directories)
        try:
            with tarfile.open(archive, "w", format=tarfile.PAX_FORMAT) as tar:
                for name in names:
                    info = tarfile.TarInfo(name)
                    info.mtime = 0
                    info.uid = info.gid = 0
                    info.uname = info.gname = ""
                    if name in directories and name not in entries:
                        info.type = tarfile.DIRTYPE
                        info.mode = DIR_MODE
                        tar.addfile(info)
                        continue
                    source, mode = entries[name]
                    info.mode = mode
                    if isinstance(source, bytes):
                        info.size = len(source)
                        tar.addfile(info, io.BytesIO(source))
                    else:
                        info.size = source.stat().st_size
                        with open(source, "rb") as f:
                            tar.addfile(info, f)
        except OSError as e:
            raise ArchiveError(f"Cannot create archive {archive}: {e}") from e
