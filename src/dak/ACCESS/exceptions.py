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
Errors raised while talking to the Docker daemon.
"""
from typing import Optional


class DockerAccessError(Exception):
    """Base error for daemon access"""
    pass


class DaemonUnreachableError(DockerAccessError):
    """The daemon's IPC endpoint could not be reached or no connection was free"""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class AuthResolutionError(DockerAccessError):
    """Credentials could not be resolved, decrypted or extended"""
    pass


class DaemonApiError(DockerAccessError):
    """The daemon answered with an unexpected HTTP status"""

    def __init__(self, status_code: int, body: str, message: Optional[str] = None):
        super().__init__(message or f"Docker API error ({status_code}): {body}")
        self.status_code = status_code
        self.body = body


class ArchiveError(DockerAccessError):
    """The build context could not be prepared"""
    pass


class StreamError(DockerAccessError):
    """The daemon reported an error inside a streamed response"""

    def __init__(self, message: str, detail: Optional[dict] = None):
        super().__init__(message)
        self.detail = detail or {}


class BuildError(StreamError):
    """Image build error"""
    pass


class DockerConfigurationError(ValueError):
    """Invalid daemon access configuration"""
    pass
