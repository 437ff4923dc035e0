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
Ways of dialing the daemon's local IPC endpoint.

Two strategies exist: a Unix domain socket and a Windows named pipe. One of
them is picked once, when a transport is built.
"""
import io
import os
import socket
from abc import ABC, abstractmethod
from typing import Optional


class SocketStrategy(ABC):
    """Opens a stream connection to a local IPC path."""

    scheme: str = ""

    @abstractmethod
    def dial(self, path: str, timeout: Optional[float] = None):
        """
        Connect to the IPC endpoint.

        :param path: socket file or pipe path.
        :param timeout: socket timeout in seconds.
        :return: a connected socket-like object usable by http.client.
        """


class UnixSocketStrategy(SocketStrategy):
    """Dials a filesystem backed Unix domain socket."""

    scheme = "unix"

    def dial(self, path: str, timeout: Optional[float] = None):
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(timeout)
        try:
            sock.connect(path)
        except OSError:
            sock.close()
            raise
        return sock


class NamedPipeSocket:
    """
    Minimal socket facade over a Windows named pipe handle.

    http.client only needs sendall, makefile, settimeout and close.
    """

    def __init__(self, handle):
        self._handle = handle
        self._closed = False

    def settimeout(self, timeout):
        # pipe reads block; timeouts are not supported on this handle
        pass

    def sendall(self, data: bytes):
        view = memoryview(data)
        while view:
            written = self._handle.write(view)
            view = view[written:]
        self._handle.flush()

    def recv(self, size: int) -> bytes:
        return self._handle.read(size)

    def makefile(self, mode: str = "rb", buffering: int = -1):
        raw = _PipeReader(self._handle)
        return io.BufferedReader(raw, buffer_size=io.DEFAULT_BUFFER_SIZE)

    def close(self):
        if not self._closed:
            self._closed = True
            self._handle.close()


class _PipeReader(io.RawIOBase):
    def __init__(self, handle):
        self._handle = handle

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        data = self._handle.read(len(buffer))
        if not data:
            return 0
        buffer[:len(data)] = data
        return len(data)


class NamedPipeStrategy(SocketStrategy):
    """Dials a Windows named pipe such as ``\\\\.\\pipe\\docker_engine``."""

    scheme = "npipe"

    def dial(self, path: str, timeout: Optional[float] = None):
        handle = open(self.normalize(path), "r+b", buffering=0)
        return NamedPipeSocket(handle)

    @staticmethod
    def normalize(path: str) -> str:
        """Turn ``//./pipe/docker_engine`` into ``\\\\.\\pipe\\docker_engine``."""
        return path.replace("/", "\\")


def select_strategy(os_name: Optional[str] = None) -> SocketStrategy:
    """
    Pick the IPC strategy for the running platform.

    :param os_name: override for ``os.name``.
    :return: a named pipe strategy on Windows, a Unix socket strategy otherwise.
    """
    if (os_name or os.name) == "nt":
        return NamedPipeStrategy()
    return UnixSocketStrategy()
