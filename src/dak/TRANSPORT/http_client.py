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
HTTP client for the Docker daemon over a local IPC channel.

Requests are plain HTTP/1.1 carried by http.client; only the socket layer
differs: connections dial a Unix socket or a named pipe through a
SocketStrategy instead of a TCP address. Connections are pooled and the pool
size is the only backpressure control.
"""
import http.client
import json
import logging
import os
import queue
import socket
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, Tuple
from urllib.parse import quote, urlencode

from ..ACCESS.exceptions import (
    DaemonApiError,
    DaemonUnreachableError,
    DockerConfigurationError,
)
from .socket_strategy import NamedPipeStrategy, SocketStrategy, UnixSocketStrategy, select_strategy

logger = logging.getLogger(__name__)

DEFAULT_UNIX_SOCKET = "/var/run/docker.sock"
DEFAULT_NAMED_PIPE = "//./pipe/docker_engine"

# Synthetic host used in request URIs; the IPC path decides where bytes go
SYNTHETIC_HOST = "localhost"

BodyType = Any


class IpcHTTPConnection(http.client.HTTPConnection):
    """HTTP connection whose socket is dialed through a SocketStrategy"""

    def __init__(self, path: str, strategy: SocketStrategy, timeout: Optional[float] = None):
        super().__init__(SYNTHETIC_HOST, timeout=timeout)
        self.ipc_path = path
        self.strategy = strategy

    def connect(self):
        """Dial the IPC endpoint"""
        self.sock = self.strategy.dial(self.ipc_path, self.timeout)


class ConnectionPool:
    """
    Bounded pool of daemon connections.

    At most ``maxsize`` connections are handed out at a time; further callers
    block in acquire() until one is released or ``acquire_timeout`` passes.
    """

    def __init__(self, factory: Callable[[], IpcHTTPConnection], maxsize: int,
                 acquire_timeout: Optional[float] = None):
        if maxsize < 1:
            raise DockerConfigurationError(f"Connection pool size must be positive, got {maxsize}")
        self._factory = factory
        self._maxsize = maxsize
        self._acquire_timeout = acquire_timeout
        self._slots = threading.BoundedSemaphore(maxsize)
        self._idle: "queue.LifoQueue[IpcHTTPConnection]" = queue.LifoQueue()
        self._closed = False

    @property
    def maxsize(self) -> int:
        return self._maxsize

    def acquire(self) -> IpcHTTPConnection:
        if not self._slots.acquire(timeout=self._acquire_timeout):
            raise DaemonUnreachableError(
                f"No connection available: all {self._maxsize} pooled connections "
                f"are in use after {self._acquire_timeout}s"
            )
        try:
            return self._idle.get_nowait()
        except queue.Empty:
            pass
        try:
            return self._factory()
        except BaseException:
            self._slots.release()
            raise

    def release(self, conn: IpcHTTPConnection, reusable: bool = True):
        try:
            if reusable and not self._closed:
                self._idle.put(conn)
            else:
                conn.close()
        finally:
            self._slots.release()

    def close(self):
        self._closed = True
        while True:
            try:
                conn = self._idle.get_nowait()
            except queue.Empty:
                break
            conn.close()


@dataclass
class DaemonResponse:
    """A fully read daemon response"""
    status: int
    body: bytes
    headers: Dict[str, str] = field(default_factory=dict)

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        if not self.body:
            return None
        return json.loads(self.body.decode("utf-8"))

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


class StreamingResponse:
    """
    A response whose body is still being delivered by the daemon.

    The response owns its pooled connection until close() is called. Closing
    is also the way to cancel: the socket is shut down, so a read blocked in
    another thread fails.
    """

    def __init__(self, response: http.client.HTTPResponse, conn: IpcHTTPConnection,
                 pool: ConnectionPool):
        self.response = response
        self.status = response.status
        self._conn = conn
        self._pool = pool
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def readline(self) -> bytes:
        return self.response.readline()

    def read(self, size: int = -1) -> bytes:
        return self.response.read(size)

    def iter_lines(self) -> Iterable[bytes]:
        while True:
            line = self.response.readline()
            if not line:
                return
            yield line

    def close(self):
        with self._lock:
            if self._closed:
                return
            self._closed = True
        sock = self._conn.sock
        if sock is not None and hasattr(sock, "shutdown"):
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                # already disconnected by the peer
                pass
        self._pool.release(self._conn, reusable=False)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class DaemonHttpClient:
    """
    Pooled HTTP client for the daemon's REST API.
    """

    def __init__(self, ipc_path: str, strategy: SocketStrategy, max_connections: int = 100,
                 timeout: Optional[float] = None, acquire_timeout: Optional[float] = 30.0,
                 log: Optional[logging.Logger] = None):
        self.ipc_path = ipc_path
        self.strategy = strategy
        self.timeout = timeout
        self.log = log or logger
        self._pool = ConnectionPool(
            lambda: IpcHTTPConnection(ipc_path, strategy, timeout=timeout),
            max_connections,
            acquire_timeout,
        )

    @property
    def scheme(self) -> str:
        return self.strategy.scheme

    @property
    def pool(self) -> ConnectionPool:
        return self._pool

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{SYNTHETIC_HOST}"

    def request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                body: BodyType = None, headers: Optional[Dict[str, str]] = None,
                expected: Tuple[int, ...] = (200, 201, 204)) -> DaemonResponse:
        """
        Send a request and read the whole response.

        Args:
            method: HTTP method
            path: API path, e.g. ``/v1.41/images/json``
            params: query parameters
            body: dict/list (sent as JSON), bytes, or a Path to stream from
            headers: extra request headers
            expected: statuses treated as success

        Returns:
            DaemonResponse

        Raises:
            DaemonUnreachableError: the IPC endpoint could not be used
            DaemonApiError: the status is not in ``expected``
        """
        url = self.build_url(path, params)
        conn = self._pool.acquire()
        reusable = False
        try:
            response = self._send(conn, method, url, body, headers)
            data = response.read()
            reusable = not response.will_close
        except (OSError, http.client.HTTPException) as e:
            raise self._unreachable(e) from e
        finally:
            self._pool.release(conn, reusable)

        self.log.debug("%s %s%s -> %d", method, self.base_url, url, response.status)
        if response.status not in expected:
            raise DaemonApiError(response.status, data.decode("utf-8", errors="replace"))
        return DaemonResponse(response.status, data, dict(response.getheaders()))

    def stream(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
               body: BodyType = None, headers: Optional[Dict[str, str]] = None,
               expected: Tuple[int, ...] = (200,)) -> StreamingResponse:
        """
        Send a request and hand back the response before its body is read.

        A non-expected status is read fully and raised as DaemonApiError, so
        only successful streams are returned.
        """
        url = self.build_url(path, params)
        conn = self._pool.acquire()
        try:
            response = self._send(conn, method, url, body, headers)
        except (OSError, http.client.HTTPException) as e:
            self._pool.release(conn, reusable=False)
            raise self._unreachable(e) from e

        self.log.debug("%s %s%s -> %d (streaming)", method, self.base_url, url, response.status)
        if response.status not in expected:
            try:
                data = response.read()
            except (OSError, http.client.HTTPException):
                data = b""
            finally:
                self._pool.release(conn, reusable=False)
            raise DaemonApiError(response.status, data.decode("utf-8", errors="replace"))
        return StreamingResponse(response, conn, self._pool)

    def get(self, path: str, **kwargs) -> DaemonResponse:
        """Make GET request"""
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs) -> DaemonResponse:
        """Make POST request"""
        return self.request("POST", path, **kwargs)

    def delete(self, path: str, **kwargs) -> DaemonResponse:
        """Make DELETE request"""
        return self.request("DELETE", path, **kwargs)

    def close(self):
        self._pool.close()

    @staticmethod
    def build_url(path: str, params: Optional[Dict[str, Any]] = None) -> str:
        """
        Join a path with query parameters. Booleans become ``1``/``0``,
        lists and dicts are JSON encoded, None values are dropped.
        """
        if not params:
            return path
        query = []
        for key, value in params.items():
            if value is None:
                continue
            if isinstance(value, bool):
                value = "1" if value else "0"
            elif isinstance(value, (list, dict)):
                value = json.dumps(value, separators=(",", ":"))
            query.append((key, str(value)))
        if not query:
            return path
        return f"{path}?{urlencode(query, quote_via=quote)}"

    def _send(self, conn: IpcHTTPConnection, method: str, url: str, body: BodyType,
              headers: Optional[Dict[str, str]]) -> http.client.HTTPResponse:
        req_headers = {"Accept": "*/*"}
        if headers:
            req_headers.update(headers)

        if isinstance(body, Path):
            req_headers.setdefault("Content-Type", "application/x-tar")
            req_headers["Content-Length"] = str(body.stat().st_size)
            with open(body, "rb") as f:
                conn.request(method, url, body=f, headers=req_headers)
                return conn.getresponse()

        payload = None
        if isinstance(body, (bytes, bytearray)):
            payload = bytes(body)
        elif body is not None:
            payload = json.dumps(body).encode("utf-8")
            req_headers["Content-Type"] = "application/json"
        if payload is not None:
            req_headers["Content-Length"] = str(len(payload))
        conn.request(method, url, body=payload, headers=req_headers)
        return conn.getresponse()

    def _unreachable(self, error: Exception) -> DaemonUnreachableError:
        return DaemonUnreachableError(
            f"Cannot connect to the Docker daemon at {self.scheme}://{self.ipc_path}: {error}",
            path=self.ipc_path,
        )


class TransportBuilder:
    """
    Builds a pooled daemon client bound to an IPC path.

    Nothing is dialed here; an unreachable path only shows up on the first
    request, so a builder can be created before the daemon is up.
    """

    def __init__(self, ipc_path: str, max_connections: int = 100,
                 log: Optional[logging.Logger] = None,
                 strategy: Optional[SocketStrategy] = None,
                 timeout: Optional[float] = None,
                 acquire_timeout: Optional[float] = 30.0):
        self.ipc_path = ipc_path
        self.max_connections = max_connections
        self.log = log or logger
        self.strategy = strategy or select_strategy()
        self.timeout = timeout
        self.acquire_timeout = acquire_timeout

    @property
    def scheme(self) -> str:
        return self.strategy.scheme

    def build(self) -> DaemonHttpClient:
        self.log.debug("Using %s transport on %s (pool size %d)",
                       self.scheme, self.ipc_path, self.max_connections)
        return DaemonHttpClient(
            self.ipc_path,
            self.strategy,
            max_connections=self.max_connections,
            timeout=self.timeout,
            acquire_timeout=self.acquire_timeout,
            log=self.log,
        )

    @classmethod
    def for_docker_host(cls, docker_host: str, max_connections: int = 100,
                        log: Optional[logging.Logger] = None, **kwargs) -> "TransportBuilder":
        """
        Create a builder from a ``unix://`` or ``npipe://`` daemon URL.
        """
        scheme, path = parse_docker_host(docker_host)
        strategy = NamedPipeStrategy() if scheme == "npipe" else UnixSocketStrategy()
        return cls(path, max_connections=max_connections, log=log, strategy=strategy, **kwargs)


def default_docker_host(os_name: Optional[str] = None) -> str:
    if (os_name or os.name) == "nt":
        return f"npipe://{DEFAULT_NAMED_PIPE}"
    return f"unix://{DEFAULT_UNIX_SOCKET}"


def parse_docker_host(docker_host: str) -> Tuple[str, str]:
    """
    Split a daemon URL into scheme and IPC path.

    Examples:
        - unix:///var/run/docker.sock -> ("unix", "/var/run/docker.sock")
        - npipe:////./pipe/docker_engine -> ("npipe", "//./pipe/docker_engine")
        - /var/run/docker.sock -> ("unix", "/var/run/docker.sock")

    Raises:
        DockerConfigurationError: for TCP URLs or unknown schemes.
    """
    if not docker_host:
        raise DockerConfigurationError("Docker host URL must not be empty")
    if "://" not in docker_host:
        return "unix", docker_host

    scheme, path = docker_host.split("://", 1)
    scheme = scheme.lower()
    if scheme in ("unix", "npipe"):
        # npipe:////./pipe/docker_engine keeps the leading double slash
        return scheme, path
    raise DockerConfigurationError(
        f"The docker host '{docker_host}' must use unix:// or npipe://; "
        "network transports are not supported"
    )
