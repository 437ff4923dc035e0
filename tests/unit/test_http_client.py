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
Unit tests for the IPC transport.
"""
import threading

import pytest

from dak.ACCESS.exceptions import DaemonUnreachableError, DockerConfigurationError
from dak.TRANSPORT.http_client import (
    ConnectionPool,
    DaemonHttpClient,
    DaemonResponse,
    TransportBuilder,
    default_docker_host,
    parse_docker_host,
)
from dak.TRANSPORT.socket_strategy import (
    NamedPipeStrategy,
    UnixSocketStrategy,
    select_strategy,
)


class FakeConnection:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


class TestDockerHost:
    """Tests for daemon URL parsing."""

    def test_unix(self):
        assert parse_docker_host("unix:///var/run/docker.sock") == ("unix", "/var/run/docker.sock")

    def test_npipe(self):
        assert parse_docker_host("npipe:////./pipe/docker_engine") == ("npipe", "//./pipe/docker_engine")

    def test_bare_path(self):
        assert parse_docker_host("/tmp/docker.sock") == ("unix", "/tmp/docker.sock")

    @pytest.mark.parametrize("url", ["tcp://127.0.0.1:2375", "https://docker:2376", ""])
    def test_rejected(self, url):
        with pytest.raises(DockerConfigurationError):
            parse_docker_host(url)

    def test_default_per_platform(self):
        assert default_docker_host("nt") == "npipe:////./pipe/docker_engine"
        assert default_docker_host("posix") == "unix:///var/run/docker.sock"


class TestTransportBuilder:
    """Tests for builder and strategy selection."""

    def test_strategy_selection(self):
        assert isinstance(select_strategy("nt"), NamedPipeStrategy)
        assert isinstance(select_strategy("posix"), UnixSocketStrategy)

    def test_scheme(self):
        builder = TransportBuilder("/var/run/docker.sock", strategy=UnixSocketStrategy())
        assert builder.scheme == "unix"
        assert TransportBuilder.for_docker_host("npipe:////./pipe/docker_engine").scheme == "npipe"

    def test_build_does_not_dial(self, tmp_path):
        """A missing socket is only noticed on the first request."""
        missing = str(tmp_path / "missing.sock")
        client = TransportBuilder(missing, max_connections=2, strategy=UnixSocketStrategy()).build()
        assert client.pool.maxsize == 2
        assert client.base_url == "unix://localhost"
        with pytest.raises(DaemonUnreachableError) as exc:
            client.get("/_ping")
        assert exc.value.path == missing
        client.close()

    def test_named_pipe_path_normalized(self):
        assert NamedPipeStrategy.normalize("//./pipe/docker_engine") == r"\\.\pipe\docker_engine"


class TestConnectionPool:
    """Tests for the bounded pool."""

    def test_reuses_released_connection(self):
        pool = ConnectionPool(FakeConnection, maxsize=2)
        conn = pool.acquire()
        pool.release(conn)
        assert pool.acquire() is conn

    def test_non_reusable_connection_closed(self):
        pool = ConnectionPool(FakeConnection, maxsize=1)
        conn = pool.acquire()
        pool.release(conn, reusable=False)
        assert conn.closed
        assert pool.acquire() is not conn

    def test_exhausted_pool_times_out(self):
        """A caller waiting longer than the acquire timeout gets an error."""
        pool = ConnectionPool(FakeConnection, maxsize=1, acquire_timeout=0.05)
        pool.acquire()
        with pytest.raises(DaemonUnreachableError):
            pool.acquire()

    def test_waiter_unblocked_by_release(self):
        pool = ConnectionPool(FakeConnection, maxsize=1, acquire_timeout=5)
        conn = pool.acquire()
        acquired = []
        waiter = threading.Thread(target=lambda: acquired.append(pool.acquire()))
        waiter.start()
        pool.release(conn)
        waiter.join(5)
        assert acquired == [conn]

    def test_factory_failure_frees_slot(self):
        calls = []

        def factory():
            calls.append(1)
            if len(calls) == 1:
                raise OSError("boom")
            return FakeConnection()

        pool = ConnectionPool(factory, maxsize=1, acquire_timeout=0.05)
        with pytest.raises(OSError):
            pool.acquire()
        assert isinstance(pool.acquire(), FakeConnection)

    def test_invalid_size(self):
        with pytest.raises(DockerConfigurationError):
            ConnectionPool(FakeConnection, maxsize=0)


def test_build_url_encoding():
    url = DaemonHttpClient.build_url("/v1.41/images/json", {"all": False, "filters": {"a": ["b c"]}, "x": None})
    assert url == "/v1.41/images/json?all=0&filters=%7B%22a%22%3A%5B%22b%20c%22%5D%7D"


def test_response_header_lookup_is_case_insensitive():
    response = DaemonResponse(200, b'{"a": 1}', {"API-Version": "1.41"})
    assert response.header("Api-Version") == "1.41"
    assert response.json() == {"a": 1}
