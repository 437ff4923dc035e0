import os
import shutil
import socket
import tempfile

import pytest

from dak.ACCESS.docker_access import DockerAccess
from dak.TRANSPORT.http_client import TransportBuilder
from dak.TRANSPORT.socket_strategy import UnixSocketStrategy
from mock_daemon import MockDaemon, Reply


@pytest.fixture
def mock_daemon():
    if not hasattr(socket, "AF_UNIX") or os.name == "nt":
        pytest.skip("Unix domain sockets are not available")
    # AF_UNIX paths are limited to ~100 bytes, keep it short
    directory = tempfile.mkdtemp(prefix="dak-")
    daemon = MockDaemon(os.path.join(directory, "docker.sock"))
    daemon.route("GET", "/version", Reply(200, b'{"ApiVersion":"1.41"}', {"Api-Version": "1.41"}))
    daemon.start()
    yield daemon
    daemon.stop()
    shutil.rmtree(directory, ignore_errors=True)


@pytest.fixture
def access(mock_daemon):
    client = TransportBuilder(mock_daemon.socket_path, max_connections=4,
                              strategy=UnixSocketStrategy(), timeout=10).build()
    docker_access = DockerAccess(client)
    yield docker_access
    docker_access.shutdown()
