import json
import os
import logging

import pytest
from click.testing import CliRunner

from dak.CLI.main import cli
from mock_daemon import Reply

API = "/v1.41"


@pytest.fixture
def runner():
    yield CliRunner()
    # the CLI attaches a handler to the runner's stderr
    logging.getLogger("dak").handlers.clear()


def _host(mock_daemon):
    return f"unix://{mock_daemon.socket_path}"


def test_help(runner):
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    for command in ("build", "pull", "push", "ps", "logs", "network-create", "compose-build"):
        assert command in result.output


def test_tcp_host_is_rejected(runner):
    with runner.isolated_filesystem():
        result = runner.invoke(cli, ["--host", "tcp://127.0.0.1:2375", "version"])
    assert result.exit_code != 0
    assert "Error" in result.output


def test_version(runner, mock_daemon):
    with runner.isolated_filesystem():
        result = runner.invoke(cli, ["--host", _host(mock_daemon), "version"])
    assert result.exit_code == 0, result.output
    assert result.output.strip().endswith("1.41")


def test_unreachable_daemon(runner, tmp_path):
    with runner.isolated_filesystem():
        result = runner.invoke(cli, ["--host", f"unix://{tmp_path}/none.sock", "version"])
    assert result.exit_code == 1
    assert "Cannot connect" in result.output


def test_ps(runner, mock_daemon):
    mock_daemon.route("GET", f"{API}/containers/json", Reply(200, json.dumps([
        {"Id": "0123456789abcdef", "Names": ["/web"], "Image": "nginx", "State": "running"},
    ]).encode()))
    with runner.isolated_filesystem():
        result = runner.invoke(cli, ["--host", _host(mock_daemon), "ps", "--all"])
    assert result.exit_code == 0, result.output
    assert "0123456789ab" in result.output
    assert "web" in result.output
    assert mock_daemon.calls("GET", f"{API}/containers/json")[0].query["all"] == "1"


def test_pull_failure(runner, mock_daemon):
    mock_daemon.route("POST", f"{API}/images/create", Reply(500, b'{"message":"no such image"}'))
    with runner.isolated_filesystem():
        result = runner.invoke(cli, ["--host", _host(mock_daemon), "pull", "missing:1"])
    assert result.exit_code == 1
    assert "no such image" in result.output


def test_network_create(runner, mock_daemon):
    mock_daemon.route("POST", f"{API}/networks/create", Reply(201, b'{"Id":"net42"}'))
    with runner.isolated_filesystem():
        result = runner.invoke(cli, ["--host", _host(mock_daemon), "network-create", "backend"])
    assert result.exit_code == 0, result.output
    assert "net42" in result.output


def test_compose_build_skips_ignored_services(runner, mock_daemon):
    mock_daemon.route("POST", f"{API}/build", Reply(chunks=[
        b'{"stream":"Step 1/1 : FROM busybox\\n"}\r\n',
        b'{"aux":{"ID":"sha256:cafe"}}\r\n',
    ]))
    compose = (
        "services:\n"
        "  app:\n"
        "    image: demo/app:1\n"
        "    build: ./app\n"
        "  skipped:\n"
        "    build: ./app\n"
        "    x-dak:\n"
        "      ignoreBuild: true\n"
        "  db:\n"
        "    image: postgres\n"
    )
    with runner.isolated_filesystem():
        with open("docker-compose.yml", "w") as f:
            f.write(compose)
        os.mkdir("app")
        with open(os.path.join("app", "Dockerfile"), "w") as f:
            f.write("FROM busybox\n")
        result = runner.invoke(cli, ["--host", _host(mock_daemon), "compose-build"])

    assert result.exit_code == 0, result.output
    assert "Skipping skipped (ignoreBuild)" in result.output
    assert "Built app -> demo/app:1 (sha256:cafe)" in result.output
    builds = mock_daemon.calls("POST", f"{API}/build")
    assert len(builds) == 1
    assert builds[0].query["t"] == "demo/app:1"
