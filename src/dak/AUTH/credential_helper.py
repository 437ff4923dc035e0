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
Client for docker credential helpers (``docker-credential-<name>``).
"""
import json
import logging
import subprocess
from typing import Optional

from ..ACCESS.exceptions import AuthResolutionError
from ..MODELS.auth_config import AuthConfig

logger = logging.getLogger(__name__)

# Username returned by helpers when the secret is an identity token
TOKEN_USERNAME = "<token>"


class CredentialHelperClient:
    """
    Runs a credential helper binary following the docker credential helper
    protocol: the server URL goes to stdin of ``get``, JSON comes back.
    """

    def __init__(self, name: str, timeout: float = 30.0):
        """
        :param name: helper suffix, e.g. ``osxkeychain`` or ``desktop``.
        :param timeout: seconds to wait for the helper process.
        """
        self.name = name
        self.timeout = timeout

    @property
    def command(self) -> str:
        return f"docker-credential-{self.name}"

    def get_auth_config(self, registry: str) -> Optional[AuthConfig]:
        """
        Look up credentials for ``registry``.

        :param registry: registry host or URL to ask the helper for.
        :return: the credentials, or None when the helper knows nothing about it.
        :raises AuthResolutionError: when the helper fails or answers garbage.
        """
        for candidate in _registry_candidates(registry):
            credentials = self._get(candidate)
            if credentials is not None:
                return credentials
        return None

    def get_identity_token(self, registry: str) -> Optional[str]:
        for candidate in _registry_candidates(registry):
            raw = self._get_raw(candidate)
            if raw is not None and raw.get("Username") == TOKEN_USERNAME:
                return raw.get("Secret")
        return None

    def _get(self, server_url: str) -> Optional[AuthConfig]:
        raw = self._get_raw(server_url)
        if raw is None:
            return None
        if raw.get("Username") == TOKEN_USERNAME:
            return AuthConfig(identity_token=raw.get("Secret"))
        return AuthConfig(username=raw.get("Username"), password=raw.get("Secret"))

    def _get_raw(self, server_url: str) -> Optional[dict]:
        try:
            output = self._run("get", server_url)
        except AuthResolutionError as e:
            if "credentials not found" in str(e).lower():
                return None
            raise
        try:
            data = json.loads(output)
        except json.JSONDecodeError as e:
            raise AuthResolutionError(
                f"Credential helper {self.command} returned malformed data for {server_url}"
            ) from e
        if not isinstance(data, dict) or "Secret" not in data:
            raise AuthResolutionError(
                f"Credential helper {self.command} returned no secret for {server_url}"
            )
        return data

    def _run(self, action: str, stdin: Optional[str]) -> str:
        logger.debug("Running %s %s", self.command, action)
        try:
            completed = subprocess.run(
                [self.command, action],
                input=stdin,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise AuthResolutionError(f"Cannot run credential helper {self.command}: {e}") from e
        if completed.returncode != 0:
            message = (completed.stdout or completed.stderr or "").strip()
            raise AuthResolutionError(
                f"Credential helper {self.command} {action} failed: {message}"
            )
        return completed.stdout


def _registry_candidates(registry: str):
    yield registry
    if "://" not in registry:
        yield f"https://{registry}"
