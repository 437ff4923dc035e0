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
Registry credentials and their X-Registry-Auth header encoding.
"""
import base64
import json
from enum import Enum
from typing import Any, ClassVar, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict


class RegistryAuthKind(str, Enum):
    """
    Direction of a registry operation, used to pick the matching credentials.
    """
    PUSH = "push"
    PULL = "pull"


class AuthConfig(BaseModel):
    """
    Credentials for a single registry request.

    The header form is base64 over compact JSON with a fixed key order, so the
    same credentials always produce the same header bytes.
    """
    model_config = ConfigDict(frozen=True)

    username: Optional[str] = None
    password: Optional[str] = None
    email: Optional[str] = None
    identity_token: Optional[str] = None

    HEADER_KEYS: ClassVar[tuple] = ("username", "password", "email")

    @classmethod
    def from_credentials_encoded(cls, encoded: str, email: Optional[str] = None) -> "AuthConfig":
        """
        Build from a base64 encoded ``user:password`` pair as found in
        ``~/.docker/config.json``.

        :param encoded: base64 of ``user:password``.
        :param email: optional email to carry along.
        :return: the decoded AuthConfig.
        """
        decoded = base64.b64decode(encoded).decode("utf-8")
        if ":" not in decoded:
            raise ValueError("Encoded credentials must have the form 'user:password'")
        username, password = decoded.split(":", 1)
        return cls(username=username, password=password, email=email)

    @classmethod
    def from_map(cls, params: Mapping[str, Any]) -> "AuthConfig":
        """Build from a plugin style configuration map."""
        return cls(
            username=params.get("username"),
            password=params.get("password"),
            email=params.get("email"),
            identity_token=params.get("authToken"),
        )

    def with_identity_token(self, token: Optional[str]) -> "AuthConfig":
        """Return a copy carrying the given identity token."""
        return self.model_copy(update={"identity_token": token})

    def to_json(self) -> str:
        payload: Dict[str, str] = {}
        for key in self.HEADER_KEYS:
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        if self.identity_token is not None:
            payload["identitytoken"] = self.identity_token
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)

    def to_header_value(self) -> str:
        """
        Encode the credentials for the ``X-Registry-Auth`` header.

        The daemon decodes the header with the URL-safe alphabet (``-`` and ``_``
        instead of ``+`` and ``/``), so readers must use ``base64.urlsafe_b64decode``.

        :return: URL-safe base64 of the compact JSON credentials.
        """
        return base64.urlsafe_b64encode(self.to_json().encode("utf-8")).decode("ascii")

    def is_empty(self) -> bool:
        return not (self.username or self.password or self.identity_token)

    def __repr__(self) -> str:
        # never leak secrets into logs
        return f"AuthConfig(username={self.username!r}, email={self.email!r})"


EMPTY_AUTH_CONFIG = AuthConfig()
