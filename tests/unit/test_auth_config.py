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
Unit tests for registry credentials and their header encoding.
"""
import base64
import json

import pytest
from pydantic import ValidationError

from dak.MODELS.auth_config import EMPTY_AUTH_CONFIG, AuthConfig, RegistryAuthKind


def _decode(header: str) -> str:
    return base64.urlsafe_b64decode(header.encode("ascii")).decode("utf-8")


class TestAuthConfigHeader:
    """Tests for the X-Registry-Auth encoding."""

    def test_key_order_and_compact_json(self):
        """Keys come in the order username, password, email without whitespace."""
        auth = AuthConfig(username="roland", password="#>secrets??", email="roland@jolokia.org")
        assert _decode(auth.to_header_value()) == (
            '{"username":"roland","password":"#>secrets??","email":"roland@jolokia.org"}'
        )

    def test_header_is_deterministic(self):
        """Equal credentials always give identical header bytes."""
        first = AuthConfig(username="u", password="p", email="e@x")
        second = AuthConfig(email="e@x", password="p", username="u")
        assert first.to_header_value() == second.to_header_value()

    def test_missing_values_are_omitted(self):
        """None fields do not show up in the JSON."""
        auth = AuthConfig(username="u", password="p")
        assert json.loads(_decode(auth.to_header_value())) == {"username": "u", "password": "p"}

    def test_identity_token_appended_last(self):
        """The identity token is added after the other keys."""
        auth = AuthConfig(username="u", password="p", identity_token="tok")
        decoded = _decode(auth.to_header_value())
        assert decoded == '{"username":"u","password":"p","identitytoken":"tok"}'

    def test_never_emits_auth_key(self):
        """Encoded credentials are not forwarded as an 'auth' field."""
        auth = AuthConfig.from_credentials_encoded(base64.b64encode(b"user:pass").decode())
        assert "auth" not in json.loads(_decode(auth.to_header_value()))

    def test_header_is_url_safe(self):
        """Characters that map to '+' or '/' in plain base64 are encoded URL safe."""
        auth = AuthConfig(username="??>>??", password="~~~")
        header = auth.to_header_value()
        assert "+" not in header and "/" not in header


class TestAuthConfigConstruction:
    """Tests for the AuthConfig factories."""

    def test_from_credentials_encoded_splits_on_first_colon(self):
        """Passwords may contain colons."""
        encoded = base64.b64encode(b"user:pa:ss").decode()
        auth = AuthConfig.from_credentials_encoded(encoded, "me@example.com")
        assert auth.username == "user"
        assert auth.password == "pa:ss"
        assert auth.email == "me@example.com"

    def test_encoded_and_direct_give_same_header(self):
        encoded = base64.b64encode(b"user:secret").decode()
        from_encoded = AuthConfig.from_credentials_encoded(encoded, "me@example.com")
        direct = AuthConfig(username="user", password="secret", email="me@example.com")
        assert from_encoded.to_header_value() == direct.to_header_value()

    def test_from_credentials_encoded_requires_colon(self):
        """Encoded credentials without separator are rejected."""
        with pytest.raises(ValueError):
            AuthConfig.from_credentials_encoded(base64.b64encode(b"nocolon").decode())

    def test_from_map(self):
        """Plugin style maps use authToken for the identity token."""
        auth = AuthConfig.from_map({"username": "u", "password": "p", "authToken": "t"})
        assert auth.identity_token == "t"
        assert auth.email is None

    def test_frozen(self):
        """AuthConfig is immutable."""
        auth = AuthConfig(username="u")
        with pytest.raises(ValidationError):
            auth.username = "other"

    def test_with_identity_token_returns_copy(self):
        """Adding a token leaves the original untouched."""
        auth = AuthConfig(username="u", password="p")
        extended = auth.with_identity_token("tok")
        assert extended.identity_token == "tok"
        assert auth.identity_token is None

    def test_empty(self):
        """The anonymous config has no credentials."""
        assert EMPTY_AUTH_CONFIG.is_empty()
        assert not AuthConfig(identity_token="t").is_empty()

    def test_repr_hides_password(self):
        """Secrets stay out of log output."""
        assert "secret" not in repr(AuthConfig(username="u", password="secret"))

    def test_kind_values(self):
        """Kinds map to the lower case section names."""
        assert RegistryAuthKind.PUSH.value == "push"
        assert RegistryAuthKind.PULL.value == "pull"
