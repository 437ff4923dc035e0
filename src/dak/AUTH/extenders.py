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
Post-processing of resolved registry credentials.
"""
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from ..ACCESS.exceptions import AuthResolutionError
from ..MODELS.auth_config import AuthConfig
from .credential_helper import CredentialHelperClient

logger = logging.getLogger(__name__)


class Extender(ABC):
    """Adds registry specific information to already resolved credentials."""

    id: str = ""

    @abstractmethod
    def applies_to(self, registry: str) -> bool:
        ...

    @abstractmethod
    def extend(self, given: AuthConfig, registry: str) -> AuthConfig:
        ...


class IdentityTokenExtender(Extender):
    """
    Attaches an identity token obtained from a credential helper.

    Registries whose login flow hands out OAuth refresh tokens expect them in
    the ``identitytoken`` field rather than a password.
    """

    id = "identity-token"

    def __init__(self, helper_name: Optional[str] = None, registries=None,
                 helper_factory: Callable[[str], CredentialHelperClient] = CredentialHelperClient):
        """
        :param helper_name: credential helper to ask, e.g. ``ecr-login``.
        :param registries: registries this extender handles; all when empty.
        :param helper_factory: creates the helper client.
        """
        self.helper_name = helper_name
        self.registries = set(registries or ())
        self.helper_factory = helper_factory

    def applies_to(self, registry: str) -> bool:
        if not self.helper_name:
            return False
        return not self.registries or registry in self.registries

    def extend(self, given: AuthConfig, registry: str) -> AuthConfig:
        if given.identity_token:
            return given
        helper = self.helper_factory(self.helper_name)
        try:
            token = helper.get_identity_token(registry)
        except OSError as e:
            raise AuthResolutionError(f"Cannot fetch identity token for {registry}: {e}") from e
        if token is None:
            return given
        logger.debug("AuthConfig: identity token for %s from %s", registry, helper.command)
        return given.with_identity_token(token)
