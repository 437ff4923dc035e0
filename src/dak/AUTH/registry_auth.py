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
Resolution of registry credentials from the configured sources.
"""
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Type

from ..ACCESS.exceptions import AuthResolutionError
from ..MODELS.auth_config import AuthConfig, RegistryAuthKind
from .extenders import Extender, IdentityTokenExtender
from .handlers import (
    AuthHandler,
    Decryptor,
    DockerConfigAuthHandler,
    EnvironmentAuthHandler,
    InlineConfigAuthHandler,
    ServerListAuthHandler,
)

logger = logging.getLogger(__name__)

DEFAULT_HANDLER_ORDER = ("environment", "inline", "servers", "docker-config")


def _identity(secret: str) -> str:
    return secret


class RegistryAuthFactory:
    """
    Asks credential handlers in a fixed order and post-processes the result
    with extenders.

    Handlers and extenders are looked up by id in the static HANDLERS and
    EXTENDERS tables; each id maps to a class taking keyword options.
    """

    HANDLERS: Dict[str, Type[AuthHandler]] = {
        EnvironmentAuthHandler.id: EnvironmentAuthHandler,
        InlineConfigAuthHandler.id: InlineConfigAuthHandler,
        ServerListAuthHandler.id: ServerListAuthHandler,
        DockerConfigAuthHandler.id: DockerConfigAuthHandler,
    }

    EXTENDERS: Dict[str, Type[Extender]] = {
        IdentityTokenExtender.id: IdentityTokenExtender,
    }

    def __init__(self, handlers: Sequence[str] = DEFAULT_HANDLER_ORDER,
                 extenders: Sequence[str] = (),
                 options: Optional[Mapping[str, Mapping[str, Any]]] = None,
                 decryptor: Optional[Decryptor] = None,
                 skip_extended_auth: bool = False,
                 log: Optional[logging.Logger] = None):
        """
        :param handlers: handler ids in lookup order.
        :param extenders: extender ids in application order.
        :param options: keyword arguments per id, e.g. ``{"inline": {"config": {...}}}``.
        :param decryptor: turns stored secrets into clear text; identity by default.
        :param skip_extended_auth: do not run extenders.
        :param log: logger for diagnostics.
        :raises ValueError: for an unknown handler or extender id.
        """
        options = options or {}
        self.decryptor = decryptor or _identity
        self.skip_extended_auth = skip_extended_auth
        self.log = log or logger
        self.handlers: List[AuthHandler] = [
            self._instantiate(self.HANDLERS, "handler", name, options) for name in handlers
        ]
        self.extenders: List[Extender] = [
            self._instantiate(self.EXTENDERS, "extender", name, options) for name in extenders
        ]

    @staticmethod
    def _instantiate(table: Mapping[str, Callable[..., Any]], kind: str, name: str,
                     options: Mapping[str, Mapping[str, Any]]):
        if name not in table:
            raise ValueError(f"Unknown registry auth {kind} '{name}' (known: {', '.join(sorted(table))})")
        return table[name](**dict(options.get(name) or {}))

    def create_auth_config(self, kind: RegistryAuthKind, user: Optional[str] = None,
                           registry: Optional[str] = None) -> Optional[AuthConfig]:
        """
        Resolve credentials for a push or pull.

        :param kind: push or pull.
        :param user: user to prefer when several server entries match.
        :param registry: registry host, None for the default registry.
        :return: the first credentials a handler produced, extended, or None.
        :raises AuthResolutionError: when a handler or extender fails.
        """
        for handler in self.handlers:
            auth = handler.create(kind, user, registry, self.decryptor)
            if auth is None:
                continue
            self.log.debug("Registry auth for %s (%s) from '%s'", registry or "default registry",
                           kind.value, handler.id)
            return self._extend(auth, registry)
        return None

    def _extend(self, auth: AuthConfig, registry: Optional[str]) -> AuthConfig:
        if registry is None or self.skip_extended_auth:
            return auth
        for extender in self.extenders:
            if extender.applies_to(registry):
                auth = extender.extend(auth, registry)
        return auth

    @classmethod
    def from_settings(cls, settings, environ: Optional[Mapping[str, str]] = None,
                      decryptor: Optional[Decryptor] = None,
                      log: Optional[logging.Logger] = None) -> "RegistryAuthFactory":
        """Build a factory from AccessSettings."""
        options: Dict[str, Dict[str, Any]] = {
            "inline": {"config": settings.auth},
            "servers": {"servers": settings.servers},
        }
        if environ is not None:
            options["environment"] = {"environ": environ}
        if settings.credential_helper:
            options["identity-token"] = {"helper_name": settings.credential_helper}
        try:
            return cls(
                handlers=settings.auth_handlers,
                extenders=settings.auth_extenders,
                options=options,
                decryptor=decryptor,
                skip_extended_auth=settings.skip_extended_auth,
                log=log,
            )
        except TypeError as e:
            raise AuthResolutionError(f"Invalid registry auth options: {e}") from e
