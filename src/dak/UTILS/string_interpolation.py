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
Utilities for string interpolation using environment variables.
"""
import logging
import re
from typing import Mapping

logger = logging.getLogger(__name__)

# $$ | ${VAR} | ${VAR:-default} | ${VAR-default} | ${VAR:+alt} | ${VAR:?message} | $VAR
_PATTERN = re.compile(
    r"\$(?:(?P<escaped>\$)"
    r"|\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)(?:(?P<op>:?[-+?])(?P<arg>[^}]*))?\}"
    r"|(?P<named>[A-Za-z_][A-Za-z0-9_]*))"
)


class EnvironmentInterpolator:
    """
    Interpolates environment variables in compose style templates.
    Supports ${VAR}, $VAR, ${VAR:-default}, ${VAR-default}, ${VAR:+value},
    ${VAR:?message} and $$ for a literal dollar sign.
    """

    @staticmethod
    def interpolate(template: str, context: Mapping[str, str], strict: bool = True) -> str:
        """
        Interpolates environment variables in the template string using the provided context.

        :param template: The string containing placeholders.
        :param context: The environment variables context.
        :param strict: raise for unset variables without default instead of using an empty string.
        :return: The interpolated string.
        :raises KeyError: If a variable is unset, has no default and ``strict`` is set,
            or a ``${VAR:?message}`` variable is unset.
        """

        def replace(match):
            if match.group("escaped"):
                return "$"
            name = match.group("braced") or match.group("named")
            op = match.group("op")
            arg = match.group("arg") or ""
            value = context.get(name)

            if op == ":-":
                return value if value else arg
            if op == "-":
                return value if value is not None else arg
            if op in (":+", "+"):
                present = bool(value) if op == ":+" else value is not None
                return arg if present else ""
            if op in (":?", "?"):
                missing = not value if op == ":?" else value is None
                if missing:
                    raise KeyError(arg or f"Variable {name} is required")
                return value

            if value is not None:
                return value
            if strict:
                raise KeyError(f"Variable {name} not found in context")
            logger.warning("Variable %s is not set, substituting an empty string", name)
            return ""

        return _PATTERN.sub(replace, template)
