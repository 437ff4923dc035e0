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
Logging setup for the command line tool.
"""
import logging
import sys
from typing import Union

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
SIMPLE_FORMAT = "%(message)s"


def configure_logging(level: Union[int, str] = logging.INFO, verbose: bool = False) -> logging.Logger:
    """
    Attach a stderr handler to the ``dak`` logger.

    Calling it again replaces the handler instead of adding another one.

    :param level: log level name or number.
    :param verbose: use DEBUG and the detailed format.
    :return: the package logger.
    """
    if verbose:
        level = logging.DEBUG
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    package_logger = logging.getLogger("dak")
    for handler in list(package_logger.handlers):
        if getattr(handler, "_dak_handler", False):
            package_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT if verbose else SIMPLE_FORMAT))
    handler._dak_handler = True
    package_logger.addHandler(handler)
    package_logger.setLevel(level)
    package_logger.propagate = False
    return package_logger
