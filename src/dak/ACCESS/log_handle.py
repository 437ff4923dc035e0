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
Completion and error tracking for streamed daemon responses.
"""
import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class LogGetHandle:
    """
    Tracks one streaming operation (build, pull, push or container logs).

    The thread reading the stream is the only writer: it calls finish()
    once the stream ends, passing the exception if it ended badly. After
    finish() the error state never changes and can be read from any thread.
    Callers wait for completion and then check is_error(); stream errors are
    never raised across the thread boundary.
    """

    def __init__(self, name: str = "stream", on_close: Optional[Callable[[], None]] = None):
        self.name = name
        self._on_close = on_close
        self._finished = threading.Event()
        self._lock = threading.Lock()
        self._exception: Optional[BaseException] = None
        self._result = None

    def finish(self, exception: Optional[BaseException] = None, result=None) -> bool:
        """
        Mark the stream as ended. Only the first call has an effect.

        :param exception: error that ended the stream, if any.
        :param result: optional value produced by the stream (e.g. an image id).
        :return: True when this call finished the handle.
        """
        with self._lock:
            if self._finished.is_set():
                return False
            self._exception = exception
            self._result = result
            self._finished.set()
        if exception is not None:
            logger.debug("%s finished with error: %s", self.name, exception)
        else:
            logger.debug("%s finished", self.name)
        return True

    def is_finished(self) -> bool:
        return self._finished.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until finish() was called; returns False on timeout."""
        return self._finished.wait(timeout)

    def is_error(self) -> bool:
        return self._exception is not None

    def get_exception(self) -> Optional[BaseException]:
        return self._exception

    @property
    def result(self):
        return self._result

    def close(self):
        """
        Cancel the operation by closing the underlying connection.

        Whatever the daemon already did (a partially pulled image, for
        instance) stays done.
        """
        if self._on_close is not None:
            self._on_close()

    def __repr__(self) -> str:
        state = "finished" if self.is_finished() else "running"
        if self.is_error():
            state = f"failed: {self._exception}"
        return f"<LogGetHandle {self.name} {state}>"
