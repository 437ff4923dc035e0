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
Readers for the daemon's chunked responses.

Build, pull and push report progress as a stream of JSON objects; container
logs come as multiplexed frames (or raw bytes for TTY containers). Each
reader consumes a StreamingResponse on a background thread and ends the
matching LogGetHandle exactly once.
"""
import json
import logging
import struct
import threading
from typing import Any, Callable, Dict, Iterable, Iterator, Optional

from ..TRANSPORT.http_client import StreamingResponse
from .exceptions import BuildError, StreamError
from .log_handle import LogGetHandle

logger = logging.getLogger(__name__)

EventCallback = Callable[[Dict[str, Any]], None]


def iter_json_objects(chunks: Iterable[bytes]) -> Iterator[Dict[str, Any]]:
    """
    Decode consecutive JSON objects from a byte stream.

    Objects may be split across chunks or several may share one line.
    """
    decoder = json.JSONDecoder()
    buffer = ""
    for chunk in chunks:
        buffer += chunk.decode("utf-8", errors="replace")
        while True:
            buffer = buffer.lstrip()
            if not buffer:
                break
            try:
                obj, end = decoder.raw_decode(buffer)
            except json.JSONDecodeError:
                # events are line delimited, a finished line that does not decode is garbage
                if "\n" in buffer:
                    line = buffer.split("\n", 1)[0].strip()
                    raise StreamError(f"Malformed data in stream: {line[:200]}")
                # incomplete object, wait for more data
                break
            buffer = buffer[end:]
            yield obj
    leftover = buffer.strip()
    if leftover:
        raise StreamError(f"Malformed data at end of stream: {leftover[:200]}")


class JsonStreamReader:
    """
    Base reader for JSON progress streams.

    Events are handed to ``callback`` in the order the daemon sent them. An
    ``error`` entry ends the stream with ``error_class``.
    """

    error_class = StreamError

    def __init__(self, callback: Optional[EventCallback] = None,
                 log: Optional[logging.Logger] = None):
        self.callback = callback
        self.log = log or logger

    def read(self, response: StreamingResponse):
        for event in iter_json_objects(response.iter_lines()):
            self.process(event)
        return self.result()

    def process(self, event: Dict[str, Any]):
        if "error" in event:
            detail = event.get("errorDetail") or {}
            message = detail.get("message") or event["error"]
            raise self.error_class(str(message).strip(), detail)
        self.handle(event)
        if self.callback is not None:
            self.callback(event)

    def handle(self, event: Dict[str, Any]):
        pass

    def result(self):
        return None


class BuildJsonResponseReader(JsonStreamReader):
    """Reads ``POST /build`` output and remembers the built image id"""

    error_class = BuildError

    def __init__(self, callback: Optional[EventCallback] = None,
                 log: Optional[logging.Logger] = None):
        super().__init__(callback, log)
        self.image_id: Optional[str] = None

    def handle(self, event: Dict[str, Any]):
        if "stream" in event:
            message = event["stream"].rstrip("\n")
            if message.strip():
                self.log.info("%s", message)
            if message.startswith("Successfully built "):
                self.image_id = message.split()[-1]
        aux = event.get("aux")
        if isinstance(aux, dict) and aux.get("ID"):
            self.image_id = aux["ID"]

    def result(self):
        return self.image_id


class PullOrPushResponseReader(JsonStreamReader):
    """Reads ``POST /images/create`` and ``POST /images/{name}/push`` output"""

    def handle(self, event: Dict[str, Any]):
        status = event.get("status")
        if not status:
            return
        layer = event.get("id")
        progress = event.get("progress")
        if progress:
            self.log.debug("%s: %s %s", layer, status, progress)
        elif layer:
            self.log.info("%s: %s", layer, status)
        else:
            self.log.info("%s", status)


class ContainerLogReader:
    """
    Reads ``GET /containers/{id}/logs``.

    Non-TTY containers send frames with an 8 byte header (stream type and
    payload length); TTY containers send raw output.
    """

    STREAM_TYPES = {0: "stdin", 1: "stdout", 2: "stderr"}

    def __init__(self, callback: Optional[EventCallback] = None, tty: bool = False):
        self.callback = callback
        self.tty = tty

    def read(self, response: StreamingResponse):
        if self.tty:
            for line in response.iter_lines():
                self._emit("stdout", line)
            return None

        while True:
            header = self._read_exact(response, 8)
            if not header:
                return None
            stream_type, size = struct.unpack(">BxxxL", header)
            payload = self._read_exact(response, size)
            if len(payload) < size:
                raise StreamError("Log stream ended inside a frame")
            stream = self.STREAM_TYPES.get(stream_type, "stdout")
            for line in payload.splitlines():
                self._emit(stream, line)

    def _emit(self, stream: str, line: bytes):
        if self.callback is not None:
            self.callback({"stream": stream, "line": line.decode("utf-8", errors="replace").rstrip("\r\n")})

    @staticmethod
    def _read_exact(response: StreamingResponse, size: int) -> bytes:
        data = b""
        while len(data) < size:
            chunk = response.read(size - len(data))
            if not chunk:
                break
            data += chunk
        return data


def stream_in_background(response: StreamingResponse, reader, name: str,
                         on_complete: Optional[Callable[[], None]] = None) -> LogGetHandle:
    """
    Consume ``response`` with ``reader`` on a daemon thread.

    Args:
        response: the open stream; it is closed when reading ends
        reader: object whose ``read(response)`` consumes the stream
        name: used for the thread name and in log messages
        on_complete: runs after reading, before the handle is finished

    Returns:
        LogGetHandle which is finished once the stream ends, whether it ended
        normally, with an error payload, or because the connection was closed.
    """
    handle = LogGetHandle(name, on_close=response.close)

    def run():
        error = None
        result = None
        try:
            result = reader.read(response)
            if response.closed:
                error = ConnectionAbortedError(f"{name} was cancelled")
        except Exception as e:
            if response.closed:
                logger.debug("%s cancelled: %s", name, e)
            error = e
        finally:
            response.close()
        if on_complete is not None:
            try:
                on_complete()
            except Exception as e:
                if error is None:
                    error = e
                else:
                    logger.warning("%s: cleanup failed after error: %s", name, e)
        handle.finish(error, result)

    thread = threading.Thread(target=run, name=f"dak-{name}", daemon=True)
    thread.start()
    return handle
