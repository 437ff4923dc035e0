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
Unit tests for LogGetHandle and the background stream readers.
"""
import io
import json
import struct
import threading

import pytest

from dak.ACCESS.chunked import (
    BuildJsonResponseReader,
    ContainerLogReader,
    PullOrPushResponseReader,
    iter_json_objects,
    stream_in_background,
)
from dak.ACCESS.exceptions import BuildError, StreamError
from dak.ACCESS.log_handle import LogGetHandle


class FakeStream:
    """Minimal stand-in for StreamingResponse backed by bytes."""

    def __init__(self, data: bytes):
        self._buffer = io.BytesIO(data)
        self.closed = False
        self.close_calls = 0

    def readline(self):
        return self._buffer.readline()

    def read(self, size=-1):
        return self._buffer.read(size)

    def iter_lines(self):
        while True:
            line = self._buffer.readline()
            if not line:
                return
            yield line

    def close(self):
        self.closed = True
        self.close_calls += 1


class BlockingStream(FakeStream):
    """Blocks in readline until closed, like a socket read of an idle stream."""

    def __init__(self, first: bytes):
        super().__init__(first)
        self._unblock = threading.Event()

    def readline(self):
        line = self._buffer.readline()
        if line:
            return line
        self._unblock.wait(5)
        raise OSError("connection shut down")

    def iter_lines(self):
        while True:
            yield self.readline()

    def close(self):
        super().close()
        self._unblock.set()


def _lines(*events) -> bytes:
    return b"".join(json.dumps(e).encode() + b"\r\n" for e in events)


class TestLogGetHandle:
    """Tests for the handle state machine."""

    def test_first_finish_wins(self):
        """Later finish() calls do not change the outcome."""
        handle = LogGetHandle("test")
        error = StreamError("boom")
        assert handle.finish(error)
        assert not handle.finish(None)
        assert not handle.finish(StreamError("other"))
        assert handle.is_error()
        assert handle.get_exception() is error

    def test_success(self):
        handle = LogGetHandle()
        assert not handle.is_finished()
        handle.finish(result="sha")
        assert handle.is_finished()
        assert handle.wait(0)
        assert not handle.is_error()
        assert handle.get_exception() is None
        assert handle.result == "sha"

    def test_wait_times_out(self):
        """wait() returns False while the stream is still running."""
        assert not LogGetHandle().wait(0.01)

    def test_close_invokes_callback(self):
        closed = []
        LogGetHandle(on_close=lambda: closed.append(True)).close()
        assert closed == [True]


class TestJsonStream:
    """Tests for JSON stream decoding."""

    def test_objects_split_across_chunks(self):
        chunks = [b'{"stream":"a"}{"str', b'eam":"b"}\n', b'  {"stream":"c"}']
        assert [o["stream"] for o in iter_json_objects(chunks)] == ["a", "b", "c"]

    def test_malformed_tail(self):
        with pytest.raises(StreamError):
            list(iter_json_objects([b'{"stream":"a"}\n{"broken']))

    def test_malformed_line_fails_without_waiting_for_more(self):
        """A garbage line is reported as soon as its line end arrives."""
        consumed = []

        def chunks():
            for chunk in (b'{"stream":"a"}\nnot json\n', b'{"stream":"b"}\n'):
                consumed.append(chunk)
                yield chunk

        objects = iter_json_objects(chunks())
        assert next(objects) == {"stream": "a"}
        with pytest.raises(StreamError, match="not json"):
            next(objects)
        assert len(consumed) == 1

    def test_partial_line_waits_for_more(self):
        chunks = [b'{"stream":', b'"a"}\r\n']
        assert list(iter_json_objects(chunks)) == [{"stream": "a"}]

    def test_build_reader_collects_image_id(self):
        events = []
        reader = BuildJsonResponseReader(events.append)
        stream = FakeStream(_lines(
            {"stream": "Step 1/2 : FROM busybox\n"},
            {"aux": {"ID": "sha256:abc"}},
            {"stream": "Successfully built abc\n"},
        ))
        assert reader.read(stream) == "abc"
        assert len(events) == 3

    def test_build_reader_error_detail(self):
        """An error entry raises BuildError with the detail message."""
        reader = BuildJsonResponseReader()
        stream = FakeStream(_lines(
            {"stream": "Step 1/1 : RUN false\n"},
            {"errorDetail": {"code": 1, "message": "returned a non-zero code: 1"},
             "error": "returned a non-zero code: 1"},
        ))
        with pytest.raises(BuildError) as exc:
            reader.read(stream)
        assert "non-zero code" in str(exc.value)
        assert exc.value.detail["code"] == 1

    def test_pull_reader_error(self):
        reader = PullOrPushResponseReader()
        stream = FakeStream(_lines({"status": "Pulling"}, {"error": "manifest unknown"}))
        with pytest.raises(StreamError) as exc:
            reader.read(stream)
        assert not isinstance(exc.value, BuildError)


class TestContainerLogReader:
    """Tests for multiplexed log frames."""

    @staticmethod
    def _frame(stream_type: int, payload: bytes) -> bytes:
        return struct.pack(">BxxxL", stream_type, len(payload)) + payload

    def test_multiplexed_frames(self):
        events = []
        data = self._frame(1, b"hello\nworld\n") + self._frame(2, b"oops\n")
        ContainerLogReader(events.append).read(FakeStream(data))
        assert events == [
            {"stream": "stdout", "line": "hello"},
            {"stream": "stdout", "line": "world"},
            {"stream": "stderr", "line": "oops"},
        ]

    def test_truncated_frame(self):
        data = self._frame(1, b"hello\n")[:-2]
        with pytest.raises(StreamError):
            ContainerLogReader().read(FakeStream(data))

    def test_tty_raw_lines(self):
        events = []
        ContainerLogReader(events.append, tty=True).read(FakeStream(b"a\r\nb\n"))
        assert [e["line"] for e in events] == ["a", "b"]


class TestStreamInBackground:
    """Tests for background consumption."""

    def test_events_in_order_and_single_finish(self):
        events = []
        stream = FakeStream(_lines({"stream": "1"}, {"stream": "2"}, {"stream": "3"}))
        handle = stream_in_background(stream, BuildJsonResponseReader(events.append), "build")
        assert handle.wait(5)
        assert not handle.is_error()
        assert [e["stream"] for e in events] == ["1", "2", "3"]
        assert stream.closed

    def test_error_payload_captured(self):
        """Stream errors end up in the handle instead of being raised."""
        stream = FakeStream(_lines({"stream": "1"}, {"error": "failed"}))
        handle = stream_in_background(stream, BuildJsonResponseReader(), "build")
        assert handle.wait(5)
        assert isinstance(handle.get_exception(), BuildError)

    def test_cancel_finishes_with_error(self):
        """Closing the handle ends a blocked stream and records the failure."""
        events = []
        stream = BlockingStream(_lines({"status": "Downloading"}))
        handle = stream_in_background(stream, PullOrPushResponseReader(events.append), "pull")
        handle.close()
        assert handle.wait(5)
        assert handle.is_error()
        assert isinstance(handle.get_exception(), OSError)

    def test_on_complete_runs_before_finish(self):
        order = []
        stream = FakeStream(_lines({"status": "Pushed"}))

        def cleanup():
            order.append("cleanup")

        handle = stream_in_background(stream, PullOrPushResponseReader(), "push", on_complete=cleanup)
        assert handle.wait(5)
        assert order == ["cleanup"]
        assert not handle.is_error()

    def test_on_complete_failure_reported(self):
        stream = FakeStream(_lines({"status": "Pushed"}))

        def cleanup():
            raise StreamError("tag left behind")

        handle = stream_in_background(stream, PullOrPushResponseReader(), "push", on_complete=cleanup)
        assert handle.wait(5)
        assert "tag left behind" in str(handle.get_exception())
