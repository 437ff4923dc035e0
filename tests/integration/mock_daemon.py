"""
A fake Docker daemon serving HTTP/1.1 on a Unix domain socket.
"""
import re
import socketserver
import threading
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler
from typing import Callable, Dict, List, Optional
from urllib.parse import parse_qs, unquote, urlsplit


@dataclass
class Reply:
    status: int = 200
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)
    chunks: Optional[List[bytes]] = None
    custom: Optional[Callable] = None


@dataclass
class Recorded:
    method: str
    path: str
    query: Dict[str, str]
    headers: Dict[str, str]
    body: bytes


def start_chunked(handler, status=200, headers=None):
    handler.send_response(status)
    handler.send_header("Content-Type", "application/json")
    handler.send_header("Transfer-Encoding", "chunked")
    for key, value in (headers or {}).items():
        handler.send_header(key, value)
    handler.end_headers()


def write_chunk(handler, chunk: bytes):
    handler.wfile.write(b"%x\r\n%s\r\n" % (len(chunk), chunk))
    handler.wfile.flush()


def send_chunked(handler, status, chunks, headers=None):
    start_chunked(handler, status, headers)
    for chunk in chunks:
        write_chunk(handler, chunk)
    handler.wfile.write(b"0\r\n\r\n")


class _Handler(BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"

    def log_message(self, format, *args):
        pass

    def _handle(self):
        length = int(self.headers.get("Content-Length") or 0)
        body = self.rfile.read(length) if length else b""
        split = urlsplit(self.path)
        path = unquote(split.path)
        daemon = self.server.mock_daemon
        daemon.requests.append(Recorded(
            self.command,
            path,
            {key: values[0] for key, values in parse_qs(split.query).items()},
            dict(self.headers.items()),
            body,
        ))
        reply = daemon.reply_for(self.command, path)
        if reply.custom is not None:
            reply.custom(self)
        elif reply.chunks is not None:
            send_chunked(self, reply.status, reply.chunks, reply.headers)
        else:
            self.send_response(reply.status)
            for key, value in reply.headers.items():
                self.send_header(key, value)
            self.send_header("Content-Length", str(len(reply.body)))
            self.end_headers()
            self.wfile.write(reply.body)

    do_GET = do_POST = do_DELETE = do_HEAD = _handle


class _Server(socketserver.ThreadingMixIn, socketserver.UnixStreamServer):
    daemon_threads = True


class MockDaemon:
    """
    Routes are matched in registration order on method and path regex, the
    path being percent-decoded. A route given several replies hands them out
    one per request and keeps repeating the last one. Unmatched requests get
    a 404.
    """

    def __init__(self, socket_path: str):
        self.socket_path = socket_path
        self.requests: List[Recorded] = []
        self._routes = []
        self._lock = threading.Lock()
        self._server = _Server(socket_path, _Handler)
        self._server.mock_daemon = self
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)

    def route(self, method: str, pattern: str, *replies: Reply) -> "MockDaemon":
        self._routes.append((method, re.compile(pattern), list(replies)))
        return self

    def clear_routes(self):
        self._routes.clear()

    def reply_for(self, method: str, path: str) -> Reply:
        with self._lock:
            for route_method, pattern, replies in self._routes:
                if route_method == method and pattern.fullmatch(path):
                    return replies.pop(0) if len(replies) > 1 else replies[0]
        return Reply(404, b'{"message":"page not found"}')

    def calls(self, method: str, pattern: str) -> List[Recorded]:
        regex = re.compile(pattern)
        return [r for r in self.requests if r.method == method and regex.fullmatch(r.path)]

    def start(self):
        self._thread.start()

    def stop(self):
        self._server.shutdown()
        self._server.server_close()
