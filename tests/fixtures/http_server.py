# SPDX-License-Identifier: LGPL-3.0-or-later
"""Throwaway HTTP server serving in-memory files, with optional basic auth.

`redirects` maps a path to a Location answered with 302; paths in `stall`
send nothing until the server is closed.
"""
from __future__ import annotations

import base64
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Dict, Optional, Tuple


class StaticServer:
    def __init__(self, files: Dict[str, bytes], *, auth: Optional[Tuple[str, str]] = None,
                 protected: Tuple[str, ...] = (), redirects: Optional[Dict[str, str]] = None,
                 stall: Tuple[str, ...] = ()):
        self.files = dict(files)
        self.auth = auth
        self.protected = set(protected)
        self.redirects = dict(redirects or {})
        self.stall = set(stall)
        self._release = threading.Event()
        self.requests = []
        self.httpd = ThreadingHTTPServer(("127.0.0.1", 0), self._handler())
        self.httpd.daemon_threads = True
        self._thread = threading.Thread(target=self.httpd.serve_forever, daemon=True)

    def url(self, path: str) -> str:
        host, port = self.httpd.server_address[:2]
        return f"http://{host}:{port}{path}"

    def _handler(self):
        server = self

        class Handler(BaseHTTPRequestHandler):
            def log_message(self, *args):
                pass

            def do_GET(self):  # noqa: N802
                server.requests.append((self.path, self.headers.get("Authorization")))
                if self.path.startswith("/status/"):
                    self.send_response(int(self.path.rsplit("/", 1)[-1]))
                    self.send_header("Content-Length", "0")
                    self.end_headers()
                    return
                if self.path in server.stall:
                    server._release.wait(30)
                    return
                if self.path in server.redirects:
                    self.send_response(302)
                    self.send_header("Location", server.redirects[self.path])
                    self.send_header("Content-Length", "0")
                    self.end_headers()
                    return
                if self.path in server.protected and server.auth:
                    want = "Basic " + base64.b64encode(":".join(server.auth).encode()).decode()
                    if self.headers.get("Authorization") != want:
                        self.send_response(401)
                        self.send_header("WWW-Authenticate", 'Basic realm="images"')
                        self.send_header("Content-Length", "0")
                        self.end_headers()
                        return
                body = server.files.get(self.path)
                if body is None:
                    self.send_response(404)
                    self.send_header("Content-Length", "0")
                    self.end_headers()
                    return
                self.send_response(200)
                self.send_header("Content-Type", "application/octet-stream")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

        return Handler

    def __enter__(self) -> "StaticServer":
        self._thread.start()
        return self

    def __exit__(self, *exc) -> None:
        self._release.set()
        self.httpd.shutdown()
        self.httpd.server_close()
        self._thread.join(timeout=5)
