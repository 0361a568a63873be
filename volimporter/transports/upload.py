# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# volimporter/transports/upload.py
"""
Upload transport.

Unlike the other providers nothing is fetched outbound: an external upload
mechanism pushes a stream into an UploadChannel and the provider hands that
stream to the copy engine. create_upload_app() builds the FastAPI receiver that
feeds a channel from a request body; it answers the client once the import
outcome is known. UploadServer runs that app under uvicorn.
"""

from __future__ import annotations

import logging
import queue
import socket
import threading
import time
from typing import Any, BinaryIO, Dict, Optional, Tuple

import uvicorn
from fastapi import APIRouter, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import PlainTextResponse
from starlette.requests import ClientDisconnect

from ..core.config import ImporterConfig
from ..core.exceptions import ConversionError, FetchError, FetchTimeoutError, VolImporterError
from ..importer.options import ImportOptions, SourceKind
from .base import SourceReader, TransportProvider, TransportResult

log = logging.getLogger(__name__)


class UploadTicket:
    """One pushed stream and, later, the outcome of importing it."""

    def __init__(self, stream: BinaryIO, size: Optional[int] = None):
        self.stream = stream
        self.size = size
        self.consumed = threading.Event()
        self._resolved = threading.Event()
        self._error: Optional[BaseException] = None

    def mark_consumed(self) -> None:
        self.consumed.set()

    def resolve(self, error: Optional[BaseException] = None) -> None:
        self._error = error
        self.consumed.set()
        self._resolved.set()

    def wait(self, timeout: Optional[float] = None) -> Tuple[bool, Optional[BaseException]]:
        """Block until resolved; returns (resolved, error)."""
        ok = self._resolved.wait(timeout)
        return ok, self._error


class UploadChannel:
    """Single-slot handoff between an upload receiver and the upload provider."""

    def __init__(self) -> None:
        self._slot: "queue.Queue[UploadTicket]" = queue.Queue(maxsize=1)
        self._lock = threading.Lock()
        self._current: Optional[UploadTicket] = None

    def push(self, stream: BinaryIO, size: Optional[int] = None) -> UploadTicket:
        with self._lock:
            if self._current is not None and not self._current.consumed.is_set():
                raise FetchError(msg="An upload is already in progress")
            ticket = UploadTicket(stream, size)
            try:
                self._slot.put_nowait(ticket)
            except queue.Full as e:
                raise FetchError(msg="An upload is already pending", cause=e) from e
            self._current = ticket
            return ticket

    def take(self, timeout: Optional[float]) -> UploadTicket:
        try:
            return self._slot.get(timeout=timeout)
        except queue.Empty as e:
            raise FetchTimeoutError(msg=f"No upload received within {timeout}s", cause=e) from e

    @property
    def current(self) -> Optional[UploadTicket]:
        with self._lock:
            return self._current

    def resolve(self, error: Optional[BaseException] = None) -> None:
        ticket = self.current
        if ticket is not None:
            ticket.resolve(error)


class UploadProvider(TransportProvider):
    kind = SourceKind.UPLOAD

    def __init__(self, channel: UploadChannel, config: Optional[ImporterConfig] = None,
                 *, logger: Optional[logging.Logger] = None) -> None:
        self.channel = channel
        self.config = config or ImporterConfig()
        self.logger = logger or log

    def fetch(self, options: ImportOptions) -> TransportResult:
        self.logger.info("Waiting up to %.0fs for an upload", self.config.upload_wait_timeout_s)
        ticket = self.channel.take(self.config.upload_wait_timeout_s)
        self.logger.info("Upload stream received (size=%s)", ticket.size if ticket.size is not None else "unknown")
        return TransportResult(
            SourceReader(ticket.stream),  # type: ignore[arg-type]
            size=ticket.size,
            description="upload",
            closers=[ticket.mark_consumed],
        )


class _BodyPipe:
    """
    Blocking reader over chunks an async request handler feeds in.

    The handler side never blocks the event loop: feed() runs in the
    threadpool and gives up once the importer has stopped reading.
    """

    _EOF = object()

    def __init__(self, max_chunks: int = 16):
        self._chunks: "queue.Queue[Any]" = queue.Queue(maxsize=max_chunks)
        self._buf = b""
        self._done = False

    def feed(self, item: Any, consumed: threading.Event) -> bool:
        """Queue a chunk (or finish()/fail() marker); False once nobody reads."""
        while not consumed.is_set():
            try:
                self._chunks.put(item, timeout=0.2)
                return True
            except queue.Full:
                continue
        return False

    def finish(self, consumed: threading.Event) -> bool:
        return self.feed(self._EOF, consumed)

    def fail(self, error: BaseException, consumed: threading.Event) -> bool:
        return self.feed(error, consumed)

    def seekable(self) -> bool:
        return False

    def read(self, n: int = -1) -> bytes:
        if n is None or n < 0:
            parts = []
            while True:
                data = self.read(1 << 20)
                if not data:
                    return b"".join(parts)
                parts.append(data)
        if n == 0:
            return b""
        while not self._buf and not self._done:
            item = self._chunks.get()
            if item is self._EOF:
                self._done = True
            elif isinstance(item, BaseException):
                self._done = True
                raise item
            else:
                self._buf = item
        out, self._buf = self._buf[:n], self._buf[n:]
        return out

    def close(self) -> None:
        # the connection belongs to the HTTP server
        pass


def _status_for(error: Optional[BaseException]) -> int:
    if error is None:
        return 200
    if isinstance(error, ConversionError):
        return 400
    if isinstance(error, VolImporterError) and error.reason == "CapacityExceeded":
        return 413
    return 500


def create_upload_app(channel: UploadChannel, *, result_timeout_s: float = 3600.0,
                      logger: Optional[logging.Logger] = None) -> FastAPI:
    """FastAPI app importing the body of a `PUT`/`POST` to any path."""
    lg = logger or log
    router = APIRouter()

    @router.get("/healthz")
    def health_check() -> Dict[str, str]:
        return {"status": "ok"}

    @router.api_route("/{path:path}", methods=["PUT", "POST"])
    async def receive_upload(path: str, request: Request) -> PlainTextResponse:
        length = request.headers.get("content-length")
        size = int(length) if length and length.isdigit() else None
        pipe = _BodyPipe()
        try:
            ticket = channel.push(pipe, size)  # type: ignore[arg-type]
        except FetchError as e:
            return PlainTextResponse(str(e) + "\n", status_code=409)
        lg.info("Upload accepted on /%s (%s bytes)", path, size if size is not None else "unknown")

        received = 0
        reading = True
        try:
            async for chunk in request.stream():
                received += len(chunk)
                if chunk and reading:
                    # once the importer stops reading, the rest of the body is drained unread
                    reading = await run_in_threadpool(pipe.feed, chunk, ticket.consumed)
            if reading:
                if size is not None and received < size:
                    await run_in_threadpool(
                        pipe.fail, FetchError(msg=f"Upload body ended {size - received} bytes early"), ticket.consumed
                    )
                else:
                    await run_in_threadpool(pipe.finish, ticket.consumed)
        except ClientDisconnect as e:
            lg.warning("Upload client disconnected after %d bytes", received)
            await run_in_threadpool(
                pipe.fail, FetchError(msg=f"Upload client disconnected after {received} bytes", cause=e),
                ticket.consumed,
            )

        resolved, error = await run_in_threadpool(ticket.wait, result_timeout_s)
        if not resolved:
            return PlainTextResponse("Import did not finish in time\n", status_code=504)
        return PlainTextResponse(("OK" if error is None else str(error)) + "\n", status_code=_status_for(error))

    app = FastAPI(title="volimporter upload receiver")
    app.include_router(router)
    return app


class UploadServer:
    """Serves create_upload_app() with uvicorn on a background thread."""

    def __init__(self, channel: UploadChannel, host: str = "0.0.0.0", port: int = 8443,
                 *, result_timeout_s: float = 3600.0, logger: Optional[logging.Logger] = None) -> None:
        self.channel = channel
        self.logger = logger or log
        self.app = create_upload_app(channel, result_timeout_s=result_timeout_s, logger=self.logger)
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.bind((host, port))
        self.server = uvicorn.Server(uvicorn.Config(self.app, log_config=None, log_level="warning", access_log=False))
        self._thread: Optional[threading.Thread] = None

    @property
    def address(self) -> Tuple[str, int]:
        host, port = self._sock.getsockname()[:2]
        return str(host), int(port)

    def start(self, timeout_s: float = 10.0) -> None:
        self._thread = threading.Thread(
            target=self.server.run, kwargs={"sockets": [self._sock]}, name="upload-server", daemon=True
        )
        self._thread.start()
        deadline = time.monotonic() + timeout_s
        while not self.server.started:
            if not self._thread.is_alive() or time.monotonic() > deadline:
                raise FetchError(msg="Upload server failed to start").with_context(address="%s:%d" % self.address)
            time.sleep(0.05)
        self.logger.info("Upload server listening on %s:%d", *self.address)

    def stop(self) -> None:
        self.server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        self._sock.close()
