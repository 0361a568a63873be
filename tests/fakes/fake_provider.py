# SPDX-License-Identifier: LGPL-3.0-or-later
"""In-memory transport provider for copy-engine and worker tests."""
from __future__ import annotations

import io
import threading
from typing import Optional

from volimporter.importer.options import SourceKind
from volimporter.transports.base import SourceReader, TransportProvider, TransportResult


class ChunkedStream(io.RawIOBase):
    """Forward-only stream; optionally sets `cancel` once `cancel_after` bytes went out."""

    def __init__(self, data: bytes, *, cancel: Optional[threading.Event] = None, cancel_after: int = 0,
                 chunk: int = 64 * 1024):
        super().__init__()
        self._buf = io.BytesIO(data)
        self._cancel = cancel
        self._cancel_after = cancel_after
        self._chunk = chunk
        self.sent = 0

    def readable(self):
        return True

    def readinto(self, b):
        data = self._buf.read(min(len(b), self._chunk))
        b[: len(data)] = data
        self.sent += len(data)
        if self._cancel is not None and self.sent >= self._cancel_after:
            self._cancel.set()
        return len(data)


class StaticProvider(TransportProvider):
    def __init__(self, data: bytes = b"", *, kind: SourceKind = SourceKind.HTTP,
                 error: Optional[BaseException] = None, **stream_kw):
        self.kind = kind
        self.data = data
        self.error = error
        self.stream_kw = stream_kw
        self.fetches = []
        self.closed = 0

    def fetch(self, options):
        self.fetches.append(options)
        if self.error is not None:
            raise self.error

        def _closed():
            self.closed += 1

        return TransportResult(
            SourceReader(ChunkedStream(self.data, **self.stream_kw)),
            size=len(self.data),
            description=options.endpoint or "static",
            closers=[_closed],
        )
