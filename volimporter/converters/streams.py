# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# volimporter/converters/streams.py
"""Small raw-IO building blocks for the conversion chain."""

from __future__ import annotations

import io
import lzma
import struct
import tarfile
import zlib
from typing import Any

from ..core.exceptions import ConversionError, VolImporterError

# Errors a decoding stage may raise for corrupt input.
DECODE_ERRORS = (OSError, EOFError, ValueError, zlib.error, lzma.LZMAError, tarfile.TarError, struct.error)


class PeekableReader(io.RawIOBase):
    """
    Reader that can look ahead without consuming.

    Peeked bytes are buffered and handed out first by later reads. Seeking
    is passed through to the wrapped stream when it supports it.
    """

    def __init__(self, raw: Any):
        super().__init__()
        self._raw = raw
        self._buf = bytearray()

    def readable(self) -> bool:
        return True

    def peek(self, n: int) -> bytes:
        while len(self._buf) < n:
            chunk = self._raw.read(n - len(self._buf))
            if not chunk:
                break
            self._buf += chunk
        return bytes(self._buf[:n])

    def readinto(self, b) -> int:
        if self._buf:
            n = min(len(b), len(self._buf))
            b[:n] = self._buf[:n]
            del self._buf[:n]
            return n
        data = self._raw.read(len(b))
        if not data:
            return 0
        n = len(data)
        b[:n] = data
        return n

    def seekable(self) -> bool:
        try:
            return bool(self._raw.seekable())
        except Exception:
            return False

    def tell(self) -> int:
        return self._raw.tell() - len(self._buf)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        if whence == io.SEEK_CUR:
            offset -= len(self._buf)
        self._buf.clear()
        return self._raw.seek(offset, whence)


class StageReader(io.RawIOBase):
    """
    Wraps one stage of the chain and names it in the errors it raises.

    Project errors coming from further down (a FetchError from the source,
    a ConversionError from an inner stage) pass through untouched.
    """

    def __init__(self, raw: Any, stage: str):
        super().__init__()
        self._raw = raw
        self.stage = stage

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        try:
            data = self._raw.read(len(b))
        except VolImporterError:
            raise
        except DECODE_ERRORS as e:
            raise ConversionError(msg=f"corrupt input: {e}", stage=self.stage, cause=e) from e
        if not data:
            return 0
        n = len(data)
        b[:n] = data
        return n

    def close(self) -> None:
        if not self.closed:
            try:
                self._raw.close()
            finally:
                super().close()
