# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# volimporter/transports/base.py
"""
Transport provider contract.

A provider turns (endpoint, credentials, trust material) into a readable
byte stream wrapped in a TransportResult, or raises a classified FetchError.
Providers are looked up by SourceKind through a ProviderRegistry that the
copy engine receives as a constructed dependency.
"""

from __future__ import annotations

import io
import logging
from abc import ABC, abstractmethod
from typing import Any, BinaryIO, Callable, Dict, Iterable, List, Mapping, Optional

from ..core.exceptions import FetchError, TransportResolutionError, VolImporterError
from ..importer.options import ImportOptions, SourceKind

log = logging.getLogger(__name__)

ErrorClassifier = Callable[[BaseException], VolImporterError]


def _default_classifier(exc: BaseException) -> VolImporterError:
    return FetchError(msg=f"Reading source stream failed: {exc}", cause=exc)


class SourceReader(io.RawIOBase):
    """
    Read-only wrapper around a provider stream.

    Counts bytes produced and translates transport exceptions raised while
    the body is streamed (read timeouts, resets) into FetchError subclasses.
    """

    def __init__(self, raw: Any, classify: Optional[ErrorClassifier] = None, *, allow_seek: bool = True):
        super().__init__()
        self._raw = raw
        self._classify = classify or _default_classifier
        self._allow_seek = allow_seek
        self.bytes_read = 0

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        if not self._allow_seek:
            return False
        try:
            return bool(self._raw.seekable())
        except Exception:
            return False

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        return self._raw.seek(offset, whence)

    def tell(self) -> int:
        if self.seekable():
            return self._raw.tell()
        return self.bytes_read

    def readinto(self, b) -> int:
        try:
            data = self._raw.read(len(b))
        except VolImporterError:
            raise
        except Exception as e:
            raise self._classify(e) from e
        n = len(data)
        b[:n] = data
        self.bytes_read += n
        return n

    def close(self) -> None:
        if not self.closed:
            try:
                self._raw.close()
            finally:
                super().close()


class TransportResult:
    """Stream handle for one fetch plus the resources to release afterwards."""

    def __init__(
        self,
        stream: BinaryIO,
        *,
        size: Optional[int] = None,
        description: str = "",
        closers: Optional[Iterable[Callable[[], None]]] = None,
    ):
        self.stream = stream
        self.size = size
        self.description = description
        self._closers: List[Callable[[], None]] = list(closers or [])
        self._closed = False

    @property
    def bytes_read(self) -> int:
        return int(getattr(self.stream, "bytes_read", 0))

    def add_closer(self, fn: Callable[[], None]) -> None:
        self._closers.append(fn)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        errors: List[BaseException] = []
        try:
            self.stream.close()
        except Exception as e:
            errors.append(e)
        for fn in reversed(self._closers):
            try:
                fn()
            except Exception as e:
                errors.append(e)
        for e in errors:
            log.debug("Error while releasing %s: %s", self.description or "transport", e)

    def __enter__(self) -> "TransportResult":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


class TransportProvider(ABC):
    kind: SourceKind

    @abstractmethod
    def fetch(self, options: ImportOptions) -> TransportResult:
        """Open the source described by `options` as a byte stream."""
        ...


ProviderFactory = Callable[[], TransportProvider]


class ProviderRegistry:
    """Lookup table from SourceKind to a provider (or a provider factory)."""

    def __init__(self, providers: Optional[Mapping[SourceKind, Any]] = None):
        self._entries: Dict[SourceKind, Any] = {}
        for kind, p in (providers or {}).items():
            self.register(kind, p)

    def register(self, kind: SourceKind, provider: Any) -> None:
        if not isinstance(kind, SourceKind) or kind is SourceKind.NONE:
            raise TransportResolutionError(msg=f"Cannot register a provider for source {kind!r}")
        if not (isinstance(provider, TransportProvider) or callable(provider)):
            raise TypeError(f"provider for {kind.value} must be a TransportProvider or factory")
        self._entries[kind] = provider

    def kinds(self) -> List[SourceKind]:
        return sorted(self._entries, key=lambda k: k.value)

    def resolve(self, kind: SourceKind) -> TransportProvider:
        entry = self._entries.get(kind)
        if entry is None:
            raise TransportResolutionError(
                msg=f"No transport provider for source kind {getattr(kind, 'value', kind)!r}",
            ).with_context(known=[k.value for k in self.kinds()])
        if isinstance(entry, TransportProvider):
            return entry
        provider = entry()
        if not isinstance(provider, TransportProvider):
            raise TypeError(f"factory for {kind.value} returned {type(provider).__name__}")
        return provider
