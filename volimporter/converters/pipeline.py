# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# volimporter/converters/pipeline.py
"""
Conversion chain: compressed / archived / qcow2 source → raw block stream.

The chain is built from lazy readers; nothing is decoded until the copy
engine reads. Layers are peeled off in a fixed order:

    decompress (gzip, xz; repeated)
      → un-archive (tar; content type `archive` requires it)
      → decompress again (a compressed archive member)
      → decode qcow2
      → pass-through (raw, ISO)

Spooling to disk happens only where random access is unavoidable: qcow2
from a non-seekable stream, and tar members that are not the preferred
`disk/` entry while the rest of the archive is still being scanned.
"""

from __future__ import annotations

import gzip
import logging
import lzma
import tarfile
import tempfile
import threading
from pathlib import PurePosixPath
from typing import Any, Callable, List, Optional, Tuple

from ..core.exceptions import ConversionError, ImportCancelledError, VolImporterError
from ..importer.options import ContentType
from .detect import HEADER_PEEK, ImageFormat, detect_format
from .qcow2 import Qcow2Reader
from .streams import DECODE_ERRORS, PeekableReader, StageReader

log = logging.getLogger(__name__)

MAX_COMPRESSION_LAYERS = 4
DISK_ENTRY_DIR = "disk"
DISK_IMAGE_SUFFIXES = (".img", ".raw", ".qcow2", ".qcow", ".iso", ".gz", ".xz")
SPOOL_CHUNK = 1024 * 1024


class ConversionChain:
    """The readable end of the chain plus everything to release afterwards."""

    def __init__(self, reader: Any, formats: List[str], closers: List[Callable[[], None]]):
        self.reader = reader
        self.formats = formats
        self._closers = closers

    def read(self, n: int = -1) -> bytes:
        return self.reader.read(n)

    def close(self) -> None:
        for fn in reversed(self._closers):
            try:
                fn()
            except Exception as e:
                log.debug("Error while closing conversion stage: %s", e)
        self._closers = []

    def __enter__(self) -> "ConversionChain":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


def _normalize(name: str) -> str:
    parts = [p for p in PurePosixPath(name).parts if p not in ("", ".", "/")]
    return "/".join(parts)


def entry_rank(member: tarfile.TarInfo, wanted: Optional[str] = None) -> Optional[int]:
    """
    Rank a tar member as the disk-image candidate; lower is better.

    0 the explicitly named entry, 1 a regular file under `disk/`,
    2 a regular file with a disk-image suffix, 3 any other regular file.
    None means the member is not a candidate.
    """
    if not member.isreg():
        return None
    name = _normalize(member.name)
    if wanted is not None:
        return 0 if name == _normalize(wanted) else None
    if name.startswith(DISK_ENTRY_DIR + "/"):
        return 1
    if name.lower().endswith(DISK_IMAGE_SUFFIXES):
        return 2
    return 3


def _spool(src: Any, scratch_dir: Optional[str], cancel: Optional[threading.Event], stage: str) -> Any:
    """Copy a stream into an anonymous scratch file and rewind it."""
    spool = tempfile.TemporaryFile(prefix="volimporter-spool-", dir=scratch_dir)
    try:
        while True:
            if cancel is not None and cancel.is_set():
                raise ImportCancelledError(msg="Import cancelled while spooling")
            try:
                chunk = src.read(SPOOL_CHUNK)
            except VolImporterError:
                raise
            except DECODE_ERRORS as e:
                raise ConversionError(msg=f"corrupt input: {e}", stage=stage, cause=e) from e
            if not chunk:
                break
            spool.write(chunk)
        spool.seek(0)
        return spool
    except BaseException:
        spool.close()
        raise


def _open_tar_entry(
    src: Any,
    wanted: Optional[str],
    scratch_dir: Optional[str],
    cancel: Optional[threading.Event],
    closers: List[Callable[[], None]],
) -> Tuple[Any, str]:
    """
    Scan a tar stream once and return (entry stream, entry name).

    An explicitly named entry or a `disk/` entry is streamed straight out of
    the archive. Weaker candidates are spooled while scanning continues, and
    replaced only by a strictly better one.
    """
    try:
        tar = tarfile.open(fileobj=src, mode="r|")
    except VolImporterError:
        raise
    except DECODE_ERRORS as e:
        raise ConversionError(msg=f"not a readable tar archive: {e}", stage="unarchive", cause=e) from e
    closers.append(tar.close)

    best: Optional[Tuple[int, Any, str]] = None
    try:
        for member in tar:
            rank = entry_rank(member, wanted)
            if rank is None:
                continue
            if rank <= 1:
                fh = tar.extractfile(member)
                if fh is None:
                    continue
                if best is not None:
                    best[1].close()
                log.debug("Streaming archive entry %s (%d bytes)", member.name, member.size)
                return fh, member.name
            if best is None or rank < best[0]:
                fh = tar.extractfile(member)
                if fh is None:
                    continue
                spooled = _spool(fh, scratch_dir, cancel, "unarchive")
                if best is not None:
                    best[1].close()
                best = (rank, spooled, member.name)
    except VolImporterError:
        if best is not None:
            best[1].close()
        raise
    except DECODE_ERRORS as e:
        if best is not None:
            best[1].close()
        raise ConversionError(msg=f"corrupt tar archive: {e}", stage="unarchive", cause=e) from e

    if best is None:
        what = f"entry {wanted!r}" if wanted else "regular file"
        raise ConversionError(msg=f"archive contains no {what}", stage="unarchive")
    closers.append(best[1].close)
    log.debug("Using archive entry %s", best[2])
    return best[1], best[2]


def _decompressor(fmt: ImageFormat, src: Any) -> Any:
    if fmt is ImageFormat.GZIP:
        return gzip.GzipFile(fileobj=src, mode="rb")
    return lzma.LZMAFile(src, mode="rb")


def build_pipeline(
    stream: Any,
    content_type: ContentType = ContentType.DISK_IMAGE,
    *,
    archive_entry: Optional[str] = None,
    scratch_dir: Optional[str] = None,
    cancel: Optional[threading.Event] = None,
) -> ConversionChain:
    """
    Wrap `stream` into a reader producing the raw disk bytes.

    The returned chain does not own `stream`; closing the chain releases
    only what the chain itself opened (decompressors, the tar reader,
    spool files).
    """
    closers: List[Callable[[], None]] = []
    formats: List[str] = []
    try:
        reader = _build(stream, content_type, archive_entry, scratch_dir, cancel, closers, formats)
    except BaseException:
        ConversionChain(None, formats, closers).close()
        raise
    log.debug("Conversion chain: %s", " → ".join(formats))
    return ConversionChain(reader, formats, closers)


def _peek(reader: PeekableReader) -> ImageFormat:
    try:
        head = reader.peek(HEADER_PEEK)
    except VolImporterError:
        raise
    except DECODE_ERRORS as e:
        raise ConversionError(msg=f"cannot read stream header: {e}", stage="detect", cause=e) from e
    return detect_format(head)


def _build(
    stream: Any,
    content_type: ContentType,
    archive_entry: Optional[str],
    scratch_dir: Optional[str],
    cancel: Optional[threading.Event],
    closers: List[Callable[[], None]],
    formats: List[str],
) -> Any:
    reader = PeekableReader(stream)
    unarchived = False
    layers = 0

    while True:
        fmt = _peek(reader)

        if fmt.is_compressed:
            layers += 1
            if layers > MAX_COMPRESSION_LAYERS:
                raise ConversionError(msg="too many nested compression layers", stage="detect")
            formats.append(fmt.value)
            dec = _decompressor(fmt, reader)
            closers.append(dec.close)
            reader = PeekableReader(StageReader(dec, "decompress"))
            continue

        if fmt is ImageFormat.TAR and not unarchived:
            formats.append(fmt.value)
            entry, _name = _open_tar_entry(reader, archive_entry, scratch_dir, cancel, closers)
            reader = PeekableReader(StageReader(entry, "unarchive"))
            unarchived = True
            layers = 0
            continue

        if content_type is ContentType.ARCHIVE and not unarchived:
            raise ConversionError(
                msg=f"content type 'archive' requires a tar stream, found {fmt.value}",
                stage="unarchive",
            )

        if fmt is ImageFormat.QCOW2:
            formats.append(fmt.value)
            return _open_qcow2(reader, scratch_dir, cancel, closers)

        formats.append(fmt.value)
        return reader


def _open_qcow2(
    reader: PeekableReader,
    scratch_dir: Optional[str],
    cancel: Optional[threading.Event],
    closers: List[Callable[[], None]],
) -> Any:
    if reader.seekable():
        src, owns = reader, False
    else:
        log.debug("Spooling non-seekable qcow2 stream to %s", scratch_dir or tempfile.gettempdir())
        src, owns = _spool(reader, scratch_dir, cancel, "decode"), True
    try:
        decoded = Qcow2Reader(src, owns_source=owns)
    except VolImporterError:
        if owns:
            src.close()
        raise
    except DECODE_ERRORS as e:
        if owns:
            src.close()
        raise ConversionError(msg=f"unreadable qcow2 image: {e}", stage="decode", cause=e) from e
    closers.append(decoded.close)
    log.debug("qcow2 v%d, virtual size %d, cluster size %d",
              decoded.header.version, decoded.virtual_size, decoded.header.cluster_size)
    return StageReader(decoded, "decode")

