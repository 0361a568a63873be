# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# volimporter/converters/qcow2.py
"""
Streaming qcow2 → raw decoder.

Reads a qcow2 image from a seekable file object and produces the guest
view (virtual disk) sequentially, one cluster at a time. Only one L2 table
and one cluster are held in memory.

Supported: versions 2 and 3, unallocated and zero clusters, deflate
compressed clusters. Rejected: backing files, encryption, external data
files, extended L2 entries, non-deflate compression.
"""

from __future__ import annotations

import io
import struct
import zlib
from dataclasses import dataclass
from typing import BinaryIO, Iterator, List, Optional

from ..core.exceptions import ConversionError
from .detect import QCOW2_MAGIC

_V2_HEADER = struct.Struct(">4sIQIIQIIQQIIQ")  # 72 bytes
_V3_EXT = struct.Struct(">QQQII")  # 32 bytes (up to header_length)

_L1_OFFSET_MASK = 0x00FFFFFFFFFFFE00
_L2_OFFSET_MASK = 0x00FFFFFFFFFFFE00
_L2_COMPRESSED = 1 << 62
_L2_ZERO = 1

_INCOMPAT_DIRTY = 1 << 0
_INCOMPAT_CORRUPT = 1 << 1
_INCOMPAT_DATA_FILE = 1 << 2
_INCOMPAT_COMPRESSION = 1 << 3
_INCOMPAT_EXTL2 = 1 << 4
_INCOMPAT_KNOWN = _INCOMPAT_DIRTY | _INCOMPAT_CORRUPT | _INCOMPAT_DATA_FILE | _INCOMPAT_COMPRESSION | _INCOMPAT_EXTL2


def _corrupt(msg: str) -> ConversionError:
    return ConversionError(msg=msg, stage="decode")


@dataclass(frozen=True)
class Qcow2Header:
    version: int
    backing_file_offset: int
    cluster_bits: int
    virtual_size: int
    crypt_method: int
    l1_size: int
    l1_table_offset: int
    incompatible_features: int = 0
    header_length: int = 72
    compression_type: int = 0

    @property
    def cluster_size(self) -> int:
        return 1 << self.cluster_bits

    @property
    def l2_entries(self) -> int:
        return self.cluster_size // 8

    @classmethod
    def parse(cls, data: bytes) -> "Qcow2Header":
        if len(data) < _V2_HEADER.size:
            raise _corrupt("qcow2 header truncated")
        (magic, version, backing_off, _backing_size, cluster_bits, size, crypt, l1_size, l1_off,
         _rc_off, _rc_clusters, _nb_snap, _snap_off) = _V2_HEADER.unpack_from(data, 0)
        if magic != QCOW2_MAGIC:
            raise _corrupt("not a qcow2 image (bad magic)")
        if version not in (2, 3):
            raise _corrupt(f"unsupported qcow2 version {version}")

        incompat = 0
        header_length = 72
        compression_type = 0
        if version == 3:
            if len(data) < _V2_HEADER.size + _V3_EXT.size:
                raise _corrupt("qcow2 v3 header truncated")
            incompat, _compat, _autoclear, _refcount_order, header_length = _V3_EXT.unpack_from(data, _V2_HEADER.size)
            if header_length > 104 and len(data) > 104:
                compression_type = data[104]

        return cls(
            version=version,
            backing_file_offset=backing_off,
            cluster_bits=cluster_bits,
            virtual_size=size,
            crypt_method=crypt,
            l1_size=l1_size,
            l1_table_offset=l1_off,
            incompatible_features=incompat,
            header_length=header_length,
            compression_type=compression_type,
        )

    def validate(self) -> None:
        if not 9 <= self.cluster_bits <= 21:
            raise _corrupt(f"invalid cluster_bits {self.cluster_bits}")
        if self.backing_file_offset:
            raise _corrupt("qcow2 images with a backing file are not supported")
        if self.crypt_method:
            raise _corrupt("encrypted qcow2 images are not supported")
        feats = self.incompatible_features
        if feats & ~_INCOMPAT_KNOWN:
            raise _corrupt(f"unknown qcow2 incompatible features 0x{feats:x}")
        if feats & _INCOMPAT_CORRUPT:
            raise _corrupt("qcow2 image is marked corrupt")
        if feats & _INCOMPAT_DATA_FILE:
            raise _corrupt("qcow2 external data files are not supported")
        if feats & _INCOMPAT_EXTL2:
            raise _corrupt("qcow2 extended L2 entries are not supported")
        if (feats & _INCOMPAT_COMPRESSION) and self.compression_type != 0:
            raise _corrupt(f"qcow2 compression type {self.compression_type} is not supported")
        clusters = -(-self.virtual_size // self.cluster_size)
        needed_l1 = -(-clusters // self.l2_entries)
        if self.l1_size < needed_l1:
            raise _corrupt(f"L1 table too small ({self.l1_size} < {needed_l1})")


class Qcow2Reader(io.RawIOBase):
    """File-like raw view of a qcow2 image, readable front to back."""

    def __init__(self, src: BinaryIO, *, owns_source: bool = False):
        super().__init__()
        self._src = src
        self._owns_source = owns_source
        self._src.seek(0, io.SEEK_END)
        self._src_size = self._src.tell()
        self._src.seek(0)
        head = self._src.read(4096)
        self.header = Qcow2Header.parse(head)
        self.header.validate()
        self._l1 = self._read_l1()
        self._l2_index: Optional[int] = None
        self._l2: List[int] = []
        self._clusters = self._iter_clusters()
        self._buf = b""
        self.position = 0

    @property
    def virtual_size(self) -> int:
        return self.header.virtual_size

    def readable(self) -> bool:
        return True

    def _pread(self, offset: int, length: int) -> bytes:
        if offset + length > self._src_size:
            raise _corrupt(f"reference beyond end of image (offset={offset}, length={length})")
        self._src.seek(offset)
        data = self._src.read(length)
        if len(data) != length:
            raise _corrupt(f"short read at offset {offset}")
        return data

    def _read_l1(self) -> List[int]:
        h = self.header
        raw = self._pread(h.l1_table_offset, h.l1_size * 8)
        return list(struct.unpack(f">{h.l1_size}Q", raw))

    def _load_l2(self, l1_index: int) -> List[int]:
        if self._l2_index == l1_index:
            return self._l2
        entry = self._l1[l1_index] & _L1_OFFSET_MASK
        if entry == 0:
            self._l2 = []
        else:
            if entry % self.header.cluster_size:
                raise _corrupt(f"unaligned L2 table offset {entry}")
            raw = self._pread(entry, self.header.cluster_size)
            self._l2 = list(struct.unpack(f">{self.header.l2_entries}Q", raw))
        self._l2_index = l1_index
        return self._l2

    def _compressed_cluster(self, entry: int) -> bytes:
        h = self.header
        x = 62 - (h.cluster_bits - 8)
        host = entry & ((1 << x) - 1)
        sectors = (entry >> x) & ((1 << (62 - x)) - 1)
        length = (sectors + 1) * 512 - (host & 511)
        length = min(length, self._src_size - host)
        raw = self._pread(host, length)
        try:
            d = zlib.decompressobj(-15)
            out = d.decompress(raw, h.cluster_size)
        except zlib.error as e:
            raise ConversionError(msg=f"corrupt compressed cluster at {host}: {e}", stage="decode", cause=e) from e
        if len(out) != h.cluster_size:
            raise _corrupt(f"compressed cluster at {host} inflated to {len(out)} bytes")
        return out

    def _cluster(self, index: int) -> bytes:
        h = self.header
        l2 = self._load_l2(index // h.l2_entries)
        if not l2:
            return bytes(h.cluster_size)
        entry = l2[index % h.l2_entries]
        if entry & _L2_COMPRESSED:
            return self._compressed_cluster(entry)
        if h.version >= 3 and entry & _L2_ZERO:
            return bytes(h.cluster_size)
        host = entry & _L2_OFFSET_MASK
        if host == 0:
            return bytes(h.cluster_size)
        if host % h.cluster_size:
            raise _corrupt(f"unaligned data cluster offset {host}")
        return self._pread(host, h.cluster_size)

    def _iter_clusters(self) -> Iterator[bytes]:
        h = self.header
        remaining = h.virtual_size
        index = 0
        while remaining > 0:
            data = self._cluster(index)
            if remaining < len(data):
                data = data[:remaining]
            remaining -= len(data)
            index += 1
            yield data

    def readinto(self, b) -> int:
        if not self._buf:
            self._buf = next(self._clusters, b"")
            if not self._buf:
                return 0
        n = min(len(b), len(self._buf))
        b[:n] = self._buf[:n]
        self._buf = self._buf[n:]
        self.position += n
        return n

    def close(self) -> None:
        if not self.closed:
            try:
                if self._owns_source:
                    self._src.close()
            finally:
                super().close()
