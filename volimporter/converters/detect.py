# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# volimporter/converters/detect.py
"""Classify a stream by its leading bytes."""

from __future__ import annotations

from enum import Enum

GZIP_MAGIC = b"\x1f\x8b"
XZ_MAGIC = b"\xfd7zXZ\x00"
QCOW2_MAGIC = b"QFI\xfb"
TAR_MAGIC_OFFSET = 257
TAR_MAGIC = b"ustar"
ISO_MAGIC_OFFSET = 0x8001
ISO_MAGIC = b"CD001"

# enough to see the ISO9660 primary volume descriptor
HEADER_PEEK = ISO_MAGIC_OFFSET + len(ISO_MAGIC)


class ImageFormat(str, Enum):
    RAW = "raw"
    QCOW2 = "qcow2"
    ISO = "iso"
    TAR = "tar"
    GZIP = "gzip"
    XZ = "xz"

    @property
    def is_compressed(self) -> bool:
        return self in (ImageFormat.GZIP, ImageFormat.XZ)


def detect_format(head: bytes) -> ImageFormat:
    """
    Classify the first bytes of a stream.

    Anything unrecognized is raw; a truncated header simply fails the
    longer magics.
    """
    if head.startswith(GZIP_MAGIC):
        return ImageFormat.GZIP
    if head.startswith(XZ_MAGIC):
        return ImageFormat.XZ
    if head.startswith(QCOW2_MAGIC):
        return ImageFormat.QCOW2
    if head[TAR_MAGIC_OFFSET:TAR_MAGIC_OFFSET + len(TAR_MAGIC)] == TAR_MAGIC:
        return ImageFormat.TAR
    if head[ISO_MAGIC_OFFSET:ISO_MAGIC_OFFSET + len(ISO_MAGIC)] == ISO_MAGIC:
        return ImageFormat.ISO
    return ImageFormat.RAW
