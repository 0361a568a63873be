# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# volimporter/converters/__init__.py
"""Format detection and the raw-normalizing conversion chain."""

from .detect import HEADER_PEEK, ImageFormat, detect_format
from .pipeline import ConversionChain, build_pipeline, entry_rank
from .qcow2 import Qcow2Header, Qcow2Reader

__all__ = [
    "HEADER_PEEK",
    "ConversionChain",
    "ImageFormat",
    "Qcow2Header",
    "Qcow2Reader",
    "build_pipeline",
    "detect_format",
    "entry_rank",
]
