# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# volimporter/transports/trust.py
"""Trust-anchor handling: a cert directory becomes a single CA bundle file."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from ..core.exceptions import FetchTLSError
from ..core.file_ops import safe_unlink

_CERT_SUFFIXES = {".crt", ".pem", ".cert", ".ca"}


def list_cert_files(cert_dir: str) -> List[Path]:
    d = Path(cert_dir)
    if not d.is_dir():
        raise FetchTLSError(msg=f"Certificate directory not found: {cert_dir}")
    files = sorted(
        p for p in d.iterdir()
        # secret/configmap mounts expose keys through ..data symlinks
        if p.is_file() and not p.name.startswith(".") and (p.suffix.lower() in _CERT_SUFFIXES or not p.suffix)
    )
    if not files:
        raise FetchTLSError(msg=f"No certificates in {cert_dir}")
    return files


def build_ca_bundle(cert_dir: Optional[str]) -> Tuple[Optional[str], Callable[[], None]]:
    """
    Concatenate every certificate in `cert_dir` into one temporary PEM bundle.

    Returns (bundle_path, cleanup). With no cert_dir returns (None, no-op).
    """
    if not cert_dir:
        return None, lambda: None

    files = list_cert_files(cert_dir)
    fd, name = tempfile.mkstemp(prefix="volimporter-ca-", suffix=".pem")
    try:
        with os.fdopen(fd, "wb") as out:
            for f in files:
                data = f.read_bytes()
                if b"-----BEGIN CERTIFICATE-----" not in data:
                    continue
                out.write(data.rstrip(b"\n") + b"\n")
        if os.path.getsize(name) == 0:
            raise FetchTLSError(msg=f"No PEM certificates in {cert_dir}")
    except BaseException:
        safe_unlink(Path(name))
        raise
    return name, lambda: safe_unlink(Path(name))
