# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# volimporter/core/file_ops.py
"""
Atomic file operation utilities.

A destination is only ever published by renaming a fully written temporary
file over it; a failed write leaves no temporary behind.
"""

from __future__ import annotations

import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional


@contextmanager
def atomic_write(
    target_path: Path,
    *,
    suffix: str = ".part",
    dir: Optional[Path] = None,
) -> Generator[Path, None, None]:
    """
    Context manager for atomic file writes using temporary file + rename.

    Creates a temporary file next to the target, yields its path for writing,
    then atomically renames it over the target on success. On any exception
    (including KeyboardInterrupt) the temporary file is removed.

    Example:
        with atomic_write(Path("/data/disk.img")) as temp_path:
            with open(temp_path, "wb") as f:
                f.write(data)
        # /data/disk.img now holds the complete content
    """
    target_path = Path(target_path)
    temp_dir = Path(dir) if dir else target_path.parent
    temp_dir.mkdir(parents=True, exist_ok=True)

    fd, temp_name = tempfile.mkstemp(
        suffix=suffix,
        prefix=f".{target_path.name}.",
        dir=str(temp_dir),
    )
    temp_path = Path(temp_name)
    os.close(fd)

    try:
        yield temp_path
        os.replace(temp_path, target_path)
    except BaseException:
        safe_unlink(temp_path)
        raise


def safe_unlink(path: Path, missing_ok: bool = True) -> None:
    """Delete a file, optionally ignoring if it doesn't exist."""
    try:
        Path(path).unlink()
    except FileNotFoundError:
        if not missing_ok:
            raise


def ensure_parent_dir(path: Path) -> None:
    """Ensure parent directory of a path exists, creating if necessary."""
    Path(path).parent.mkdir(parents=True, exist_ok=True)
