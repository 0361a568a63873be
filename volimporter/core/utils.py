# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# volimporter/core/utils.py
from __future__ import annotations

import logging
import re
import shlex
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Union

from .exceptions import ConfigError, Fatal

# Single-letter suffixes are treated as binary multiples: volumes are
# provisioned in MiB steps, so a "20M" request holds a 20 MiB image.
_QUANTITY_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([KMGTPE]i?|[kmgtpe])?[bB]?\s*$")
_QUANTITY_MULT = {
    "": 1,
    "K": 1024,
    "M": 1024 ** 2,
    "G": 1024 ** 3,
    "T": 1024 ** 4,
    "P": 1024 ** 5,
    "E": 1024 ** 6,
}


class U:
    @staticmethod
    def die(logger: logging.Logger, msg: str, code: int = 1) -> None:
        logger.error(msg)
        raise Fatal(code, msg)

    @staticmethod
    def ensure_dir(p: Path) -> None:
        p.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def which(prog: str) -> Optional[str]:
        from shutil import which as _which
        return _which(prog)

    @staticmethod
    def human_bytes(n: Optional[int]) -> str:
        if n is None:
            return "unknown"
        x = float(n)
        for unit in ["B", "KiB", "MiB", "GiB", "TiB", "PiB"]:
            if x < 1024 or unit == "PiB":
                return f"{x:.2f} {unit}" if unit != "B" else f"{int(x)} {unit}"
            x /= 1024
        return f"{n} B"

    @staticmethod
    def parse_quantity(q: Optional[str]) -> Optional[int]:
        """
        Parse a storage quantity ("20M", "1Gi", "1048576") into bytes.

        Empty/None means "unbounded" and returns None.
        """
        if q is None or not str(q).strip():
            return None
        m = _QUANTITY_RE.match(str(q))
        if not m:
            raise ConfigError(msg=f"Invalid capacity quantity: {q!r}")
        number, suffix = m.group(1), (m.group(2) or "")
        mult = _QUANTITY_MULT[suffix[:1].upper()]
        return int(float(number) * mult)

    @staticmethod
    def banner(logger: logging.Logger, title: str) -> None:
        line = "─" * max(10, len(title) + 2)
        logger.info(line)
        logger.info(f" {title}")
        logger.info(line)

    @staticmethod
    def _pretty_cmd(cmd: List[str]) -> str:
        return " ".join(shlex.quote(x) for x in cmd)

    @staticmethod
    def run_cmd(
        logger: logging.Logger,
        cmd: List[str],
        *,
        check: bool = True,
        capture: bool = False,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        cwd: Optional[Union[str, Path]] = None,
        redact: Optional[List[str]] = None,
    ) -> subprocess.CompletedProcess:
        """
        Run a command.

        - capture=True uses subprocess.run(capture_output=True, text=True)
        - redact: argv values replaced by <redacted> in the debug log line
        - timeout raises subprocess.TimeoutExpired (callers classify it)
        """
        shown = [("<redacted>" if redact and a in redact else a) for a in cmd]
        logger.debug("Running: %s", U._pretty_cmd(shown))

        cp = subprocess.run(
            cmd,
            check=check,
            capture_output=capture,
            text=True,
            env=env,
            timeout=timeout,
            cwd=str(cwd) if cwd is not None else None,
        )
        if capture:
            if cp.stdout:
                logger.debug("stdout: %s", cp.stdout.strip())
            if cp.stderr:
                logger.debug("stderr: %s", cp.stderr.strip())
        return cp
