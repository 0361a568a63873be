# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
"""
Progress reporters for the copy loop.

Strategy objects, picked by create_progress_reporter():
- RichProgressReporter: animated bar on a TTY
- LoggingProgressReporter: periodic log lines (containers, CI, files)
- NoopProgressReporter: silent
"""

from __future__ import annotations

import logging
import sys
from abc import ABC, abstractmethod
from typing import Any, Optional

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from ..core.utils import U


def _is_tty() -> bool:
    try:
        return sys.stderr.isatty()
    except Exception:
        return False


class ProgressReporter(ABC):
    @abstractmethod
    def start(self, description: str, total: Optional[int] = None) -> None:
        ...

    @abstractmethod
    def update(self, delta: int) -> None:
        """Advance by `delta` source bytes."""
        ...

    @abstractmethod
    def finish(self) -> None:
        ...


class RichProgressReporter(ProgressReporter):
    def __init__(self, console: Any, refresh_hz: float = 10.0):
        self.console = console
        self.refresh_hz = refresh_hz
        self.progress: Optional[Progress] = None
        self.task_id: Optional[Any] = None

    def start(self, description: str, total: Optional[int] = None) -> None:
        self.progress = Progress(
            SpinnerColumn(style="bright_green"),
            TextColumn("[progress.description]{task.description}", style="bold cyan"),
            BarColumn(complete_style="bright_blue", finished_style="bright_green", pulse_style="magenta"),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            TimeElapsedColumn(),
            console=self.console,
            transient=False,
            refresh_per_second=max(1, int(self.refresh_hz)),
        )
        self.progress.start()
        self.task_id = self.progress.add_task(description, total=total if total and total > 0 else None)

    def update(self, delta: int) -> None:
        if self.progress is not None and self.task_id is not None:
            self.progress.update(self.task_id, advance=delta)

    def finish(self) -> None:
        if self.progress is not None:
            self.progress.stop()
            self.progress = None


class LoggingProgressReporter(ProgressReporter):
    def __init__(self, logger: logging.Logger, log_every_bytes: int = 64 * 1024 * 1024):
        self.logger = logger
        self.log_every_bytes = max(1, log_every_bytes)
        self.done = 0
        self.total: Optional[int] = None
        self.last_log_mark = 0

    def start(self, description: str, total: Optional[int] = None) -> None:
        self.total = total
        self.logger.info("Importing %s%s", description, f" ({U.human_bytes(total)})" if total else "")

    def update(self, delta: int) -> None:
        self.done += delta
        if self.done - self.last_log_mark < self.log_every_bytes:
            return
        self.last_log_mark = self.done
        if self.total and self.total > 0:
            self.logger.info(
                "Import progress: %s / %s (%.1f%%)",
                U.human_bytes(self.done),
                U.human_bytes(self.total),
                min(100.0, self.done * 100.0 / self.total),
            )
        else:
            self.logger.info("Import progress: %s", U.human_bytes(self.done))

    def finish(self) -> None:
        self.logger.debug("Source consumed: %s", U.human_bytes(self.done))


class NoopProgressReporter(ProgressReporter):
    def start(self, description: str, total: Optional[int] = None) -> None:
        pass

    def update(self, delta: int) -> None:
        pass

    def finish(self) -> None:
        pass


def create_progress_reporter(
    show_progress: bool,
    logger: logging.Logger,
    *,
    log_every_bytes: int = 64 * 1024 * 1024,
    tty: Optional[bool] = None,
) -> ProgressReporter:
    """
    1. show_progress=False → NoopProgressReporter
    2. TTY → RichProgressReporter
    3. otherwise → LoggingProgressReporter
    """
    if not show_progress:
        return NoopProgressReporter()
    if _is_tty() if tty is None else tty:
        return RichProgressReporter(Console(stderr=True))
    return LoggingProgressReporter(logger, log_every_bytes)
