# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# volimporter/importer/worker.py
"""
Worker side of the invocation contract.

A worker gets its ImportOptions from IMPORTER_* environment variables,
runs one copy, writes a termination message ({"reason", "message"} JSON)
and exits 0 on success or 1 on failure. SIGTERM/SIGINT cancel the copy.
"""

from __future__ import annotations

import json
import logging
import signal
import threading
from pathlib import Path
from typing import Any, Mapping, Optional

from ..core.config import ImporterConfig
from ..core.exceptions import VolImporterError
from ..core.logger import Log
from ..transports import default_registry
from ..transports.base import ProviderRegistry
from ..transports.upload import UploadChannel
from .copy_engine import CopyEngine, CopyResult
from .options import ImportOptions

log = logging.getLogger(__name__)

REASON_COMPLETED = "Completed"
REASON_FAILED = "ImportFailed"


def write_termination_message(path: Optional[str], reason: str, message: str,
                              logger: Optional[logging.Logger] = None) -> bool:
    """Best effort: a missing termination-log mount must not fail the import."""
    if not path:
        return False
    lg = logger or log
    doc = json.dumps({"reason": reason, "message": message}, sort_keys=True)
    try:
        Path(path).write_text(doc + "\n", encoding="utf-8")
    except OSError as e:
        lg.warning("Could not write termination message to %s: %s", path, e)
        return False
    return True


class ImportWorker:
    def __init__(
        self,
        options: ImportOptions,
        config: Optional[ImporterConfig] = None,
        *,
        providers: Optional[ProviderRegistry] = None,
        upload_channel: Optional[UploadChannel] = None,
        cancel: Optional[threading.Event] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.options = options
        self.config = config or ImporterConfig()
        self.logger = logger or log
        self.upload_channel = upload_channel
        self.cancel = cancel or threading.Event()
        self.providers = providers or default_registry(self.config, upload_channel=upload_channel)
        self.result: Optional[CopyResult] = None
        self.error: Optional[BaseException] = None

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

    def _signal_handler(self, signum: int, frame: Any) -> None:
        self.logger.warning("🛑 Received %s, cancelling import", signal.Signals(signum).name)
        self.cancel.set()

    def run(self) -> int:
        Log.step(self.logger, "Starting import", options=repr(self.options))
        engine = CopyEngine(self.providers, self.config, logger=self.logger)
        try:
            self.result = engine.copy(self.options, cancel=self.cancel)
        except VolImporterError as e:
            self.error = e
            Log.fail(self.logger, f"Import failed during {e.phase}: {e.user_message(include_context=True)}")
            self._finish(e.reason, str(e), e)
            return 1
        except Exception as e:
            self.error = e
            Log.fail(self.logger, f"Import failed: {type(e).__name__}: {e}")
            self.logger.debug("Unexpected error", exc_info=True)
            self._finish(REASON_FAILED, f"{type(e).__name__}: {e}", e)
            return 1

        r = self.result
        self._finish(REASON_COMPLETED, f"Import complete ({r.bytes_written} bytes, {'→'.join(r.format_chain)})", None)
        return 0

    def _finish(self, reason: str, message: str, error: Optional[BaseException]) -> None:
        write_termination_message(self.config.termination_message_path, reason, message, self.logger)
        if self.upload_channel is not None:
            self.upload_channel.resolve(error)


def run_from_env(
    env: Mapping[str, str],
    config: Optional[ImporterConfig] = None,
    *,
    default_destination: str = "/data/disk.img",
    providers: Optional[ProviderRegistry] = None,
    upload_channel: Optional[UploadChannel] = None,
    logger: Optional[logging.Logger] = None,
    install_signals: bool = False,
) -> int:
    """Parse the environment and run one import; returns the exit code."""
    cfg = config or ImporterConfig()
    lg = logger or log
    try:
        options = ImportOptions.from_env(env, default_destination=default_destination)
    except VolImporterError as e:
        Log.fail(lg, f"Invalid worker environment: {e}")
        write_termination_message(cfg.termination_message_path, e.reason, str(e), lg)
        return 1

    worker = ImportWorker(options, cfg, providers=providers, upload_channel=upload_channel, logger=lg)
    if install_signals:
        worker.install_signal_handlers()
    return worker.run()
