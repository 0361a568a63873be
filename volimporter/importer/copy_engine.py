# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# volimporter/importer/copy_engine.py
"""
Copy engine: one import, source → raw destination.

    resolve provider → fetch → conversion chain → write (+capacity bound)

Destination handling:
  - only an unknown source kind leaves an existing destination as it was;
    any failure from the fetch onward removes it
  - data goes to a temp file next to the destination; only a complete,
    capacity-checked copy is renamed into place
  - all-zero chunks become holes when sparse writes are enabled
"""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from ..converters import ConversionChain, build_pipeline
from ..core.config import ImporterConfig
from ..core.exceptions import (
    CapacityExceededError,
    ConversionError,
    FetchError,
    ImportCancelledError,
    VolImporterError,
    WriteError,
)
from ..core.file_ops import atomic_write, ensure_parent_dir, safe_unlink
from ..core.logger import Log
from ..core.utils import U
from ..transports.base import ProviderRegistry, TransportResult
from .options import ImportOptions
from .progress import ProgressReporter, create_progress_reporter

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CopyResult:
    bytes_written: int
    source_bytes: int
    format_chain: List[str] = field(default_factory=list)
    destination: str = ""
    elapsed_s: float = 0.0


class CopyEngine:
    """
    Runs one import. Providers come in as a ProviderRegistry so callers
    (the worker, tests) decide which transports exist.
    """

    def __init__(
        self,
        providers: ProviderRegistry,
        config: Optional[ImporterConfig] = None,
        *,
        logger: Optional[logging.Logger] = None,
        reporter: Optional[ProgressReporter] = None,
    ) -> None:
        self.providers = providers
        self.config = config or ImporterConfig()
        self.logger = logger or log
        self._reporter = reporter

    def _reporter_for(self) -> ProgressReporter:
        if self._reporter is not None:
            return self._reporter
        return create_progress_reporter(
            self.config.show_progress, self.logger, log_every_bytes=self.config.log_every_bytes
        )

    def copy(self, options: ImportOptions, cancel: Optional[threading.Event] = None) -> CopyResult:
        """
        Import `options.endpoint` into `options.destination`.

        Raises a VolImporterError subclass whose `phase` names the step that
        failed (resolve, fetch, convert, write, capacity, cancel).
        """
        started = time.monotonic()
        capacity = options.capacity_bytes
        dest = Path(options.destination)

        provider = self.providers.resolve(options.source)
        Log.step(self.logger, f"Fetching {options.source.value} source", endpoint=options.endpoint)
        try:
            _check_cancel(cancel)
            try:
                result = provider.fetch(options)
            except VolImporterError:
                raise
            except Exception as e:
                raise FetchError(msg=f"Fetching {options.endpoint} failed: {e}", cause=e).with_context(
                    source=options.source.value
                ) from e

            with result:
                scratch = self.config.scratch_dir or str(dest.parent)
                chain = self._open_chain(result, options, scratch, cancel)
                with chain:
                    written = self._write(chain, result, dest, capacity, cancel)
        except Exception:
            self._discard_destination(dest)
            raise

        elapsed = time.monotonic() - started
        Log.ok(
            self.logger,
            f"Imported {U.human_bytes(written)} into {dest} in {elapsed:.1f}s",
            chain="→".join(chain.formats),
        )
        return CopyResult(
            bytes_written=written,
            source_bytes=result.bytes_read,
            format_chain=list(chain.formats),
            destination=str(dest),
            elapsed_s=elapsed,
        )

    def _discard_destination(self, dest: Path) -> None:
        try:
            safe_unlink(dest)
        except OSError as e:
            self.logger.warning("Could not remove %s after failed import: %s", dest, e)

    def _open_chain(
        self,
        result: TransportResult,
        options: ImportOptions,
        scratch: str,
        cancel: Optional[threading.Event],
    ) -> ConversionChain:
        try:
            if not os.path.isdir(scratch):
                U.ensure_dir(Path(scratch))
            return build_pipeline(
                result.stream,
                options.content_type,
                archive_entry=self.config.archive_entry,
                scratch_dir=scratch,
                cancel=cancel,
            )
        except VolImporterError:
            raise
        except OSError as e:
            raise WriteError(msg=f"Scratch space unusable ({scratch}): {e}", cause=e) from e

    def _write(
        self,
        chain: ConversionChain,
        result: TransportResult,
        dest: Path,
        capacity: Optional[int],
        cancel: Optional[threading.Event],
    ) -> int:
        chunk_size = max(4096, int(self.config.chunk_size))
        sparse = bool(self.config.sparse)
        reporter = self._reporter_for()
        written = 0
        consumed = 0

        try:
            ensure_parent_dir(dest)
            safe_unlink(dest)
        except OSError as e:
            raise WriteError(msg=f"Cannot prepare destination {dest}: {e}", cause=e).with_context(
                destination=str(dest)
            ) from e

        reporter.start(result.description or str(dest), result.size)
        try:
            with atomic_write(dest) as tmp:
                try:
                    f = open(tmp, "wb")
                except OSError as e:
                    raise WriteError(msg=f"Cannot open {tmp} for writing: {e}", cause=e) from e
                with f:
                    while True:
                        _check_cancel(cancel)
                        chunk = chain.read(chunk_size)
                        if not chunk:
                            break
                        n = len(chunk)
                        if capacity is not None and written + n > capacity:
                            raise CapacityExceededError(
                                msg=f"Image exceeds requested capacity of {U.human_bytes(capacity)}"
                            ).with_context(capacity=capacity, written=written + n)
                        try:
                            if sparse and chunk.count(0) == n:
                                f.seek(n, os.SEEK_CUR)
                            else:
                                f.write(chunk)
                        except OSError as e:
                            raise WriteError(msg=f"Writing {dest} failed: {e}", cause=e) from e
                        written += n

                        src_now = result.bytes_read
                        if src_now > consumed:
                            reporter.update(src_now - consumed)
                            consumed = src_now

                    if capacity is not None and written > capacity:
                        raise CapacityExceededError(
                            msg=f"Image of {U.human_bytes(written)} exceeds capacity {U.human_bytes(capacity)}"
                        ).with_context(capacity=capacity, written=written)

                    try:
                        # trailing holes only exist once the size is set
                        f.truncate(written)
                        f.flush()
                        os.fsync(f.fileno())
                    except OSError as e:
                        raise WriteError(msg=f"Finalizing {dest} failed: {e}", cause=e) from e
        except ConversionError as e:
            raise e.with_context(destination=str(dest))
        except OSError as e:
            raise WriteError(msg=f"Publishing {dest} failed: {e}", cause=e).with_context(
                destination=str(dest)
            ) from e
        finally:
            reporter.finish()
        return written


def _check_cancel(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise ImportCancelledError(msg="Import cancelled")
