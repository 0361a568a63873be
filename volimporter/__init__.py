# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# volimporter/__init__.py
"""
volimporter - populate storage volumes from external disk images

Two halves:
  - the import pipeline a worker runs: fetch a source over HTTP(S), S3,
    a container registry or an upload, normalize it (gzip/xz, tar, qcow2)
    into a raw image and write it under a capacity bound
  - the reconciliation controller that turns annotated volume requests
    into workers and reports their outcome on request status

Usage as a library:

    from volimporter import CopyEngine, ImportOptions, default_registry

    engine = CopyEngine(default_registry())
    engine.copy(ImportOptions(destination="/data/disk.img",
                              endpoint="https://example.com/disk.qcow2",
                              cert_dir="/certs"))
"""

__version__ = "0.1.0"

from .core.config import Config, ControllerConfig, ImporterConfig, load_config
from .core.exceptions import VolImporterError
from .importer.copy_engine import CopyEngine, CopyResult
from .importer.options import ContentType, ImportOptions, SourceKind
from .transports import ProviderRegistry, default_registry

__all__ = [
    "Config",
    "ContentType",
    "ControllerConfig",
    "CopyEngine",
    "CopyResult",
    "ImportOptions",
    "ImporterConfig",
    "ProviderRegistry",
    "SourceKind",
    "VolImporterError",
    "default_registry",
    "load_config",
    "__version__",
]
