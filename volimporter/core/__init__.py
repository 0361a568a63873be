# SPDX-License-Identifier: LGPL-3.0-or-later
# volimporter/core/__init__.py
from .exceptions import VolImporterError
from .logger import Log

__all__ = ["Log", "VolImporterError"]
