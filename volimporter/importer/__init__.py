# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# volimporter/importer/__init__.py
#
# Only the option types are re-exported here: transports import them, and
# the copy engine imports transports.
from .options import ContentType, ImportOptions, SourceKind

__all__ = ["ContentType", "ImportOptions", "SourceKind"]
