# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# volimporter/transports/__init__.py
"""Transport providers, one per source kind."""

from __future__ import annotations

from typing import Optional

from ..core.config import ImporterConfig
from ..importer.options import SourceKind
from .base import ProviderRegistry, SourceReader, TransportProvider, TransportResult
from .http import HTTPProvider
from .object_storage import ObjectStorageProvider
from .registry import ImageCopier, ImageCopyError, RegistryProvider, SkopeoImageCopier
from .upload import UploadChannel, UploadProvider, UploadServer


def default_registry(
    config: Optional[ImporterConfig] = None,
    *,
    copier: Optional[ImageCopier] = None,
    upload_channel: Optional[UploadChannel] = None,
) -> ProviderRegistry:
    """
    Build the standard provider table.

    Providers are created lazily so a worker only pays for the transport it
    uses; the upload provider is present only when a channel is supplied.
    """
    cfg = config or ImporterConfig()
    registry = ProviderRegistry()
    registry.register(SourceKind.HTTP, lambda: HTTPProvider(cfg))
    registry.register(SourceKind.OBJECT_STORAGE, lambda: ObjectStorageProvider(cfg))
    registry.register(SourceKind.REGISTRY, lambda: RegistryProvider(cfg, copier=copier))
    if upload_channel is not None:
        registry.register(SourceKind.UPLOAD, UploadProvider(upload_channel, cfg))
    return registry


__all__ = [
    "HTTPProvider",
    "ImageCopier",
    "ImageCopyError",
    "ObjectStorageProvider",
    "ProviderRegistry",
    "RegistryProvider",
    "SkopeoImageCopier",
    "SourceReader",
    "TransportProvider",
    "TransportResult",
    "UploadChannel",
    "UploadProvider",
    "UploadServer",
    "default_registry",
]
