# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# volimporter/importer/options.py

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Mapping, Optional

from ..core.exceptions import ConfigError, TransportResolutionError
from ..core.utils import U


class SourceKind(str, Enum):
    HTTP = "http"
    OBJECT_STORAGE = "object-storage"
    REGISTRY = "registry"
    UPLOAD = "upload"
    NONE = "none"

    @classmethod
    def parse(cls, value: Optional[str]) -> "SourceKind":
        v = (value or "").strip().lower()
        if not v:
            return cls.HTTP
        if v == "s3":
            return cls.OBJECT_STORAGE
        try:
            return cls(v)
        except ValueError as e:
            raise TransportResolutionError(msg=f"Unknown source kind: {value!r}", cause=e) from e


class ContentType(str, Enum):
    DISK_IMAGE = "disk-image"
    ARCHIVE = "archive"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ContentType":
        v = (value or "").strip().lower()
        if not v or v == "kubevirt":
            return cls.DISK_IMAGE
        try:
            return cls(v)
        except ValueError as e:
            raise ConfigError(msg=f"Unknown content type: {value!r}", cause=e) from e


ENV_DESTINATION = "IMPORTER_DESTINATION"
ENV_ENDPOINT = "IMPORTER_ENDPOINT"
ENV_ACCESS_KEY = "IMPORTER_ACCESS_KEY_ID"
ENV_SECRET_KEY = "IMPORTER_SECRET_KEY"
ENV_SOURCE = "IMPORTER_SOURCE"
ENV_CONTENT_TYPE = "IMPORTER_CONTENTTYPE"
ENV_IMAGE_SIZE = "IMPORTER_IMAGE_SIZE"
ENV_CERT_DIR = "IMPORTER_CERT_DIR"
ENV_INSECURE_REGISTRY = "IMPORTER_INSECURE_REGISTRY"


@dataclass(frozen=True)
class ImportOptions:
    """Everything one worker needs, fully resolved before it starts."""

    destination: str
    endpoint: str
    access_key: str = ""
    secret_key: str = ""
    source: SourceKind = SourceKind.HTTP
    content_type: ContentType = ContentType.DISK_IMAGE
    capacity: str = ""
    cert_dir: Optional[str] = None
    insecure_registry: bool = False

    def __repr__(self) -> str:
        return (
            f"ImportOptions(destination={self.destination!r}, endpoint={self.endpoint!r}, "
            f"access_key={'<redacted>' if self.access_key else ''!r}, "
            f"secret_key={'<redacted>' if self.secret_key else ''!r}, "
            f"source={self.source.value!r}, content_type={self.content_type.value!r}, "
            f"capacity={self.capacity!r}, cert_dir={self.cert_dir!r}, "
            f"insecure_registry={self.insecure_registry!r})"
        )

    __str__ = __repr__

    @property
    def capacity_bytes(self) -> Optional[int]:
        return U.parse_quantity(self.capacity)

    @property
    def has_credentials(self) -> bool:
        return bool(self.access_key or self.secret_key)

    def with_destination(self, destination: str) -> "ImportOptions":
        return replace(self, destination=destination)

    def to_env(self) -> Dict[str, str]:
        env = {
            ENV_DESTINATION: self.destination,
            ENV_ENDPOINT: self.endpoint,
            ENV_SOURCE: self.source.value,
            ENV_CONTENT_TYPE: self.content_type.value,
            ENV_IMAGE_SIZE: self.capacity,
            ENV_INSECURE_REGISTRY: "true" if self.insecure_registry else "false",
        }
        if self.access_key:
            env[ENV_ACCESS_KEY] = self.access_key
        if self.secret_key:
            env[ENV_SECRET_KEY] = self.secret_key
        if self.cert_dir:
            env[ENV_CERT_DIR] = self.cert_dir
        return env

    @classmethod
    def from_env(cls, env: Mapping[str, str], *, default_destination: str = "/data/disk.img") -> "ImportOptions":
        endpoint = (env.get(ENV_ENDPOINT) or "").strip()
        source = SourceKind.parse(env.get(ENV_SOURCE))
        if not endpoint and source not in (SourceKind.UPLOAD, SourceKind.NONE):
            raise ConfigError(msg=f"{ENV_ENDPOINT} is required for source {source.value!r}")
        capacity = (env.get(ENV_IMAGE_SIZE) or "").strip()
        U.parse_quantity(capacity)  # validate early
        return cls(
            destination=env.get(ENV_DESTINATION) or default_destination,
            endpoint=endpoint,
            access_key=env.get(ENV_ACCESS_KEY, ""),
            secret_key=env.get(ENV_SECRET_KEY, ""),
            source=source,
            content_type=ContentType.parse(env.get(ENV_CONTENT_TYPE)),
            capacity=capacity,
            cert_dir=env.get(ENV_CERT_DIR) or None,
            insecure_registry=(env.get(ENV_INSECURE_REGISTRY, "").strip().lower() in ("1", "true", "yes")),
        )
