# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# volimporter/transports/object_storage.py
"""
S3-compatible object storage transport.

Endpoint forms:
  s3://bucket/path/to/key
  https://host[:port]/bucket/path/to/key     (custom S3 endpoint)
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Tuple
from urllib.parse import unquote, urlparse

import boto3
import botocore.exceptions
from botocore.config import Config as BotoConfig

from ..core.config import ImporterConfig
from ..core.exceptions import (
    FetchAuthError,
    FetchError,
    FetchNotFoundError,
    FetchTimeoutError,
    FetchTLSError,
    VolImporterError,
)
from ..importer.options import ImportOptions, SourceKind
from .base import SourceReader, TransportProvider, TransportResult
from .trust import build_ca_bundle

log = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "NoSuchBucket", "404", "NotFound"}
_AUTH_CODES = {
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "InvalidToken",
    "ExpiredToken",
    "403",
    "401",
}


def parse_s3_endpoint(endpoint: str) -> Tuple[Optional[str], str, str]:
    """Return (endpoint_url or None, bucket, key)."""
    url = urlparse(endpoint)
    scheme = (url.scheme or "").lower()
    if scheme == "s3":
        bucket = url.netloc
        key = unquote(url.path.lstrip("/"))
        endpoint_url = None
    elif scheme in ("http", "https") and url.netloc:
        parts = url.path.lstrip("/").split("/", 1)
        bucket = parts[0]
        key = unquote(parts[1]) if len(parts) > 1 else ""
        endpoint_url = f"{scheme}://{url.netloc}"
    else:
        raise FetchError(msg=f"Not an object storage URL: {endpoint!r}")
    if not bucket or not key:
        raise FetchError(msg=f"Object storage URL must name a bucket and a key: {endpoint!r}")
    return endpoint_url, bucket, key


def classify_s3_exception(exc: BaseException, *, endpoint: str = "") -> VolImporterError:
    where = f" ({endpoint})" if endpoint else ""
    if isinstance(exc, botocore.exceptions.ClientError):
        err = exc.response.get("Error", {}) if hasattr(exc, "response") else {}
        code = str(err.get("Code", ""))
        status = str(exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", ""))
        if code in _NOT_FOUND_CODES or status == "404":
            return FetchNotFoundError(msg=f"Object not found{where}: {code}", cause=exc)
        if code in _AUTH_CODES or status in ("401", "403"):
            return FetchAuthError(msg=f"Access denied{where}: {code}", cause=exc)
        return FetchError(msg=f"Object storage error{where}: {code or exc}", cause=exc)
    if isinstance(exc, botocore.exceptions.SSLError):
        return FetchTLSError(msg=f"TLS verification failed{where}: {exc}", cause=exc)
    if isinstance(exc, (botocore.exceptions.ConnectTimeoutError, botocore.exceptions.ReadTimeoutError)):
        return FetchTimeoutError(msg=f"Timed out talking to object storage{where}: {exc}", cause=exc)
    if isinstance(exc, botocore.exceptions.NoCredentialsError):
        return FetchAuthError(msg=f"No credentials for object storage{where}", cause=exc)
    return FetchError(msg=f"Object storage transfer failed{where}: {exc}", cause=exc)


class ObjectStorageProvider(TransportProvider):
    kind = SourceKind.OBJECT_STORAGE

    def __init__(
        self,
        config: Optional[ImporterConfig] = None,
        *,
        client_factory: Optional[Callable[..., Any]] = None,  # For testing: replaces boto3.client
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config or ImporterConfig()
        self.logger = logger or log
        self._client_factory = client_factory or boto3.client

    def _client(self, options: ImportOptions, endpoint_url: Optional[str], ca_bundle: Optional[str]) -> Any:
        boto_cfg = BotoConfig(
            connect_timeout=self.config.connect_timeout_s,
            read_timeout=self.config.read_timeout_s,
            retries={"max_attempts": 1, "mode": "standard"},
            s3={"addressing_style": "path"},
        )
        kwargs: dict = {"config": boto_cfg}
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url
        if ca_bundle:
            kwargs["verify"] = ca_bundle
        if options.has_credentials:
            kwargs["aws_access_key_id"] = options.access_key
            kwargs["aws_secret_access_key"] = options.secret_key
        return self._client_factory("s3", **kwargs)

    def fetch(self, options: ImportOptions) -> TransportResult:
        endpoint_url, bucket, key = parse_s3_endpoint(options.endpoint)
        bundle, cleanup_bundle = build_ca_bundle(options.cert_dir)

        self.logger.info("Fetching s3 object bucket=%s key=%s endpoint=%s", bucket, key, endpoint_url or "default")
        try:
            client = self._client(options, endpoint_url, bundle)
            obj = client.get_object(Bucket=bucket, Key=key)
        except Exception as e:
            cleanup_bundle()
            raise classify_s3_exception(e, endpoint=options.endpoint) from e

        body = obj["Body"]
        size = obj.get("ContentLength")
        stream = SourceReader(body, classify=lambda e: classify_s3_exception(e, endpoint=options.endpoint))
        return TransportResult(
            stream,  # type: ignore[arg-type]
            size=int(size) if size is not None else None,
            description=f"s3://{bucket}/{key}",
            closers=[cleanup_bundle],
        )
