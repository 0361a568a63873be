# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# volimporter/transports/http.py
"""
HTTP/HTTPS transport.

Notes:
  - Basic auth when the options carry an access/secret key pair.
  - HTTPS is only accepted with a trust anchor (cert dir); the server
    certificate is verified against that bundle, never against nothing.
    The same holds for an http endpoint that redirects to https, and the
    environment (REQUESTS_CA_BUNDLE, proxies) is ignored.
  - Connect and read timeouts bound every network wait.
"""

from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import urljoin, urlparse

import requests
import requests.adapters
import urllib3

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


def classify_http_exception(exc: BaseException, *, endpoint: str = "") -> VolImporterError:
    """Map requests/urllib3 exceptions onto the fetch error taxonomy."""
    where = f" ({endpoint})" if endpoint else ""
    if isinstance(exc, (requests.exceptions.SSLError, urllib3.exceptions.SSLError)):
        return FetchTLSError(msg=f"TLS verification failed{where}: {exc}", cause=exc)
    if isinstance(exc, (requests.exceptions.Timeout, urllib3.exceptions.TimeoutError)):
        return FetchTimeoutError(msg=f"Timed out talking to source{where}: {exc}", cause=exc)
    if isinstance(exc, requests.exceptions.ConnectionError):
        inner = exc.args[0] if exc.args else None
        if isinstance(inner, urllib3.exceptions.ReadTimeoutError):
            return FetchTimeoutError(msg=f"Timed out reading source{where}: {exc}", cause=exc)
        reason = getattr(inner, "reason", None)
        if isinstance(reason, urllib3.exceptions.SSLError):
            return FetchTLSError(msg=f"TLS verification failed{where}: {exc}", cause=exc)
        return FetchError(msg=f"Cannot connect to source{where}: {exc}", cause=exc)
    return FetchError(msg=f"HTTP transfer failed{where}: {exc}", cause=exc)


def classify_http_status(status: int, endpoint: str) -> Optional[VolImporterError]:
    if status in (401, 403):
        return FetchAuthError(msg=f"Access denied by {endpoint} (HTTP {status})").with_context(status=status)
    if status in (404, 410):
        return FetchNotFoundError(msg=f"Source not found: {endpoint} (HTTP {status})").with_context(status=status)
    if status >= 400:
        return FetchError(msg=f"Unexpected HTTP {status} from {endpoint}").with_context(status=status)
    return None


class HTTPProvider(TransportProvider):
    kind = SourceKind.HTTP

    def __init__(
        self,
        config: Optional[ImporterConfig] = None,
        *,
        http_client: Optional[Any] = None,  # For testing/mocking: object exposing Session()
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config or ImporterConfig()
        self.logger = logger or log
        self._http_client = http_client or requests

    def _create_session(self) -> Any:
        session = self._http_client.Session()
        adapter = self._http_client.adapters.HTTPAdapter(
            pool_connections=1,
            pool_maxsize=1,
            max_retries=0,  # no hidden retries; retry policy is external
        )
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        session.trust_env = False
        return session

    def _validate_endpoint(self, options: ImportOptions) -> str:
        url = urlparse(options.endpoint)
        scheme = (url.scheme or "").lower()
        if scheme not in ("http", "https") or not url.netloc:
            raise FetchError(msg=f"Not an http(s) URL: {options.endpoint!r}")
        if scheme == "https" and not options.cert_dir:
            raise FetchTLSError(
                msg=f"Refusing https endpoint without a trust anchor: {options.endpoint}",
            ).with_context(endpoint=options.endpoint)
        return scheme

    def _redirect_guard(self, options: ImportOptions):
        """Response hook rejecting redirects the endpoint itself would fail."""

        def _check(resp, *args, **kwargs):
            if not resp.is_redirect:
                return resp
            target = urljoin(resp.url, resp.headers.get("location", ""))
            scheme = (urlparse(target).scheme or "").lower()
            if scheme not in ("http", "https"):
                raise FetchError(msg=f"Redirect to unsupported URL {target!r}").with_context(endpoint=options.endpoint)
            if scheme == "https" and not options.cert_dir:
                raise FetchTLSError(
                    msg=f"Refusing redirect to {target} without a trust anchor",
                ).with_context(endpoint=options.endpoint, location=target)
            self.logger.debug("Following redirect to %s", target)
            return resp

        return _check

    def fetch(self, options: ImportOptions) -> TransportResult:
        self._validate_endpoint(options)
        bundle, cleanup_bundle = build_ca_bundle(options.cert_dir)

        session = self._create_session()
        session.verify = bundle if bundle else True
        auth = (options.access_key, options.secret_key) if options.has_credentials else None
        timeout = (self.config.connect_timeout_s, self.config.read_timeout_s)

        self.logger.info("Fetching %s (auth=%s, tls=%s)", options.endpoint, bool(auth), bool(bundle))
        try:
            resp = session.get(
                options.endpoint,
                auth=auth,
                stream=True,
                timeout=timeout,
                allow_redirects=True,
                hooks={"response": self._redirect_guard(options)},
            )
        except VolImporterError:
            session.close()
            cleanup_bundle()
            raise
        except Exception as e:
            session.close()
            cleanup_bundle()
            raise classify_http_exception(e, endpoint=options.endpoint) from e

        err = classify_http_status(int(resp.status_code), options.endpoint)
        if err is not None:
            resp.close()
            session.close()
            cleanup_bundle()
            raise err

        size: Optional[int] = None
        length = resp.headers.get("Content-Length")
        if length and length.isdigit():
            size = int(length)

        resp.raw.decode_content = True
        stream = SourceReader(resp.raw, classify=lambda e: classify_http_exception(e, endpoint=options.endpoint))
        return TransportResult(
            stream,  # type: ignore[arg-type]
            size=size,
            description=options.endpoint,
            closers=[cleanup_bundle, session.close, resp.close],
        )
