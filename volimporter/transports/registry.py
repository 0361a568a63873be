# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# volimporter/transports/registry.py
"""
Container registry transport.

The registry protocol itself is delegated to an ImageCopier (skopeo by
default) that copies the image into a local directory. The provider then
finds the disk image embedded in the image layers (a regular file under
`disk/`) and streams it without unpacking the layer to disk.
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import tarfile
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Callable, List, Optional, Tuple

from ..core.config import ImporterConfig
from ..core.exceptions import (
    FetchAuthError,
    FetchError,
    FetchNotFoundError,
    FetchTimeoutError,
    FetchTLSError,
    VolImporterError,
)
from ..core.utils import U
from ..importer.options import ImportOptions, SourceKind
from .base import SourceReader, TransportProvider, TransportResult

log = logging.getLogger(__name__)

DISK_DIR = "disk"


class ImageCopyError(Exception):
    """Raised by an ImageCopier; the message carries the tool's diagnostics."""


class ImageCopier(ABC):
    """Copies a registry image into a local directory."""

    @abstractmethod
    def copy_image(
        self,
        dest_dir: str,
        endpoint: str,
        cert_dir: Optional[str],
        access_key: str,
        secret_key: str,
        *,
        tls_verify: bool = True,
    ) -> None:
        ...


class SkopeoImageCopier(ImageCopier):
    """`skopeo copy docker://<image> dir:<dest_dir>`."""

    def __init__(self, *, timeout_s: float = 1800.0, binary: str = "skopeo",
                 logger: Optional[logging.Logger] = None) -> None:
        self.timeout_s = timeout_s
        self.binary = binary
        self.logger = logger or log

    def copy_image(
        self,
        dest_dir: str,
        endpoint: str,
        cert_dir: Optional[str],
        access_key: str,
        secret_key: str,
        *,
        tls_verify: bool = True,
    ) -> None:
        src = endpoint if "://" in endpoint else f"docker://{endpoint}"
        cmd: List[str] = [self.binary, "copy"]
        redact: List[str] = []
        if not tls_verify:
            cmd.append("--src-tls-verify=false")
        elif cert_dir:
            cmd += ["--src-cert-dir", cert_dir]
        if access_key or secret_key:
            creds = f"{access_key}:{secret_key}"
            cmd += ["--src-creds", creds]
            redact.append(creds)
        cmd += [src, f"dir:{dest_dir}"]

        if U.which(self.binary) is None:
            raise ImageCopyError(f"{self.binary} not found in PATH")
        try:
            U.run_cmd(self.logger, cmd, check=True, capture=True, timeout=self.timeout_s, redact=redact)
        except subprocess.TimeoutExpired as e:
            raise ImageCopyError(f"timeout: image copy exceeded {self.timeout_s:.0f}s") from e
        except subprocess.CalledProcessError as e:
            raise ImageCopyError((e.stderr or e.stdout or str(e)).strip()) from e


_TLS_HINTS = ("x509", "certificate", "tls:", "handshake")
_AUTH_HINTS = ("unauthorized", "authentication required", "denied", "invalid username/password")
_NOT_FOUND_HINTS = ("manifest unknown", "not found", "name unknown", "no such")
_TIMEOUT_HINTS = ("timeout", "timed out", "deadline exceeded")


def classify_copy_error(exc: BaseException, endpoint: str) -> VolImporterError:
    text = str(exc).lower()
    if any(h in text for h in _TLS_HINTS):
        return FetchTLSError(msg=f"Registry TLS verification failed for {endpoint}: {exc}", cause=exc)
    if any(h in text for h in _AUTH_HINTS):
        return FetchAuthError(msg=f"Registry rejected credentials for {endpoint}: {exc}", cause=exc)
    if any(h in text for h in _TIMEOUT_HINTS):
        return FetchTimeoutError(msg=f"Registry copy timed out for {endpoint}: {exc}", cause=exc)
    if any(h in text for h in _NOT_FOUND_HINTS):
        return FetchNotFoundError(msg=f"Registry image not found: {endpoint}: {exc}", cause=exc)
    return FetchError(msg=f"Registry copy failed for {endpoint}: {exc}", cause=exc)


def _is_disk_member(name: str) -> bool:
    parts = [p for p in PurePosixPath(name.lstrip("./").lstrip("/")).parts if p not in ("", ".")]
    return len(parts) >= 2 and parts[0] == DISK_DIR and ".." not in parts


def _layer_files(image_dir: Path) -> List[Path]:
    """Layer blobs top-most first, from the dir-transport manifest when present."""
    manifest = image_dir / "manifest.json"
    layers: List[Path] = []
    if manifest.is_file():
        try:
            doc = json.loads(manifest.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise FetchError(msg=f"Unreadable image manifest: {e}", cause=e) from e
        for layer in doc.get("layers") or []:
            digest = str(layer.get("digest", ""))
            blob = image_dir / digest.split(":", 1)[-1]
            if blob.is_file():
                layers.append(blob)
        layers.reverse()
    else:
        layers = sorted(p for p in image_dir.iterdir() if p.is_file() and tarfile.is_tarfile(p))
    return layers


def _is_compressed_blob(path: Path) -> bool:
    with open(path, "rb") as f:
        head = f.read(6)
    return head.startswith((b"\x1f\x8b", b"\xfd7zXZ\x00", b"\x28\xb5\x2f\xfd"))


def find_disk_image(image_dir: Path) -> Tuple[object, Optional[int], Callable[[], None], bool]:
    """
    Locate the disk image inside a copied image directory.

    Returns (stream, size, close, seekable). Looks at an already unpacked
    `disk/` directory first, then at the layer tarballs. Members of
    compressed layers are reported as not seekable: seeking backwards
    would mean decompressing the layer again from the start.
    """
    if not image_dir.is_dir():
        raise FetchNotFoundError(msg=f"Image copy produced no content in {image_dir}")

    unpacked = image_dir / DISK_DIR
    if unpacked.is_dir():
        files = sorted(p for p in unpacked.iterdir() if p.is_file())
        if files:
            fh = open(files[0], "rb")
            return fh, files[0].stat().st_size, fh.close, True

    for layer in _layer_files(image_dir):
        try:
            tar = tarfile.open(layer, mode="r:*")
        except (tarfile.TarError, OSError):
            continue
        found = None
        try:
            for member in tar:
                if member.isreg() and _is_disk_member(member.name):
                    fh = tar.extractfile(member)
                    if fh is None:
                        continue
                    log.debug("Disk image %s found in layer %s", member.name, layer.name)
                    found = (fh, member.size, tar.close, not _is_compressed_blob(layer))
                    break
        except (tarfile.TarError, OSError, EOFError) as e:
            raise FetchError(msg=f"Layer {layer.name} is not a readable tar: {e}", cause=e).with_context(
                layer=layer.name
            ) from e
        finally:
            if found is None:
                tar.close()
        if found is not None:
            return found

    raise FetchNotFoundError(msg=f"No disk image under '{DISK_DIR}/' in the copied image")


class RegistryProvider(TransportProvider):
    kind = SourceKind.REGISTRY

    def __init__(
        self,
        config: Optional[ImporterConfig] = None,
        *,
        copier: Optional[ImageCopier] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config or ImporterConfig()
        self.logger = logger or log
        self.copier = copier or SkopeoImageCopier(timeout_s=self.config.registry_timeout_s)

    def fetch(self, options: ImportOptions) -> TransportResult:
        if not options.insecure_registry and not options.cert_dir:
            raise FetchTLSError(
                msg=f"Registry {options.endpoint} needs a trust anchor or the insecure-registry flag",
            ).with_context(endpoint=options.endpoint)

        work_dir = Path(tempfile.mkdtemp(prefix="volimporter-registry-", dir=self.config.scratch_dir))
        image_dir = work_dir / "image"

        def _cleanup() -> None:
            shutil.rmtree(work_dir, ignore_errors=True)

        self.logger.info("Copying registry image %s (tls_verify=%s)", options.endpoint, not options.insecure_registry)
        try:
            self.copier.copy_image(
                str(image_dir),
                options.endpoint,
                None if options.insecure_registry else options.cert_dir,
                options.access_key,
                options.secret_key,
                tls_verify=not options.insecure_registry,
            )
        except ImageCopyError as e:
            _cleanup()
            raise classify_copy_error(e, options.endpoint) from e
        except BaseException:
            _cleanup()
            raise

        try:
            raw, size, close_raw, seekable = find_disk_image(image_dir)
        except BaseException:
            _cleanup()
            raise

        return TransportResult(
            SourceReader(raw, allow_seek=seekable),
            size=size,
            description=options.endpoint,
            closers=[_cleanup, close_raw],
        )
