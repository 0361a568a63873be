# SPDX-License-Identifier: LGPL-3.0-or-later
"""ImageCopier stand-in: lays out a dir-transport image instead of talking to a registry."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

from volimporter.transports.registry import ImageCopier, ImageCopyError

from fixtures.images import write_registry_image


class FakeImageCopier(ImageCopier):
    def __init__(self, disk: bytes = b"", *, error: Optional[str] = None, entry: str = "disk/disk.img",
                 layer_compression: str = "gz", extra_layers: int = 0, trusted: bool = True):
        self.disk = disk
        self.error = error
        self.entry = entry
        self.layer_compression = layer_compression
        self.extra_layers = extra_layers
        # False simulates a registry whose certificate does not verify
        self.trusted = trusted
        self.calls = []

    def copy_image(self, dest_dir, endpoint, cert_dir, access_key, secret_key, *, tls_verify=True):
        self.calls.append({
            "dest_dir": dest_dir, "endpoint": endpoint, "cert_dir": cert_dir,
            "access_key": access_key, "secret_key": secret_key, "tls_verify": tls_verify,
        })
        if tls_verify and not self.trusted:
            raise ImageCopyError("x509: certificate signed by unknown authority")
        if self.error:
            raise ImageCopyError(self.error)
        write_registry_image(Path(dest_dir), self.disk, entry=self.entry,
                             layer_compression=self.layer_compression, extra_layers=self.extra_layers)
