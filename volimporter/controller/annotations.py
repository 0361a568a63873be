# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# volimporter/controller/annotations.py
"""
Import intent as declared on a volume request.

Keys (all under `import.volimporter.io/`):

    endpoint            source URL / image reference
    secret              name of the secret holding access/secret key
    cert-bundle         name of the trust bundle (CA certificates)
    source              http | object-storage (s3) | registry | upload | none
    content-type        disk-image (kubevirt) | archive
    insecure-registry   "true" to skip registry TLS verification
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Mapping, Optional

from ..importer.options import ContentType, SourceKind

ANNOTATION_PREFIX = "import.volimporter.io/"
ANN_ENDPOINT = ANNOTATION_PREFIX + "endpoint"
ANN_SECRET = ANNOTATION_PREFIX + "secret"
ANN_CERT_BUNDLE = ANNOTATION_PREFIX + "cert-bundle"
ANN_SOURCE = ANNOTATION_PREFIX + "source"
ANN_CONTENT_TYPE = ANNOTATION_PREFIX + "content-type"
ANN_INSECURE_REGISTRY = ANNOTATION_PREFIX + "insecure-registry"

IMPORT_KEYS = (ANN_ENDPOINT, ANN_SECRET, ANN_CERT_BUNDLE, ANN_SOURCE, ANN_CONTENT_TYPE, ANN_INSECURE_REGISTRY)

WORKER_PREFIX = "importer-"
MAX_NAME_LEN = 63
_HASH_LEN = 10


def has_intent(annotations: Mapping[str, str]) -> bool:
    """True when the annotations ask for an import at all."""
    source = (annotations.get(ANN_SOURCE) or "").strip().lower()
    if source == SourceKind.NONE.value:
        return False
    if source == SourceKind.UPLOAD.value:
        return True
    return bool((annotations.get(ANN_ENDPOINT) or "").strip())


def intent_fingerprint(annotations: Mapping[str, str]) -> str:
    """Stable hash of the import annotations; empty when there is no intent."""
    if not has_intent(annotations):
        return ""
    doc = {k: annotations.get(k, "") for k in IMPORT_KEYS}
    raw = json.dumps(doc, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()[:16]


def worker_name_for(request_name: str) -> str:
    name = WORKER_PREFIX + request_name
    if len(name) <= MAX_NAME_LEN:
        return name
    digest = hashlib.sha256(request_name.encode("utf-8")).hexdigest()[:_HASH_LEN]
    head = name[: MAX_NAME_LEN - _HASH_LEN - 1].rstrip("-.")
    return f"{head}-{digest}"


@dataclass(frozen=True)
class ImportAnnotations:
    endpoint: str
    secret_ref: Optional[str]
    cert_ref: Optional[str]
    source: SourceKind
    content_type: ContentType
    insecure_registry: bool
    fingerprint: str

    @classmethod
    def from_annotations(cls, annotations: Mapping[str, str]) -> Optional["ImportAnnotations"]:
        """
        None when no import is intended. Unknown source kinds raise
        TransportResolutionError; unknown content types raise ConfigError.
        """
        if not has_intent(annotations):
            return None
        return cls(
            endpoint=(annotations.get(ANN_ENDPOINT) or "").strip(),
            secret_ref=(annotations.get(ANN_SECRET) or "").strip() or None,
            cert_ref=(annotations.get(ANN_CERT_BUNDLE) or "").strip() or None,
            source=SourceKind.parse(annotations.get(ANN_SOURCE)),
            content_type=ContentType.parse(annotations.get(ANN_CONTENT_TYPE)),
            insecure_registry=(annotations.get(ANN_INSECURE_REGISTRY) or "").strip().lower() in ("1", "true", "yes"),
            fingerprint=intent_fingerprint(annotations),
        )
