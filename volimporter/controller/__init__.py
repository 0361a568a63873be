# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# volimporter/controller/__init__.py
"""Reconciliation controller: annotated volume requests → import workers."""

from .annotations import (
    ANNOTATION_PREFIX,
    ANN_CERT_BUNDLE,
    ANN_CONTENT_TYPE,
    ANN_ENDPOINT,
    ANN_INSECURE_REGISTRY,
    ANN_SECRET,
    ANN_SOURCE,
    ImportAnnotations,
    intent_fingerprint,
    worker_name_for,
)
from .controller import ImportController, RetryPolicy
from .interfaces import ClusterClient, CredentialResolver
from .models import RequestStatus, VolumeRequest, Worker, WorkerPhase, WorkerSpec
from .workqueue import WorkQueue

__all__ = [
    "ANNOTATION_PREFIX",
    "ANN_CERT_BUNDLE",
    "ANN_CONTENT_TYPE",
    "ANN_ENDPOINT",
    "ANN_INSECURE_REGISTRY",
    "ANN_SECRET",
    "ANN_SOURCE",
    "ClusterClient",
    "CredentialResolver",
    "ImportAnnotations",
    "ImportController",
    "RequestStatus",
    "RetryPolicy",
    "VolumeRequest",
    "WorkQueue",
    "Worker",
    "WorkerPhase",
    "WorkerSpec",
    "intent_fingerprint",
    "worker_name_for",
]
