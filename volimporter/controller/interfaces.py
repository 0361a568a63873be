# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# volimporter/controller/interfaces.py
"""
Collaborators the controller consumes but does not implement.

A deployment binds these to its cluster API and secret store; tests use the
in-memory fakes under tests/fakes/.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from .models import RequestStatus, VolumeRequest, Worker


class ClusterClient(ABC):
    """
    Access to volume requests and workers.

    Errors: AlreadyExistsError from create_worker, ConflictError from
    update_request_status when the request changed since it was read,
    NotFoundError when the object is gone.
    """

    @abstractmethod
    def get_request(self, namespace: str, name: str) -> Optional[VolumeRequest]:
        ...

    @abstractmethod
    def list_requests(self) -> List[VolumeRequest]:
        ...

    @abstractmethod
    def update_request_status(self, request: VolumeRequest, status: RequestStatus) -> VolumeRequest:
        """Write `status`, conditional on `request.resource_version`."""
        ...

    @abstractmethod
    def get_worker(self, namespace: str, name: str) -> Optional[Worker]:
        ...

    @abstractmethod
    def create_worker(self, worker: Worker) -> Worker:
        ...

    @abstractmethod
    def delete_worker(self, namespace: str, name: str) -> None:
        ...


class CredentialResolver(ABC):
    """Turns secret and trust-bundle references into usable material."""

    @abstractmethod
    def resolve_credentials(self, namespace: str, secret_ref: str) -> Tuple[str, str]:
        """Returns (access_key, secret_key); raises CredentialError."""
        ...

    @abstractmethod
    def resolve_cert_dir(self, namespace: str, cert_ref: str) -> str:
        """Returns a directory of PEM certificates; raises CredentialError."""
        ...
