# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# volimporter/controller/models.py
"""Objects the controller reads and writes through a ClusterClient."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Optional, Tuple


class WorkerPhase(str, Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkerPhase.SUCCEEDED, WorkerPhase.FAILED)


def request_key(namespace: str, name: str) -> str:
    return f"{namespace}/{name}"


def split_key(key: str) -> Tuple[str, str]:
    ns, sep, name = key.partition("/")
    if not sep:
        return "", ns
    return ns, name


@dataclass(frozen=True)
class RequestStatus:
    ready: bool = False
    reason: str = ""
    message: str = ""
    phase: str = ""
    observed_intent: str = ""


@dataclass
class VolumeRequest:
    """A storage-volume request; annotations declare the import intent."""

    namespace: str
    name: str
    annotations: Dict[str, str] = field(default_factory=dict)
    capacity: str = ""
    status: RequestStatus = field(default_factory=RequestStatus)
    resource_version: int = 0

    @property
    def key(self) -> str:
        return request_key(self.namespace, self.name)

    def copy(self) -> "VolumeRequest":
        return replace(self, annotations=dict(self.annotations))


@dataclass(frozen=True)
class WorkerSpec:
    image: str
    env: Dict[str, str]
    request_name: str
    intent: str
    destination: str = ""


@dataclass
class Worker:
    """Ephemeral unit executing one import for one request."""

    namespace: str
    name: str
    spec: WorkerSpec
    phase: WorkerPhase = WorkerPhase.PENDING
    reason: str = ""
    message: str = ""

    @property
    def request_key(self) -> str:
        return request_key(self.namespace, self.spec.request_name)

    @property
    def intent(self) -> str:
        return self.spec.intent

    def copy(self) -> "Worker":
        return replace(self)

    def terminate(self, exit_code: int, termination_message: Optional[str] = None) -> None:
        """Record the outcome from an exit code and the worker's termination message."""
        reason, message = parse_termination_message(termination_message)
        if exit_code == 0:
            self.phase = WorkerPhase.SUCCEEDED
            self.reason = reason or "Completed"
        else:
            self.phase = WorkerPhase.FAILED
            self.reason = reason or "ImportFailed"
        self.message = message or (f"worker exited with code {exit_code}" if exit_code else "")


def parse_termination_message(text: Optional[str]) -> Tuple[str, str]:
    """Returns (reason, message); non-JSON text is taken as the message."""
    if not text or not text.strip():
        return "", ""
    try:
        doc = json.loads(text)
    except ValueError:
        return "", text.strip()
    if not isinstance(doc, dict):
        return "", text.strip()
    return str(doc.get("reason") or ""), str(doc.get("message") or "")
