# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# volimporter/controller/controller.py
"""
Reconciliation controller.

Per request (keyed "namespace/name"):

    no intent                      → nothing
    intent, no worker              → create worker, unless the recorded
                                     outcome already belongs to this intent
    worker pending/running         → mirror phase on status
    worker succeeded               → ready/Completed, delete worker
    worker failed                  → not ready with the worker's reason,
                                     delete or retain the worker
    request gone                   → delete its worker

An intent change while a worker runs waits for that attempt to finish; its
outcome is recorded against the old intent, then the worker is replaced.

Events only enqueue keys; reconcile threads pull keys from a
de-duplicating WorkQueue, so one key never reconciles on two threads.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Optional

from ..core.config import ControllerConfig
from ..core.exceptions import (
    AlreadyExistsError,
    ConflictError,
    CredentialError,
    NotFoundError,
    VolImporterError,
)
from ..core.logger import Log
from ..core.retry import retry_operation
from ..importer.options import ImportOptions
from .annotations import ImportAnnotations, intent_fingerprint, worker_name_for
from .interfaces import ClusterClient, CredentialResolver
from .models import (
    RequestStatus,
    VolumeRequest,
    Worker,
    WorkerPhase,
    WorkerSpec,
    request_key,
    split_key,
)
from .workqueue import WorkQueue

log = logging.getLogger(__name__)

REASON_COMPLETED = "Completed"
REASON_FAILED = "ImportFailed"

# (key, attempts, error) -> delay in seconds, or None to drop the key
RetryPolicy = Callable[[str, int, BaseException], Optional[float]]


class ImportController:
    def __init__(
        self,
        client: ClusterClient,
        credentials: Optional[CredentialResolver] = None,
        config: Optional[ControllerConfig] = None,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        logger: Optional[logging.Logger] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.client = client
        self.credentials = credentials
        self.config = config or ControllerConfig()
        self.retry_policy = retry_policy
        self.logger = logger or log
        self.queue = WorkQueue()
        self.stop_event = threading.Event()
        self.executor: Optional[ThreadPoolExecutor] = None
        self._resync_thread: Optional[threading.Thread] = None
        self._failures: Dict[str, int] = {}
        self._failures_lock = threading.Lock()
        self._sleep_kw = {"sleep": sleep} if sleep is not None else {}

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def on_request_event(self, request: VolumeRequest) -> None:
        """Request added or updated."""
        self.queue.add(request.key)

    def on_request_deleted(self, namespace: str, name: str) -> None:
        self.queue.add(request_key(namespace, name))

    def on_worker_event(self, worker: Worker) -> None:
        self.queue.add(worker.request_key)

    def resync(self) -> int:
        """Enqueue every known request; returns how many were queued."""
        requests = self.client.list_requests()
        for req in requests:
            self.queue.add(req.key)
        Log.trace(self.logger, "Resync queued %d request(s)", len(requests))
        return len(requests)

    # ------------------------------------------------------------------
    # Processing loop
    # ------------------------------------------------------------------

    def process_next(self, timeout: Optional[float] = None) -> bool:
        """Reconcile one queued key; False if none arrived in time."""
        key = self.queue.get(timeout=timeout)
        if key is None:
            return False
        try:
            self.reconcile(key)
        except Exception as e:
            self._handle_error(key, e)
        else:
            with self._failures_lock:
                self._failures.pop(key, None)
        finally:
            self.queue.done(key)
        return True

    def _handle_error(self, key: str, error: Exception) -> None:
        with self._failures_lock:
            attempts = self._failures.get(key, 0) + 1
            self._failures[key] = attempts
        self.logger.error("💥 Reconcile of %s failed (attempt %d): %s", key, attempts, error)
        self.logger.debug("Reconcile traceback", exc_info=True)
        delay = self.retry_policy(key, attempts, error) if self.retry_policy else None
        if delay is None:
            with self._failures_lock:
                self._failures.pop(key, None)
            return
        self.logger.info("🔄 Requeueing %s in %.1fs", key, delay)
        self.queue.add_after(key, delay)

    def _worker_loop(self) -> None:
        while not self.stop_event.is_set():
            try:
                self.process_next(timeout=1.0)
            except Exception as e:
                self.logger.error("💥 Unexpected error in reconcile loop: %s", e)
                self.logger.debug("Reconcile loop exception", exc_info=True)

    def _resync_loop(self) -> None:
        period = max(1.0, float(self.config.resync_period_s))
        while not self.stop_event.wait(period):
            try:
                self.resync()
            except Exception as e:
                self.logger.warning("Resync failed: %s", e)

    def start(self) -> None:
        """Start reconcile threads and the periodic resync; returns immediately."""
        threads = max(1, int(self.config.threads))
        self.logger.info("🚀 Starting import controller (%d reconcile threads)", threads)
        self.stop_event.clear()
        self.executor = ThreadPoolExecutor(max_workers=threads, thread_name_prefix="reconcile")
        for _ in range(threads):
            self.executor.submit(self._worker_loop)
        self.resync()
        self._resync_thread = threading.Thread(target=self._resync_loop, name="resync", daemon=True)
        self._resync_thread.start()

    def run(self) -> None:
        """Start and block until stop() is called."""
        self.start()
        self.stop_event.wait()

    def stop(self) -> None:
        self.logger.info("🛑 Stopping import controller")
        self.stop_event.set()
        self.queue.shut_down()
        if self.executor is not None:
            self.executor.shutdown(wait=True)
            self.executor = None
        if self._resync_thread is not None:
            self._resync_thread.join(timeout=5)
            self._resync_thread = None

    # ------------------------------------------------------------------
    # Reconcile
    # ------------------------------------------------------------------

    def reconcile(self, key: str) -> None:
        namespace, name = split_key(key)
        lg = Log.bind(self.logger, request=key)
        wname = worker_name_for(name)

        request = self.client.get_request(namespace, name)
        if request is None:
            self._delete_worker(namespace, wname, lg, why="request deleted")
            return

        worker = self.client.get_worker(namespace, wname)
        intent = intent_fingerprint(request.annotations)

        if worker is not None:
            self._reconcile_worker(request, worker, intent, lg)
            return

        if not intent:
            return
        if request.status.observed_intent == intent:
            # outcome for this intent already recorded; a new attempt needs a new intent
            return
        self._start_worker(request, intent, wname, lg)

    def _reconcile_worker(self, request: VolumeRequest, worker: Worker, intent: str, lg: logging.LoggerAdapter) -> None:
        if not worker.phase.is_terminal:
            self._set_status(request, RequestStatus(
                ready=False,
                reason="",
                message="Import in progress",
                phase=worker.phase.value,
                observed_intent=request.status.observed_intent,
            ))
            return

        succeeded = worker.phase is WorkerPhase.SUCCEEDED
        if succeeded:
            status = RequestStatus(
                ready=True,
                reason=REASON_COMPLETED,
                message=worker.message or "Import complete",
                phase=worker.phase.value,
                observed_intent=worker.intent,
            )
        else:
            status = RequestStatus(
                ready=False,
                reason=worker.reason or REASON_FAILED,
                message=worker.message or "Import failed",
                phase=worker.phase.value,
                observed_intent=worker.intent,
            )
        if request.status != status:
            self._set_status(request, status)
            if succeeded:
                Log.ok(lg, f"Import completed by {worker.name}")
            else:
                Log.fail(lg, f"Import failed in {worker.name}: {status.reason}: {status.message}")

        intent_changed = bool(intent) and intent != worker.intent
        if succeeded or intent_changed or not self.config.retain_failed_workers:
            self._delete_worker(worker.namespace, worker.name, lg, why=f"worker {worker.phase.value.lower()}")
        if intent_changed:
            lg.info("Import intent changed; starting a new attempt")
            self.queue.add(request.key)

    def _start_worker(self, request: VolumeRequest, intent: str, wname: str, lg: logging.LoggerAdapter) -> None:
        try:
            ann = ImportAnnotations.from_annotations(request.annotations)
        except VolImporterError as e:
            self._set_status(request, RequestStatus(
                ready=False, reason=e.reason, message=str(e), phase="", observed_intent=intent,
            ))
            Log.warn(lg, f"Invalid import annotations: {e}")
            return
        if ann is None:
            return

        try:
            access_key, secret_key, cert_dir = self._resolve_credentials(request.namespace, ann)
        except CredentialError as e:
            self._set_status(request, RequestStatus(
                ready=False, reason=e.reason, message=str(e), phase="", observed_intent=intent,
            ))
            Log.warn(lg, f"Credentials unavailable: {e}")
            return

        options = ImportOptions(
            destination=self.config.destination_path,
            endpoint=ann.endpoint,
            access_key=access_key,
            secret_key=secret_key,
            source=ann.source,
            content_type=ann.content_type,
            capacity=request.capacity,
            cert_dir=cert_dir,
            insecure_registry=ann.insecure_registry,
        )
        worker = Worker(
            namespace=request.namespace,
            name=wname,
            spec=WorkerSpec(
                image=self.config.worker_image,
                env=options.to_env(),
                request_name=request.name,
                intent=intent,
                destination=options.destination,
            ),
        )
        try:
            self.client.create_worker(worker)
            Log.step(lg, f"Created worker {wname}", source=ann.source.value)
        except AlreadyExistsError:
            lg.debug("Worker %s already exists", wname)

        self._set_status(request, RequestStatus(
            ready=False,
            reason="",
            message="Import pending",
            phase=WorkerPhase.PENDING.value,
            observed_intent=request.status.observed_intent,
        ))

    def _resolve_credentials(self, namespace: str, ann: ImportAnnotations):
        access_key = secret_key = ""
        cert_dir: Optional[str] = None
        if not (ann.secret_ref or ann.cert_ref):
            return access_key, secret_key, cert_dir
        if self.credentials is None:
            raise CredentialError(msg="No credential resolver configured")
        try:
            if ann.secret_ref:
                access_key, secret_key = self.credentials.resolve_credentials(namespace, ann.secret_ref)
            if ann.cert_ref:
                cert_dir = self.credentials.resolve_cert_dir(namespace, ann.cert_ref)
        except CredentialError:
            raise
        except Exception as e:
            raise CredentialError(msg=f"Resolving credentials failed: {e}", cause=e) from e
        return access_key, secret_key, cert_dir

    def _delete_worker(self, namespace: str, name: str, lg: logging.LoggerAdapter, *, why: str) -> None:
        try:
            self.client.delete_worker(namespace, name)
        except NotFoundError:
            return
        lg.debug("Deleted worker %s (%s)", name, why)

    def _set_status(self, request: VolumeRequest, status: RequestStatus) -> None:
        """Write status; on conflict re-read the request and try again."""
        state = {"request": request}

        def _attempt() -> None:
            current = state["request"]
            if current.status == status:
                return
            try:
                self.client.update_request_status(current, status)
            except ConflictError:
                fresh = self.client.get_request(current.namespace, current.name)
                if fresh is None:
                    return
                state["request"] = fresh
                raise

        try:
            retry_operation(
                _attempt,
                max_attempts=max(1, int(self.config.conflict_retries)),
                exceptions=ConflictError,
                operation_name=f"status update for {request.key}",
                logger=self.logger,
                **self._sleep_kw,
            )
        except NotFoundError:
            self.logger.debug("Request %s vanished before its status was written", request.key)
