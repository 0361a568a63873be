# SPDX-License-Identifier: LGPL-3.0-or-later
"""
Controller and worker together: the controller creates a worker, the worker
runs in-process from the environment the controller gave it, and its exit
code and termination message come back through the fake cluster.
"""
from pathlib import Path

import pytest

from volimporter.controller import ANN_CERT_BUNDLE, ANN_ENDPOINT, ANN_INSECURE_REGISTRY, ANN_SOURCE, ImportController
from volimporter.core.config import ControllerConfig, ImporterConfig
from volimporter.importer.worker import run_from_env
from volimporter.transports import default_registry

from fakes.fake_cluster import FakeCluster
from fakes.fake_copier import FakeImageCopier
from fakes.fake_credentials import FakeCredentials
from fixtures.http_server import StaticServer
from fixtures.images import make_iso, make_qcow2, make_xz, sparse_payload

NS = "vms"


class Harness:
    def __init__(self, tmp_path: Path, credentials=None):
        self.tmp = tmp_path
        self.dest = tmp_path / "volume" / "disk.img"
        self.cluster = FakeCluster()
        self.ctrl = ImportController(
            self.cluster,
            credentials,
            ControllerConfig(destination_path=str(self.dest)),
            sleep=lambda s: None,
        )
        self.importer_cfg = ImporterConfig(
            show_progress=False,
            termination_message_path=str(tmp_path / "termination-log"),
        )

    def sync(self):
        for req in self.cluster.list_requests():
            self.ctrl.on_request_event(req)
        while self.ctrl.process_next(timeout=0):
            pass

    def run_worker(self, name, providers=None):
        """Run the worker's import in-process and report its exit back to the cluster."""
        worker = self.cluster.get_worker(NS, name)
        rc = run_from_env(worker.spec.env, self.importer_cfg,
                          providers=providers or default_registry(self.importer_cfg))
        message = (self.tmp / "termination-log").read_text()
        self.cluster.finish_worker(NS, name, rc, message)
        self.sync()
        return rc


@pytest.mark.integration
class TestEndToEnd:
    def test_http_qcow2_xz(self, tmp_path):
        raw = sparse_payload()
        h = Harness(tmp_path)
        with StaticServer({"/fedora.qcow2.xz": make_xz(make_qcow2(raw, compress=True))}) as srv:
            h.cluster.add_request(NS, "root", {ANN_ENDPOINT: srv.url("/fedora.qcow2.xz")}, capacity="1Gi")
            h.sync()
            assert h.run_worker("importer-root") == 0

        status = h.cluster.status_of(NS, "root")
        assert status.ready
        assert status.reason == "Completed"
        assert "xz→qcow2" in status.message
        assert h.dest.read_bytes() == raw
        assert h.cluster.workers == {}

    def test_iso_capacity_exceeded(self, tmp_path):
        h = Harness(tmp_path)
        with StaticServer({"/install.iso": make_iso(3 * 1024 * 1024)}) as srv:
            h.cluster.add_request(NS, "cd", {ANN_ENDPOINT: srv.url("/install.iso")}, capacity="2M")
            h.sync()
            assert h.run_worker("importer-cd") == 1

        status = h.cluster.status_of(NS, "cd")
        assert not status.ready
        assert status.reason == "CapacityExceeded"
        assert not h.dest.exists()
        # the failure is final for this intent
        h.sync()
        assert h.cluster.created == ["importer-cd"]

    def test_missing_source(self, tmp_path):
        h = Harness(tmp_path)
        with StaticServer({}) as srv:
            h.cluster.add_request(NS, "root", {ANN_ENDPOINT: srv.url("/nope.img")})
            h.sync()
            assert h.run_worker("importer-root") == 1
        assert h.cluster.status_of(NS, "root").reason == "NotFound"

    def test_registry_with_trust_bundle(self, tmp_path):
        raw = sparse_payload()
        certs = tmp_path / "certs"
        certs.mkdir()
        h = Harness(tmp_path, FakeCredentials(cert_dirs={"registry-ca": str(certs)}))
        h.cluster.add_request(NS, "root", {
            ANN_ENDPOINT: "registry.local/vm/fedora:40",
            ANN_SOURCE: "registry",
            ANN_CERT_BUNDLE: "registry-ca",
        })
        h.sync()
        assert h.cluster.get_worker(NS, "importer-root").spec.env["IMPORTER_CERT_DIR"] == str(certs)

        copier = FakeImageCopier(make_qcow2(raw))
        providers = default_registry(h.importer_cfg, copier=copier)
        assert h.run_worker("importer-root", providers) == 0
        assert h.dest.read_bytes() == raw
        assert copier.calls[0]["cert_dir"] == str(certs)

    def test_untrusted_registry_then_insecure(self, tmp_path):
        raw = sparse_payload()
        certs = tmp_path / "certs"
        certs.mkdir()
        h = Harness(tmp_path, FakeCredentials(cert_dirs={"wrong-ca": str(certs)}))
        ann = {ANN_ENDPOINT: "registry.local/vm/fedora:40", ANN_SOURCE: "registry", ANN_CERT_BUNDLE: "wrong-ca"}
        h.cluster.add_request(NS, "root", ann)
        h.sync()

        def providers():
            copier = FakeImageCopier(make_qcow2(raw), trusted=False)
            return default_registry(h.importer_cfg, copier=copier)

        assert h.run_worker("importer-root", providers()) == 1
        assert h.cluster.status_of(NS, "root").reason == "TLSFailure"

        h.cluster.set_annotations(NS, "root", dict(ann, **{ANN_INSECURE_REGISTRY: "true"}))
        h.sync()
        env = h.cluster.get_worker(NS, "importer-root").spec.env
        assert env["IMPORTER_INSECURE_REGISTRY"] == "true"
        assert h.run_worker("importer-root", providers()) == 0
        assert h.cluster.status_of(NS, "root").ready
        assert h.dest.read_bytes() == raw
