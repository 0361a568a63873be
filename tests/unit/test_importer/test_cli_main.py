# SPDX-License-Identifier: LGPL-3.0-or-later
import json
import logging
import os

import pytest

from volimporter.__main__ import build_parser, main

from fixtures.http_server import StaticServer
from fixtures.images import make_gzip, make_qcow2, sparse_payload


@pytest.fixture(autouse=True)
def _no_signal_handlers(monkeypatch):
    monkeypatch.setattr("volimporter.importer.worker.ImportWorker.install_signal_handlers", lambda self: None)
    for var in list(os.environ):
        if var.startswith(("IMPORTER_", "VOLIMPORTER_")):
            monkeypatch.delenv(var)
    yield
    lg = logging.getLogger("volimporter")
    for h in list(lg.handlers):
        lg.removeHandler(h)
        h.close()
    lg.propagate = True
    lg.setLevel(logging.NOTSET)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "volimporter.yaml"
    path.write_text(
        "importer:\n"
        f"  termination_message_path: {tmp_path / 'termination-log'}\n"
        "  show_progress: false\n",
        encoding="utf-8",
    )
    return path


class TestParser:
    def test_subcommand_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_upload_server_defaults(self):
        args = build_parser().parse_args(["upload-server"])
        assert (args.host, args.port, args.destination) == ("0.0.0.0", 8443, None)

    def test_module_is_directly_executable(self):
        import volimporter.__main__ as entry

        with open(entry.__file__, encoding="utf-8") as f:
            assert f.readline().startswith("#!/usr/bin/env python3")


@pytest.mark.integration
class TestMain:
    def test_import_from_http(self, tmp_path, monkeypatch, config_file):
        raw = sparse_payload()
        dest = tmp_path / "out" / "disk.img"
        with StaticServer({"/vm.qcow2.gz": make_gzip(make_qcow2(raw))}) as srv:
            monkeypatch.setenv("IMPORTER_ENDPOINT", srv.url("/vm.qcow2.gz"))
            monkeypatch.setenv("IMPORTER_SOURCE", "http")
            with pytest.raises(SystemExit) as e:
                main(["--config", str(config_file), "import", "--destination", str(dest)])
        assert e.value.code == 0
        assert dest.read_bytes() == raw
        assert json.loads((tmp_path / "termination-log").read_text())["reason"] == "Completed"

    def test_import_failure_exit_code(self, tmp_path, monkeypatch, config_file):
        with StaticServer({}) as srv:
            monkeypatch.setenv("IMPORTER_ENDPOINT", srv.url("/missing.img"))
            with pytest.raises(SystemExit) as e:
                main(["--config", str(config_file), "import", "--destination", str(tmp_path / "disk.img")])
        assert e.value.code == 1
        assert json.loads((tmp_path / "termination-log").read_text())["reason"] == "NotFound"

    def test_bad_config(self, tmp_path):
        bad = tmp_path / "bad.yaml"
        bad.write_text("importer: [1, 2\n", encoding="utf-8")
        with pytest.raises(SystemExit) as e:
            main(["--config", str(bad), "import"])
        assert e.value.code == 2
