# SPDX-License-Identifier: LGPL-3.0-or-later
import os
from unittest.mock import MagicMock

import pytest
import requests
import urllib3

from volimporter.core.config import ImporterConfig
from volimporter.core.exceptions import (
    FetchAuthError,
    FetchError,
    FetchNotFoundError,
    FetchTimeoutError,
    FetchTLSError,
)
from volimporter.importer.options import ImportOptions, SourceKind
from volimporter.transports.http import HTTPProvider, classify_http_exception, classify_http_status

from fixtures.http_server import StaticServer
from fixtures.images import pattern_bytes

FAKE_PEM = b"-----BEGIN CERTIFICATE-----\nMIIB\n-----END CERTIFICATE-----\n"


def _opts(endpoint, **kw):
    return ImportOptions(destination="/unused", endpoint=endpoint, source=SourceKind.HTTP, **kw)


@pytest.fixture
def cert_dir(tmp_path):
    d = tmp_path / "certs"
    d.mkdir()
    (d / "ca.crt").write_bytes(FAKE_PEM)
    return str(d)


@pytest.fixture
def server():
    files = {"/disk.img": pattern_bytes(200000), "/private.img": b"secret disk"}
    with StaticServer(files, auth=("user", "pass"), protected=("/private.img",)) as srv:
        yield srv


@pytest.mark.unit
class TestHTTPFetch:
    def test_streams_body(self, server):
        with HTTPProvider().fetch(_opts(server.url("/disk.img"))) as result:
            assert result.size == 200000
            assert result.stream.read() == server.files["/disk.img"]
            assert result.bytes_read == 200000

    def test_basic_auth(self, server):
        opts = _opts(server.url("/private.img"), access_key="user", secret_key="pass")
        with HTTPProvider().fetch(opts) as result:
            assert result.stream.read() == b"secret disk"
        assert server.requests[-1][1].startswith("Basic ")

    def test_wrong_credentials(self, server):
        opts = _opts(server.url("/private.img"), access_key="user", secret_key="nope")
        with pytest.raises(FetchAuthError) as e:
            HTTPProvider().fetch(opts)
        assert e.value.reason == "Unauthorized"

    def test_missing_credentials(self, server):
        with pytest.raises(FetchAuthError):
            HTTPProvider().fetch(_opts(server.url("/private.img")))

    def test_not_found(self, server):
        with pytest.raises(FetchNotFoundError) as e:
            HTTPProvider().fetch(_opts(server.url("/gone.img")))
        assert e.value.context["status"] == 404

    def test_server_error(self, server):
        with pytest.raises(FetchError) as e:
            HTTPProvider().fetch(_opts(server.url("/status/503")))
        assert type(e.value) is FetchError
        assert e.value.context["status"] == 503

    def test_no_hidden_retries(self, server):
        with pytest.raises(FetchError):
            HTTPProvider().fetch(_opts(server.url("/status/500")))
        assert [p for p, _ in server.requests] == ["/status/500"]

    def test_connection_refused(self):
        cfg = ImporterConfig(connect_timeout_s=2.0)
        with pytest.raises(FetchError):
            HTTPProvider(cfg).fetch(_opts("http://127.0.0.1:9/disk.img"))

    def test_stalled_server_times_out(self, server):
        server.stall.add("/slow.img")
        cfg = ImporterConfig(connect_timeout_s=1, read_timeout_s=1)
        with pytest.raises(FetchTimeoutError) as e:
            HTTPProvider(cfg).fetch(_opts(server.url("/slow.img")))
        assert e.value.reason == "Timeout"

    def test_follows_plain_redirect(self, server):
        server.redirects["/moved.img"] = server.url("/disk.img")
        with HTTPProvider().fetch(_opts(server.url("/moved.img"))) as result:
            assert result.stream.read() == server.files["/disk.img"]
        assert [p for p, _ in server.requests] == ["/moved.img", "/disk.img"]


@pytest.mark.security
class TestHTTPTrust:
    def test_https_without_trust_anchor_is_refused(self):
        client = MagicMock()
        with pytest.raises(FetchTLSError):
            HTTPProvider(http_client=client).fetch(_opts("https://images.example.com/disk.img"))
        client.Session.assert_not_called()

    def test_https_verifies_against_bundle(self, cert_dir):
        client = MagicMock()
        session = client.Session.return_value
        session.get.return_value.status_code = 200
        session.get.return_value.headers = {"Content-Length": "3"}
        result = HTTPProvider(http_client=client).fetch(
            _opts("https://images.example.com/disk.img", cert_dir=cert_dir)
        )
        bundle = session.verify
        assert isinstance(bundle, str)
        with open(bundle, "rb") as f:
            assert FAKE_PEM.strip() in f.read()
        assert session.get.call_args.kwargs["stream"] is True
        result.close()
        assert not os.path.exists(bundle)

    def test_tls_failure_is_classified(self, cert_dir):
        client = MagicMock()
        client.Session.return_value.get.side_effect = requests.exceptions.SSLError("certificate verify failed")
        with pytest.raises(FetchTLSError) as e:
            HTTPProvider(http_client=client).fetch(_opts("https://images.example.com/disk.img", cert_dir=cert_dir))
        assert e.value.reason == "TLSFailure"
        client.Session.return_value.close.assert_called_once()

    def test_empty_cert_dir(self, tmp_path):
        (tmp_path / "empty").mkdir()
        with pytest.raises(FetchTLSError):
            HTTPProvider(http_client=MagicMock()).fetch(
                _opts("https://images.example.com/disk.img", cert_dir=str(tmp_path / "empty"))
            )

    def test_redirect_to_https_without_trust_anchor(self, server, monkeypatch, tmp_path):
        ambient = tmp_path / "ambient.pem"
        ambient.write_bytes(FAKE_PEM)
        monkeypatch.setenv("REQUESTS_CA_BUNDLE", str(ambient))
        server.redirects["/moved.img"] = "https://127.0.0.1:9/disk.img"
        with pytest.raises(FetchTLSError) as e:
            HTTPProvider().fetch(_opts(server.url("/moved.img")))
        assert e.value.context["location"] == "https://127.0.0.1:9/disk.img"
        assert [p for p, _ in server.requests] == ["/moved.img"]

    def test_redirect_to_other_scheme(self, server):
        server.redirects["/moved.img"] = "ftp://images.example.com/disk.img"
        with pytest.raises(FetchError):
            HTTPProvider().fetch(_opts(server.url("/moved.img")))

    def test_session_ignores_environment(self, cert_dir):
        client = MagicMock()
        session = client.Session.return_value
        session.get.return_value.status_code = 200
        session.get.return_value.headers = {}
        HTTPProvider(http_client=client).fetch(_opts("https://images.example.com/disk.img", cert_dir=cert_dir)).close()
        assert session.trust_env is False
        assert "response" in session.get.call_args.kwargs["hooks"]


@pytest.mark.unit
class TestClassification:
    def test_timeouts(self):
        assert isinstance(classify_http_exception(requests.exceptions.ConnectTimeout("slow")), FetchTimeoutError)
        assert isinstance(classify_http_exception(requests.exceptions.ReadTimeout("slow")), FetchTimeoutError)
        err = urllib3.exceptions.ReadTimeoutError(None, "/disk.img", "read timed out")
        assert isinstance(classify_http_exception(err), FetchTimeoutError)

    def test_connection_error(self):
        err = classify_http_exception(requests.exceptions.ConnectionError("refused"), endpoint="http://x")
        assert type(err) is FetchError
        assert "http://x" in str(err)

    def test_status_codes(self):
        assert classify_http_status(200, "e") is None
        assert classify_http_status(302, "e") is None
        assert isinstance(classify_http_status(403, "e"), FetchAuthError)
        assert isinstance(classify_http_status(410, "e"), FetchNotFoundError)
        assert type(classify_http_status(418, "e")) is FetchError

    def test_read_error_mid_stream(self):
        from volimporter.transports.base import SourceReader

        raw = MagicMock()
        raw.read.side_effect = urllib3.exceptions.ProtocolError("connection reset")
        reader = SourceReader(raw, classify=classify_http_exception)
        with pytest.raises(FetchError):
            reader.read(10)
