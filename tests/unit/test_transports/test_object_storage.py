# SPDX-License-Identifier: LGPL-3.0-or-later
import io
import unittest
from unittest.mock import MagicMock

import botocore.exceptions

from volimporter.core.exceptions import (
    FetchAuthError,
    FetchError,
    FetchNotFoundError,
    FetchTimeoutError,
    FetchTLSError,
)
from volimporter.importer.options import ImportOptions, SourceKind
from volimporter.transports.object_storage import (
    ObjectStorageProvider,
    classify_s3_exception,
    parse_s3_endpoint,
)


def _client_error(code, status):
    return botocore.exceptions.ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        "GetObject",
    )


def _opts(endpoint, **kw):
    return ImportOptions(destination="/unused", endpoint=endpoint, source=SourceKind.OBJECT_STORAGE, **kw)


class TestParseEndpoint(unittest.TestCase):
    def test_s3_scheme(self):
        self.assertEqual(parse_s3_endpoint("s3://images/vm/disk.qcow2"), (None, "images", "vm/disk.qcow2"))

    def test_custom_endpoint(self):
        self.assertEqual(
            parse_s3_endpoint("https://minio.local:9000/images/vm%20one/disk.img"),
            ("https://minio.local:9000", "images", "vm one/disk.img"),
        )

    def test_requires_bucket_and_key(self):
        with self.assertRaises(FetchError):
            parse_s3_endpoint("s3://images")
        with self.assertRaises(FetchError):
            parse_s3_endpoint("ftp://host/bucket/key")


class TestObjectStorageProvider(unittest.TestCase):
    def setUp(self):
        self.factory = MagicMock()
        self.client = self.factory.return_value
        self.provider = ObjectStorageProvider(client_factory=self.factory)

    def test_fetch_streams_object(self):
        self.client.get_object.return_value = {"Body": io.BytesIO(b"disk bytes"), "ContentLength": 10}
        with self.provider.fetch(_opts("s3://images/disk.img", access_key="AK", secret_key="SK")) as result:
            self.assertEqual(result.size, 10)
            self.assertEqual(result.stream.read(), b"disk bytes")
        self.client.get_object.assert_called_once_with(Bucket="images", Key="disk.img")
        kwargs = self.factory.call_args.kwargs
        self.assertEqual(self.factory.call_args.args, ("s3",))
        self.assertEqual(kwargs["aws_access_key_id"], "AK")
        self.assertEqual(kwargs["aws_secret_access_key"], "SK")
        self.assertNotIn("endpoint_url", kwargs)

    def test_custom_endpoint_and_anonymous(self):
        self.client.get_object.return_value = {"Body": io.BytesIO(b"x")}
        with self.provider.fetch(_opts("http://minio.local:9000/images/disk.img")) as result:
            self.assertIsNone(result.size)
        kwargs = self.factory.call_args.kwargs
        self.assertEqual(kwargs["endpoint_url"], "http://minio.local:9000")
        self.assertNotIn("aws_access_key_id", kwargs)

    def test_single_attempt(self):
        self.client.get_object.return_value = {"Body": io.BytesIO(b"x")}
        self.provider.fetch(_opts("s3://images/disk.img")).close()
        cfg = self.factory.call_args.kwargs["config"]
        self.assertEqual(cfg.retries["max_attempts"], 1)

    def test_missing_object(self):
        self.client.get_object.side_effect = _client_error("NoSuchKey", 404)
        with self.assertRaises(FetchNotFoundError):
            self.provider.fetch(_opts("s3://images/missing.img"))

    def test_access_denied(self):
        self.client.get_object.side_effect = _client_error("AccessDenied", 403)
        with self.assertRaises(FetchAuthError) as ctx:
            self.provider.fetch(_opts("s3://images/disk.img", access_key="AK", secret_key="bad"))
        self.assertEqual(ctx.exception.reason, "Unauthorized")

    def test_trust_bundle_passed_as_verify(self):
        import tempfile
        from pathlib import Path

        with tempfile.TemporaryDirectory() as d:
            (Path(d) / "ca.pem").write_text("-----BEGIN CERTIFICATE-----\nAA\n-----END CERTIFICATE-----\n")
            self.client.get_object.return_value = {"Body": io.BytesIO(b"x")}
            result = self.provider.fetch(_opts("https://minio.local/images/disk.img", cert_dir=d))
            bundle = self.factory.call_args.kwargs["verify"]
            self.assertTrue(Path(bundle).is_file())
            result.close()
            self.assertFalse(Path(bundle).exists())


class TestClassifyS3Exception(unittest.TestCase):
    def test_codes(self):
        self.assertIsInstance(classify_s3_exception(_client_error("NoSuchBucket", 404)), FetchNotFoundError)
        self.assertIsInstance(classify_s3_exception(_client_error("SignatureDoesNotMatch", 403)), FetchAuthError)
        self.assertIs(type(classify_s3_exception(_client_error("SlowDown", 503))), FetchError)

    def test_transport_errors(self):
        ssl = botocore.exceptions.SSLError(endpoint_url="https://minio.local", error="bad cert")
        self.assertIsInstance(classify_s3_exception(ssl), FetchTLSError)
        timeout = botocore.exceptions.ReadTimeoutError(endpoint_url="https://minio.local")
        self.assertIsInstance(classify_s3_exception(timeout), FetchTimeoutError)
        self.assertIsInstance(classify_s3_exception(botocore.exceptions.NoCredentialsError()), FetchAuthError)
