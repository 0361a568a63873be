# SPDX-License-Identifier: LGPL-3.0-or-later
import io

import pytest

from volimporter.core.exceptions import TransportResolutionError
from volimporter.importer.options import SourceKind
from volimporter.transports import (
    HTTPProvider,
    ObjectStorageProvider,
    RegistryProvider,
    UploadChannel,
    UploadProvider,
    default_registry,
)
from volimporter.transports.base import ProviderRegistry, TransportProvider, TransportResult


class _Static(TransportProvider):
    kind = SourceKind.HTTP

    def fetch(self, options):
        return TransportResult(io.BytesIO(b"x"))


@pytest.mark.unit
class TestProviderRegistry:
    def test_default_registry(self):
        reg = default_registry()
        assert isinstance(reg.resolve(SourceKind.HTTP), HTTPProvider)
        assert isinstance(reg.resolve(SourceKind.OBJECT_STORAGE), ObjectStorageProvider)
        assert isinstance(reg.resolve(SourceKind.REGISTRY), RegistryProvider)
        with pytest.raises(TransportResolutionError):
            reg.resolve(SourceKind.UPLOAD)

    def test_upload_needs_channel(self):
        reg = default_registry(upload_channel=UploadChannel())
        assert isinstance(reg.resolve(SourceKind.UPLOAD), UploadProvider)
        assert SourceKind.UPLOAD in reg.kinds()

    def test_instance_and_factory(self):
        provider = _Static()
        reg = ProviderRegistry({SourceKind.HTTP: provider, SourceKind.REGISTRY: _Static})
        assert reg.resolve(SourceKind.HTTP) is provider
        assert isinstance(reg.resolve(SourceKind.REGISTRY), _Static)
        assert reg.resolve(SourceKind.REGISTRY) is not reg.resolve(SourceKind.REGISTRY)

    def test_unknown_kind_lists_known(self):
        reg = ProviderRegistry({SourceKind.HTTP: _Static()})
        with pytest.raises(TransportResolutionError) as e:
            reg.resolve(SourceKind.OBJECT_STORAGE)
        assert e.value.context["known"] == ["http"]
        assert e.value.reason == "UnknownSource"

    def test_cannot_register_none(self):
        with pytest.raises(TransportResolutionError):
            ProviderRegistry().register(SourceKind.NONE, _Static())
        with pytest.raises(TypeError):
            ProviderRegistry().register(SourceKind.HTTP, "not a provider")

    def test_result_close_is_idempotent(self):
        closed = []
        result = TransportResult(io.BytesIO(b"x"), closers=[lambda: closed.append(1)])
        result.close()
        result.close()
        assert closed == [1]
