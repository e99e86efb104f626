"""Tests for the error hierarchy."""

from __future__ import annotations

import pytest

from commander_store._errors import (
    AlreadyExists,
    BackendError,
    DirectoryNotEmpty,
    MalformedUri,
    NotFound,
    ObjectStoreError,
    PermissionDenied,
    ProviderUnavailable,
    UnsupportedCopySize,
    UnsupportedOperation,
)


class TestBaseError:
    """ObjectStoreError carries optional uri and backend."""

    def test_default_attributes(self) -> None:
        e = ObjectStoreError("boom")
        assert e.uri is None
        assert e.backend is None
        assert str(e) == "boom"

    def test_with_attributes(self) -> None:
        e = ObjectStoreError("boom", uri="s3://b/k", backend="s3")
        assert e.uri == "s3://b/k"
        assert e.backend == "s3"

    def test_str_includes_context(self) -> None:
        e = NotFound("missing", uri="gcs://b/x", backend="gcs")
        assert str(e) == "missing | uri='gcs://b/x' | backend='gcs'"

    def test_repr(self) -> None:
        e = NotFound("missing", uri="az://c/x")
        assert repr(e) == "NotFound('missing', uri='az://c/x')"


class TestHierarchy:
    @pytest.mark.parametrize(
        "cls",
        [
            MalformedUri,
            NotFound,
            AlreadyExists,
            DirectoryNotEmpty,
            UnsupportedOperation,
            UnsupportedCopySize,
            ProviderUnavailable,
            BackendError,
            PermissionDenied,
        ],
    )
    def test_all_derive_from_base(self, cls: type[ObjectStoreError]) -> None:
        assert issubclass(cls, ObjectStoreError)

    def test_permission_denied_is_backend_error(self) -> None:
        e = PermissionDenied("nope", operation="put")
        assert isinstance(e, BackendError)
        assert e.operation == "put"


class TestStructuredErrors:
    def test_unsupported_operation_capability(self) -> None:
        e = UnsupportedOperation("no", capability="directory_copy", backend="s3")
        assert e.capability == "directory_copy"
        assert "capability='directory_copy'" in str(e)

    def test_unsupported_copy_size(self) -> None:
        e = UnsupportedCopySize("too big", size=10, limit=5)
        assert (e.size, e.limit) == (10, 5)
        assert "size=10" in str(e)
        assert "limit=5" in str(e)

    def test_backend_error_keeps_cause(self) -> None:
        cause = RuntimeError("socket closed")
        try:
            try:
                raise cause
            except RuntimeError as exc:
                raise BackendError("list failed: socket closed", operation="list") from exc
        except BackendError as err:
            assert err.__cause__ is cause
            assert "operation='list'" in str(err)
