"""GCS provider tests against an in-memory client."""

from __future__ import annotations

import base64
import hashlib
import logging
from typing import TYPE_CHECKING

import pytest
from google.api_core import exceptions as gexc

from commander_store._errors import BackendError, NotFound, PermissionDenied, UnsupportedOperation
from commander_store.providers._gcs import DIRECTORY_CONTENT_TYPE, GCSProvider
from tests.providers.fakes import FakeGCSClient

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def client() -> FakeGCSClient:
    return FakeGCSClient(buckets=("bucket",))


@pytest.fixture
def gcs(client: FakeGCSClient) -> GCSProvider:
    return GCSProvider(client=client)


def _put(gcs: GCSProvider, tmp_path: Path, uri: str, data: bytes = b"data", **kwargs: object) -> None:
    src = tmp_path / "upload.bin"
    src.write_bytes(data)
    gcs.put(src, uri, **kwargs)  # type: ignore[arg-type]


class TestGCSDirectories:
    def test_marker_is_zero_byte_directory_object(self, gcs: GCSProvider, client: FakeGCSClient) -> None:
        gcs.mkdir("gcs://bucket/made/")
        record = client.buckets["bucket"]["made/"]
        assert record.data == b""
        assert record.content_type == DIRECTORY_CONTENT_TYPE

    def test_implicit_directory(self, gcs: GCSProvider, tmp_path: Path) -> None:
        _put(gcs, tmp_path, "gcs://bucket/a/b/c.txt")
        assert gcs.stat("gcs://bucket/a/").is_dir is True
        assert [obj.name for obj in gcs.list("gcs://bucket/a/").directories] == ["b"]

    def test_missing_bucket_lists_raise(self, gcs: GCSProvider) -> None:
        with pytest.raises(NotFound):
            gcs.list("gcs://missing/")

    def test_bucket_root_delete_refused(self, gcs: GCSProvider) -> None:
        with pytest.raises(UnsupportedOperation):
            gcs.delete("gcs://bucket/")

    def test_recursive_delete_counts(
        self, gcs: GCSProvider, client: FakeGCSClient, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        _put(gcs, tmp_path, "gcs://bucket/t/a.txt")
        _put(gcs, tmp_path, "gcs://bucket/t/b/c.txt")
        with caplog.at_level(logging.INFO, logger="commander_store.providers._gcs"):
            gcs.delete("gcs://bucket/t/", recursive=True)
        assert client.buckets["bucket"] == {}
        assert "Deleted 2 objects" in caplog.text


class TestGCSMetadata:
    def test_checksum_is_crc32c_and_md5_in_metadata(self, gcs: GCSProvider, tmp_path: Path) -> None:
        _put(gcs, tmp_path, "gcs://bucket/x.txt", b"abc")
        obj = gcs.stat("gcs://bucket/x.txt")
        assert obj.checksum is not None
        assert obj.metadata["md5_hash"] == base64.b64encode(hashlib.md5(b"abc").digest()).decode()

    def test_content_type_and_custom_metadata(self, gcs: GCSProvider, tmp_path: Path) -> None:
        _put(gcs, tmp_path, "gcs://bucket/doc.json", b"{}", content_type="application/json", metadata={"team": "a"})
        obj = gcs.stat("gcs://bucket/doc.json")
        assert obj.metadata["content_type"] == "application/json"
        assert obj.metadata["team"] == "a"

    def test_last_modified_utc(self, gcs: GCSProvider, tmp_path: Path) -> None:
        _put(gcs, tmp_path, "gcs://bucket/t.txt")
        modified = gcs.stat("gcs://bucket/t.txt").last_modified
        assert modified is not None
        assert modified.utcoffset() is not None


class TestGCSCopy:
    def test_rewrite_loops_until_done(self, gcs: GCSProvider, client: FakeGCSClient, tmp_path: Path) -> None:
        _put(gcs, tmp_path, "gcs://bucket/big.bin", b"x" * 300)
        client.rewrite_steps = 3
        obj = gcs.copy("gcs://bucket/big.bin", "gcs://bucket/copy.bin")
        assert client.rewrite_calls == [None, "rewrite-1", "rewrite-2"]
        assert obj.size == 300

    def test_single_rewrite_call(self, gcs: GCSProvider, client: FakeGCSClient, tmp_path: Path) -> None:
        _put(gcs, tmp_path, "gcs://bucket/small.bin")
        gcs.copy("gcs://bucket/small.bin", "gcs://bucket/copy.bin")
        assert client.rewrite_calls == [None]

    def test_copy_across_buckets(self, client: FakeGCSClient, tmp_path: Path) -> None:
        client.buckets["other"] = {}
        gcs = GCSProvider(client=client)
        _put(gcs, tmp_path, "gcs://bucket/a.txt", b"abc")
        gcs.copy("gcs://bucket/a.txt", "gcs://other/a.txt")
        assert client.buckets["other"]["a.txt"].data == b"abc"


class TestGCSErrorMapping:
    def test_forbidden_maps_to_permission_denied(
        self, gcs: GCSProvider, client: FakeGCSClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def _forbidden(*args: object, **kwargs: object) -> None:
            raise gexc.Forbidden("caller lacks storage.objects.list")

        monkeypatch.setattr(client, "list_blobs", _forbidden)
        with pytest.raises(PermissionDenied) as exc_info:
            gcs.list("gcs://bucket/")
        assert exc_info.value.operation == "list"
        assert isinstance(exc_info.value.__cause__, gexc.Forbidden)

    def test_other_errors_map_to_backend_error(
        self, gcs: GCSProvider, client: FakeGCSClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def _unavailable(*args: object, **kwargs: object) -> None:
            raise gexc.ServiceUnavailable("backend down")

        monkeypatch.setattr(client, "list_blobs", _unavailable)
        with pytest.raises(BackendError) as exc_info:
            gcs.list("gcs://bucket/")
        assert not isinstance(exc_info.value, PermissionDenied)

    def test_close_closes_client(self, gcs: GCSProvider, client: FakeGCSClient) -> None:
        gcs.close()
        assert client.closed is True
