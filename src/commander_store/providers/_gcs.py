"""Google Cloud Storage provider using google-cloud-storage."""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Optional

from commander_store._capabilities import CORE_CAPABILITIES, Capability, CapabilitySet
from commander_store._errors import (
    AlreadyExists,
    BackendError,
    DirectoryNotEmpty,
    MalformedUri,
    NotFound,
    ObjectStoreError,
    PermissionDenied,
    UnsupportedOperation,
)
from commander_store._models import ListResult, Obj
from commander_store._provider import Scheme
from commander_store._uri import build_uri, parse_uri
from commander_store.providers._flat import (
    DEFAULT_DELIMITER,
    as_utc,
    directory_key,
    has_children,
    page_limit,
    partition_listing,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

    from commander_store._types import Metadata, PathLike

log = logging.getLogger(__name__)

_GCS_CAPABILITIES = CapabilitySet(CORE_CAPABILITIES | {Capability.SERVER_SIDE_COPY})

DIRECTORY_CONTENT_TYPE = "application/x-directory"


class GCSProvider:
    """Google Cloud Storage provider.

    Without explicit options the client picks up Application Default
    Credentials.

    :param project: GCP project ID.
    :param credentials_file: Path to a service account JSON key.
    :param client_options: Extra ``client_options`` (e.g. ``{"api_endpoint": ...}``).
    :param client: A ready ``google.cloud.storage.Client``; overrides every other option.
    """

    def __init__(
        self,
        *,
        project: Optional[str] = None,
        credentials_file: Optional[str] = None,
        client_options: Optional[dict[str, Any]] = None,
        client: Any = None,
    ) -> None:
        if client is None:
            from google.cloud import storage

            if credentials_file is not None:
                client = storage.Client.from_service_account_json(
                    credentials_file, project=project, client_options=client_options
                )
            else:
                client = storage.Client(project=project, client_options=client_options)
            log.info("GCS provider ready (project=%s)", project or "default")
        self._client = client

    @property
    def scheme(self) -> Scheme:
        return Scheme.GCS

    @property
    def capabilities(self) -> CapabilitySet:
        return _GCS_CAPABILITIES

    # region: helpers

    def _split(self, uri: str) -> tuple[str, str]:
        parsed = parse_uri(uri)
        if parsed.scheme != Scheme.GCS.value:
            raise MalformedUri(f"Expected a gcs:// URI, got {uri}", uri=uri, backend=Scheme.GCS.value)
        return parsed.namespace, parsed.path

    def _uri(self, bucket: str, key: str) -> str:
        return build_uri(Scheme.GCS.value, bucket, key)

    @contextmanager
    def _errors(self, operation: str, uri: str) -> Iterator[None]:
        """Map ``google.api_core`` exceptions to commander_store errors."""
        from google.api_core import exceptions as gexc

        try:
            yield
        except ObjectStoreError:
            raise
        except gexc.NotFound as exc:
            raise NotFound(f"Not found: {uri}", uri=uri, backend=Scheme.GCS.value) from exc
        except (gexc.Forbidden, gexc.Unauthorized) as exc:
            raise PermissionDenied(
                f"Permission denied: {exc.message}", uri=uri, backend=Scheme.GCS.value, operation=operation
            ) from exc
        except Exception as exc:
            raise BackendError(
                f"{operation} failed: {exc}", uri=uri, backend=Scheme.GCS.value, operation=operation
            ) from exc

    def _blob_to_obj(self, bucket: str, blob: Any) -> Obj:
        metadata: dict[str, object] = dict(blob.metadata or {})
        if blob.md5_hash:
            metadata["md5_hash"] = blob.md5_hash
        if blob.content_type:
            metadata.setdefault("content_type", blob.content_type)
        return Obj.file(
            self._uri(bucket, blob.name),
            blob.name.rsplit("/", 1)[-1],
            int(blob.size or 0),
            last_modified=as_utc(blob.updated),
            etag=blob.etag,
            checksum=blob.crc32c,
            metadata=metadata,
        )

    def _prefix_keys(self, bucket: str, dir_key: str, limit: int) -> list[str]:
        return [blob.name for blob in self._client.list_blobs(bucket, prefix=dir_key, max_results=limit)]

    def _stat_directory(self, bucket: str, dir_key: str) -> Optional[Obj]:
        """Marker check first, then a 1-result prefix lookup."""
        uri = self._uri(bucket, dir_key)
        name = dir_key.rstrip("/").rsplit("/", 1)[-1]
        marker = self._client.bucket(bucket).get_blob(dir_key)
        if marker is not None:
            return Obj.directory(uri, name, last_modified=as_utc(marker.updated))
        if self._prefix_keys(bucket, dir_key, 1):
            return Obj.directory(uri, name)
        return None

    # endregion

    # region: listing and metadata

    def list(
        self,
        uri: str,
        *,
        prefix: Optional[str] = None,
        delimiter: Optional[str] = None,
        page_token: Optional[str] = None,
        page_size: Optional[int] = None,
    ) -> ListResult:
        bucket, key = self._split(uri)
        dir_key = directory_key(key)
        delimiter = DEFAULT_DELIMITER if delimiter is None else delimiter
        limit = page_limit(page_size)
        log.debug("list_blobs bucket=%s prefix=%r delimiter=%r", bucket, dir_key + (prefix or ""), delimiter)
        with self._errors("list", uri):
            iterator = self._client.list_blobs(
                bucket,
                prefix=dir_key + (prefix or ""),
                delimiter=delimiter or None,
                page_size=limit,
                page_token=page_token,
            )
            page = next(iterator.pages, None)
            blobs = list(page) if page is not None else []
            prefixes = list(page.prefixes) if page is not None else []
            next_token = iterator.next_page_token
        partition = partition_listing(dir_key, delimiter, ((blob.name, blob) for blob in blobs), prefixes)
        items = [Obj.directory(self._uri(bucket, full), name) for name, full in partition.directories]
        items.extend(self._blob_to_obj(bucket, blob) for _, blob in partition.files)
        return ListResult(items=items, next_page_token=next_token or None)

    def stat(self, uri: str) -> Obj:
        bucket, key = self._split(uri)
        with self._errors("stat", uri):
            if not key.strip("/"):
                self._client.get_bucket(bucket)
                return Obj.directory(self._uri(bucket, ""), bucket)
            if not key.endswith("/"):
                blob = self._client.bucket(bucket).get_blob(key)
                if blob is not None:
                    return self._blob_to_obj(bucket, blob)
            directory = self._stat_directory(bucket, directory_key(key))
        if directory is None:
            raise NotFound(f"Not found: {uri}", uri=uri, backend=Scheme.GCS.value)
        return directory

    def exists(self, uri: str) -> bool:
        try:
            self.stat(uri)
        except NotFound:
            return False
        return True

    # endregion

    # region: transfer

    def get(self, uri: str, dest_path: PathLike) -> None:
        bucket, key = self._split(uri)
        if not key or key.endswith("/"):
            raise UnsupportedOperation(f"Cannot download a directory: {uri}", uri=uri, backend=Scheme.GCS.value)
        dest = os.fspath(dest_path)
        os.makedirs(os.path.dirname(os.path.abspath(dest)), exist_ok=True)
        with self._errors("get", uri):
            self._client.bucket(bucket).blob(key).download_to_filename(dest)

    def put(
        self,
        src_path: PathLike,
        dest_uri: str,
        *,
        content_type: Optional[str] = None,
        metadata: Optional[Metadata] = None,
    ) -> Obj:
        bucket, key = self._split(dest_uri)
        if not key or key.endswith("/"):
            raise AlreadyExists(f"Cannot upload onto a directory: {dest_uri}", uri=dest_uri, backend=Scheme.GCS.value)
        src = os.fspath(src_path)
        if not os.path.isfile(src):
            raise NotFound(f"Source file not found: {src}", uri=src, backend=Scheme.FILE.value)
        with self._errors("put", dest_uri):
            if self._prefix_keys(bucket, directory_key(key), 1):
                raise AlreadyExists(f"A directory exists at {dest_uri}", uri=dest_uri, backend=Scheme.GCS.value)
            target = self._client.bucket(bucket)
            blob = target.blob(key)
            if metadata:
                blob.metadata = dict(metadata)
            blob.upload_from_filename(src, content_type=content_type)
            uploaded = target.get_blob(key)
        if uploaded is None:
            raise BackendError(
                f"Uploaded object is not visible: {dest_uri}", uri=dest_uri, backend=Scheme.GCS.value, operation="put"
            )
        return self._blob_to_obj(bucket, uploaded)

    # endregion

    # region: copy and move

    def copy(self, src_uri: str, dest_uri: str) -> Obj:
        src_bucket, src_key = self._split(src_uri)
        dest_bucket, dest_key = self._split(dest_uri)
        if not dest_key or dest_key.endswith("/"):
            raise AlreadyExists(f"Cannot copy onto a directory: {dest_uri}", uri=dest_uri, backend=Scheme.GCS.value)
        source = self.stat(src_uri)
        if source.is_dir:
            raise UnsupportedOperation(
                f"Copying directories is not supported: {src_uri}",
                uri=src_uri,
                backend=Scheme.GCS.value,
                capability=Capability.DIRECTORY_COPY.value,
            )
        with self._errors("copy", src_uri):
            src_blob = self._client.bucket(src_bucket).blob(src_key)
            dest_blob = self._client.bucket(dest_bucket).blob(dest_key)
            token, rewritten, total = dest_blob.rewrite(src_blob)
            while token is not None:
                log.debug("rewrite %s -> %s: %s/%s bytes", src_uri, dest_uri, rewritten, total)
                token, rewritten, total = dest_blob.rewrite(src_blob, token=token)
            copied = self._client.bucket(dest_bucket).get_blob(dest_key)
        if copied is None:
            raise BackendError(
                f"Copied object is not visible: {dest_uri}", uri=dest_uri, backend=Scheme.GCS.value, operation="copy"
            )
        return self._blob_to_obj(dest_bucket, copied)

    def move(self, src_uri: str, dest_uri: str) -> Obj:
        copied = self.copy(src_uri, dest_uri)
        try:
            self.delete(src_uri)
        except ObjectStoreError:
            log.warning("Move %s -> %s copied but failed to delete the source; both now exist", src_uri, dest_uri)
            raise
        return copied

    # endregion

    # region: delete and mkdir

    def delete(self, uri: str, recursive: bool = False) -> None:
        bucket, key = self._split(uri)
        if not key.strip("/"):
            raise UnsupportedOperation(f"Cannot delete a bucket root: {uri}", uri=uri, backend=Scheme.GCS.value)
        with self._errors("delete", uri):
            target = self._client.bucket(bucket)
            if not key.endswith("/") and target.get_blob(key) is not None:
                target.delete_blob(key)
                return
            dir_key = directory_key(key)
            if recursive:
                deleted = 0
                for blob in self._client.list_blobs(bucket, prefix=dir_key):
                    target.delete_blob(blob.name)
                    deleted += 1
                if deleted == 0:
                    raise NotFound(f"Not found: {uri}", uri=uri, backend=Scheme.GCS.value)
                log.info("Deleted %d objects under gcs://%s/%s", deleted, bucket, dir_key)
                return
            keys = self._prefix_keys(bucket, dir_key, 2)
            if not keys:
                raise NotFound(f"Not found: {uri}", uri=uri, backend=Scheme.GCS.value)
            if has_children(dir_key, keys):
                raise DirectoryNotEmpty(f"Directory not empty: {uri}", uri=uri, backend=Scheme.GCS.value)
            target.delete_blob(dir_key)

    def mkdir(self, uri: str) -> None:
        bucket, key = self._split(uri)
        if not key.strip("/"):
            self.stat(uri)
            return
        dir_key = directory_key(key)
        with self._errors("mkdir", uri):
            target = self._client.bucket(bucket)
            if target.get_blob(dir_key.rstrip("/")) is not None:
                raise AlreadyExists(f"A file exists at {uri}", uri=uri, backend=Scheme.GCS.value)
            if target.get_blob(dir_key) is not None:
                return
            target.blob(dir_key).upload_from_string(b"", content_type=DIRECTORY_CONTENT_TYPE)

    # endregion

    def close(self) -> None:
        close = getattr(self._client, "close", None)
        if close is not None:
            close()

    def __repr__(self) -> str:
        return "GCSProvider()"
