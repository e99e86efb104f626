"""S3 provider using s3fs.

Listing, HEAD, copy and delete go through ``S3FileSystem.call_s3`` so the
provider controls prefix/delimiter grouping and continuation tokens itself;
transfers use s3fs's streaming ``get_file``/``put_file`` (multipart above
the chunk size).
"""

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
    UnsupportedCopySize,
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
    strip_etag,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

    from commander_store._types import Metadata, PathLike

log = logging.getLogger(__name__)

_S3_CAPABILITIES = CapabilitySet(CORE_CAPABILITIES | {Capability.SERVER_SIDE_COPY})

# Largest object a single CopyObject request accepts.
MAX_SINGLE_COPY_SIZE = 5 * 1024**3

_NOT_FOUND_MARKERS = ("404", "nosuchkey", "nosuchbucket", "not found")


def _is_not_found(exc: BaseException) -> bool:
    if isinstance(exc, FileNotFoundError):
        return True
    msg = str(exc).lower()
    return any(marker in msg for marker in _NOT_FOUND_MARKERS)


class S3Provider:
    """S3-compatible object storage provider.

    :param endpoint_url: Custom endpoint URL (e.g. for MinIO).
    :param key: AWS access key ID.
    :param secret: AWS secret access key.
    :param token: AWS session token.
    :param region_name: AWS region name.
    :param client_options: Additional options passed to ``s3fs.S3FileSystem``.
    :param filesystem: A ready ``S3FileSystem``; overrides every other option.
    """

    def __init__(
        self,
        *,
        endpoint_url: Optional[str] = None,
        key: Optional[str] = None,
        secret: Optional[str] = None,
        token: Optional[str] = None,
        region_name: Optional[str] = None,
        client_options: Optional[dict[str, Any]] = None,
        filesystem: Any = None,
    ) -> None:
        owns_fs = filesystem is None
        if owns_fs:
            import s3fs  # type: ignore[import-untyped]

            opts: dict[str, Any] = dict(client_options or {})
            if endpoint_url is not None:
                opts["endpoint_url"] = endpoint_url
            if key is not None:
                opts["key"] = key
            if secret is not None:
                opts["secret"] = secret
            if token is not None:
                opts["token"] = token
            if region_name is not None:
                client_kwargs: dict[str, Any] = opts.setdefault("client_kwargs", {})
                client_kwargs["region_name"] = region_name
            opts.setdefault("anon", False)
            opts.setdefault("skip_instance_cache", True)
            opts.setdefault("use_listings_cache", False)
            filesystem = s3fs.S3FileSystem(**opts)
            log.info("S3 provider ready (endpoint=%s)", endpoint_url or "aws")
        self._owns_fs = owns_fs
        self._fs = filesystem

    @property
    def scheme(self) -> Scheme:
        return Scheme.S3

    @property
    def capabilities(self) -> CapabilitySet:
        return _S3_CAPABILITIES

    # region: helpers

    def _split(self, uri: str) -> tuple[str, str]:
        parsed = parse_uri(uri)
        if parsed.scheme != Scheme.S3.value:
            raise MalformedUri(f"Expected an s3:// URI, got {uri}", uri=uri, backend=Scheme.S3.value)
        return parsed.namespace, parsed.path

    def _uri(self, bucket: str, key: str) -> str:
        return build_uri(Scheme.S3.value, bucket, key)

    @contextmanager
    def _errors(self, operation: str, uri: str) -> Iterator[None]:
        """Map s3fs/botocore exceptions to commander_store errors."""
        try:
            yield
        except ObjectStoreError:
            raise
        except FileNotFoundError as exc:
            raise NotFound(f"Not found: {uri}", uri=uri, backend=Scheme.S3.value) from exc
        except PermissionError as exc:
            raise PermissionDenied(
                f"Permission denied: {exc}", uri=uri, backend=Scheme.S3.value, operation=operation
            ) from exc
        except Exception as exc:
            raise self._classify_error(exc, operation, uri) from exc

    def _classify_error(self, exc: Exception, operation: str, uri: str) -> ObjectStoreError:
        """Classify an unknown exception into a commander_store error type."""
        msg = str(exc).lower()
        if _is_not_found(exc):
            return NotFound(f"Not found: {uri}", uri=uri, backend=Scheme.S3.value)
        if "403" in msg or "accessdenied" in msg or "access denied" in msg:
            return PermissionDenied(f"Permission denied: {exc}", uri=uri, backend=Scheme.S3.value, operation=operation)
        return BackendError(f"{operation} failed: {exc}", uri=uri, backend=Scheme.S3.value, operation=operation)

    def _call(self, method: str, **kwargs: Any) -> dict[str, Any]:
        return self._fs.call_s3(method, **{k: v for k, v in kwargs.items() if v is not None})

    def _head(self, bucket: str, key: str) -> Optional[dict[str, Any]]:
        try:
            return self._call("head_object", Bucket=bucket, Key=key)
        except Exception as exc:
            if _is_not_found(exc):
                return None
            raise

    def _list_page(
        self,
        bucket: str,
        prefix: str,
        *,
        delimiter: Optional[str] = None,
        token: Optional[str] = None,
        max_keys: Optional[int] = None,
    ) -> dict[str, Any]:
        log.debug("list_objects_v2 bucket=%s prefix=%r delimiter=%r", bucket, prefix, delimiter)
        return self._call(
            "list_objects_v2",
            Bucket=bucket,
            Prefix=prefix,
            Delimiter=delimiter or None,
            ContinuationToken=token,
            MaxKeys=max_keys,
        )

    def _directory_exists(self, bucket: str, dir_key: str) -> bool:
        """Bounded lookup: does any key (marker included) start with ``dir_key``?"""
        response = self._list_page(bucket, dir_key, max_keys=1)
        return bool(response.get("Contents"))

    def _stat_directory(self, bucket: str, dir_key: str) -> Optional[Obj]:
        """Marker check first, then a 1-result prefix lookup."""
        uri = self._uri(bucket, dir_key)
        name = dir_key.rstrip("/").rsplit("/", 1)[-1]
        marker = self._head(bucket, dir_key)
        if marker is not None:
            return Obj.directory(uri, name, last_modified=as_utc(marker.get("LastModified")))
        if self._directory_exists(bucket, dir_key):
            return Obj.directory(uri, name)
        return None

    def _head_to_obj(self, bucket: str, key: str, head: dict[str, Any]) -> Obj:
        metadata: dict[str, object] = dict(head.get("Metadata") or {})
        if head.get("ContentType"):
            metadata.setdefault("content_type", head["ContentType"])
        checksum = head.get("ChecksumSHA256") or head.get("ChecksumCRC32C") or head.get("ChecksumCRC32")
        return Obj.file(
            self._uri(bucket, key),
            key.rsplit("/", 1)[-1],
            int(head.get("ContentLength", 0) or 0),
            last_modified=as_utc(head.get("LastModified")),
            etag=strip_etag(head.get("ETag")),
            checksum=checksum,
            metadata=metadata,
        )

    def _content_to_obj(self, bucket: str, content: dict[str, Any]) -> Obj:
        key = content["Key"]
        metadata: dict[str, object] = {}
        if content.get("StorageClass"):
            metadata["storage_class"] = content["StorageClass"]
        return Obj.file(
            self._uri(bucket, key),
            key.rsplit("/", 1)[-1],
            int(content.get("Size", 0) or 0),
            last_modified=as_utc(content.get("LastModified")),
            etag=strip_etag(content.get("ETag")),
            metadata=metadata,
        )

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
        with self._errors("list", uri):
            response = self._list_page(
                bucket,
                dir_key + (prefix or ""),
                delimiter=delimiter,
                token=page_token,
                max_keys=limit,
            )
        contents = response.get("Contents") or []
        partition = partition_listing(
            dir_key,
            delimiter,
            ((content["Key"], content) for content in contents),
            (cp["Prefix"] for cp in response.get("CommonPrefixes") or []),
        )
        items = [Obj.directory(self._uri(bucket, full), name) for name, full in partition.directories]
        items.extend(self._content_to_obj(bucket, content) for _, content in partition.files)
        next_token = response.get("NextContinuationToken") if response.get("IsTruncated") else None
        return ListResult(items=items, next_page_token=next_token)

    def stat(self, uri: str) -> Obj:
        bucket, key = self._split(uri)
        with self._errors("stat", uri):
            if not key.strip("/"):
                self._call("head_bucket", Bucket=bucket)
                return Obj.directory(self._uri(bucket, ""), bucket)
            if not key.endswith("/"):
                head = self._head(bucket, key)
                if head is not None:
                    return self._head_to_obj(bucket, key, head)
            directory = self._stat_directory(bucket, directory_key(key))
        if directory is None:
            raise NotFound(f"Not found: {uri}", uri=uri, backend=Scheme.S3.value)
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
            raise UnsupportedOperation(f"Cannot download a directory: {uri}", uri=uri, backend=Scheme.S3.value)
        dest = os.fspath(dest_path)
        os.makedirs(os.path.dirname(os.path.abspath(dest)), exist_ok=True)
        with self._errors("get", uri):
            self._fs.get_file(f"{bucket}/{key}", dest)

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
            raise AlreadyExists(f"Cannot upload onto a directory: {dest_uri}", uri=dest_uri, backend=Scheme.S3.value)
        src = os.fspath(src_path)
        if not os.path.isfile(src):
            raise NotFound(f"Source file not found: {src}", uri=src, backend=Scheme.FILE.value)
        kwargs: dict[str, Any] = {}
        if content_type:
            kwargs["ContentType"] = content_type
        if metadata:
            kwargs["Metadata"] = dict(metadata)
        with self._errors("put", dest_uri):
            if self._directory_exists(bucket, directory_key(key)):
                raise AlreadyExists(f"A directory exists at {dest_uri}", uri=dest_uri, backend=Scheme.S3.value)
            self._fs.put_file(src, f"{bucket}/{key}", **kwargs)
            head = self._head(bucket, key)
        if head is None:
            raise BackendError(
                f"Uploaded object is not visible: {dest_uri}", uri=dest_uri, backend=Scheme.S3.value, operation="put"
            )
        return self._head_to_obj(bucket, key, head)

    # endregion

    # region: copy and move

    def copy(self, src_uri: str, dest_uri: str) -> Obj:
        src_bucket, src_key = self._split(src_uri)
        dest_bucket, dest_key = self._split(dest_uri)
        if not dest_key or dest_key.endswith("/"):
            raise AlreadyExists(f"Cannot copy onto a directory: {dest_uri}", uri=dest_uri, backend=Scheme.S3.value)
        source = self.stat(src_uri)
        if source.is_dir:
            raise UnsupportedOperation(
                f"Copying directories is not supported: {src_uri}",
                uri=src_uri,
                backend=Scheme.S3.value,
                capability=Capability.DIRECTORY_COPY.value,
            )
        if source.size > MAX_SINGLE_COPY_SIZE:
            raise UnsupportedCopySize(
                f"Object exceeds the single-request copy limit: {src_uri}",
                uri=src_uri,
                backend=Scheme.S3.value,
                size=source.size,
                limit=MAX_SINGLE_COPY_SIZE,
            )
        with self._errors("copy", src_uri):
            self._call(
                "copy_object",
                CopySource={"Bucket": src_bucket, "Key": src_key},
                Bucket=dest_bucket,
                Key=dest_key,
            )
            head = self._head(dest_bucket, dest_key)
        if head is None:
            raise BackendError(
                f"Copied object is not visible: {dest_uri}", uri=dest_uri, backend=Scheme.S3.value, operation="copy"
            )
        return self._head_to_obj(dest_bucket, dest_key, head)

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
            raise UnsupportedOperation(f"Cannot delete a bucket root: {uri}", uri=uri, backend=Scheme.S3.value)
        with self._errors("delete", uri):
            if not key.endswith("/") and self._head(bucket, key) is not None:
                self._call("delete_object", Bucket=bucket, Key=key)
                return
            dir_key = directory_key(key)
            if recursive:
                if self._delete_prefix(bucket, dir_key) == 0:
                    raise NotFound(f"Not found: {uri}", uri=uri, backend=Scheme.S3.value)
                return
            # Two keys suffice to tell "only the marker" from "has children".
            response = self._list_page(bucket, dir_key, max_keys=2)
            keys = [content["Key"] for content in response.get("Contents") or []]
            if not keys:
                raise NotFound(f"Not found: {uri}", uri=uri, backend=Scheme.S3.value)
            if has_children(dir_key, keys):
                raise DirectoryNotEmpty(f"Directory not empty: {uri}", uri=uri, backend=Scheme.S3.value)
            self._call("delete_object", Bucket=bucket, Key=dir_key)

    def _delete_prefix(self, bucket: str, dir_key: str) -> int:
        deleted = 0
        token: Optional[str] = None
        while True:
            response = self._list_page(bucket, dir_key, token=token)
            for content in response.get("Contents") or []:
                self._call("delete_object", Bucket=bucket, Key=content["Key"])
                deleted += 1
            if not response.get("IsTruncated"):
                break
            token = response.get("NextContinuationToken")
        log.info("Deleted %d objects under s3://%s/%s", deleted, bucket, dir_key)
        return deleted

    def mkdir(self, uri: str) -> None:
        bucket, key = self._split(uri)
        if not key.strip("/"):
            self.stat(uri)
            return
        dir_key = directory_key(key)
        with self._errors("mkdir", uri):
            if self._head(bucket, dir_key.rstrip("/")) is not None:
                raise AlreadyExists(f"A file exists at {uri}", uri=uri, backend=Scheme.S3.value)
            if self._head(bucket, dir_key) is not None:
                return
            self._call("put_object", Bucket=bucket, Key=dir_key, Body=b"")

    # endregion

    # region: lifecycle

    def close(self) -> None:
        """Close the aiobotocore client of a filesystem this provider built.

        An injected ``filesystem`` belongs to the caller and is left open.
        """
        if not self._owns_fs:
            return
        client = getattr(self._fs, "_s3", None)
        if client is None:
            return
        self._fs.close_session(self._fs.loop, client)
        self._fs._s3 = None
        log.debug("S3 session closed")

    def __repr__(self) -> str:
        return "S3Provider()"

    # endregion
