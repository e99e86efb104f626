"""Azure Blob Storage provider using azure-storage-blob."""

from __future__ import annotations

import base64
import itertools
import logging
import os
import time
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
    strip_etag,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

    from commander_store._types import Metadata, PathLike

log = logging.getLogger(__name__)

_AZURE_CAPABILITIES = CapabilitySet(CORE_CAPABILITIES | {Capability.SERVER_SIDE_COPY})


class AzureProvider:
    """Azure Blob Storage provider.

    Credentials are resolved in this order: ``connection_string``, then
    ``account_url`` (or ``account_name``) with ``account_key`` or
    ``sas_token``, then ``DefaultAzureCredential``.

    :param connection_string: Full storage account connection string.
    :param account_url: Blob service URL.
    :param account_name: Storage account name; expands to the public blob URL.
    :param account_key: Shared account key.
    :param sas_token: Shared access signature.
    :param copy_poll_interval: Seconds between copy-status polls.
    :param client: A ready ``BlobServiceClient``; overrides every credential option.
    """

    def __init__(
        self,
        *,
        connection_string: Optional[str] = None,
        account_url: Optional[str] = None,
        account_name: Optional[str] = None,
        account_key: Optional[str] = None,
        sas_token: Optional[str] = None,
        copy_poll_interval: float = 1.0,
        client: Any = None,
    ) -> None:
        if client is None:
            client = self._build_client(connection_string, account_url, account_name, account_key, sas_token)
        self._client = client
        self._copy_poll_interval = copy_poll_interval

    @staticmethod
    def _build_client(
        connection_string: Optional[str],
        account_url: Optional[str],
        account_name: Optional[str],
        account_key: Optional[str],
        sas_token: Optional[str],
    ) -> Any:
        from azure.storage.blob import BlobServiceClient

        if connection_string:
            log.info("Azure provider ready (connection string)")
            return BlobServiceClient.from_connection_string(connection_string)
        if account_url is None and account_name:
            account_url = f"https://{account_name}.blob.core.windows.net"
        if account_url is None:
            raise ValueError("AzureProvider needs connection_string, account_url or account_name")
        credential: Any
        if account_key:
            credential = account_key
        elif sas_token:
            credential = sas_token
        else:
            from azure.identity import DefaultAzureCredential

            credential = DefaultAzureCredential()
        log.info("Azure provider ready (account_url=%s)", account_url)
        return BlobServiceClient(account_url, credential=credential)

    @property
    def scheme(self) -> Scheme:
        return Scheme.AZURE

    @property
    def capabilities(self) -> CapabilitySet:
        return _AZURE_CAPABILITIES

    # region: helpers

    def _split(self, uri: str) -> tuple[str, str]:
        parsed = parse_uri(uri)
        if parsed.scheme != Scheme.AZURE.value:
            raise MalformedUri(f"Expected an az:// URI, got {uri}", uri=uri, backend=Scheme.AZURE.value)
        return parsed.namespace, parsed.path

    def _uri(self, container: str, name: str) -> str:
        return build_uri(Scheme.AZURE.value, container, name)

    def _container(self, container: str) -> Any:
        return self._client.get_container_client(container)

    @contextmanager
    def _errors(self, operation: str, uri: str) -> Iterator[None]:
        """Map ``azure.core`` exceptions to commander_store errors."""
        import azure.core.exceptions as ace

        try:
            yield
        except ObjectStoreError:
            raise
        except ace.ResourceNotFoundError as exc:
            raise NotFound(f"Not found: {uri}", uri=uri, backend=Scheme.AZURE.value) from exc
        except ace.ClientAuthenticationError as exc:
            raise PermissionDenied(
                f"Permission denied: {exc.message}", uri=uri, backend=Scheme.AZURE.value, operation=operation
            ) from exc
        except ace.HttpResponseError as exc:
            if exc.status_code == 403:
                raise PermissionDenied(
                    f"Permission denied: {exc.message}", uri=uri, backend=Scheme.AZURE.value, operation=operation
                ) from exc
            raise BackendError(
                f"{operation} failed: {exc.message}", uri=uri, backend=Scheme.AZURE.value, operation=operation
            ) from exc
        except Exception as exc:
            raise BackendError(
                f"{operation} failed: {exc}", uri=uri, backend=Scheme.AZURE.value, operation=operation
            ) from exc

    def _properties(self, container: str, name: str) -> Optional[Any]:
        import azure.core.exceptions as ace

        try:
            return self._container(container).get_blob_client(name).get_blob_properties()
        except ace.ResourceNotFoundError:
            return None

    def _prefix_keys(self, container: str, dir_key: str, limit: int) -> list[str]:
        blobs = self._container(container).list_blobs(name_starts_with=dir_key, results_per_page=limit)
        return [blob.name for blob in itertools.islice(blobs, limit)]

    def _blob_to_obj(self, container: str, props: Any) -> Obj:
        metadata: dict[str, object] = dict(props.metadata or {})
        settings = props.content_settings
        checksum = None
        if settings is not None:
            if settings.content_type:
                metadata.setdefault("content_type", settings.content_type)
            if settings.content_md5:
                checksum = base64.b64encode(bytes(settings.content_md5)).decode("ascii")
        return Obj.file(
            self._uri(container, props.name),
            props.name.rsplit("/", 1)[-1],
            int(props.size or 0),
            last_modified=as_utc(props.last_modified),
            etag=strip_etag(props.etag),
            checksum=checksum,
            metadata=metadata,
        )

    def _stat_directory(self, container: str, dir_key: str) -> Optional[Obj]:
        """Marker check first, then a 1-result prefix lookup."""
        uri = self._uri(container, dir_key)
        name = dir_key.rstrip("/").rsplit("/", 1)[-1]
        marker = self._properties(container, dir_key)
        if marker is not None:
            return Obj.directory(uri, name, last_modified=as_utc(marker.last_modified))
        if self._prefix_keys(container, dir_key, 1):
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
        from azure.storage.blob import BlobPrefix

        container, key = self._split(uri)
        dir_key = directory_key(key)
        delimiter = DEFAULT_DELIMITER if delimiter is None else delimiter
        limit = page_limit(page_size)
        listing_prefix = dir_key + (prefix or "")
        log.debug("walk_blobs container=%s prefix=%r delimiter=%r", container, listing_prefix, delimiter)
        with self._errors("list", uri):
            client = self._container(container)
            if delimiter:
                paged = client.walk_blobs(
                    name_starts_with=listing_prefix,
                    delimiter=delimiter,
                    results_per_page=limit,
                )
            else:
                paged = client.list_blobs(name_starts_with=listing_prefix, results_per_page=limit)
            pages = paged.by_page(continuation_token=page_token)
            page = next(pages, None)
            entries = list(page) if page is not None else []
            next_token = pages.continuation_token
        blobs = [entry for entry in entries if not isinstance(entry, BlobPrefix)]
        prefixes = [entry.name for entry in entries if isinstance(entry, BlobPrefix)]
        partition = partition_listing(dir_key, delimiter, ((blob.name, blob) for blob in blobs), prefixes)
        items = [Obj.directory(self._uri(container, full), name) for name, full in partition.directories]
        items.extend(self._blob_to_obj(container, blob) for _, blob in partition.files)
        return ListResult(items=items, next_page_token=next_token or None)

    def stat(self, uri: str) -> Obj:
        container, key = self._split(uri)
        with self._errors("stat", uri):
            if not key.strip("/"):
                self._container(container).get_container_properties()
                return Obj.directory(self._uri(container, ""), container)
            if not key.endswith("/"):
                props = self._properties(container, key)
                if props is not None:
                    return self._blob_to_obj(container, props)
            directory = self._stat_directory(container, directory_key(key))
        if directory is None:
            raise NotFound(f"Not found: {uri}", uri=uri, backend=Scheme.AZURE.value)
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
        container, key = self._split(uri)
        if not key or key.endswith("/"):
            raise UnsupportedOperation(f"Cannot download a directory: {uri}", uri=uri, backend=Scheme.AZURE.value)
        dest = os.fspath(dest_path)
        os.makedirs(os.path.dirname(os.path.abspath(dest)), exist_ok=True)
        with self._errors("get", uri):
            downloader = self._container(container).get_blob_client(key).download_blob()
            with open(dest, "wb") as fh:
                downloader.readinto(fh)

    def put(
        self,
        src_path: PathLike,
        dest_uri: str,
        *,
        content_type: Optional[str] = None,
        metadata: Optional[Metadata] = None,
    ) -> Obj:
        from azure.storage.blob import ContentSettings

        container, key = self._split(dest_uri)
        if not key or key.endswith("/"):
            raise AlreadyExists(
                f"Cannot upload onto a directory: {dest_uri}", uri=dest_uri, backend=Scheme.AZURE.value
            )
        src = os.fspath(src_path)
        if not os.path.isfile(src):
            raise NotFound(f"Source file not found: {src}", uri=src, backend=Scheme.FILE.value)
        with self._errors("put", dest_uri):
            if self._prefix_keys(container, directory_key(key), 1):
                raise AlreadyExists(f"A directory exists at {dest_uri}", uri=dest_uri, backend=Scheme.AZURE.value)
            blob = self._container(container).get_blob_client(key)
            with open(src, "rb") as fh:
                blob.upload_blob(
                    fh,
                    overwrite=True,
                    metadata=dict(metadata) if metadata else None,
                    content_settings=ContentSettings(content_type=content_type) if content_type else None,
                )
            props = blob.get_blob_properties()
        return self._blob_to_obj(container, props)

    # endregion

    # region: copy and move

    def copy(self, src_uri: str, dest_uri: str) -> Obj:
        src_container, src_key = self._split(src_uri)
        dest_container, dest_key = self._split(dest_uri)
        if not dest_key or dest_key.endswith("/"):
            raise AlreadyExists(f"Cannot copy onto a directory: {dest_uri}", uri=dest_uri, backend=Scheme.AZURE.value)
        source = self.stat(src_uri)
        if source.is_dir:
            raise UnsupportedOperation(
                f"Copying directories is not supported: {src_uri}",
                uri=src_uri,
                backend=Scheme.AZURE.value,
                capability=Capability.DIRECTORY_COPY.value,
            )
        with self._errors("copy", src_uri):
            src_blob = self._container(src_container).get_blob_client(src_key)
            dest_blob = self._container(dest_container).get_blob_client(dest_key)
            response = dest_blob.start_copy_from_url(src_blob.url)
            status = response.get("copy_status")
            props = dest_blob.get_blob_properties()
            if status is None:
                status = props.copy.status
            while status == "pending":
                log.debug("Copy %s -> %s pending; polling in %ss", src_uri, dest_uri, self._copy_poll_interval)
                time.sleep(self._copy_poll_interval)
                props = dest_blob.get_blob_properties()
                status = props.copy.status
        if status != "success":
            raise BackendError(
                f"Copy finished with status {status!r}",
                uri=dest_uri,
                backend=Scheme.AZURE.value,
                operation="copy",
            )
        return self._blob_to_obj(dest_container, props)

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
        container, key = self._split(uri)
        if not key.strip("/"):
            raise UnsupportedOperation(f"Cannot delete a container root: {uri}", uri=uri, backend=Scheme.AZURE.value)
        with self._errors("delete", uri):
            client = self._container(container)
            if not key.endswith("/") and self._properties(container, key) is not None:
                client.delete_blob(key)
                return
            dir_key = directory_key(key)
            if recursive:
                deleted = 0
                for blob in client.list_blobs(name_starts_with=dir_key):
                    client.delete_blob(blob.name)
                    deleted += 1
                if deleted == 0:
                    raise NotFound(f"Not found: {uri}", uri=uri, backend=Scheme.AZURE.value)
                log.info("Deleted %d blobs under az://%s/%s", deleted, container, dir_key)
                return
            keys = self._prefix_keys(container, dir_key, 2)
            if not keys:
                raise NotFound(f"Not found: {uri}", uri=uri, backend=Scheme.AZURE.value)
            if has_children(dir_key, keys):
                raise DirectoryNotEmpty(f"Directory not empty: {uri}", uri=uri, backend=Scheme.AZURE.value)
            client.delete_blob(dir_key)

    def mkdir(self, uri: str) -> None:
        container, key = self._split(uri)
        if not key.strip("/"):
            self.stat(uri)
            return
        dir_key = directory_key(key)
        with self._errors("mkdir", uri):
            if self._properties(container, dir_key.rstrip("/")) is not None:
                raise AlreadyExists(f"A file exists at {uri}", uri=uri, backend=Scheme.AZURE.value)
            if self._properties(container, dir_key) is not None:
                return
            self._container(container).get_blob_client(dir_key).upload_blob(b"", overwrite=True)

    # endregion

    def close(self) -> None:
        self._client.close()

    def __repr__(self) -> str:
        return "AzureProvider()"
