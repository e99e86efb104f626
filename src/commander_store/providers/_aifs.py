"""AIFS provider: the AI-native filesystem service, spoken over gRPC."""

from __future__ import annotations

import collections
import logging
import os
import queue
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Optional

import grpc

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
from commander_store.providers import _aifs_proto as pb
from commander_store.providers._flat import DEFAULT_DELIMITER, as_utc, page_limit

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence
    from types import TracebackType

    from commander_store._types import Metadata, PathLike

log = logging.getLogger(__name__)

_AIFS_CAPABILITIES = CapabilitySet(
    CORE_CAPABILITIES
    | {
        Capability.SERVER_SIDE_COPY,
        Capability.ATOMIC_MOVE,
        Capability.SEMANTIC_SEARCH,
        Capability.SNAPSHOTS,
    }
)

CHUNK_SIZE = 64 * 1024
DEFAULT_OCTET_TYPE = "application/octet-stream"

_STATUS_ERRORS: dict[grpc.StatusCode, type[ObjectStoreError]] = {
    grpc.StatusCode.NOT_FOUND: NotFound,
    grpc.StatusCode.ALREADY_EXISTS: AlreadyExists,
    grpc.StatusCode.FAILED_PRECONDITION: DirectoryNotEmpty,
    grpc.StatusCode.UNIMPLEMENTED: UnsupportedOperation,
}


# region: credentials


class _ClientCallDetails(
    collections.namedtuple(
        "_ClientCallDetails", ("method", "timeout", "metadata", "credentials", "wait_for_ready", "compression")
    ),
    grpc.ClientCallDetails,
):
    pass


class BearerAuthInterceptor(
    grpc.UnaryUnaryClientInterceptor,
    grpc.UnaryStreamClientInterceptor,
    grpc.StreamUnaryClientInterceptor,
    grpc.StreamStreamClientInterceptor,
):
    """Appends ``authorization: Bearer <token>`` to every call's metadata.

    :param token: The API key sent as the bearer token.
    """

    def __init__(self, token: str) -> None:
        self._header = ("authorization", f"Bearer {token}")

    def _with_auth(self, details: grpc.ClientCallDetails) -> grpc.ClientCallDetails:
        metadata = list(details.metadata or [])
        metadata.append(self._header)
        return _ClientCallDetails(
            details.method,
            details.timeout,
            metadata,
            details.credentials,
            getattr(details, "wait_for_ready", None),
            getattr(details, "compression", None),
        )

    def intercept_unary_unary(self, continuation: Any, client_call_details: Any, request: Any) -> Any:
        return continuation(self._with_auth(client_call_details), request)

    def intercept_unary_stream(self, continuation: Any, client_call_details: Any, request: Any) -> Any:
        return continuation(self._with_auth(client_call_details), request)

    def intercept_stream_unary(self, continuation: Any, client_call_details: Any, request_iterator: Any) -> Any:
        return continuation(self._with_auth(client_call_details), request_iterator)

    def intercept_stream_stream(self, continuation: Any, client_call_details: Any, request_iterator: Any) -> Any:
        return continuation(self._with_auth(client_call_details), request_iterator)


def open_channel(endpoint: str, api_key: Optional[str] = None) -> tuple[grpc.Channel, grpc.Channel]:
    """Open a channel for ``endpoint`` and wrap it with the auth interceptor.

    ``https://`` selects TLS; ``http://`` or a bare ``host:port`` is insecure.

    :returns: ``(raw_channel, call_channel)``; close the raw one.
    """
    if endpoint.startswith("https://"):
        raw = grpc.secure_channel(endpoint[len("https://") :].rstrip("/"), grpc.ssl_channel_credentials())
    else:
        target = endpoint[len("http://") :] if endpoint.startswith("http://") else endpoint
        raw = grpc.insecure_channel(target.rstrip("/"))
    if not api_key:
        return raw, raw
    return raw, grpc.intercept_channel(raw, BearerAuthInterceptor(api_key))


# endregion


def _upload_metadata(
    namespace: str,
    path: str,
    *,
    content_type: Optional[str],
    metadata: Optional[Metadata],
    semantic_tags: Optional[Sequence[str]],
    embedding: Optional[Sequence[float]],
    parents: Optional[Sequence[str]],
) -> Any:
    return pb.UploadMetadata(
        namespace=namespace,
        path=path,
        content_type=content_type or DEFAULT_OCTET_TYPE,
        metadata=dict(metadata or {}),
        semantic_tags=list(semantic_tags or []),
        embedding=list(embedding or []),
        parents=list(parents or []),
    )


_END = object()

# Chunks waiting for gRPC to send; writers block beyond this (16 x 64 KiB).
MAX_PENDING_CHUNKS = 16
_ENQUEUE_POLL = 0.1


class UploadSink:
    """A streaming upload of one object over a single ``UploadObject`` call.

    The first request carries the upload metadata; written bytes follow as
    64 KiB chunk messages. :meth:`close` half-closes the stream and returns
    the created object; :meth:`abort` cancels the call instead.

    At most ``max_pending`` chunks wait for the transport; :meth:`write`
    blocks until gRPC drains the queue, and raises the call's error if the
    call ends while it waits.

    Usable as a context manager: a clean exit closes (the result is kept on
    :attr:`result`), an exception aborts.
    """

    def __init__(
        self,
        provider: AifsProvider,
        uri: str,
        header: Any,
        *,
        chunk_size: int = CHUNK_SIZE,
        max_pending: int = MAX_PENDING_CHUNKS,
    ) -> None:
        self._provider = provider
        self._uri = uri
        self._chunk_size = chunk_size
        self._buffer = bytearray()
        self._requests: queue.Queue[Any] = queue.Queue(maxsize=max_pending + 1)
        self._requests.put(pb.UploadObjectRequest(metadata=header))
        self._done = False
        self.result: Optional[Obj] = None
        with provider._errors("put", uri):
            self._future = provider._stub.UploadObject.future(self._request_iterator())

    def _request_iterator(self) -> Iterator[Any]:
        while True:
            request = self._requests.get()
            if request is _END:
                return
            yield request

    def _enqueue(self, request: Any) -> None:
        while True:
            try:
                self._requests.put(request, timeout=_ENQUEUE_POLL)
                return
            except queue.Full:
                if not self._future.done():
                    continue
            # The call ended while requests were still pending.
            self._done = True
            with self._provider._errors("put", self._uri):
                self._future.result()
            raise BackendError(
                f"Upload to {self._uri} ended before all data was sent",
                uri=self._uri,
                backend=Scheme.AIFS.value,
                operation="put",
            )

    def write(self, data: bytes) -> int:
        """Queue ``data``; every full chunk is sent as it fills."""
        if self._done:
            raise ValueError("Upload is already closed")
        self._buffer.extend(data)
        while len(self._buffer) >= self._chunk_size:
            self._enqueue(pb.UploadObjectRequest(chunk=bytes(self._buffer[: self._chunk_size])))
            del self._buffer[: self._chunk_size]
        return len(data)

    def close(self) -> Obj:
        """Flush, half-close the stream and wait for the created object."""
        if self._done:
            raise ValueError("Upload is already closed")
        if self._buffer:
            self._enqueue(pb.UploadObjectRequest(chunk=bytes(self._buffer)))
            self._buffer.clear()
        self._enqueue(_END)
        self._done = True
        with self._provider._errors("put", self._uri):
            response = self._future.result()
        self.result = self._provider._to_obj(response)
        return self.result

    def abort(self) -> None:
        """Cancel the upload. Nothing is committed on the server."""
        if self._done:
            return
        self._done = True
        self._buffer.clear()
        self._future.cancel()
        try:
            self._requests.put_nowait(_END)
        except queue.Full:
            # A full queue means gRPC is not blocked waiting for a request.
            pass
        log.debug("Upload to %s aborted", self._uri)

    def __enter__(self) -> UploadSink:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is not None:
            self.abort()
        elif not self._done:
            self.close()


class AifsProvider:
    """Provider for the AIFS gRPC service.

    :param endpoint: ``host:port``, ``http://host:port`` or ``https://host:port``.
    :param api_key: Bearer token attached to every call.
    :param timeout: Per-call deadline in seconds for unary calls.
    """

    def __init__(self, *, endpoint: str, api_key: Optional[str] = None, timeout: Optional[float] = None) -> None:
        if not endpoint:
            raise ValueError("AifsProvider needs an endpoint")
        self._endpoint = endpoint
        self._timeout = timeout
        self._channel, call_channel = open_channel(endpoint, api_key)
        self._stub = pb.AifsServiceStub(call_channel)
        log.info("AIFS provider ready (endpoint=%s, auth=%s)", endpoint, "bearer" if api_key else "none")

    @property
    def scheme(self) -> Scheme:
        return Scheme.AIFS

    @property
    def capabilities(self) -> CapabilitySet:
        return _AIFS_CAPABILITIES

    # region: helpers

    def _split(self, uri: str) -> tuple[str, str]:
        parsed = parse_uri(uri)
        if parsed.scheme != Scheme.AIFS.value:
            raise MalformedUri(f"Expected an aifs:// URI, got {uri}", uri=uri, backend=Scheme.AIFS.value)
        return parsed.namespace, parsed.path

    @contextmanager
    def _errors(self, operation: str, uri: str) -> Iterator[None]:
        """Map gRPC status codes to commander_store errors."""
        try:
            yield
        except ObjectStoreError:
            raise
        except grpc.RpcError as exc:
            code = exc.code() if hasattr(exc, "code") else None
            details = (exc.details() if hasattr(exc, "details") else None) or str(code)
            if code in (grpc.StatusCode.PERMISSION_DENIED, grpc.StatusCode.UNAUTHENTICATED):
                raise PermissionDenied(
                    f"Permission denied: {details}", uri=uri, backend=Scheme.AIFS.value, operation=operation
                ) from exc
            error_cls = _STATUS_ERRORS.get(code)  # type: ignore[arg-type]
            if error_cls is not None:
                raise error_cls(details, uri=uri, backend=Scheme.AIFS.value) from exc
            raise BackendError(
                f"{operation} failed: {details}", uri=uri, backend=Scheme.AIFS.value, operation=operation
            ) from exc

    def _check(self, response: Any, operation: str, uri: str) -> None:
        if not response.success:
            raise BackendError(
                response.message or f"{operation} failed", uri=uri, backend=Scheme.AIFS.value, operation=operation
            )

    def _to_obj(self, meta: Any) -> Obj:
        """Convert an ``ObjectMetadata`` message. Snapshots become directories."""
        path = meta.path
        is_dir = meta.is_directory or meta.HasField("snapshot")
        if is_dir and path and not path.endswith("/"):
            path += "/"
        uri = build_uri(Scheme.AIFS.value, meta.namespace, path)
        name = meta.name or path.rstrip("/").rsplit("/", 1)[-1] or meta.namespace
        last_modified = as_utc(meta.modified_time)
        metadata: dict[str, object] = dict(meta.metadata)
        if meta.semantic_tags:
            metadata["semantic_tags"] = list(meta.semantic_tags)
        if meta.parents:
            metadata["parents"] = list(meta.parents)
        if meta.content_type:
            metadata["content_type"] = meta.content_type
        if meta.score:
            metadata["score"] = meta.score
        if meta.HasField("snapshot"):
            metadata["snapshot"] = {
                "id": meta.snapshot.id,
                "name": meta.snapshot.name,
                "description": meta.snapshot.description,
                "created_time": meta.snapshot.created_time,
            }
        if is_dir:
            return Obj.directory(uri, name, last_modified=last_modified, metadata=metadata)
        return Obj.file(
            uri,
            name,
            meta.size,
            last_modified=last_modified,
            etag=meta.etag or None,
            checksum=meta.checksum or None,
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
        namespace, path = self._split(uri)
        limit = page_limit(page_size)
        request = pb.ListObjectsRequest(
            namespace=namespace,
            path=path,
            prefix=prefix or "",
            delimiter=DEFAULT_DELIMITER if delimiter is None else delimiter,
            page_size=limit,
            page_token=page_token or "",
        )
        log.debug("ListObjects namespace=%s path=%r", namespace, path)
        with self._errors("list", uri):
            response = self._stub.ListObjects(request, timeout=self._timeout)
        self._check(response, "list", uri)
        return ListResult(
            items=[self._to_obj(item) for item in response.items],
            next_page_token=response.next_page_token or None,
        )

    def stat(self, uri: str) -> Obj:
        namespace, path = self._split(uri)
        with self._errors("stat", uri):
            response = self._stub.GetObjectMetadata(pb.ObjectRequest(namespace=namespace, path=path), timeout=self._timeout)
        return self._to_obj(response)

    def exists(self, uri: str) -> bool:
        namespace, path = self._split(uri)
        try:
            with self._errors("exists", uri):
                response = self._stub.ObjectExists(pb.ObjectRequest(namespace=namespace, path=path), timeout=self._timeout)
        except NotFound:
            return False
        return bool(response.exists)

    # endregion

    # region: transfer

    def read(self, uri: str) -> bytes:
        """Download an object into memory."""
        namespace, path = self._split(uri)
        buffer = bytearray()
        with self._errors("get", uri):
            for response in self._stub.DownloadObject(pb.ObjectRequest(namespace=namespace, path=path)):
                buffer.extend(response.chunk)
        return bytes(buffer)

    def get(self, uri: str, dest_path: PathLike) -> None:
        content = self.read(uri)
        dest = os.fspath(dest_path)
        os.makedirs(os.path.dirname(os.path.abspath(dest)), exist_ok=True)
        with open(dest, "wb") as fh:
            fh.write(content)

    def open_upload(
        self,
        uri: str,
        *,
        content_type: Optional[str] = None,
        metadata: Optional[Metadata] = None,
        semantic_tags: Optional[Sequence[str]] = None,
        embedding: Optional[Sequence[float]] = None,
        parents: Optional[Sequence[str]] = None,
    ) -> UploadSink:
        """Start a streaming upload to ``uri``.

        :param semantic_tags: Tags indexed by the service.
        :param embedding: Precomputed embedding vector for semantic search.
        :param parents: Lineage: URIs or paths this object was derived from.
        """
        namespace, path = self._split(uri)
        if not path or path.endswith("/"):
            raise AlreadyExists(f"Cannot upload onto a directory: {uri}", uri=uri, backend=Scheme.AIFS.value)
        header = _upload_metadata(
            namespace,
            path,
            content_type=content_type,
            metadata=metadata,
            semantic_tags=semantic_tags,
            embedding=embedding,
            parents=parents,
        )
        return UploadSink(self, uri, header)

    def write(self, uri: str, data: bytes, **options: Any) -> Obj:
        """Upload ``data`` in one call. Keyword options as for :meth:`open_upload`."""
        sink = self.open_upload(uri, **options)
        try:
            sink.write(data)
        except BaseException:
            sink.abort()
            raise
        return sink.close()

    def put(
        self,
        src_path: PathLike,
        dest_uri: str,
        *,
        content_type: Optional[str] = None,
        metadata: Optional[Metadata] = None,
        semantic_tags: Optional[Sequence[str]] = None,
    ) -> Obj:
        src = os.fspath(src_path)
        if not os.path.isfile(src):
            raise NotFound(f"Source file not found: {src}", uri=src, backend=Scheme.FILE.value)
        sink = self.open_upload(dest_uri, content_type=content_type, metadata=metadata, semantic_tags=semantic_tags)
        try:
            with open(src, "rb") as fh:
                for chunk in iter(lambda: fh.read(CHUNK_SIZE), b""):
                    sink.write(chunk)
        except BaseException:
            sink.abort()
            raise
        return sink.close()

    # endregion

    # region: server-side operations

    def copy(self, src_uri: str, dest_uri: str) -> Obj:
        src_namespace, src_path = self._split(src_uri)
        dest_namespace, dest_path = self._split(dest_uri)
        request = pb.CopyObjectRequest(
            source_namespace=src_namespace,
            source_path=src_path,
            dest_namespace=dest_namespace,
            dest_path=dest_path,
            preserve_metadata=True,
        )
        with self._errors("copy", src_uri):
            response = self._stub.CopyObject(request, timeout=self._timeout)
        self._check(response, "copy", src_uri)
        return self._to_obj(response.object)

    def move(self, src_uri: str, dest_uri: str) -> Obj:
        src_namespace, src_path = self._split(src_uri)
        dest_namespace, dest_path = self._split(dest_uri)
        request = pb.MoveObjectRequest(
            source_namespace=src_namespace,
            source_path=src_path,
            dest_namespace=dest_namespace,
            dest_path=dest_path,
        )
        with self._errors("move", src_uri):
            response = self._stub.MoveObject(request, timeout=self._timeout)
        self._check(response, "move", src_uri)
        return self._to_obj(response.object)

    def delete(self, uri: str, recursive: bool = False) -> None:
        namespace, path = self._split(uri)
        if not path.strip("/"):
            raise UnsupportedOperation(f"Cannot delete a namespace root: {uri}", uri=uri, backend=Scheme.AIFS.value)
        request = pb.DeleteObjectRequest(namespace=namespace, path=path, recursive=recursive)
        with self._errors("delete", uri):
            response = self._stub.DeleteObject(request, timeout=self._timeout)
        self._check(response, "delete", uri)

    def mkdir(self, uri: str) -> None:
        namespace, path = self._split(uri)
        request = pb.CreateDirectoryRequest(namespace=namespace, path=path, recursive=True)
        with self._errors("mkdir", uri):
            response = self._stub.CreateDirectory(request, timeout=self._timeout)
        self._check(response, "mkdir", uri)

    # endregion

    # region: AI-native extensions

    def semantic_search(
        self,
        uri: str,
        query: str,
        *,
        embedding: Optional[Sequence[float]] = None,
        threshold: float = 0.7,
        limit: int = 10,
        filters: Optional[dict[str, str]] = None,
    ) -> list[Obj]:
        """Rank objects in the URI's namespace by similarity to ``query``.

        Results keep the server's rank order; each carries ``metadata["score"]``.
        """
        namespace, _ = self._split(uri)
        request = pb.SemanticSearchRequest(
            namespace=namespace,
            query=query,
            limit=limit,
            threshold=threshold,
            filters=dict(filters or {}),
            embedding=list(embedding or []),
        )
        with self._errors("semantic_search", uri):
            response = self._stub.SemanticSearch(request, timeout=self._timeout)
        self._check(response, "semantic_search", uri)
        return [self._to_obj(item) for item in response.results]

    def create_snapshot(self, uri: str, name: str, description: str = "") -> Obj:
        """Snapshot the URI's namespace; the snapshot is returned as a directory."""
        namespace, _ = self._split(uri)
        request = pb.CreateSnapshotRequest(namespace=namespace, name=name, description=description)
        with self._errors("create_snapshot", uri):
            response = self._stub.CreateSnapshot(request, timeout=self._timeout)
        self._check(response, "create_snapshot", uri)
        return self._to_obj(response.object)

    def list_snapshots(self, uri: str) -> list[Obj]:
        namespace, _ = self._split(uri)
        with self._errors("list_snapshots", uri):
            response = self._stub.ListSnapshots(pb.ListSnapshotsRequest(namespace=namespace), timeout=self._timeout)
        self._check(response, "list_snapshots", uri)
        return [self._to_obj(item) for item in response.snapshots]

    # endregion

    def close(self) -> None:
        self._channel.close()

    def __repr__(self) -> str:
        return f"AifsProvider(endpoint={self._endpoint!r})"
