"""Local filesystem provider backed by os and shutil."""

from __future__ import annotations

import errno
import logging
import os
import shutil
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from commander_store._capabilities import CORE_CAPABILITIES, Capability, CapabilitySet
from commander_store._checksum import file_checksum
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
from commander_store._uri import from_local_path, parse_uri, to_local_path

if TYPE_CHECKING:
    from collections.abc import Iterator

    from commander_store._types import Metadata, PathLike

log = logging.getLogger(__name__)

_FILE_CAPABILITIES = CapabilitySet(CORE_CAPABILITIES | {Capability.ATOMIC_MOVE})

# ERROR_DIR_NOT_EMPTY, as surfaced in OSError.errno on Windows.
_WINDOWS_DIR_NOT_EMPTY = 145


class FileProvider:
    """Local filesystem provider.

    ``file`` URIs carry absolute local paths (``file:///home/me/a.txt`` or
    ``file:///C:/data/a.txt``). Directories are real directories, so no
    marker emulation happens here.

    :param checksums: Compute an MD5 checksum on every file ``stat``.
    """

    def __init__(self, *, checksums: bool = False) -> None:
        self._checksums = checksums

    @property
    def scheme(self) -> Scheme:
        return Scheme.FILE

    @property
    def capabilities(self) -> CapabilitySet:
        return _FILE_CAPABILITIES

    # region: helpers

    def _local(self, uri: str) -> str:
        parsed = parse_uri(uri)
        if parsed.scheme != Scheme.FILE.value:
            raise MalformedUri(f"Expected a file:// URI, got {uri}", uri=uri, backend=Scheme.FILE.value)
        return to_local_path(parsed.path)

    @contextmanager
    def _errors(self, operation: str, uri: str) -> Iterator[None]:
        """Map ``OSError`` subclasses to commander_store errors."""
        try:
            yield
        except ObjectStoreError:
            raise
        except (FileNotFoundError, NotADirectoryError) as exc:
            raise NotFound(f"Not found: {uri}", uri=uri, backend=Scheme.FILE.value) from exc
        except FileExistsError as exc:
            raise AlreadyExists(f"Already exists: {uri}", uri=uri, backend=Scheme.FILE.value) from exc
        except PermissionError as exc:
            raise PermissionDenied(
                f"Permission denied: {uri}", uri=uri, backend=Scheme.FILE.value, operation=operation
            ) from exc
        except OSError as exc:
            if exc.errno in (errno.ENOTEMPTY, _WINDOWS_DIR_NOT_EMPTY):
                raise DirectoryNotEmpty(f"Directory not empty: {uri}", uri=uri, backend=Scheme.FILE.value) from exc
            raise BackendError(
                f"{operation} failed: {exc}", uri=uri, backend=Scheme.FILE.value, operation=operation
            ) from exc

    def _to_obj(self, path: str, st: os.stat_result, *, is_dir: bool) -> Obj:
        modified = datetime.fromtimestamp(st.st_mtime, tz=timezone.utc)
        name = os.path.basename(path.rstrip("/\\")) or path
        if is_dir:
            return Obj.directory(from_local_path(path, directory=True), name, last_modified=modified)
        checksum = file_checksum(path, "md5") if self._checksums else None
        return Obj.file(from_local_path(path), name, st.st_size, last_modified=modified, checksum=checksum)

    def _entries(self, directory: str, delimiter: str) -> list[tuple[str, str, bool]]:
        """``(relative_name, full_path, is_dir)`` under ``directory``, sorted by name.

        An empty delimiter walks every file below ``directory``.
        """
        if delimiter:
            with os.scandir(directory) as it:
                entries = [(entry.name, entry.path, entry.is_dir()) for entry in it]
        else:
            entries = []
            for dirpath, _dirnames, filenames in os.walk(directory):
                for filename in filenames:
                    full = os.path.join(dirpath, filename)
                    relative = os.path.relpath(full, directory).replace(os.sep, "/")
                    entries.append((relative, full, False))
        entries.sort(key=lambda entry: entry[0])
        return entries

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
        directory = self._local(uri)
        try:
            offset = int(page_token) if page_token else 0
        except ValueError:
            raise ValueError(f"Invalid page token {page_token!r}: expected an integer offset") from None
        if offset < 0:
            raise ValueError(f"Invalid page token {page_token!r}: offset must be non-negative")
        if page_size is not None and page_size < 1:
            raise ValueError(f"page_size must be at least 1, got {page_size}")

        with self._errors("list", uri):
            if not os.path.isdir(directory):
                if os.path.exists(directory):
                    raise NotFound(f"Not a directory: {uri}", uri=uri, backend=Scheme.FILE.value)
                raise NotFound(f"Not found: {uri}", uri=uri, backend=Scheme.FILE.value)
            entries = self._entries(directory, "/" if delimiter is None else delimiter)
            if prefix:
                entries = [entry for entry in entries if entry[0].startswith(prefix)]
            end = len(entries) if page_size is None else offset + page_size
            page = entries[offset:end]
            items = [self._to_obj(full, os.stat(full), is_dir=is_dir) for _, full, is_dir in page]

        next_token = str(end) if end < len(entries) else None
        return ListResult(items=items, next_page_token=next_token)

    def stat(self, uri: str) -> Obj:
        path = self._local(uri)
        with self._errors("stat", uri):
            st = os.stat(path)
            return self._to_obj(path, st, is_dir=os.path.isdir(path))

    def exists(self, uri: str) -> bool:
        return os.path.exists(self._local(uri))

    # endregion

    # region: transfer

    def get(self, uri: str, dest_path: PathLike) -> None:
        path = self._local(uri)
        dest = os.fspath(dest_path)
        with self._errors("get", uri):
            if os.path.isdir(path):
                raise UnsupportedOperation(
                    f"Cannot download a directory: {uri}", uri=uri, backend=Scheme.FILE.value
                )
            os.makedirs(os.path.dirname(os.path.abspath(dest)), exist_ok=True)
            shutil.copyfile(path, dest)

    def put(
        self,
        src_path: PathLike,
        dest_uri: str,
        *,
        content_type: Optional[str] = None,
        metadata: Optional[Metadata] = None,
    ) -> Obj:
        dest = self._local(dest_uri)
        src = os.fspath(src_path)
        if dest_uri.endswith("/") or os.path.isdir(dest):
            raise AlreadyExists(f"Cannot upload onto a directory: {dest_uri}", uri=dest_uri, backend=Scheme.FILE.value)
        if not os.path.isfile(src):
            raise NotFound(f"Source file not found: {src}", uri=src, backend=Scheme.FILE.value)
        with self._errors("put", dest_uri):
            os.makedirs(os.path.dirname(dest), exist_ok=True)
            shutil.copyfile(src, dest)
            obj = self._to_obj(dest, os.stat(dest), is_dir=False)
        extra: dict[str, object] = dict(metadata or {})
        if content_type:
            extra["content_type"] = content_type
        if not extra:
            return obj
        return Obj.file(obj.uri, obj.name, obj.size, obj.last_modified, obj.etag, obj.checksum, extra)

    # endregion

    # region: copy and move

    def _check_transfer(self, src: str, src_uri: str, dest: str, dest_uri: str) -> None:
        if os.path.isdir(src):
            raise UnsupportedOperation(
                f"Copying directories is not supported: {src_uri}",
                uri=src_uri,
                backend=Scheme.FILE.value,
                capability=Capability.DIRECTORY_COPY.value,
            )
        if not os.path.exists(src):
            raise NotFound(f"Not found: {src_uri}", uri=src_uri, backend=Scheme.FILE.value)
        if dest_uri.endswith("/") or os.path.isdir(dest):
            raise AlreadyExists(f"A directory exists at {dest_uri}", uri=dest_uri, backend=Scheme.FILE.value)

    def copy(self, src_uri: str, dest_uri: str) -> Obj:
        src, dest = self._local(src_uri), self._local(dest_uri)
        self._check_transfer(src, src_uri, dest, dest_uri)
        with self._errors("copy", src_uri):
            os.makedirs(os.path.dirname(dest), exist_ok=True)
            shutil.copy2(src, dest)
            return self._to_obj(dest, os.stat(dest), is_dir=False)

    def move(self, src_uri: str, dest_uri: str) -> Obj:
        src, dest = self._local(src_uri), self._local(dest_uri)
        self._check_transfer(src, src_uri, dest, dest_uri)
        with self._errors("move", src_uri):
            os.makedirs(os.path.dirname(dest), exist_ok=True)
            try:
                os.rename(src, dest)
            except OSError as exc:
                if exc.errno != errno.EXDEV:
                    raise
                log.info("Cross-device move %s -> %s; falling back to copy and unlink", src, dest)
                shutil.copy2(src, dest)
                os.unlink(src)
            return self._to_obj(dest, os.stat(dest), is_dir=False)

    # endregion

    # region: delete and mkdir

    def delete(self, uri: str, recursive: bool = False) -> None:
        path = self._local(uri)
        with self._errors("delete", uri):
            if os.path.islink(path) or not os.path.isdir(path):
                os.unlink(path)
                return
            if recursive:
                self._delete_tree(path)
                return
            if os.listdir(path):
                raise DirectoryNotEmpty(f"Directory not empty: {uri}", uri=uri, backend=Scheme.FILE.value)
            os.rmdir(path)

    def _delete_tree(self, path: str) -> None:
        """Depth-first post-order: files first, then each emptied directory."""
        count = 0
        for dirpath, dirnames, filenames in os.walk(path, topdown=False):
            for filename in filenames:
                os.unlink(os.path.join(dirpath, filename))
                count += 1
            for dirname in dirnames:
                full = os.path.join(dirpath, dirname)
                if os.path.islink(full):
                    os.unlink(full)
                else:
                    os.rmdir(full)
        os.rmdir(path)
        log.info("Deleted %d files under %s", count, path)

    def mkdir(self, uri: str) -> None:
        path = self._local(uri)
        with self._errors("mkdir", uri):
            if os.path.exists(path) and not os.path.isdir(path):
                raise AlreadyExists(f"A file exists at {uri}", uri=uri, backend=Scheme.FILE.value)
            os.makedirs(path, exist_ok=True)

    # endregion

    def close(self) -> None:
        """Nothing to release."""

    def __repr__(self) -> str:
        return f"FileProvider(checksums={self._checksums})"
