"""URI utilities to parse, build and navigate ``scheme://namespace/path`` strings."""

from __future__ import annotations

import os
import posixpath
import re
from typing import Final

from commander_store._errors import MalformedUri

KNOWN_SCHEMES: Final = ("file", "s3", "gcs", "az", "aifs")

_URI_PATTERN = re.compile(r"^([a-z][a-z0-9+.-]*)://(.*)$", re.DOTALL)
_DRIVE_PATTERN = re.compile(r"^/?([A-Za-z]:)(?:[/\\](.*))?$", re.DOTALL)


class ParsedUri:
    """An immutable, parsed object-store URI.

    For ``file`` URIs the namespace is empty and the path is the local path
    (absolute, or a Windows drive path such as ``C:/data``). For every other
    scheme the namespace is the bucket, container or AIFS namespace and the
    path is the key beneath it, without a leading slash.

    :param scheme: One of :data:`KNOWN_SCHEMES`.
    :param namespace: Bucket/container/namespace (empty for ``file``).
    :param path: Slash-joined path; a trailing slash marks a directory.
    """

    __slots__ = ("_namespace", "_path", "_scheme")
    _scheme: Final[str]  # type: ignore[misc]
    _namespace: Final[str]  # type: ignore[misc]
    _path: Final[str]  # type: ignore[misc]

    def __init__(self, scheme: str, namespace: str, path: str) -> None:
        object.__setattr__(self, "_scheme", scheme)
        object.__setattr__(self, "_namespace", namespace)
        object.__setattr__(self, "_path", path)

    @property
    def scheme(self) -> str:
        return self._scheme

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def path(self) -> str:
        return self._path

    @property
    def is_root(self) -> bool:
        """``True`` for a namespace root (or the filesystem root)."""
        return self._path.strip("/") == ""

    @property
    def is_directory(self) -> bool:
        """``True`` if the URI is directory-shaped (root or trailing slash)."""
        return self.is_root or self._path.endswith("/")

    @property
    def name(self) -> str:
        """Last path segment, without any trailing slash."""
        trimmed = self._path.rstrip("/")
        if not trimmed:
            return self._namespace or "/"
        return trimmed.rsplit("/", 1)[-1]

    @property
    def parent(self) -> ParsedUri:
        """Parent directory reference (trailing slash); a root is its own parent.

        Example: ``parse_uri("s3://b/a/c.txt").parent`` is ``s3://b/a/``.
        """
        trimmed = self._path.rstrip("/")
        if "/" not in trimmed:
            if self._scheme != "file":
                return ParsedUri(self._scheme, self._namespace, "")
            drive_root = _DRIVE_PATTERN.match(trimmed) is not None
            return ParsedUri(self._scheme, "", trimmed + "/" if drive_root else "/")
        head = trimmed.rsplit("/", 1)[0]
        if not head:
            return ParsedUri(self._scheme, self._namespace, "/")
        return ParsedUri(self._scheme, self._namespace, head + "/")

    def __truediv__(self, other: str) -> ParsedUri:
        return parse_uri(join_uri(str(self), other))

    def __str__(self) -> str:
        return build_uri(self._scheme, self._namespace, self._path)

    def __repr__(self) -> str:
        return f"ParsedUri({str(self)!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ParsedUri):
            return (self._scheme, self._namespace, self._path) == (other._scheme, other._namespace, other._path)
        return NotImplemented

    def __hash__(self) -> int:
        return hash((self._scheme, self._namespace, self._path))

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError(f"ParsedUri is immutable: cannot set '{name}'")

    def __delattr__(self, name: str) -> None:
        raise AttributeError(f"ParsedUri is immutable: cannot delete '{name}'")


def parse_uri(uri: str) -> ParsedUri:
    """Split ``uri`` into scheme, namespace and path.

    :raises MalformedUri: If the scheme is missing or unknown, or a
        non-``file`` URI has no namespace.
    """
    if "\0" in uri:
        raise MalformedUri("URI contains null byte", uri=uri)
    match = _URI_PATTERN.match(uri)
    if match is None:
        raise MalformedUri(f"Missing scheme in URI: {uri}", uri=uri)
    scheme, rest = match.groups()
    if scheme not in KNOWN_SCHEMES:
        raise MalformedUri(f"Unsupported scheme: {scheme}", uri=uri)

    if scheme == "file":
        drive = _DRIVE_PATTERN.match(rest)
        if drive is not None:
            return ParsedUri(scheme, "", f"{drive.group(1)}/{drive.group(2) or ''}")
        return ParsedUri(scheme, "", rest if rest.startswith("/") else "/" + rest)

    namespace, _, path = rest.partition("/")
    if not namespace:
        raise MalformedUri(f"Missing namespace in URI: {uri}", uri=uri)
    return ParsedUri(scheme, namespace, path)


def build_uri(scheme: str, namespace: str, path: str) -> str:
    """Inverse of :func:`parse_uri`."""
    if scheme == "file":
        if _DRIVE_PATTERN.match(path) and not path.startswith("/"):
            return f"file:///{path}"
        return f"file://{path if path.startswith('/') else '/' + path}"
    if not path:
        return f"{scheme}://{namespace}"
    return f"{scheme}://{namespace}/{path.lstrip('/')}"


def join_uri(base: str, *segments: str) -> str:
    """Append path segments to ``base``.

    Redundant slashes around each segment are dropped; a trailing slash on
    the final segment is kept so directory references survive joining.
    """
    parsed = parse_uri(base)
    head = parsed.path.rstrip("/")
    trailing = False
    for segment in segments:
        trailing = segment.endswith("/")
        cleaned = segment.strip("/")
        if not cleaned:
            continue
        head = f"{head}/{cleaned}" if head or parsed.scheme == "file" else cleaned
    if trailing and head:
        head += "/"
    return build_uri(parsed.scheme, parsed.namespace, head)


def parent_uri(uri: str) -> str:
    """Parent directory URI; a namespace root is its own parent."""
    return str(parse_uri(uri).parent)


def name_from_uri(uri: str) -> str:
    """Display name (last path segment, or the namespace for a bare root)."""
    return parse_uri(uri).name


def is_directory_uri(uri: str) -> bool:
    """Return ``True`` for a root or a trailing-slash URI."""
    return parse_uri(uri).is_directory


def ensure_trailing_slash(uri: str) -> str:
    return uri if uri.endswith("/") else uri + "/"


def strip_trailing_slash(uri: str) -> str:
    parsed = parse_uri(uri)
    if parsed.is_root:
        return str(parsed)
    return build_uri(parsed.scheme, parsed.namespace, parsed.path.rstrip("/"))


def to_local_path(path: str) -> str:
    """Resolve a ``file`` URI path to a native filesystem path.

    Windows drive-letter prefixes are kept verbatim; everything else is
    normalized through the OS path resolver, relative to the filesystem root.
    """
    drive = _DRIVE_PATTERN.match(path)
    if drive is not None:
        rest = posixpath.normpath("/" + (drive.group(2) or "").replace("\\", "/"))
        return drive.group(1) + rest
    return os.path.abspath(os.path.join(os.sep, path))


def from_local_path(local_path: str, *, directory: bool = False) -> str:
    """Build a ``file`` URI for a native path."""
    normalized = local_path.replace("\\", "/")
    if directory and not normalized.endswith("/"):
        normalized += "/"
    return build_uri("file", "", normalized)
