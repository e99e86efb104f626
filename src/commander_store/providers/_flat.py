"""Directory emulation helpers shared by the flat key/prefix stores (S3, GCS, Azure).

Flat stores have no directory primitive. A directory ``P/`` exists when a
zero-byte marker object named ``P/`` exists, or when any key starts with
``P/``. The helpers here are pure: each adapter performs the native calls
and hands the raw keys and common prefixes to :func:`partition_listing`.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Generic, Optional, TypeVar

if TYPE_CHECKING:
    from collections.abc import Iterable

T = TypeVar("T")

DEFAULT_DELIMITER = "/"
DEFAULT_PAGE_SIZE = 1000


def page_limit(page_size: Optional[int]) -> int:
    """Resolve a requested page size; ``None`` means the default.

    :raises ValueError: If ``page_size`` is less than 1.
    """
    if page_size is None:
        return DEFAULT_PAGE_SIZE
    if page_size < 1:
        raise ValueError(f"page_size must be at least 1, got {page_size}")
    return page_size


def directory_key(key: str) -> str:
    """Normalize a key to its directory form (``"a/b"`` -> ``"a/b/"``, root -> ``""``)."""
    trimmed = key.strip("/")
    return f"{trimmed}/" if trimmed else ""


@dataclasses.dataclass(frozen=True)
class Partition(Generic[T]):
    """One listing page split into files and sub-directories.

    :param files: ``(relative_name, native_item)`` pairs.
    :param directories: ``(relative_name, full_prefix)`` pairs.
    """

    files: list[tuple[str, T]]
    directories: list[tuple[str, str]]


def partition_listing(
    dir_key: str,
    delimiter: str,
    objects: Iterable[tuple[str, T]],
    common_prefixes: Iterable[str],
) -> Partition[T]:
    """Split raw listing output into the files and directories at one level.

    Relative names are computed against ``dir_key``. The marker object for
    ``dir_key`` itself is skipped, as is any key whose relative name still
    contains ``delimiter`` (it belongs to a deeper level). Markers of
    sub-directories (keys ending in ``/``) never appear as files.

    :param dir_key: The listed directory's key, with trailing slash (or ``""``).
    :param delimiter: Grouping delimiter; empty for a flat listing.
    :param objects: ``(key, native_item)`` pairs returned by the backend.
    :param common_prefixes: Common prefixes returned by the backend.
    """
    files: list[tuple[str, T]] = []
    for key, item in objects:
        if key == dir_key or not key.startswith(dir_key):
            continue
        relative = key[len(dir_key) :]
        if relative.endswith("/"):
            continue
        if delimiter and delimiter in relative:
            continue
        files.append((relative, item))

    directories: list[tuple[str, str]] = []
    seen: set[str] = set()
    for common_prefix in common_prefixes:
        if not common_prefix.startswith(dir_key):
            continue
        dir_name = common_prefix[len(dir_key) :]
        if delimiter and dir_name.endswith(delimiter):
            dir_name = dir_name[: -len(delimiter)]
        if not dir_name or dir_name in seen:
            continue
        seen.add(dir_name)
        directories.append((dir_name, common_prefix))

    return Partition(files=files, directories=directories)


def has_children(dir_key: str, keys: Iterable[str]) -> bool:
    """``True`` if any key other than the directory marker lies under ``dir_key``."""
    return any(key != dir_key and key.startswith(dir_key) for key in keys)


def strip_etag(etag: Optional[str]) -> Optional[str]:
    """Remove the surrounding quotes backends put around ETags."""
    if etag is None:
        return None
    return etag.strip('"') or None


def as_utc(value: object) -> Optional[datetime]:
    """Coerce a backend timestamp (datetime or ISO-8601 string) to aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
