"""Immutable result models returned by every provider."""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from collections.abc import Iterator
    from datetime import datetime


@dataclasses.dataclass(frozen=True, eq=False)
class Obj:
    """Snapshot of one listed or stat'd item.

    :param uri: Absolute, scheme-qualified URI of the item.
    :param name: Last path segment (display only).
    :param size: Size in bytes; always ``0`` for directories.
    :param last_modified: Last modification time, if the backend reports one.
    :param etag: Opaque backend version token (quotes stripped).
    :param checksum: Content hash; never set for directories.
    :param is_dir: Whether the item is a (possibly synthesized) directory.
    :param metadata: Backend-defined metadata, passed through untouched.
    :raises ValueError: If a directory carries a size or checksum.
    """

    uri: str
    name: str
    size: int = 0
    last_modified: Optional[datetime] = None
    etag: Optional[str] = None
    checksum: Optional[str] = None
    is_dir: bool = False
    metadata: dict[str, object] = dataclasses.field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.is_dir and self.size != 0:
            raise ValueError(f"Directory {self.uri!r} must have size 0, got {self.size}")
        if self.is_dir and self.checksum is not None:
            raise ValueError(f"Directory {self.uri!r} must not carry a checksum")
        if self.size < 0:
            raise ValueError(f"Size must be non-negative, got {self.size}")

    @classmethod
    def file(
        cls,
        uri: str,
        name: str,
        size: int,
        last_modified: Optional[datetime] = None,
        etag: Optional[str] = None,
        checksum: Optional[str] = None,
        metadata: Optional[dict[str, object]] = None,
    ) -> Obj:
        return cls(
            uri=uri,
            name=name,
            size=size,
            last_modified=last_modified,
            etag=etag,
            checksum=checksum,
            is_dir=False,
            metadata=dict(metadata or {}),
        )

    @classmethod
    def directory(
        cls,
        uri: str,
        name: str,
        last_modified: Optional[datetime] = None,
        metadata: Optional[dict[str, object]] = None,
    ) -> Obj:
        return cls(uri=uri, name=name, last_modified=last_modified, is_dir=True, metadata=dict(metadata or {}))

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Obj):
            return self.uri == other.uri
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.uri)


@dataclasses.dataclass(frozen=True)
class ListResult:
    """One page of a listing.

    :param items: Directories and files on this page.
    :param next_page_token: Opaque cursor for the next page, or ``None`` when
        this is the last page.
    """

    items: list[Obj] = dataclasses.field(default_factory=list)
    next_page_token: Optional[str] = None

    def __iter__(self) -> Iterator[Obj]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    @property
    def directories(self) -> list[Obj]:
        return [item for item in self.items if item.is_dir]

    @property
    def files(self) -> list[Obj]:
        return [item for item in self.items if not item.is_dir]
