"""Provider contract: the scheme tag and the structural object-store protocol."""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from commander_store._capabilities import CapabilitySet
    from commander_store._models import ListResult, Obj
    from commander_store._types import Metadata, PathLike


class Scheme(str, enum.Enum):
    """The five backend kinds, keyed by URI scheme."""

    FILE = "file"
    S3 = "s3"
    GCS = "gcs"
    AZURE = "az"
    AIFS = "aifs"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    def __str__(self) -> str:
        return self.value


_DISPLAY_NAMES = {
    Scheme.FILE: "Local File System",
    Scheme.S3: "Amazon S3",
    Scheme.GCS: "Google Cloud Storage",
    Scheme.AZURE: "Azure Blob Storage",
    Scheme.AIFS: "AIFS",
}


@runtime_checkable
class ObjectStore(Protocol):
    """The operations every provider implements.

    Providers satisfy this protocol structurally; none of them inherit from
    it. Provider-native exceptions never leak: every failure surfaces as a
    :class:`~commander_store.ObjectStoreError` subclass.
    """

    @property
    def scheme(self) -> Scheme:
        """The URI scheme this provider serves."""
        ...

    @property
    def capabilities(self) -> CapabilitySet:
        """Declared capabilities of this provider."""
        ...

    def list(
        self,
        uri: str,
        *,
        prefix: Optional[str] = None,
        delimiter: Optional[str] = None,
        page_token: Optional[str] = None,
        page_size: Optional[int] = None,
    ) -> ListResult:
        """List one page of directories and files under ``uri``.

        :param prefix: Only include entries whose name starts with this.
        :param delimiter: Grouping delimiter (default ``/``).
        :param page_token: Opaque token from a previous page.
        :param page_size: Maximum entries per page.
        """
        ...

    def stat(self, uri: str) -> Obj:
        """Return metadata for one object or directory.

        :raises NotFound: If nothing exists at ``uri``.
        """
        ...

    def get(self, uri: str, dest_path: PathLike) -> None:
        """Download ``uri`` to a local path.

        :raises NotFound: If the object does not exist.
        """
        ...

    def put(
        self,
        src_path: PathLike,
        dest_uri: str,
        *,
        content_type: Optional[str] = None,
        metadata: Optional[Metadata] = None,
    ) -> Obj:
        """Upload a local file and return the created object."""
        ...

    def copy(self, src_uri: str, dest_uri: str) -> Obj:
        """Copy an object within this provider.

        :raises UnsupportedOperation: If ``src_uri`` is a directory.
        """
        ...

    def move(self, src_uri: str, dest_uri: str) -> Obj:
        """Move an object within this provider."""
        ...

    def delete(self, uri: str, recursive: bool = False) -> None:
        """Delete an object or directory.

        :raises DirectoryNotEmpty: If ``uri`` is a non-empty directory and
            ``recursive`` is ``False``.
        """
        ...

    def mkdir(self, uri: str) -> None:
        """Create a directory. Idempotent."""
        ...

    def exists(self, uri: str) -> bool:
        """Check whether an object or directory exists. Never raises ``NotFound``."""
        ...

    def close(self) -> None:
        """Release the provider's client handle."""
        ...
