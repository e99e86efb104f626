"""Normalized error hierarchy for commander_store."""

from __future__ import annotations

from typing import Optional


class ObjectStoreError(Exception):
    """Base class for all commander_store errors.

    :param message: Human-readable error description.
    :param uri: The URI involved in the error, if any.
    :param backend: The provider scheme involved, if any.
    """

    def __init__(self, message: str = "", *, uri: Optional[str] = None, backend: Optional[str] = None) -> None:
        self.uri = uri
        self.backend = backend
        super().__init__(message)

    def _details(self) -> list[str]:
        parts = []
        if self.uri is not None:
            parts.append(f"uri={self.uri!r}")
        if self.backend is not None:
            parts.append(f"backend={self.backend!r}")
        return parts

    def __str__(self) -> str:
        message = super().__str__()
        details = self._details()
        if not details:
            return message
        return " | ".join([message, *details]) if message else " | ".join(details)

    def __repr__(self) -> str:
        cls = type(self).__name__
        args = [repr(super().__str__()), *self._details()]
        return f"{cls}({', '.join(args)})"


class MalformedUri(ObjectStoreError):
    """Raised when a URI does not match any known scheme or shape."""


class NotFound(ObjectStoreError):
    """Raised when the target object or directory does not exist."""


class AlreadyExists(ObjectStoreError):
    """Raised when a write would replace an object of the other kind (file vs. directory)."""


class DirectoryNotEmpty(ObjectStoreError):
    """Raised when a non-recursive delete targets a directory with children."""


class UnsupportedOperation(ObjectStoreError):
    """Raised for operations a provider does not implement (e.g. directory copy).

    :param capability: The name of the missing capability, if known.
    """

    def __init__(
        self,
        message: str = "",
        *,
        uri: Optional[str] = None,
        backend: Optional[str] = None,
        capability: str = "",
    ) -> None:
        self.capability = capability
        super().__init__(message, uri=uri, backend=backend)

    def _details(self) -> list[str]:
        parts = super()._details()
        if self.capability:
            parts.append(f"capability={self.capability!r}")
        return parts


class UnsupportedCopySize(ObjectStoreError):
    """Raised when an object exceeds the provider's single-request copy ceiling.

    :param size: Size of the source object in bytes.
    :param limit: The provider's copy limit in bytes.
    """

    def __init__(
        self,
        message: str = "",
        *,
        uri: Optional[str] = None,
        backend: Optional[str] = None,
        size: int = 0,
        limit: int = 0,
    ) -> None:
        self.size = size
        self.limit = limit
        super().__init__(message, uri=uri, backend=backend)

    def _details(self) -> list[str]:
        return [*super()._details(), f"size={self.size}", f"limit={self.limit}"]


class ProviderUnavailable(ObjectStoreError):
    """Raised when the selected scheme has no usable credentials configured."""


class BackendError(ObjectStoreError):
    """Catch-all for SDK or network failures.

    The original exception is chained as ``__cause__``; its message is
    carried in this error's message.

    :param operation: The contract operation that failed (e.g. ``"copy"``).
    """

    def __init__(
        self,
        message: str = "",
        *,
        uri: Optional[str] = None,
        backend: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> None:
        self.operation = operation
        super().__init__(message, uri=uri, backend=backend)

    def _details(self) -> list[str]:
        parts = super()._details()
        if self.operation is not None:
            parts.append(f"operation={self.operation!r}")
        return parts


class PermissionDenied(BackendError):
    """Raised when access is denied by the storage backend."""
