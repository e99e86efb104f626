"""Capability enum and CapabilitySet."""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING

from commander_store._errors import UnsupportedOperation

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator


class Capability(enum.Enum):
    """Operations a provider may support."""

    LIST = "list"
    STAT = "stat"
    GET = "get"
    PUT = "put"
    COPY = "copy"
    MOVE = "move"
    DELETE = "delete"
    MKDIR = "mkdir"
    SERVER_SIDE_COPY = "server_side_copy"
    ATOMIC_MOVE = "atomic_move"
    DIRECTORY_COPY = "directory_copy"
    SEMANTIC_SEARCH = "semantic_search"
    SNAPSHOTS = "snapshots"


CORE_CAPABILITIES = frozenset(
    {
        Capability.LIST,
        Capability.STAT,
        Capability.GET,
        Capability.PUT,
        Capability.COPY,
        Capability.MOVE,
        Capability.DELETE,
        Capability.MKDIR,
    }
)


class CapabilitySet:
    """Immutable set of capabilities declared by a provider.

    :param capabilities: The supported capabilities.
    """

    __slots__ = ("_caps",)
    _caps: frozenset[Capability]

    def __init__(self, capabilities: Iterable[Capability]) -> None:
        object.__setattr__(self, "_caps", frozenset(capabilities))

    def supports(self, cap: Capability) -> bool:
        """Check whether a capability is supported."""
        return cap in self._caps

    def require(self, cap: Capability, *, backend: str = "", uri: str | None = None) -> None:
        """Raise if a capability is not supported.

        :raises UnsupportedOperation: If the capability is missing.
        """
        if cap not in self._caps:
            raise UnsupportedOperation(
                f"Capability '{cap.value}' is not supported",
                capability=cap.value,
                backend=backend or None,
                uri=uri,
            )

    def __contains__(self, cap: object) -> bool:
        return cap in self._caps

    def __iter__(self) -> Iterator[Capability]:
        return iter(self._caps)

    def __len__(self) -> int:
        return len(self._caps)

    def __or__(self, other: CapabilitySet) -> CapabilitySet:
        return CapabilitySet(self._caps | other._caps)

    def __repr__(self) -> str:
        names = sorted(c.name for c in self._caps)
        return f"CapabilitySet({{{', '.join(names)}}})"

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError("CapabilitySet is immutable")

    def __delattr__(self, name: str) -> None:
        raise AttributeError("CapabilitySet is immutable")
