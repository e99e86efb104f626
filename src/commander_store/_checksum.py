"""Streaming checksums of local files."""

from __future__ import annotations

import hashlib
import logging
from typing import TYPE_CHECKING, Any

from blake3 import blake3

if TYPE_CHECKING:
    from commander_store._types import PathLike

log = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024

ALGORITHMS = ("blake3", "md5")


def _hasher(algorithm: str) -> Any:
    if algorithm == "blake3":
        return blake3()
    if algorithm == "md5":
        return hashlib.md5()
    raise ValueError(f"Unsupported checksum algorithm {algorithm!r}; expected one of {ALGORITHMS}")


def file_checksum(path: PathLike, algorithm: str = "blake3") -> str:
    """Hex digest of a local file, read in 1 MiB chunks.

    :param algorithm: ``"blake3"`` (the default) or ``"md5"``.
    :raises ValueError: If the algorithm is not supported.
    """
    digest = _hasher(algorithm)
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def verify_checksum(path: PathLike, expected: str, algorithm: str = "blake3") -> bool:
    """Compare a file's digest with ``expected`` (case-insensitive).

    Read errors propagate; only a mismatch returns ``False``.
    """
    actual = file_checksum(path, algorithm)
    matched = actual.lower() == expected.lower()
    if not matched:
        log.debug("Checksum mismatch for %s: expected %s, got %s", path, expected, actual)
    return matched
