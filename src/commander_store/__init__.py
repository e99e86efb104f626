"""Uniform object-store layer over local disk, S3, GCS, Azure Blob and AIFS."""

from commander_store._capabilities import Capability, CapabilitySet
from commander_store._checksum import file_checksum, verify_checksum
from commander_store._config import ProviderConfig, RegistryConfig
from commander_store._errors import (
    AlreadyExists,
    BackendError,
    DirectoryNotEmpty,
    MalformedUri,
    NotFound,
    ObjectStoreError,
    PermissionDenied,
    ProviderUnavailable,
    UnsupportedCopySize,
    UnsupportedOperation,
)
from commander_store._models import ListResult, Obj
from commander_store._provider import ObjectStore, Scheme
from commander_store._registry import Registry, register_provider
from commander_store._uri import (
    ParsedUri,
    build_uri,
    ensure_trailing_slash,
    from_local_path,
    is_directory_uri,
    join_uri,
    name_from_uri,
    parent_uri,
    parse_uri,
    strip_trailing_slash,
    to_local_path,
)

__version__ = "0.1.0"

__all__ = [
    # Core
    "Registry",
    "ObjectStore",
    "Scheme",
    "register_provider",
    # Models
    "Obj",
    "ListResult",
    # URIs
    "ParsedUri",
    "parse_uri",
    "build_uri",
    "join_uri",
    "parent_uri",
    "name_from_uri",
    "is_directory_uri",
    "ensure_trailing_slash",
    "strip_trailing_slash",
    "to_local_path",
    "from_local_path",
    # Capabilities
    "Capability",
    "CapabilitySet",
    # Config
    "ProviderConfig",
    "RegistryConfig",
    # Checksums
    "file_checksum",
    "verify_checksum",
    # Errors
    "ObjectStoreError",
    "MalformedUri",
    "NotFound",
    "AlreadyExists",
    "DirectoryNotEmpty",
    "UnsupportedOperation",
    "UnsupportedCopySize",
    "ProviderUnavailable",
    "BackendError",
    "PermissionDenied",
    # Version
    "__version__",
]
