"""Registry: provider lifecycle, availability and scheme dispatch."""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from typing import TYPE_CHECKING, Any, Callable, Optional

from commander_store._capabilities import Capability
from commander_store._config import RegistryConfig
from commander_store._errors import ObjectStoreError, ProviderUnavailable, UnsupportedOperation
from commander_store._provider import Scheme
from commander_store._uri import name_from_uri, parse_uri

if TYPE_CHECKING:
    from collections.abc import Mapping
    from types import TracebackType

    from commander_store._models import ListResult, Obj
    from commander_store._provider import ObjectStore
    from commander_store._types import Metadata, PathLike

log = logging.getLogger(__name__)

ProviderFactory = Callable[..., "ObjectStore"]

# Global provider factory registry: maps schemes to provider constructors.
_PROVIDER_FACTORIES: dict[str, ProviderFactory] = {}


def register_provider(scheme: str | Scheme, factory: ProviderFactory) -> None:
    """Register a provider constructor for a scheme.

    :param scheme: One of the known schemes (e.g. ``"s3"``).
    :param factory: Called with the configured options as keyword arguments.
    :raises ValueError: If the scheme is unknown.
    """
    _PROVIDER_FACTORIES[Scheme(scheme).value] = factory


def _register_builtin_providers() -> None:
    """Register the built-in providers."""
    from commander_store.providers._aifs import AifsProvider
    from commander_store.providers._azure import AzureProvider
    from commander_store.providers._file import FileProvider
    from commander_store.providers._gcs import GCSProvider
    from commander_store.providers._s3 import S3Provider

    builtins: dict[Scheme, ProviderFactory] = {
        Scheme.FILE: FileProvider,
        Scheme.S3: S3Provider,
        Scheme.GCS: GCSProvider,
        Scheme.AZURE: AzureProvider,
        Scheme.AIFS: AifsProvider,
    }
    for scheme, factory in builtins.items():
        _PROVIDER_FACTORIES.setdefault(scheme.value, factory)


class Registry:
    """Scheme-keyed table of providers with per-scheme availability.

    ``file`` is available out of the box. Any other scheme becomes available
    when it appears (enabled) in ``config``, when a provider instance is
    injected, or through :meth:`set_available`. Providers are built lazily
    from their config on first dispatch and cached until :meth:`close`.

    :param config: Optional configuration. Validates immediately.
    :param providers: Ready provider instances keyed by scheme.
    :raises ValueError: If config is invalid or an injected provider serves
        a different scheme than its key.
    """

    def __init__(
        self,
        config: RegistryConfig | None = None,
        *,
        providers: Mapping[str | Scheme, ObjectStore] | None = None,
    ) -> None:
        _register_builtin_providers()
        self._config = config or RegistryConfig()
        self._config.validate()
        self._lock = threading.Lock()
        self._providers: dict[Scheme, ObjectStore] = {}
        self._available: dict[Scheme, bool] = {scheme: scheme is Scheme.FILE for scheme in Scheme}
        for key, cfg in self._config.providers.items():
            self._available[Scheme(key)] = cfg.enabled
        for key, provider in (providers or {}).items():
            scheme = Scheme(key)
            if provider.scheme != scheme:
                raise ValueError(f"Provider registered under '{scheme}' serves '{provider.scheme}'")
            self._providers[scheme] = provider
            self._available[scheme] = True

    def __repr__(self) -> str:
        return f"Registry(available={[scheme.value for scheme in self.available_schemes()]!r})"

    # region: availability

    def available_schemes(self) -> list[Scheme]:
        """Schemes that can currently be dispatched to, in declaration order."""
        return [scheme for scheme in Scheme if self._available[scheme]]

    def is_available(self, scheme: str | Scheme) -> bool:
        return self._available[Scheme(scheme)]

    def set_available(self, scheme: str | Scheme, available: bool = True) -> None:
        """Mark a scheme (un)available, e.g. after credentials change."""
        self._available[Scheme(scheme)] = available
        log.debug("Scheme %s marked %s", Scheme(scheme), "available" if available else "unavailable")

    # endregion

    # region: dispatch

    def provider(self, scheme: str | Scheme) -> ObjectStore:
        """Return the provider for ``scheme``, constructing it on first use.

        :raises ProviderUnavailable: If the scheme is not available.
        :raises ValueError: If the configured options are rejected.
        """
        scheme = Scheme(scheme)
        if not self._available[scheme]:
            raise ProviderUnavailable(
                f"{scheme.display_name} is not configured", backend=scheme.value
            )
        with self._lock:
            if scheme not in self._providers:
                self._providers[scheme] = self._build(scheme)
            return self._providers[scheme]

    def dispatch(self, uri: str) -> ObjectStore:
        """Return the provider serving ``uri``'s scheme.

        :raises MalformedUri: If the URI cannot be parsed.
        :raises ProviderUnavailable: If the scheme is not available.
        """
        return self.provider(parse_uri(uri).scheme)

    def _build(self, scheme: Scheme) -> ObjectStore:
        factory = _PROVIDER_FACTORIES.get(scheme.value)
        if factory is None:
            raise ProviderUnavailable(f"No provider registered for '{scheme}'", backend=scheme.value)
        cfg = self._config.providers.get(scheme.value)
        options: dict[str, Any] = dict(cfg.options) if cfg is not None else {}
        try:
            provider = factory(**options)
        except (TypeError, ValueError) as exc:
            raise ValueError(
                f"Invalid options for provider '{scheme}': {exc}. Provided options: {sorted(options)}"
            ) from exc
        log.info("Constructed %s provider", scheme.display_name)
        return provider

    # endregion

    # region: delegating operations

    def list(
        self,
        uri: str,
        *,
        prefix: Optional[str] = None,
        delimiter: Optional[str] = None,
        page_token: Optional[str] = None,
        page_size: Optional[int] = None,
    ) -> ListResult:
        return self.dispatch(uri).list(
            uri, prefix=prefix, delimiter=delimiter, page_token=page_token, page_size=page_size
        )

    def stat(self, uri: str) -> Obj:
        return self.dispatch(uri).stat(uri)

    def exists(self, uri: str) -> bool:
        return self.dispatch(uri).exists(uri)

    def get(self, uri: str, dest_path: PathLike) -> None:
        self.dispatch(uri).get(uri, dest_path)

    def put(
        self,
        src_path: PathLike,
        dest_uri: str,
        *,
        content_type: Optional[str] = None,
        metadata: Optional[Metadata] = None,
    ) -> Obj:
        return self.dispatch(dest_uri).put(src_path, dest_uri, content_type=content_type, metadata=metadata)

    def mkdir(self, uri: str) -> None:
        self.dispatch(uri).mkdir(uri)

    def delete(self, uri: str, recursive: bool = False) -> None:
        self.dispatch(uri).delete(uri, recursive=recursive)

    def copy(self, src_uri: str, dest_uri: str) -> Obj:
        """Copy within one provider, or across providers via a temporary file."""
        source, dest = self.dispatch(src_uri), self.dispatch(dest_uri)
        if source is dest:
            return source.copy(src_uri, dest_uri)
        return self._transfer(source, src_uri, dest, dest_uri)

    def move(self, src_uri: str, dest_uri: str) -> Obj:
        """Move within one provider, or copy across providers then delete the source.

        A cross-provider move is not atomic: if deleting the source fails,
        both copies remain and the error propagates.
        """
        source, dest = self.dispatch(src_uri), self.dispatch(dest_uri)
        if source is dest:
            return source.move(src_uri, dest_uri)
        moved = self._transfer(source, src_uri, dest, dest_uri)
        try:
            source.delete(src_uri)
        except ObjectStoreError:
            log.warning("Move %s -> %s copied but failed to delete the source; both now exist", src_uri, dest_uri)
            raise
        return moved

    def _transfer(self, source: ObjectStore, src_uri: str, dest: ObjectStore, dest_uri: str) -> Obj:
        obj = source.stat(src_uri)
        if obj.is_dir:
            raise UnsupportedOperation(
                f"Copying directories is not supported: {src_uri}",
                uri=src_uri,
                backend=source.scheme.value,
                capability=Capability.DIRECTORY_COPY.value,
            )
        content_type = obj.metadata.get("content_type")
        log.debug("Cross-provider copy %s -> %s via temporary file", src_uri, dest_uri)
        with tempfile.TemporaryDirectory(prefix="commander-store-") as tmp:
            local = os.path.join(tmp, name_from_uri(src_uri) or "object")
            source.get(src_uri, local)
            return dest.put(local, dest_uri, content_type=content_type if isinstance(content_type, str) else None)

    def semantic_search(self, uri: str, query: str, **options: Any) -> list[Obj]:
        """Semantic search on a provider that supports it.

        :raises UnsupportedOperation: If the provider lacks semantic search.
        """
        provider = self.dispatch(uri)
        provider.capabilities.require(Capability.SEMANTIC_SEARCH, backend=provider.scheme.value, uri=uri)
        return provider.semantic_search(uri, query, **options)  # type: ignore[attr-defined]

    # endregion

    def close(self) -> None:
        """Close all instantiated providers."""
        with self._lock:
            for provider in self._providers.values():
                provider.close()
            self._providers.clear()

    def __enter__(self) -> Registry:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
