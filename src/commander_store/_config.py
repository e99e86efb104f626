"""Immutable configuration containers describing the configured providers."""

from __future__ import annotations

import dataclasses

from commander_store._uri import KNOWN_SCHEMES


@dataclasses.dataclass(frozen=True)
class ProviderConfig:
    """Describes one configured provider.

    :param scheme: URI scheme the provider serves (e.g. ``"s3"``).
    :param options: Keyword arguments for the provider constructor.
    :param enabled: Whether the provider starts out available.
    """

    scheme: str
    options: dict[str, object] = dataclasses.field(default_factory=dict)
    enabled: bool = True


@dataclasses.dataclass(frozen=True)
class RegistryConfig:
    """Top-level configuration container.

    :param providers: Mapping of scheme to provider config.
    """

    providers: dict[str, ProviderConfig] = dataclasses.field(default_factory=dict)

    def validate(self) -> None:
        """Validate scheme names.

        :raises ValueError: If a key is not a known scheme or disagrees with
            its config's ``scheme``.
        """
        for key, cfg in self.providers.items():
            if key not in KNOWN_SCHEMES:
                raise ValueError(f"Unknown provider scheme '{key}'. Known schemes: {sorted(KNOWN_SCHEMES)}")
            if cfg.scheme != key:
                raise ValueError(f"Provider config under '{key}' declares scheme '{cfg.scheme}'")

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> RegistryConfig:
        """Construct from a plain dict (e.g. parsed TOML/JSON).

        :param data: Dict with a ``providers`` key mapping scheme to
            ``{"options": {...}, "enabled": bool}``.
        """
        raw_providers = data.get("providers", {})
        if not isinstance(raw_providers, dict):
            msg = "Expected 'providers' to be a dict"
            raise TypeError(msg)

        providers: dict[str, ProviderConfig] = {}
        for scheme, cfg in raw_providers.items():
            if not isinstance(cfg, dict):
                msg = f"Provider config for '{scheme}' must be a dict"
                raise TypeError(msg)
            providers[str(scheme)] = ProviderConfig(
                scheme=str(scheme),
                options=dict(cfg.get("options", {})),
                enabled=bool(cfg.get("enabled", True)),
            )

        return cls(providers=providers)
