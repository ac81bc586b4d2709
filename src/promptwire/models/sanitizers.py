"""Credential scrubbing for request payloads attached to responses."""

import logging
from typing import Any, Iterable, Mapping, Optional, Tuple, Union

from promptwire.models.config import Configuration, ProviderConfig

logger = logging.getLogger(__name__)

SECRET_KEYS = ("api_key", "access_token")


class Sanitizer:
    """
    Replaces configured secret values with placeholder tokens.

    Built once from configuration and never mutated; to pick up new
    credentials construct a new Sanitizer.
    """

    __slots__ = ("_replacements",)

    def __init__(self, replacements: Iterable[Tuple[str, str]] = ()):
        # Longest secrets first so a key that contains another is replaced whole
        pairs = sorted(
            {(secret, token) for secret, token in replacements if secret},
            key=lambda pair: len(pair[0]),
            reverse=True,
        )
        object.__setattr__(self, "_replacements", tuple(pairs))

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("Sanitizer is immutable")

    @classmethod
    def from_providers(cls, providers: Mapping[str, Union[ProviderConfig, Mapping[str, Any]]]) -> "Sanitizer":
        replacements = []
        for name, config in providers.items():
            for key in SECRET_KEYS:
                if isinstance(config, ProviderConfig):
                    secret = getattr(config, key, None)
                else:
                    secret = config.get(key)
                if secret:
                    replacements.append((str(secret), f"<{name.upper()}_{key.upper()}>"))
        return cls(replacements)

    @classmethod
    def from_config(cls, config: Union[Configuration, ProviderConfig, None], name: Optional[str] = None) -> "Sanitizer":
        if config is None:
            return cls()
        if isinstance(config, Configuration):
            return cls.from_providers(config.providers())
        return cls.from_providers({name or config.service: config})

    @property
    def secrets(self) -> Tuple[str, ...]:
        return tuple(secret for secret, _ in self._replacements)

    def sanitize_string(self, value: str) -> str:
        for secret, token in self._replacements:
            if secret in value:
                value = value.replace(secret, token)
        return value

    def sanitize(self, value: Any) -> Any:
        """Return a scrubbed copy of ``value``; the input is never modified."""
        if isinstance(value, str):
            return self.sanitize_string(value)
        if isinstance(value, Mapping):
            return {k: self.sanitize(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self.sanitize(v) for v in value]
        if isinstance(value, tuple):
            return tuple(self.sanitize(v) for v in value)
        return value

    def __bool__(self) -> bool:
        return bool(self._replacements)

    def __repr__(self) -> str:
        return f"Sanitizer(secrets={len(self._replacements)})"
