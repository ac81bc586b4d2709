"""
Provider configuration.

ProviderConfig is the per-provider settings object handed to an adapter at
construction time; Configuration groups the providers of one environment.
Both are immutable: overriding a setting means building a new object.
"""

import contextlib
import contextvars
import logging
import os
import re
import warnings
from pathlib import Path
from typing import Any, Dict, Iterator, List, Literal, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from promptwire.agents.exceptions import ConfigurationError
from promptwire.agents.prompt import validate_data_collection

logger = logging.getLogger(__name__)

PROVIDER_BASE_URLS = {
    "openai": "https://api.openai.com/v1",
    "anthropic": "https://api.anthropic.com/v1",
    "openrouter": "https://openrouter.ai/api/v1",
    "ollama": "http://localhost:11434",
}

PROVIDER_API_KEY_ENV_VARS = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}

# Services that talk to a local or fake backend and need no credentials
KEYLESS_SERVICES = ("ollama", "mock")

ServiceName = Literal["openai", "anthropic", "ollama", "openrouter", "mock"]


class ProviderConfig(BaseModel):
    """
    Pydantic schema for one provider entry.

    Reads the API key from the provider's environment variable when not
    given directly, and fills ``base_url`` from the service name.
    """

    service: ServiceName = Field(..., description="Provider backend")
    model: Optional[str] = Field(None, description="Default model identifier")
    embedding_model: Optional[str] = Field(None, description="Default embedding model")
    api: Literal["chat", "responses"] = Field(
        "chat", description="OpenAI wire protocol: Chat Completions or Responses"
    )
    base_url: Optional[str] = Field(None, description="API endpoint root (defaults per service)")
    api_key: Optional[str] = Field(None, description="API key (reads from env if None)")
    access_token: Optional[str] = Field(None, description="Bearer token alternative to api_key")
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0, description="Default sampling temperature")
    max_tokens: Optional[int] = Field(None, gt=0, description="Default maximum tokens")
    data_collection: Optional[Union[str, List[str]]] = Field(
        None, description="OpenRouter data collection policy"
    )
    options: Dict[str, Any] = Field(
        default_factory=dict, description="Provider passthrough options merged into every request"
    )
    site_url: Optional[str] = Field(None, description="OpenRouter HTTP-Referer header")
    app_name: Optional[str] = Field(None, description="OpenRouter X-Title header")
    request_timeout: float = Field(180.0, gt=0, description="HTTP timeout in seconds")
    stream: bool = Field(False, description="Stream responses by default")
    retries: bool = Field(True, description="Enable the built-in retry strategy")
    max_retries: int = Field(3, ge=0, description="Retries beyond the first attempt")
    retry_on: List[str] = Field(
        default_factory=list, description="Extra exception class names to retry on"
    )
    verbose_errors: Optional[bool] = Field(None, description="Include error class names in messages")

    model_config = ConfigDict(extra="allow", frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _set_base_url_from_service(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if not data.get("base_url"):
            # "uri_base" is accepted as an alias used by OpenAI-compatible clients
            base_url = data.pop("uri_base", None) or PROVIDER_BASE_URLS.get(data.get("service"))
            if base_url:
                data["base_url"] = base_url
        return data

    @field_validator("data_collection")
    @classmethod
    def _check_data_collection(cls, v: Any) -> Any:
        return validate_data_collection(v)

    @model_validator(mode="after")
    def _read_api_key_from_env(self) -> "ProviderConfig":
        if self.api_key is not None or self.access_token is not None:
            return self
        if self.service in KEYLESS_SERVICES:
            return self

        env_var = PROVIDER_API_KEY_ENV_VARS.get(self.service)
        env_api_key = os.getenv(env_var) if env_var else None
        if env_api_key:
            object.__setattr__(self, "api_key", env_api_key)
            logger.debug(f"Read API key for service '{self.service}' from env var '{env_var}'.")
        else:
            warnings.warn(
                f"API key for service '{self.service}' not found. "
                f"Set the '{env_var}' environment variable or provide 'api_key' directly."
            )
        return self

    @property
    def credential(self) -> Optional[str]:
        return self.api_key or self.access_token

    def with_overrides(self, **changes: Any) -> "ProviderConfig":
        """New validated config with ``changes`` applied; self is untouched."""
        data = self.model_dump()
        data.update(changes)
        return type(self).model_validate(data)


_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def _expand_env(value: Any) -> Any:
    """Expand ${VAR} and ${VAR:-default} in every string of a YAML tree."""
    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda m: os.getenv(m.group(1), m.group(2) or ""), value)
    if isinstance(value, dict):
        return {k: _expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env(v) for v in value]
    return value


class Configuration:
    """
    Provider settings for one environment.

    Global keys (``retry_on``, ``verbose_errors``) sit next to the provider
    entries; every other mapping entry is a provider keyed by name.
    """

    GLOBAL_KEYS = ("retry_on", "verbose_errors", "max_retries")

    def __init__(
        self,
        providers: Optional[Mapping[str, Union[ProviderConfig, Mapping[str, Any]]]] = None,
        retry_on: Optional[List[str]] = None,
        verbose_errors: Optional[bool] = None,
        max_retries: Optional[int] = None,
        environment: Optional[str] = None,
    ):
        built = {}
        for key, entry in (providers or {}).items():
            if isinstance(entry, ProviderConfig):
                built[key] = entry
            elif isinstance(entry, Mapping):
                data = dict(entry)
                data.setdefault("service", key)
                if max_retries is not None:
                    data.setdefault("max_retries", max_retries)
                try:
                    built[key] = ProviderConfig.model_validate(data)
                except ValueError as e:
                    raise ConfigurationError(f"Invalid configuration for provider '{key}': {e}", provider=key) from e
            else:
                raise ConfigurationError(f"Provider entry '{key}' must be a mapping", provider=key)
        self._providers: Dict[str, ProviderConfig] = built
        self.retry_on = tuple(retry_on or ())
        self.verbose_errors = verbose_errors
        self.environment = environment

    @classmethod
    def environment_sections(cls, data: Mapping[str, Any]) -> List[str]:
        """
        Top-level keys that hold environment sections: mappings whose every
        value is itself a mapping, under a name that is not a known service.
        """
        return [
            key
            for key, value in data.items()
            if key not in PROVIDER_BASE_URLS
            and isinstance(value, Mapping)
            and value
            and all(isinstance(entry, Mapping) for entry in value.values())
        ]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], environment: Optional[str] = None) -> "Configuration":
        """
        Build from a parsed mapping. When ``environment`` is given and present
        as a top-level key, that section is used. Asking for an environment
        that a sectioned mapping does not define is a ConfigurationError;
        flat mappings are used as they are.
        """
        data = _expand_env(dict(data or {}))
        if environment is not None:
            if isinstance(data.get(environment), Mapping):
                data = dict(data[environment])
            else:
                sections = cls.environment_sections(data)
                if sections:
                    raise ConfigurationError(
                        f"No configuration for environment '{environment}'",
                        context={"environment": environment},
                        suggestion=f"Available environments: {', '.join(sorted(sections))}",
                    )
        globals_ = {k: data.pop(k) for k in cls.GLOBAL_KEYS if k in data}
        providers = {k: v for k, v in data.items() if isinstance(v, Mapping)}
        return cls(providers, environment=environment, **globals_)

    @classmethod
    def load(cls, path: Union[str, Path], environment: Optional[str] = None) -> "Configuration":
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, Mapping):
            raise ConfigurationError(f"Configuration file {path} must contain a mapping")
        environment = environment or os.getenv("PROMPTWIRE_ENV")
        logger.info(f"Loaded configuration from {path} (environment={environment})")
        return cls.from_dict(data, environment=environment)

    def provider(self, key: str) -> ProviderConfig:
        try:
            return self._providers[key]
        except KeyError:
            raise ConfigurationError(
                f"No configuration for provider '{key}'",
                provider=key,
                suggestion=f"Known providers: {', '.join(sorted(self._providers)) or 'none'}",
            ) from None

    def providers(self) -> Dict[str, ProviderConfig]:
        return dict(self._providers)

    def with_provider(self, key: str, config: Union[ProviderConfig, Mapping[str, Any]]) -> "Configuration":
        providers = self.providers()
        providers[key] = config
        return Configuration(
            providers,
            retry_on=list(self.retry_on),
            verbose_errors=self.verbose_errors,
            environment=self.environment,
        )

    def __contains__(self, key: str) -> bool:
        return key in self._providers


_current_configuration: contextvars.ContextVar[Optional[Configuration]] = contextvars.ContextVar(
    "promptwire_configuration", default=None
)


def current_configuration() -> Configuration:
    config = _current_configuration.get()
    return config if config is not None else Configuration()


@contextlib.contextmanager
def scoped_configuration(config: Configuration) -> Iterator[Configuration]:
    """Make ``config`` current for the duration of the block, then restore."""
    token = _current_configuration.set(config)
    try:
        yield config
    finally:
        _current_configuration.reset(token)
