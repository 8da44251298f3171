"""Provider factory for configuration-driven LLM provider selection.

Environment variables take precedence over model_config.yaml. With
``provider: auto`` the first configured backend wins, in this order: a
local OpenAI-compatible endpoint, an Azure-hosted Anthropic endpoint, then
Google Gemini.
"""

from __future__ import annotations

import importlib
import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Type

from pagescribe.config.service import get_config_service
from pagescribe.core.errors import ConfigurationError
from pagescribe.llm.providers.base import BaseProvider, RetryPolicy

logger = logging.getLogger(__name__)


class ProviderType(str, Enum):
    """Supported LLM provider types."""
    GOOGLE = "google"
    LOCAL = "local"
    AZURE_ANTHROPIC = "azure_anthropic"


# Lazy import mapping so unused SDKs are never imported
_PROVIDER_CLASSES: Dict[ProviderType, str] = {
    ProviderType.GOOGLE: "pagescribe.llm.providers.google_provider.GoogleProvider",
    ProviderType.LOCAL: "pagescribe.llm.providers.local_provider.LocalProvider",
    ProviderType.AZURE_ANTHROPIC: "pagescribe.llm.providers.anthropic_provider.AnthropicProvider",
}

# Environment variables checked in order, first non-empty wins
_API_KEY_ENV_VARS: Dict[ProviderType, tuple] = {
    ProviderType.GOOGLE: ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    ProviderType.LOCAL: (),
    ProviderType.AZURE_ANTHROPIC: ("AZURE_ANTHROPIC_API_KEY",),
}
_ENDPOINT_ENV_VARS: Dict[ProviderType, tuple] = {
    ProviderType.GOOGLE: (),
    ProviderType.LOCAL: ("IMAGE_LLM_ENDPOINT", "LLM_ENDPOINT"),
    ProviderType.AZURE_ANTHROPIC: ("AZURE_ANTHROPIC_ENDPOINT",),
}
_MODEL_ENV_VARS: Dict[ProviderType, tuple] = {
    ProviderType.GOOGLE: (),
    ProviderType.LOCAL: ("IMAGE_VISION_MODEL", "IMAGE_LLM_MODEL", "LLM_MODEL"),
    ProviderType.AZURE_ANTHROPIC: ("AZURE_ANTHROPIC_MODEL",),
}


@dataclass
class ProviderSettings:
    """Resolved backend selection."""

    provider_type: ProviderType
    model: Optional[str] = None
    endpoint: Optional[str] = None
    api_key: Optional[str] = None


def _first_env(names: tuple, env: Mapping[str, str]) -> Optional[str]:
    for name in names:
        value = env.get(name)
        if value:
            return value
    return None


def _import_provider_class(provider_type: ProviderType) -> Type[BaseProvider]:
    """Dynamically import a provider class."""
    module_path = _PROVIDER_CLASSES[provider_type]
    module_name, class_name = module_path.rsplit(".", 1)
    module = importlib.import_module(module_name)
    return getattr(module, class_name)


def parse_provider_type(provider: str) -> ProviderType:
    try:
        return ProviderType(provider.lower())
    except ValueError:
        raise ConfigurationError(
            f"Unknown provider '{provider}'. "
            f"Supported: {', '.join(p.value for p in ProviderType)}"
        )


def get_available_providers(env: Optional[Mapping[str, str]] = None) -> list[ProviderType]:
    """Return provider types configured through the environment, in priority order."""
    env = os.environ if env is None else env
    available = []
    if _first_env(_ENDPOINT_ENV_VARS[ProviderType.LOCAL], env):
        available.append(ProviderType.LOCAL)
    if _first_env(_ENDPOINT_ENV_VARS[ProviderType.AZURE_ANTHROPIC], env):
        available.append(ProviderType.AZURE_ANTHROPIC)
    if _first_env(_API_KEY_ENV_VARS[ProviderType.GOOGLE], env):
        available.append(ProviderType.GOOGLE)
    return available


def get_api_key_for_provider(
    provider_type: ProviderType,
    api_key: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Optional[str]:
    """Get the API key for a provider.

    Raises:
        ConfigurationError: If the provider needs a key and none is available
    """
    if api_key:
        return api_key
    env = os.environ if env is None else env
    names = _API_KEY_ENV_VARS[provider_type]
    key = _first_env(names, env)
    if key or not names:
        return key
    raise ConfigurationError(
        f"No API key found for provider {provider_type.value}. "
        f"Set {' or '.join(names)} or pass api_key."
    )


def resolve_provider_settings(
    provider: Optional[str] = None,
    model: Optional[str] = None,
    endpoint: Optional[str] = None,
    api_key: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> ProviderSettings:
    """Work out which backend to use and with which model/endpoint/key.

    Explicit arguments win over environment variables, which win over
    model_config.yaml.

    Raises:
        ConfigurationError: If no backend is configured
    """
    env = os.environ if env is None else env
    tm = get_config_service().get_value("model", "transcription_model", default={}) or {}

    provider = provider or tm.get("provider") or "auto"
    if provider.lower() == "auto":
        available = get_available_providers(env)
        if not available:
            raise ConfigurationError(
                "no backend configured. Set LLM_ENDPOINT for local LLM, "
                "AZURE_ANTHROPIC_ENDPOINT for Azure Anthropic, or GEMINI_API_KEY for Gemini"
            )
        provider_type = available[0]
        logger.info(f"Auto-selected provider '{provider_type.value}'")
    else:
        provider_type = parse_provider_type(provider)

    return ProviderSettings(
        provider_type=provider_type,
        model=model or _first_env(_MODEL_ENV_VARS[provider_type], env) or tm.get("name"),
        endpoint=endpoint or _first_env(_ENDPOINT_ENV_VARS[provider_type], env) or tm.get("endpoint"),
        api_key=get_api_key_for_provider(provider_type, api_key, env),
    )


def _provider_defaults(provider_type: ProviderType) -> Dict[str, Any]:
    """Extra constructor arguments read from image_processing_config.yaml."""
    if provider_type is not ProviderType.LOCAL:
        return {}
    cfg = get_config_service()
    return {
        "resize_threshold_bytes": cfg.get_int(
            "image_processing", "local_provider", "resize_threshold_bytes", default=500 * 1024
        ),
        "max_dimension": cfg.get_int("image_processing", "local_provider", "max_dimension", default=768),
        "jpeg_quality": cfg.get_int("image_processing", "local_provider", "jpeg_quality", default=80),
    }


def create_provider(
    settings: ProviderSettings,
    *,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
    timeout: Optional[float] = None,
    retry_policy: Optional[RetryPolicy] = None,
    **kwargs: Any,
) -> BaseProvider:
    """Instantiate the provider class for resolved settings.

    Unset options fall back to the provider class defaults.
    """
    provider_class = _import_provider_class(settings.provider_type)
    options: Dict[str, Any] = dict(_provider_defaults(settings.provider_type))
    options.update(kwargs)
    if settings.model:
        options["model"] = settings.model
    if temperature is not None:
        options["temperature"] = float(temperature)
    if max_tokens is not None:
        options["max_tokens"] = int(max_tokens)
    if timeout is not None:
        options["timeout"] = float(timeout)
    if retry_policy is not None:
        options["retry_policy"] = retry_policy
    return provider_class(api_key=settings.api_key, endpoint=settings.endpoint, **options)


def get_provider(
    provider: Optional[str] = None,
    model: Optional[str] = None,
    api_key: Optional[str] = None,
    *,
    endpoint: Optional[str] = None,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
    timeout: Optional[float] = None,
    retry_policy: Optional[RetryPolicy] = None,
    **kwargs: Any,
) -> BaseProvider:
    """Create the transcription provider.

    Args:
        provider: "google", "local", "azure_anthropic" or "auto" (default from config)
        model: Model name/identifier
        api_key: Optional explicit API key
        endpoint: Optional explicit endpoint for local/enterprise backends
        temperature: Sampling temperature; config or provider default when None
        max_tokens: Maximum output tokens; config or provider default when None
        timeout: Request timeout in seconds
        retry_policy: Retry ceiling and backoff; config when None
        **kwargs: Provider-specific configuration

    Returns:
        Configured provider instance

    Raises:
        ConfigurationError: If the provider cannot be determined or credentials are missing
    """
    settings = resolve_provider_settings(provider, model, endpoint, api_key)
    tm = get_config_service().get_value("model", "transcription_model", default={}) or {}

    if temperature is None and tm.get("temperature") is not None:
        temperature = float(tm["temperature"])
    if max_tokens is None and tm.get("max_output_tokens") is not None:
        max_tokens = int(tm["max_output_tokens"])
    if timeout is None and tm.get("timeout") is not None:
        timeout = float(tm["timeout"])

    logger.info(
        f"Using provider '{settings.provider_type.value}' "
        f"(model={settings.model or 'default'})"
    )
    return create_provider(
        settings,
        temperature=temperature,
        max_tokens=max_tokens,
        timeout=timeout,
        retry_policy=retry_policy,
        **kwargs,
    )


def get_refinement_provider(
    transcription_endpoint: Optional[str] = None,
    *,
    retry_policy: Optional[RetryPolicy] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Optional[BaseProvider]:
    """Create the text-only provider for the refinement stage, if one is configured.

    Enabled by IMAGE_TEXT_MODEL or ``refinement_model.enabled``. The endpoint
    defaults to the transcription endpoint.

    Returns:
        Provider instance, or None when refinement is disabled
    """
    env = os.environ if env is None else env
    rm = get_config_service().get_value("model", "refinement_model", default={}) or {}

    text_model = env.get("IMAGE_TEXT_MODEL") or (rm.get("name") if rm.get("enabled") else None)
    if not text_model:
        return None

    provider_type = parse_provider_type(str(rm.get("provider") or "local"))
    text_endpoint = (
        env.get("IMAGE_TEXT_ENDPOINT")
        or rm.get("endpoint")
        or _first_env(_ENDPOINT_ENV_VARS[provider_type], env)
        or transcription_endpoint
    )
    settings = ProviderSettings(
        provider_type=provider_type,
        model=text_model,
        endpoint=text_endpoint,
        api_key=get_api_key_for_provider(provider_type, None, env),
    )
    logger.info(f"Refinement enabled with text model '{text_model}' ({provider_type.value})")
    return create_provider(
        settings,
        temperature=float(rm.get("temperature", 0.2)),
        max_tokens=int(rm.get("max_output_tokens", 16384)),
        retry_policy=retry_policy,
    )
