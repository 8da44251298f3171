"""Enterprise Anthropic provider (Claude on Azure AI Foundry) using LangChain.

The deployment exposes the Anthropic Messages API under a custom base URL,
so ChatAnthropic is pointed at that URL. Images go in native base64 image
blocks ahead of the prompt.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from langchain_anthropic import ChatAnthropic

from pagescribe.config.constants import DEFAULT_ANTHROPIC_MODEL
from pagescribe.core.errors import ConfigurationError
from pagescribe.core.models import ImageDescriptor
from pagescribe.llm.providers.base import (
    ANTHROPIC_TOKEN_MAPPING,
    BaseProvider,
    RetryPolicy,
    redact_url,
)

logger = logging.getLogger(__name__)


class AnthropicProvider(BaseProvider):
    """Claude-compatible enterprise endpoint provider."""

    token_mapping = ANTHROPIC_TOKEN_MAPPING

    def __init__(
        self,
        model: str = DEFAULT_ANTHROPIC_MODEL,
        *,
        api_key: Optional[str] = None,
        endpoint: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: int = 8192,
        timeout: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
        **kwargs: Any,
    ):
        if not endpoint:
            raise ConfigurationError(
                "Azure Anthropic provider needs an endpoint. Set AZURE_ANTHROPIC_ENDPOINT."
            )
        if not api_key:
            raise ConfigurationError(
                "Azure Anthropic provider needs an API key. Set AZURE_ANTHROPIC_API_KEY."
            )
        super().__init__(
            model,
            api_key=api_key,
            endpoint=endpoint,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
            retry_policy=retry_policy,
            **kwargs,
        )

        # Retries are handled by _ainvoke_with_retry
        self._llm = ChatAnthropic(
            api_key=api_key,
            model=model,
            base_url=self.endpoint,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
            max_retries=0,
        )

    @property
    def provider_name(self) -> str:
        return "azure_anthropic"

    @property
    def display_name(self) -> str:
        return "Azure Anthropic"

    def endpoint_description(self) -> str:
        return f"{redact_url(self.endpoint)}/v1/messages"

    def build_image_parts(self, batch: Sequence[ImageDescriptor]) -> Tuple[List[Dict[str, Any]], int]:
        # See: https://docs.anthropic.com/claude/docs/vision
        parts: List[Dict[str, Any]] = []
        total = 0
        for descriptor in batch:
            data, mime_type = self.encode_image_to_base64(descriptor.path)
            total += len(data)
            parts.append({
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": mime_type,
                    "data": data,
                },
            })
        return parts, total

    async def close(self) -> None:
        """Clean up resources."""
        pass
