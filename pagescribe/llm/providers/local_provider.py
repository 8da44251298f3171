"""Local OpenAI-compatible provider (LM Studio, Ollama, llama.cpp server, vLLM).

Uses LangChain's ChatOpenAI pointed at ``{endpoint}/v1``. Local models have
small context windows, so each request carries one image, large images are
shrunk before encoding and the extraction prompt is kept short.
"""

from __future__ import annotations

import base64
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from langchain_openai import ChatOpenAI

from pagescribe.config.constants import (
    DEFAULT_LOCAL_MODEL,
    LOCAL_JPEG_QUALITY,
    LOCAL_MAX_DIMENSION,
    LOCAL_MAX_OUTPUT_TOKENS,
    LOCAL_RESIZE_THRESHOLD_BYTES,
    LOCAL_TEMPERATURE,
)
from pagescribe.core.errors import ConfigurationError
from pagescribe.core.models import ImageDescriptor
from pagescribe.llm.prompts import PromptContext, build_local_prompt
from pagescribe.llm.providers.base import (
    OPENAI_TOKEN_MAPPING,
    BaseProvider,
    RetryPolicy,
    redact_url,
)
from pagescribe.processing.image_utils import prepare_image_bytes

logger = logging.getLogger(__name__)

# Local servers ignore the key, but the OpenAI client requires one
PLACEHOLDER_API_KEY = "not-needed"

CONTEXT_OVERFLOW_HINT = (
    "context length exceeded. Try:\n"
    "  1. Load your model with a larger context length in LM Studio/Ollama\n"
    "  2. Use a model with larger context support (8k+ tokens recommended)\n"
    "  3. The image may be too detailed - try smaller/simpler images\n"
    "Original error: {error}"
)


def is_context_overflow(message: str) -> bool:
    lowered = message.lower()
    return "context" in lowered and any(
        marker in lowered for marker in ("overflow", "length", "exceed", "too long")
    )


class LocalProvider(BaseProvider):
    """OpenAI-compatible local server provider."""

    one_image_per_batch = True
    token_mapping = OPENAI_TOKEN_MAPPING

    def __init__(
        self,
        model: str = DEFAULT_LOCAL_MODEL,
        *,
        api_key: Optional[str] = None,
        endpoint: Optional[str] = None,
        temperature: float = LOCAL_TEMPERATURE,
        max_tokens: int = LOCAL_MAX_OUTPUT_TOKENS,
        timeout: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
        resize_threshold_bytes: int = LOCAL_RESIZE_THRESHOLD_BYTES,
        max_dimension: int = LOCAL_MAX_DIMENSION,
        jpeg_quality: int = LOCAL_JPEG_QUALITY,
        **kwargs: Any,
    ):
        if not endpoint:
            raise ConfigurationError(
                "Local provider needs an endpoint. Set LLM_ENDPOINT "
                "(e.g. http://localhost:1234) or transcription_model.endpoint."
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
        self.resize_threshold_bytes = resize_threshold_bytes
        self.max_dimension = max_dimension
        self.jpeg_quality = jpeg_quality

        # Retries are handled by _ainvoke_with_retry
        self._llm = ChatOpenAI(
            api_key=api_key or PLACEHOLDER_API_KEY,
            model=model,
            base_url=f"{self.endpoint}/v1",
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
            max_retries=0,
        )

    @property
    def provider_name(self) -> str:
        return "local"

    @property
    def display_name(self) -> str:
        return "Local LLM"

    def endpoint_description(self) -> str:
        return f"{redact_url(self.endpoint)}/v1/chat/completions"

    def build_prompt(self, batch: Sequence[ImageDescriptor], context: PromptContext) -> str:
        return build_local_prompt(batch, context)

    def build_image_parts(self, batch: Sequence[ImageDescriptor]) -> Tuple[List[Dict[str, Any]], int]:
        parts: List[Dict[str, Any]] = []
        total = 0
        for descriptor in batch:
            data, mime_type = prepare_image_bytes(
                descriptor.path,
                resize_threshold_bytes=self.resize_threshold_bytes,
                max_dimension=self.max_dimension,
                jpeg_quality=self.jpeg_quality,
            )
            encoded = base64.b64encode(data).decode("utf-8")
            total += len(encoded)
            parts.append({
                "type": "image_url",
                "image_url": {
                    "url": self.create_data_url(encoded, mime_type),
                    "detail": "high",
                },
            })
        return parts, total

    def _describe_error(self, exc: Optional[BaseException]) -> str:
        message = super()._describe_error(exc)
        if is_context_overflow(message):
            return CONTEXT_OVERFLOW_HINT.format(error=message)
        if exc is not None and isinstance(exc, self.transient_errors):
            return f"{message} (is the LLM server running at {redact_url(self.endpoint)}?)"
        return message

    async def close(self) -> None:
        """Clean up resources."""
        pass
