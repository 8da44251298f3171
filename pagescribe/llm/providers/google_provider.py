"""Google Gemini provider implementation using LangChain.

Images are sent as inline base64 parts; the model is asked to answer with a
JSON response MIME type.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from langchain_google_genai import ChatGoogleGenerativeAI

from pagescribe.config.constants import DEFAULT_GOOGLE_MODEL, GOOGLE_API_BASE_URL
from pagescribe.core.models import ImageDescriptor
from pagescribe.llm.providers.base import (
    GOOGLE_TOKEN_MAPPING,
    BaseProvider,
    RetryPolicy,
)

logger = logging.getLogger(__name__)


class GoogleProvider(BaseProvider):
    """Google Gemini LLM provider using LangChain."""

    token_mapping = GOOGLE_TOKEN_MAPPING

    def __init__(
        self,
        model: str = DEFAULT_GOOGLE_MODEL,
        *,
        api_key: Optional[str] = None,
        endpoint: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: int = 32768,
        timeout: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
        **kwargs: Any,
    ):
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
        self._llm = ChatGoogleGenerativeAI(
            google_api_key=api_key,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
            max_retries=0,
            response_mime_type="application/json",
        )

    @property
    def provider_name(self) -> str:
        return "google"

    @property
    def display_name(self) -> str:
        return "Google Gemini"

    def endpoint_description(self) -> str:
        base = self.endpoint or GOOGLE_API_BASE_URL
        return f"{base}/models/{self.model}:generateContent"

    def build_image_parts(self, batch: Sequence[ImageDescriptor]) -> Tuple[List[Dict[str, Any]], int]:
        parts: List[Dict[str, Any]] = []
        total = 0
        for descriptor in batch:
            data, mime_type = self.encode_image_to_base64(descriptor.path)
            total += len(data)
            parts.append({
                "type": "image",
                "source_type": "base64",
                "mime_type": mime_type,
                "data": data,
            })
        return parts, total

    async def close(self) -> None:
        """Clean up resources."""
        pass
