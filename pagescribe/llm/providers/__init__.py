"""LLM provider abstraction layer using LangChain.

One provider class per backend:
- Google Gemini (cloud, inline base64 image parts)
- Local OpenAI-compatible servers (data-URL image parts, resized images)
- Azure-hosted Anthropic Claude (native base64 image blocks)

All providers share the batch ``submit`` contract, retry policy and progress
events defined in ``base``.
"""

from pagescribe.llm.providers.base import (
    BaseProvider,
    BatchResult,
    LLMReply,
    RetryPolicy,
)
from pagescribe.llm.providers.factory import (
    ProviderType,
    get_available_providers,
    get_provider,
    get_refinement_provider,
)

__all__ = [
    "BaseProvider",
    "BatchResult",
    "LLMReply",
    "RetryPolicy",
    "ProviderType",
    "get_available_providers",
    "get_provider",
    "get_refinement_provider",
]
