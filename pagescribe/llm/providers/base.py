"""Base provider abstraction for LLM integrations.

Defines the contract every backend implements (``submit`` a batch of page
images, ``complete_text`` for text-only requests) and the shared plumbing:
retry policy, token usage extraction, error classification and the
request/response progress events.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlsplit, urlunsplit

import anthropic
import httpx
import openai
import tenacity
from langchain_core.exceptions import ModelError
from langchain_core.messages import HumanMessage

from pagescribe.config.constants import (
    DEFAULT_BACKOFF_STEPS,
    DEFAULT_MAX_RETRIES,
    SUPPORTED_IMAGE_FORMATS,
)
from pagescribe.config.service import get_config_service
from pagescribe.core.errors import TranscriptionCancelledError, TransportError
from pagescribe.core.models import ImageDescriptor, PageContent
from pagescribe.infra.progress import (
    ProgressReporter,
    ProgressStatus,
    RequestInfo,
    ResponseInfo,
)
from pagescribe.io.image_loader import format_size
from pagescribe.llm.prompts import PromptContext, build_extraction_prompt, preview
from pagescribe.llm.response_parser import parse_batch_response

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry ceiling and fixed backoff steps for provider requests.

    Waits follow ``backoff_steps`` in order; once exhausted the last step
    repeats.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    backoff_steps: Tuple[float, ...] = DEFAULT_BACKOFF_STEPS

    def with_max_retries(self, max_retries: Optional[int]) -> "RetryPolicy":
        if max_retries is None:
            return self
        return RetryPolicy(max_retries=max(0, max_retries), backoff_steps=self.backoff_steps)


def load_retry_policy() -> RetryPolicy:
    """Load the retry policy from concurrency_config.yaml."""
    try:
        conc_cfg = get_config_service().get_concurrency_config() or {}
        trans_cfg = (conc_cfg.get("concurrency", {}) or {}).get("transcription", {}) or {}
        retry_cfg = trans_cfg.get("retry", {}) or {}
        attempts = max(0, int(retry_cfg.get("attempts", DEFAULT_MAX_RETRIES)))
        steps = tuple(float(s) for s in (retry_cfg.get("backoff_steps") or DEFAULT_BACKOFF_STEPS))
        return RetryPolicy(max_retries=attempts, backoff_steps=steps or DEFAULT_BACKOFF_STEPS)
    except (FileNotFoundError, TypeError, ValueError) as e:
        logger.warning(f"Could not load retry policy, using defaults: {e}")
        return RetryPolicy()


@dataclass(frozen=True)
class TokenUsageMapping:
    """Maps provider-specific token usage keys in LangChain response_metadata.

    Each provider stores token counts under different key paths. This mapping
    allows _process_llm_response() to extract them generically.
    """
    usage_key: str = "token_usage"
    input_key: str = "prompt_tokens"
    output_key: str = "completion_tokens"
    total_key: str = "total_tokens"


OPENAI_TOKEN_MAPPING = TokenUsageMapping()
ANTHROPIC_TOKEN_MAPPING = TokenUsageMapping(
    usage_key="usage",
    input_key="input_tokens",
    output_key="output_tokens",
    total_key="",  # Anthropic doesn't provide total; compute from in+out
)
GOOGLE_TOKEN_MAPPING = TokenUsageMapping(
    usage_key="usage_metadata",
    input_key="prompt_token_count",
    output_key="candidates_token_count",
    total_key="total_token_count",
)


@dataclass
class LLMReply:
    """Normalized model reply."""

    content: str
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    raw_response: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BatchResult:
    """Pages extracted from one batch and the tokens it consumed."""

    pages: List[PageContent]
    tokens: int = 0


def _own_status_code(exc: BaseException) -> Optional[int]:
    for attr in ("status_code", "code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool) and 100 <= value < 600:
            return int(value)
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int) and 100 <= value < 600:
        return value
    return None


def exception_chain(exc: BaseException) -> List[BaseException]:
    """The exception followed by its ``__cause__`` / ``__context__`` chain."""
    chain: List[BaseException] = []
    current: Optional[BaseException] = exc
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def status_code_of(exc: BaseException) -> Optional[int]:
    """Best-effort HTTP status code of an SDK or transport exception.

    Wrapper exceptions often keep the code on the exception they were
    raised from, so the cause chain is searched too.
    """
    for link in exception_chain(exc):
        code = _own_status_code(link)
        if code is not None:
            return code
    return None


def redact_url(url: str) -> str:
    """Drop userinfo, query string and fragment from a URL."""
    parts = urlsplit(url)
    if not parts.scheme:
        return url.split("?", 1)[0]
    netloc = parts.hostname or ""
    if parts.port:
        netloc = f"{netloc}:{parts.port}"
    return urlunsplit((parts.scheme, netloc, parts.path, "", ""))


class BaseProvider(ABC):
    """Abstract base class for all LLM providers.

    Subclasses build the LangChain chat model in ``__init__`` (stored as
    ``self._llm``) and describe how images are encoded for their wire format.
    """

    # Local servers get one image per request
    one_image_per_batch: bool = False
    token_mapping: TokenUsageMapping = OPENAI_TOKEN_MAPPING
    # Exceptions without a status code that still count as transient
    transient_errors: Tuple[type, ...] = (
        httpx.TransportError,
        ConnectionError,
        TimeoutError,
        asyncio.TimeoutError,
        openai.APIConnectionError,
        anthropic.APIConnectionError,
    )

    def __init__(
        self,
        model: str,
        *,
        api_key: Optional[str] = None,
        endpoint: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: int = 4096,
        timeout: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
        **kwargs: Any,
    ):
        """Initialize the provider.

        Args:
            model: Model name/identifier
            api_key: API key for the provider, if it needs one
            endpoint: Base URL for self-hosted or enterprise endpoints
            temperature: Default sampling temperature
            max_tokens: Maximum output tokens
            timeout: Request timeout in seconds
            retry_policy: Retry ceiling and backoff; loaded from config when None
            **kwargs: Provider-specific configuration
        """
        self.api_key = api_key
        self.model = model
        self.endpoint = endpoint.rstrip("/") if endpoint else None
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.retry_policy = retry_policy or load_retry_policy()
        self.extra_config = kwargs
        self._llm: Any = None

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name (e.g., 'google', 'local')."""
        pass

    @property
    def display_name(self) -> str:
        return self.provider_name

    @abstractmethod
    def endpoint_description(self) -> str:
        """Return the request URL without credentials."""
        pass

    @abstractmethod
    def build_image_parts(self, batch: Sequence[ImageDescriptor]) -> Tuple[List[Dict[str, Any]], int]:
        """Encode a batch into message content parts.

        Returns:
            Tuple of (content parts, total encoded bytes)
        """
        pass

    def build_prompt(self, batch: Sequence[ImageDescriptor], context: PromptContext) -> str:
        return build_extraction_prompt(batch, context)

    @abstractmethod
    async def close(self) -> None:
        """Clean up resources (e.g., HTTP sessions)."""
        pass

    def _llm_for(self, temperature: Optional[float]) -> Any:
        if temperature is None or temperature == self.temperature:
            return self._llm
        return self._llm.model_copy(update={"temperature": temperature})

    async def submit(
        self,
        batch: Sequence[ImageDescriptor],
        context: PromptContext,
        progress: Optional[ProgressReporter] = None,
    ) -> BatchResult:
        """Transcribe one batch of page images.

        Publishes one outbound event before the request and one inbound event
        after it, whether it succeeded or not.

        Args:
            batch: Non-empty list of images in page order
            context: Prompt options and batch position
            progress: Reporter for the current job

        Returns:
            BatchResult with one page per image (or one raw-text page)

        Raises:
            TransportError: When the request fails after retries
            TranscriptionCancelledError: When the job is cancelled
        """
        if not batch:
            raise ValueError("cannot submit an empty batch")

        prompt = self.build_prompt(batch, context)
        image_parts, data_size = self.build_image_parts(batch)
        messages = [HumanMessage(content=[*image_parts, {"type": "text", "text": prompt}])]
        temperature = context.temperature if context.temperature is not None else self.temperature

        request_info = RequestInfo(
            endpoint=self.endpoint_description(),
            data_summary=f"{len(batch)} image(s), {format_size(data_size)}",
            image_count=len(batch),
            total_data_size=data_size,
            prompt_preview=preview(prompt),
            parameters={
                "model": self.model,
                "temperature": temperature,
                "max_tokens": self.max_tokens,
            },
        )
        pages_label = f"pages {batch[0].page_number}-{batch[-1].page_number}"
        self._publish(
            progress,
            ProgressStatus.SENDING_REQUEST,
            f"Sending batch {context.batch_number}/{context.total_batches} ({pages_label})",
            context,
            request_info=request_info,
        )

        started = time.monotonic()
        try:
            reply = await self._invoke(
                self._llm_for(context.temperature),
                messages,
                self.retry_policy.with_max_retries(context.max_retries),
            )
            pages = parse_batch_response(reply.content, batch)
        except (Exception, asyncio.CancelledError) as e:
            self._publish_failure(progress, e, time.monotonic() - started, context)
            raise

        latency = time.monotonic() - started
        logger.info(
            f"[{self.provider_name}] batch {context.batch_number}/{context.total_batches} "
            f"({pages_label}) -> {len(pages)} pages, {reply.total_tokens} tokens in {latency:.1f}s"
        )
        self._publish(
            progress,
            ProgressStatus.PARSING_RESPONSE,
            f"Received batch {context.batch_number}/{context.total_batches}",
            context,
            response_info=self._response_info(reply, latency, len(pages)),
        )
        return BatchResult(pages=pages, tokens=reply.total_tokens)

    async def complete_text(
        self,
        prompt: str,
        *,
        progress: Optional[ProgressReporter] = None,
        stage: int = 0,
        total_stages: int = 0,
        temperature: Optional[float] = None,
        max_retries: Optional[int] = None,
    ) -> LLMReply:
        """Send a text-only prompt and return the normalized reply.

        ``temperature`` and ``max_retries`` apply to this request only.
        """
        request_info = RequestInfo(
            endpoint=self.endpoint_description(),
            data_summary=f"text prompt, {format_size(len(prompt.encode('utf-8')))}",
            total_data_size=len(prompt.encode("utf-8")),
            prompt_preview=preview(prompt),
            parameters={
                "model": self.model,
                "temperature": temperature if temperature is not None else self.temperature,
                "max_tokens": self.max_tokens,
            },
        )
        context = PromptContext(batch_number=0, total_batches=0)
        self._publish(
            progress, ProgressStatus.SENDING_REQUEST, "Sending text request", context,
            request_info=request_info, stage=stage, total_stages=total_stages,
        )
        started = time.monotonic()
        try:
            reply = await self._invoke(
                self._llm_for(temperature),
                [HumanMessage(content=prompt)],
                self.retry_policy.with_max_retries(max_retries),
            )
        except (Exception, asyncio.CancelledError) as e:
            self._publish_failure(
                progress, e, time.monotonic() - started, context,
                stage=stage, total_stages=total_stages,
            )
            raise
        latency = time.monotonic() - started
        self._publish(
            progress, ProgressStatus.PARSING_RESPONSE, "Received text response", context,
            response_info=self._response_info(reply, latency, 0),
            stage=stage, total_stages=total_stages,
        )
        return reply

    def _publish(
        self,
        progress: Optional[ProgressReporter],
        status: ProgressStatus,
        message: str,
        context: PromptContext,
        **fields: Any,
    ) -> None:
        if progress is None:
            return
        progress.emit(
            status,
            message,
            provider=self.display_name,
            model=self.model,
            current_batch=context.batch_number,
            total_batches=context.total_batches,
            **fields,
        )

    def _publish_failure(
        self,
        progress: Optional[ProgressReporter],
        error: BaseException,
        latency: float,
        context: PromptContext,
        **fields: Any,
    ) -> None:
        if isinstance(error, asyncio.CancelledError):
            error_message = "cancelled"
        else:
            error_message = str(error)
        self._publish(
            progress,
            ProgressStatus.ERROR,
            f"Request failed ({self.provider_name})",
            context,
            error=error_message,
            response_info=ResponseInfo(
                status_code=getattr(error, "status_code", None),
                status_text="error",
                latency=latency,
                error_message=error_message,
            ),
            **fields,
        )

    @staticmethod
    def _response_info(reply: LLMReply, latency: float, items: int) -> ResponseInfo:
        return ResponseInfo(
            status_code=200,
            status_text="OK",
            latency=latency,
            tokens_input=reply.input_tokens,
            tokens_output=reply.output_tokens,
            tokens_total=reply.total_tokens,
            content_preview=preview(reply.content),
            items_processed=items,
        )

    async def _invoke(
        self,
        llm: Any,
        messages: List[Any],
        retry_policy: Optional[RetryPolicy] = None,
    ) -> LLMReply:
        """Invoke with retries and normalize the reply; SDK errors become TransportError.

        An empty reply counts as a failed (retryable) request.
        """
        policy = retry_policy or self.retry_policy
        try:
            reply = await self._ainvoke_with_retry(llm, messages, policy)
        except (TranscriptionCancelledError, TransportError):
            raise
        except tenacity.RetryError as e:
            last = e.last_attempt.exception()
            raise TransportError(
                f"transcription failed after {policy.max_retries} retries: "
                f"{self._describe_error(last)}",
                status_code=status_code_of(last) if last is not None else None,
            ) from last
        except Exception as e:
            raise TransportError(
                f"{self.provider_name} request failed: {self._describe_error(e)}",
                status_code=status_code_of(e),
            ) from e
        return reply

    def _describe_error(self, exc: Optional[BaseException]) -> str:
        """Human-readable error text; providers may add guidance."""
        return str(exc) if exc is not None else "unknown error"

    def is_retryable_error(self, exc: BaseException) -> bool:
        """Transient errors are retried; 4xx other than 429 and unknown errors are not.

        LangChain's classified model errors (authentication, invalid request,
        rate limit, ...) carry their own verdict. Otherwise the first HTTP
        status found along the cause chain decides, and exceptions without
        one are retried only when they are connection or timeout failures.
        """
        if isinstance(exc, (asyncio.CancelledError, TranscriptionCancelledError)):
            return False
        if isinstance(exc, TransportError):
            return exc.retryable
        chain = exception_chain(exc)
        for link in chain:
            if isinstance(link, ModelError):
                return bool(link.is_retryable)
        status = status_code_of(exc)
        if status is not None:
            return TransportError("", status_code=status).retryable
        return any(isinstance(link, self.transient_errors) for link in chain)

    async def _ainvoke_with_retry(
        self,
        llm: Any,
        messages: List[Any],
        retry_policy: Optional[RetryPolicy] = None,
        **invoke_kwargs: Any,
    ) -> LLMReply:
        """Invoke the LangChain LLM, retrying transient failures.

        Waits follow the policy's fixed backoff steps (2 s -> 4 s -> 8 s -> 16 s,
        then 16 s). Non-retryable errors are raised immediately; after the
        retry ceiling a tenacity.RetryError carries the last failure.
        """
        policy = retry_policy or self.retry_policy
        waits = [tenacity.wait_fixed(step) for step in policy.backoff_steps] or [tenacity.wait_fixed(0)]

        async for attempt in tenacity.AsyncRetrying(
            retry=tenacity.retry_if_exception(self.is_retryable_error),
            wait=tenacity.wait_chain(*waits),
            stop=tenacity.stop_after_attempt(policy.max_retries + 1),
            before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
            reraise=False,
        ):
            with attempt:
                response = await llm.ainvoke(messages, **invoke_kwargs)
                reply = self._process_llm_response(response)
                if not reply.content.strip():
                    raise TransportError(f"no content in {self.display_name} response")
                return reply

    def _normalize_list_content(self, content_list: list) -> str:
        """Join the text blocks of list-type message content."""
        text_parts = []
        for part in content_list:
            if isinstance(part, str):
                text_parts.append(part)
            elif isinstance(part, dict) and part.get("type", "text") == "text":
                text_parts.append(str(part.get("text", "")))
        return "".join(text_parts)

    def _process_llm_response(self, response: Any) -> LLMReply:
        """Process a LangChain AIMessage into an LLMReply.

        Extracts text content and token usage using this provider's
        TokenUsageMapping, falling back to AIMessage.usage_metadata.
        """
        token_mapping = self.token_mapping
        input_tokens = 0
        output_tokens = 0
        total_tokens = 0
        raw_response: Dict[str, Any] = {}

        content = getattr(response, "content", response)
        if isinstance(content, list):
            content = self._normalize_list_content(content)
        elif not isinstance(content, str):
            content = str(content)

        metadata = getattr(response, "response_metadata", None)
        if isinstance(metadata, dict):
            raw_response = metadata
            usage = metadata.get(token_mapping.usage_key, {})
            if isinstance(usage, dict):
                input_tokens = int(usage.get(token_mapping.input_key, 0) or 0)
                output_tokens = int(usage.get(token_mapping.output_key, 0) or 0)
                if token_mapping.total_key:
                    total_tokens = int(usage.get(token_mapping.total_key, 0) or 0)
                if total_tokens == 0:
                    total_tokens = input_tokens + output_tokens

        # LangChain 1.x keeps usage in AIMessage.usage_metadata (a plain dict)
        if total_tokens == 0:
            usage_meta = getattr(response, "usage_metadata", None)
            if isinstance(usage_meta, dict):
                input_tokens = int(usage_meta.get("input_tokens", 0) or 0)
                output_tokens = int(usage_meta.get("output_tokens", 0) or 0)
                total_tokens = int(usage_meta.get("total_tokens", 0) or 0)
                if total_tokens == 0:
                    total_tokens = input_tokens + output_tokens

        return LLMReply(
            content=content,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=total_tokens,
            raw_response=raw_response,
        )

    async def __aenter__(self) -> "BaseProvider":
        """Async context manager entry."""
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[Any],
    ) -> bool:
        """Async context manager exit."""
        await self.close()
        return False

    @staticmethod
    def encode_image_to_base64(image_path: Path) -> tuple[str, str]:
        """Encode an image file to base64.

        Args:
            image_path: Path to the image file

        Returns:
            Tuple of (base64_data, mime_type)

        Raises:
            ValueError: If the image format is not supported
        """
        ext = image_path.suffix.lower()
        mime_type = SUPPORTED_IMAGE_FORMATS.get(ext)
        if not mime_type:
            raise ValueError(f"Unsupported image format: {ext}")

        with open(image_path, "rb") as f:
            data = base64.b64encode(f.read()).decode("utf-8")

        return data, mime_type

    @staticmethod
    def create_data_url(base64_data: str, mime_type: str) -> str:
        """Create a data URL from base64 data."""
        return f"data:{mime_type};base64,{base64_data}"
