"""Transcription pipeline.

Runs one job through an explicit list of stages:

1. validate   - turn request paths into ImageDescriptors
2. transcribe - plan batches and run them through the vision provider
3. refine     - optional text-model pass over the merged pages
4. assemble   - group pages into markdown documents

Every stage reports through the job's ProgressReporter. A failing stage
publishes a terminal ERROR update and the exception propagates to the caller.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from pagescribe.config.constants import (
    ENCODING_OVERHEAD,
    MAX_CONCURRENT_REQUESTS,
    MAX_FILE_SIZE_BYTES,
    MAX_IMAGES_PER_REQUEST,
    MAX_PAYLOAD_BYTES,
    MAX_TOTAL_IMAGES,
    SEQUENTIAL_BATCH_THRESHOLD,
)
from pagescribe.config.service import get_config_service
from pagescribe.core.assembler import DocumentAssembler
from pagescribe.core.batch_planner import BatchPlanner
from pagescribe.core.errors import TranscriptionCancelledError
from pagescribe.core.executor import BatchExecutor
from pagescribe.core.models import (
    ImageDescriptor,
    MarkdownDocument,
    PageContent,
    TranscribeRequest,
    TranscribeResponse,
)
from pagescribe.core.refinement import RefinementStage
from pagescribe.core.validation import validate_images
from pagescribe.infra.logger import setup_logger
from pagescribe.infra.progress import ProgressReporter, ProgressStatus
from pagescribe.llm.prompts import PromptContext
from pagescribe.llm.providers.base import BaseProvider
from pagescribe.llm.providers.factory import get_provider, get_refinement_provider

logger = setup_logger(__name__)


@dataclass
class JobState:
    """Mutable state handed from one stage to the next."""

    request: TranscribeRequest
    progress: ProgressReporter
    cancel_event: Optional[asyncio.Event]
    descriptors: List[ImageDescriptor] = field(default_factory=list)
    pages: List[PageContent] = field(default_factory=list)
    documents: List[MarkdownDocument] = field(default_factory=list)
    tokens: int = 0
    refined: bool = False


Stage = Callable[[JobState], Awaitable[None]]


class TranscriptionPipeline:
    """Wires the provider, executor, refinement stage and assembler together."""

    def __init__(
        self,
        provider: BaseProvider,
        *,
        executor: Optional[BatchExecutor] = None,
        refinement: Optional[RefinementStage] = None,
        assembler: Optional[DocumentAssembler] = None,
        max_file_size: int = MAX_FILE_SIZE_BYTES,
        max_total_images: int = MAX_TOTAL_IMAGES,
    ) -> None:
        self.provider = provider
        self.executor = executor or BatchExecutor(provider)
        self.refinement = refinement
        self.assembler = assembler or DocumentAssembler()
        self.max_file_size = max_file_size
        self.max_total_images = max_total_images

    @classmethod
    def from_config(
        cls,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        *,
        endpoint: Optional[str] = None,
        api_key: Optional[str] = None,
        **provider_kwargs: Any,
    ) -> "TranscriptionPipeline":
        """
        Build a pipeline from the YAML configuration and environment.

        Args:
            provider: Provider name or "auto"; model_config.yaml when None.
            model: Vision model name override.
            endpoint: Endpoint override for local / Azure Anthropic backends.
            api_key: Explicit API key.
            **provider_kwargs: Forwarded to the provider constructor.

        Raises:
            ConfigurationError: When no backend is configured or credentials
                are missing.
        """
        cfg = get_config_service()
        vision = get_provider(provider, model, api_key, endpoint=endpoint, **provider_kwargs)

        planner = BatchPlanner(
            max_items=cfg.get_int(
                "image_processing", "batching", "max_images_per_request", default=MAX_IMAGES_PER_REQUEST
            ),
            max_payload_bytes=cfg.get_int(
                "image_processing", "batching", "max_payload_bytes", default=MAX_PAYLOAD_BYTES
            ),
            overhead=cfg.get_float(
                "image_processing", "batching", "encoding_overhead", default=ENCODING_OVERHEAD
            ),
        )
        executor = BatchExecutor(
            vision,
            planner=planner,
            concurrency_limit=cfg.get_int(
                "concurrency", "concurrency", "transcription", "concurrency_limit",
                default=MAX_CONCURRENT_REQUESTS,
            ),
            sequential_threshold=cfg.get_int(
                "concurrency", "concurrency", "transcription", "sequential_threshold",
                default=SEQUENTIAL_BATCH_THRESHOLD,
            ),
            delay_between_batches=cfg.get_float(
                "concurrency", "concurrency", "transcription", "delay_between_batches", default=0.0
            ),
        )

        text_provider = get_refinement_provider(vision.endpoint, retry_policy=vision.retry_policy)
        refinement = RefinementStage(text_provider) if text_provider is not None else None

        return cls(
            vision,
            executor=executor,
            refinement=refinement,
            max_file_size=cfg.get_int(
                "image_processing", "validation", "max_file_size_bytes", default=MAX_FILE_SIZE_BYTES
            ),
            max_total_images=cfg.get_int(
                "image_processing", "validation", "max_total_images", default=MAX_TOTAL_IMAGES
            ),
        )

    @property
    def stages(self) -> List[Stage]:
        stages: List[Stage] = [self._validate, self._transcribe]
        if self.refinement is not None:
            stages.append(self._refine)
        stages.append(self._assemble)
        return stages

    async def run(
        self,
        request: TranscribeRequest,
        progress: Optional[ProgressReporter] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> TranscribeResponse:
        """
        Transcribe the request's images into markdown documents.

        Args:
            request: Job description; images are in page order.
            progress: Reporter for this job; a private one is created when None.
            cancel_event: Setting it aborts the job with TranscriptionCancelledError.

        Returns:
            TranscribeResponse with documents, page count, elapsed time and tokens.

        Raises:
            ImageValidationError: When any input image is rejected.
            BatchFailedError: When a batch fails after its retries.
            TranscriptionCancelledError: When the job is cancelled.
        """
        start = time.monotonic()
        if progress is None:
            progress = ProgressReporter(
                provider=self.provider.provider_name,
                model=self.provider.model,
                total_images=len(request.images),
            )
        job = JobState(request=request, progress=progress, cancel_event=cancel_event)

        try:
            for stage in self.stages:
                if cancel_event is not None and cancel_event.is_set():
                    raise TranscriptionCancelledError()
                await stage(job)
        except BaseException as e:
            logger.error(f"Transcription job failed: {e}")
            progress.fail(e)
            raise

        elapsed = time.monotonic() - start
        progress.complete(
            f"Transcribed {len(job.descriptors)} pages into {len(job.documents)} document(s)",
            total_images=len(job.descriptors),
        )
        logger.info(
            f"Job finished in {elapsed:.1f}s: {len(job.pages)} pages, "
            f"{len(job.documents)} documents, {job.tokens:,} tokens"
        )
        return TranscribeResponse(
            documents=job.documents,
            total_pages=len(job.descriptors),
            processing_time=elapsed,
            tokens_used=job.tokens,
        )

    @property
    def total_stages(self) -> int:
        return 2 if self.refinement is not None else 1

    async def _validate(self, job: JobState) -> None:
        job.descriptors = validate_images(
            job.request.images,
            max_file_size=self.max_file_size,
            max_total_images=self.max_total_images,
        )
        job.progress.total_images = len(job.descriptors)
        job.progress.emit(
            ProgressStatus.CONNECTING,
            f"Connecting to {self.provider.display_name}",
            detail=self.provider.endpoint_description(),
            stage=1,
            total_stages=self.total_stages,
        )

    async def _transcribe(self, job: JobState) -> None:
        request = job.request
        context = PromptContext(
            language=request.language,
            preserve_formatting=request.preserve_formatting,
            temperature=request.temperature,
            max_retries=request.max_retries,
        )
        result = await self.executor.execute(
            job.descriptors, context, job.progress, job.cancel_event
        )
        job.pages = result.pages
        job.tokens += result.tokens

    async def _refine(self, job: JobState) -> None:
        result = await self.refinement.refine(
            job.pages,
            language=job.request.language,
            preserve_formatting=job.request.preserve_formatting,
            progress=job.progress,
            cancel_event=job.cancel_event,
            stage=2,
            total_stages=self.total_stages,
            temperature=job.request.temperature,
            max_retries=job.request.max_retries,
        )
        job.pages = result.pages
        job.tokens += result.tokens
        job.refined = result.applied

    async def _assemble(self, job: JobState) -> None:
        request = job.request
        job.documents = self.assembler.assemble(
            job.pages,
            detect_chapters=request.detect_chapters,
            combine_pages=request.combine_pages,
            include_image_descriptions=request.include_image_descriptions,
        )

    async def close(self) -> None:
        await self.provider.close()
        if self.refinement is not None and self.refinement.provider is not self.provider:
            await self.refinement.provider.close()

    async def __aenter__(self) -> "TranscriptionPipeline":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


async def transcribe(
    request: TranscribeRequest,
    *,
    provider: Optional[str] = None,
    progress: Optional[ProgressReporter] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> TranscribeResponse:
    """Build a pipeline for ``request.model`` from configuration and run one job."""
    async with TranscriptionPipeline.from_config(provider, request.model) as pipeline:
        return await pipeline.run(request, progress=progress, cancel_event=cancel_event)
