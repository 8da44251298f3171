"""Batch execution.

Runs planned batches through a provider and merges the results into one
page-ordered sequence. Jobs with few batches run sequentially; larger jobs
go through a bounded worker pool. The first batch failure aborts the job and
cancellation is honoured before dispatch and during every wait.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Optional, Sequence

from pagescribe.config.constants import (
    MAX_CONCURRENT_REQUESTS,
    SEQUENTIAL_BATCH_THRESHOLD,
)
from pagescribe.core.batch_planner import Batch, BatchPlanner
from pagescribe.core.errors import BatchFailedError, TranscriptionCancelledError
from pagescribe.core.models import ImageDescriptor, PageContent
from pagescribe.infra.concurrency import cancellable_sleep, run_bounded, run_cancellable
from pagescribe.infra.logger import setup_logger
from pagescribe.infra.progress import ProgressReporter, ProgressStatus
from pagescribe.llm.prompts import PromptContext
from pagescribe.llm.providers.base import BaseProvider

logger = setup_logger(__name__)


class ExecutorState(str, Enum):
    IDLE = "idle"
    PLANNING = "planning"
    DISPATCHING = "dispatching"
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    MERGING = "merging"
    DONE = "done"
    FAILED = "failed"


@dataclass
class BatchOutcome:
    """Result of one batch, keyed by its position in the plan."""

    index: int
    pages: List[PageContent]
    tokens: int


@dataclass
class ExecutionResult:
    pages: List[PageContent]
    tokens: int
    batch_count: int
    mode: ExecutorState


class BatchExecutor:
    """Plans and executes batches for one provider."""

    def __init__(
        self,
        provider: BaseProvider,
        *,
        planner: Optional[BatchPlanner] = None,
        concurrency_limit: int = MAX_CONCURRENT_REQUESTS,
        sequential_threshold: int = SEQUENTIAL_BATCH_THRESHOLD,
        delay_between_batches: float = 0.0,
    ) -> None:
        """
        Args:
            provider: Backend that transcribes each batch.
            planner: Batch planner; defaults to the standard ceilings.
            concurrency_limit: Worker pool size in parallel mode.
            sequential_threshold: Jobs with at most this many batches run sequentially.
            delay_between_batches: Pause between batches in sequential mode (seconds).
        """
        if concurrency_limit < 1:
            raise ValueError(f"concurrency_limit must be >= 1, got {concurrency_limit}")
        self.provider = provider
        self.planner = planner or BatchPlanner()
        self.concurrency_limit = concurrency_limit
        self.sequential_threshold = sequential_threshold
        self.delay_between_batches = delay_between_batches
        self._state = ExecutorState.IDLE

    @property
    def state(self) -> ExecutorState:
        return self._state

    def _transition(self, state: ExecutorState) -> None:
        logger.debug(f"Executor state {self._state.value} -> {state.value}")
        self._state = state

    async def execute(
        self,
        descriptors: Sequence[ImageDescriptor],
        context: PromptContext,
        progress: Optional[ProgressReporter] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ExecutionResult:
        """Plan and run all batches for the given images.

        Returns:
            ExecutionResult with pages in page order and total tokens.

        Raises:
            BatchFailedError: When any batch fails.
            TranscriptionCancelledError: When ``cancel_event`` is set.
        """
        self._transition(ExecutorState.PLANNING)
        try:
            batches = self.planner.plan(descriptors, self.provider.one_image_per_batch)
        except Exception:
            self._transition(ExecutorState.FAILED)
            raise
        return await self.run_batches(batches, context, progress, cancel_event)

    async def run_batches(
        self,
        batches: Sequence[Batch],
        context: PromptContext,
        progress: Optional[ProgressReporter] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ExecutionResult:
        """Run already-planned batches and merge their pages by batch index."""
        self._transition(ExecutorState.DISPATCHING)
        total = len(batches)
        if progress is not None:
            progress.set_total_batches(total)

        try:
            if cancel_event is not None and cancel_event.is_set():
                raise TranscriptionCancelledError()

            if total <= self.sequential_threshold:
                mode = ExecutorState.SEQUENTIAL
                self._transition(mode)
                outcomes = await self._run_sequential(batches, context, progress, cancel_event)
            else:
                mode = ExecutorState.PARALLEL
                self._transition(mode)
                logger.info(
                    f"Processing {total} batches with up to {self.concurrency_limit} "
                    f"concurrent requests"
                )
                args_list = [
                    (index, batch, total, context, progress)
                    for index, batch in enumerate(batches)
                ]
                outcomes = await run_bounded(
                    self._run_batch,
                    args_list,
                    concurrency_limit=self.concurrency_limit,
                    cancel_event=cancel_event,
                )

            if cancel_event is not None and cancel_event.is_set():
                raise TranscriptionCancelledError()

            self._transition(ExecutorState.MERGING)
            pages = merge_outcomes(outcomes)
        except BaseException:
            self._transition(ExecutorState.FAILED)
            raise

        tokens = sum(outcome.tokens for outcome in outcomes)
        self._transition(ExecutorState.DONE)
        logger.info(f"Merged {len(pages)} pages from {total} batches ({tokens:,} tokens)")
        return ExecutionResult(pages=pages, tokens=tokens, batch_count=total, mode=mode)

    async def _run_sequential(
        self,
        batches: Sequence[Batch],
        context: PromptContext,
        progress: Optional[ProgressReporter],
        cancel_event: Optional[asyncio.Event],
    ) -> List[BatchOutcome]:
        outcomes: List[BatchOutcome] = []
        total = len(batches)
        for index, batch in enumerate(batches):
            if index > 0:
                await cancellable_sleep(self.delay_between_batches, cancel_event)
            outcome = await run_cancellable(
                self._run_batch(index, batch, total, context, progress),
                cancel_event,
            )
            outcomes.append(outcome)
        return outcomes

    async def _run_batch(
        self,
        index: int,
        batch: Batch,
        total: int,
        context: PromptContext,
        progress: Optional[ProgressReporter],
    ) -> BatchOutcome:
        batch_number = index + 1
        batch_context = replace(context, batch_number=batch_number, total_batches=total)
        if progress is not None:
            progress.emit(
                ProgressStatus.PROCESSING_BATCH,
                f"Processing batch {batch_number}/{total}",
                detail=f"{len(batch)} image(s), pages {batch[0].page_number}-{batch[-1].page_number}",
                current_batch=batch_number,
                total_batches=total,
                current_image=batch[0].page_number,
            )

        try:
            result = await self.provider.submit(batch, batch_context, progress)
        except TranscriptionCancelledError:
            raise
        except Exception as e:
            logger.error(f"Batch {batch_number}/{total} failed: {e}")
            raise BatchFailedError(batch_number, total, e) from e

        if progress is not None:
            progress.add_tokens(result.tokens)
            progress.batch_completed()
        return BatchOutcome(index=index, pages=result.pages, tokens=result.tokens)


def merge_outcomes(outcomes: Sequence[BatchOutcome]) -> List[PageContent]:
    """Concatenate batch pages by batch index, independent of completion order."""
    pages: List[PageContent] = []
    for outcome in sorted(outcomes, key=lambda o: o.index):
        pages.extend(outcome.pages)

    numbers = [page.page_number for page in pages]
    if numbers != sorted(set(numbers)):
        logger.warning(f"Merged page numbers are not strictly increasing: {numbers}")
    return pages
