"""Optional refinement pass with a text-only model.

All extracted pages are sent in one request and the model returns cleaned
markdown in the same page shape. Refinement improves quality but is never
required: any failure is logged and the unrefined pages are kept.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import List, Optional, Sequence

from pagescribe.core.errors import TranscriptionCancelledError
from pagescribe.core.models import PageContent
from pagescribe.infra.concurrency import run_cancellable
from pagescribe.infra.logger import setup_logger
from pagescribe.infra.progress import ProgressReporter, ProgressStatus
from pagescribe.llm.prompts import build_refinement_prompt
from pagescribe.llm.providers.base import BaseProvider
from pagescribe.llm.response_parser import parse_refinement_response

logger = setup_logger(__name__)


@dataclass
class RefinementResult:
    pages: List[PageContent]
    tokens: int = 0
    applied: bool = False
    error: Optional[str] = None


class RefinementStage:
    """Second pipeline stage run against a text model."""

    def __init__(self, provider: BaseProvider) -> None:
        self.provider = provider

    @property
    def model(self) -> str:
        return self.provider.model

    async def refine(
        self,
        pages: Sequence[PageContent],
        *,
        language: Optional[str] = None,
        preserve_formatting: bool = True,
        progress: Optional[ProgressReporter] = None,
        cancel_event: Optional[asyncio.Event] = None,
        stage: int = 2,
        total_stages: int = 2,
        temperature: Optional[float] = None,
        max_retries: Optional[int] = None,
    ) -> RefinementResult:
        """
        Refine extracted pages, falling back to the input on any failure.

        Cancellation is not treated as a refinement failure and propagates.

        Args:
            pages: Pages in page order.
            language: Document language hint.
            preserve_formatting: Ask the model to keep tables and lists intact.
            progress: Reporter for the current job.
            cancel_event: Optional cancellation signal.
            stage: Stage number reported in progress updates.
            total_stages: Total number of stages in the job.
            temperature: Sampling temperature for this request; provider default when None.
            max_retries: Retry budget for this request; provider default when None.

        Returns:
            RefinementResult; ``applied`` is False when the input was kept.
        """
        originals = list(pages)
        if not originals:
            return RefinementResult(pages=originals)

        if progress is not None:
            progress.emit(
                ProgressStatus.REFINING,
                f"Refining {len(originals)} pages with {self.provider.model}",
                stage=stage,
                total_stages=total_stages,
            )

        prompt = build_refinement_prompt(originals, language, preserve_formatting)
        try:
            reply = await run_cancellable(
                self.provider.complete_text(
                    prompt,
                    progress=progress,
                    stage=stage,
                    total_stages=total_stages,
                    temperature=temperature,
                    max_retries=max_retries,
                ),
                cancel_event,
            )
            refined = parse_refinement_response(reply.content, originals)
        except (TranscriptionCancelledError, asyncio.CancelledError):
            raise
        except Exception as e:
            logger.warning(f"Text model refinement failed, keeping extracted text: {e}")
            return RefinementResult(pages=originals, error=str(e))

        if progress is not None:
            progress.add_tokens(reply.total_tokens)
        logger.info(
            f"Refined {len(refined)} pages with {self.provider.model} "
            f"({reply.total_tokens:,} tokens)"
        )
        return RefinementResult(pages=refined, tokens=reply.total_tokens, applied=True)
