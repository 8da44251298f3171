"""
Integration tests for the transcription pipeline.

Real Pillow images on disk go through validation, planning, execution,
refinement and assembly. Only the model backends are replaced by doubles.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from pagescribe.core.batch_planner import BatchPlanner
from pagescribe.core.errors import BatchFailedError, ImageValidationError, TranscriptionCancelledError, TransportError
from pagescribe.core.executor import BatchExecutor, ExecutorState
from pagescribe.core.models import TranscribeRequest
from pagescribe.core.pipeline import TranscriptionPipeline
from pagescribe.core.refinement import RefinementStage
from pagescribe.infra.progress import ProgressReporter, ProgressStatus
from pagescribe.io.markdown_writer import WriteOptions, write_documents
from pagescribe.llm.providers.base import BatchResult, LLMReply
from pagescribe.testing.fixtures import make_mock_provider, make_page, write_image


def _images(tmp_path, count):
    return [write_image(tmp_path / "scans" / f"page{i}.png") for i in range(1, count + 1)]


def _pipeline(provider, **kwargs):
    executor = BatchExecutor(provider, planner=BatchPlanner(max_items=20))
    return TranscriptionPipeline(provider, executor=executor, **kwargs)


def _recording_progress(provider):
    updates = []
    progress = ProgressReporter(provider=provider.provider_name, model=provider.model, on_update=updates.append)
    return progress, updates


@pytest.mark.integration
@pytest.mark.asyncio
class TestPipelineIntegration:

    async def test_large_job_runs_in_parallel_and_keeps_page_order(self, tmp_path):
        provider = make_mock_provider()
        pipeline = _pipeline(provider)
        progress, updates = _recording_progress(provider)

        response = await pipeline.run(TranscribeRequest(images=_images(tmp_path, 45)), progress=progress)

        batch_sizes = [len(call.args[0]) for call in provider.submit.await_args_list]
        assert sorted(batch_sizes) == [5, 20, 20]
        assert pipeline.executor.state is ExecutorState.DONE
        assert response.total_pages == 45
        assert response.tokens_used == 30
        assert [d.filename for d in response.documents][:3] == ["page_001.md", "page_002.md", "page_003.md"]
        assert [d.page_range.start for d in response.documents] == list(range(1, 46))

        assert updates[0].status is ProgressStatus.CONNECTING
        assert updates[-1].status is ProgressStatus.COMPLETE
        assert progress.closed
        batch_updates = [u for u in updates if u.status is ProgressStatus.PROCESSING_BATCH]
        assert len(batch_updates) == 3
        assert all(u.total_batches == 3 for u in batch_updates)

    async def test_small_job_combined(self, tmp_path):
        provider = make_mock_provider()
        response = await _pipeline(provider).run(
            TranscribeRequest(images=_images(tmp_path, 3), combine_pages=True)
        )
        assert provider.submit.await_count == 1
        assert len(response.documents) == 1
        doc = response.documents[0]
        assert doc.page_range.start == 1 and doc.page_range.end == 3
        assert doc.content.index("Text of page 1") < doc.content.index("Text of page 3")

    async def test_chapters_detected_from_model_output(self, tmp_path):
        async def submit(batch, context, progress=None):
            pages = []
            for d in batch:
                if d.page_number in (2, 4):
                    title = f"Chapter {d.page_number // 2}"
                    pages.append(make_page(d.page_number, is_chapter_start=True, chapter_title=title))
                else:
                    pages.append(make_page(d.page_number))
            return BatchResult(pages=pages, tokens=5)

        provider = make_mock_provider(submit=submit)
        response = await _pipeline(provider).run(
            TranscribeRequest(images=_images(tmp_path, 5), detect_chapters=True)
        )

        titles = [d.title for d in response.documents]
        assert titles == ["Front Matter", "Chapter 1", "Chapter 2"]
        ranges = [(d.page_range.start, d.page_range.end) for d in response.documents]
        assert ranges == [(1, 1), (2, 3), (4, 5)]

    async def test_refinement_applied_after_transcription(self, tmp_path):
        provider = make_mock_provider()
        text_provider = MagicMock()
        text_provider.model = "text-model"
        text_provider.close = AsyncMock()
        text_provider.complete_text = AsyncMock(return_value=LLMReply(
            content=json.dumps({"pages": [{"text": f"Clean {i}"} for i in (1, 2)]}),
            total_tokens=7,
        ))
        pipeline = _pipeline(provider, refinement=RefinementStage(text_provider))
        progress, updates = _recording_progress(provider)

        response = await pipeline.run(
            TranscribeRequest(images=_images(tmp_path, 2), combine_pages=True, temperature=0.2), progress=progress
        )

        assert "Clean 1" in response.documents[0].content
        assert "Text of page 1" not in response.documents[0].content
        assert response.tokens_used == 17
        assert ProgressStatus.REFINING in [u.status for u in updates]
        assert text_provider.complete_text.call_args.kwargs["temperature"] == 0.2

        await pipeline.close()
        text_provider.close.assert_awaited_once()

    async def test_invalid_image_fails_before_any_request(self, tmp_path):
        images = _images(tmp_path, 2)
        bogus = tmp_path / "scans" / "notes.txt"
        bogus.write_text("not an image")
        provider = make_mock_provider()
        progress, updates = _recording_progress(provider)

        with pytest.raises(ImageValidationError, match="unsupported image format"):
            await _pipeline(provider).run(TranscribeRequest(images=images + [bogus]), progress=progress)

        provider.submit.assert_not_awaited()
        assert updates[-1].status is ProgressStatus.ERROR
        assert progress.closed

    async def test_too_many_images(self, tmp_path):
        provider = make_mock_provider()
        pipeline = _pipeline(provider, max_total_images=3)
        with pytest.raises(ImageValidationError, match="too many images"):
            await pipeline.run(TranscribeRequest(images=_images(tmp_path, 4)))

    async def test_batch_failure_aborts_job(self, tmp_path):
        async def submit(batch, context, progress=None):
            if batch[0].page_number == 21:
                raise TransportError("server error", status_code=500)
            return BatchResult(pages=[make_page(d.page_number) for d in batch], tokens=1)

        provider = make_mock_provider(submit=submit)
        progress, updates = _recording_progress(provider)

        with pytest.raises(BatchFailedError) as exc_info:
            await _pipeline(provider).run(TranscribeRequest(images=_images(tmp_path, 45)), progress=progress)

        assert exc_info.value.batch_number == 2
        assert updates[-1].status is ProgressStatus.ERROR
        assert "server error" in updates[-1].error

    async def test_cancelled_before_start(self, tmp_path):
        provider = make_mock_provider()
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(TranscriptionCancelledError):
            await _pipeline(provider).run(TranscribeRequest(images=_images(tmp_path, 2)), cancel_event=cancel)
        provider.submit.assert_not_awaited()

    async def test_cancelled_during_execution(self, tmp_path):
        cancel = asyncio.Event()

        async def submit(batch, context, progress=None):
            cancel.set()
            await asyncio.sleep(10)
            return BatchResult(pages=[], tokens=0)

        provider = make_mock_provider(submit=submit)
        progress, updates = _recording_progress(provider)

        with pytest.raises(TranscriptionCancelledError):
            await _pipeline(provider).run(
                TranscribeRequest(images=_images(tmp_path, 45)), progress=progress, cancel_event=cancel
            )
        assert updates[-1].status is ProgressStatus.ERROR

    async def test_request_retries_apply_for_one_run(self, tmp_path):
        seen = []

        async def submit(batch, context, progress=None):
            seen.append(context.max_retries)
            return BatchResult(pages=[make_page(d.page_number) for d in batch], tokens=1)

        provider = make_mock_provider(submit=submit)
        original = provider.retry_policy
        await _pipeline(provider).run(TranscribeRequest(images=_images(tmp_path, 1), max_retries=5))

        assert seen == [5]
        assert provider.retry_policy is original
        assert original.max_retries == 0

    async def test_total_pages_counts_images_when_reply_is_raw_text(self, tmp_path):
        async def submit(batch, context, progress=None):
            return BatchResult(pages=[make_page(batch[0].page_number, "one raw reply")], tokens=3)

        provider = make_mock_provider(submit=submit)
        response = await _pipeline(provider).run(
            TranscribeRequest(images=_images(tmp_path, 3), combine_pages=True)
        )

        assert provider.submit.await_count == 1
        assert response.total_pages == 3
        assert response.documents[0].content == "one raw reply"

    async def test_documents_written_to_disk(self, tmp_path):
        provider = make_mock_provider()
        response = await _pipeline(provider).run(TranscribeRequest(images=_images(tmp_path, 3)))

        out = tmp_path / "out"
        result = await write_documents(
            response.documents,
            WriteOptions(output_dir=out, add_front_matter=True, create_index_file=True),
            {"model": provider.model},
        )

        assert result.errors == []
        assert sorted(p.name for p in out.iterdir()) == ["index.md", "page_001.md", "page_002.md", "page_003.md"]
        page = (out / "page_002.md").read_text(encoding="utf-8")
        assert page.startswith("---\ntitle: Page 2\n")
        assert "model: mock-vision" in page
        assert "Text of page 2" in page
