"""Unit tests for pagescribe/infra/progress.py."""

from __future__ import annotations

import pytest

from pagescribe.infra.progress import (
    ProgressReporter,
    ProgressState,
    ProgressStatus,
    ProgressUpdate,
)


class TestProgressStatus:

    @pytest.mark.unit
    def test_terminal_statuses(self):
        assert ProgressStatus.COMPLETE.is_terminal
        assert ProgressStatus.ERROR.is_terminal
        assert not ProgressStatus.PROCESSING_BATCH.is_terminal

    @pytest.mark.unit
    def test_every_status_has_display_text(self):
        for status in ProgressStatus:
            assert status.display


class TestProgressState:

    @pytest.mark.unit
    def test_percent_complete(self):
        state = ProgressState(total_batches=4, completed_batches=1)
        assert state.percent_complete == 25.0

    @pytest.mark.unit
    def test_percent_complete_without_batches(self):
        assert ProgressState().percent_complete == 0.0

    @pytest.mark.unit
    def test_format_summary(self):
        state = ProgressState(total_batches=2, completed_batches=1, tokens_used=1500)
        summary = state.format_summary()
        assert "1/2 batches" in summary
        assert "1,500 tokens" in summary


class TestProgressReporter:

    @pytest.mark.unit
    def test_publish_fills_job_fields(self):
        reporter = ProgressReporter(provider="local", model="m", total_images=7)
        reporter.set_total_batches(7)
        reporter.add_tokens(30)
        update = reporter.emit(ProgressStatus.PROCESSING_BATCH, "batch", current_batch=3)
        assert update.provider == "local"
        assert update.model == "m"
        assert update.total_images == 7
        assert update.total_batches == 7
        assert update.tokens_used == 30
        assert update.progress == pytest.approx(2 / 7)

    @pytest.mark.unit
    def test_callback_receives_every_update(self):
        received = []
        reporter = ProgressReporter(on_update=received.append)
        reporter.emit(ProgressStatus.CONNECTING, "hello")
        reporter.complete()
        assert [u.status for u in received] == [ProgressStatus.CONNECTING, ProgressStatus.COMPLETE]
        assert received[-1].progress == 1.0

    @pytest.mark.unit
    def test_callback_errors_do_not_propagate(self):
        def broken(update):
            raise RuntimeError("ui crashed")

        reporter = ProgressReporter(on_update=broken)
        reporter.emit(ProgressStatus.CONNECTING)

    @pytest.mark.unit
    def test_updates_after_close_are_dropped(self):
        received = []
        reporter = ProgressReporter(on_update=received.append)
        reporter.fail(RuntimeError("bad"))
        reporter.emit(ProgressStatus.PROCESSING_BATCH)
        assert reporter.closed
        assert len(received) == 1
        assert received[0].error == "bad"

    @pytest.mark.unit
    def test_negative_tokens_ignored(self):
        reporter = ProgressReporter()
        reporter.add_tokens(-5)
        assert reporter.tokens_used == 0

    @pytest.mark.asyncio
    async def test_async_iteration_ends_after_terminal_update(self):
        reporter = ProgressReporter(provider="google")
        reporter.emit(ProgressStatus.CONNECTING)
        reporter.emit(ProgressStatus.ERROR, error="transient")
        reporter.complete()

        updates = [update async for update in reporter]
        assert [u.status for u in updates] == [
            ProgressStatus.CONNECTING,
            ProgressStatus.ERROR,
            ProgressStatus.COMPLETE,
        ]
        assert all(isinstance(u, ProgressUpdate) for u in updates)
