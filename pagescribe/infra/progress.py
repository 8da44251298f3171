"""Progress reporting for transcription jobs.

Each job owns one ProgressReporter. Updates are pushed synchronously to an
optional callback and buffered in an asyncio queue that consumers can drain
with ``async for``. The stream ends after the job publishes its terminal
COMPLETE or ERROR update.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, Optional

from pagescribe.infra.logger import setup_logger

logger = setup_logger(__name__)


class ProgressStatus(str, Enum):
    """Pipeline phase carried by every update."""

    IDLE = "idle"
    CONNECTING = "connecting"
    SENDING_REQUEST = "sending_request"
    WAITING_RESPONSE = "waiting_response"
    PARSING_RESPONSE = "parsing_response"
    PROCESSING_BATCH = "processing_batch"
    REFINING = "refining"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def display(self) -> str:
        return _STATUS_DISPLAY[self]

    @property
    def is_terminal(self) -> bool:
        return self in (ProgressStatus.COMPLETE, ProgressStatus.ERROR)


_STATUS_DISPLAY = {
    ProgressStatus.IDLE: "Ready",
    ProgressStatus.CONNECTING: "Connecting to AI",
    ProgressStatus.SENDING_REQUEST: "Sending request",
    ProgressStatus.WAITING_RESPONSE: "Waiting for response",
    ProgressStatus.PARSING_RESPONSE: "Parsing response",
    ProgressStatus.PROCESSING_BATCH: "Processing batch",
    ProgressStatus.REFINING: "Refining with text model",
    ProgressStatus.COMPLETE: "Complete",
    ProgressStatus.ERROR: "Error",
}


@dataclass
class RequestInfo:
    """Outbound request summary. ``endpoint`` never contains credentials."""

    endpoint: str
    method: str = "POST"
    content_type: str = "application/json"
    data_summary: str = ""
    image_count: int = 0
    total_data_size: int = 0
    prompt_preview: str = ""
    parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ResponseInfo:
    """Inbound response summary."""

    status_code: Optional[int] = None
    status_text: str = ""
    latency: float = 0.0
    tokens_input: int = 0
    tokens_output: int = 0
    tokens_total: int = 0
    content_preview: str = ""
    items_processed: int = 0
    error_message: str = ""


@dataclass
class ProgressUpdate:
    """A single progress event."""

    status: ProgressStatus
    provider: str = ""
    model: str = ""
    message: str = ""
    detail: str = ""
    progress: float = 0.0
    current_batch: int = 0
    total_batches: int = 0
    current_image: int = 0
    total_images: int = 0
    tokens_used: int = 0
    stage: int = 0
    total_stages: int = 0
    elapsed: float = 0.0
    error: Optional[str] = None
    request_info: Optional[RequestInfo] = None
    response_info: Optional[ResponseInfo] = None


@dataclass
class ProgressState:
    """Track progress of a transcription job."""

    total_batches: int = 0
    completed_batches: int = 0
    tokens_used: int = 0
    start_time: Optional[datetime] = None

    def __post_init__(self):
        if self.start_time is None:
            self.start_time = datetime.now()

    @property
    def percent_complete(self) -> float:
        """Get completion percentage."""
        if self.total_batches == 0:
            return 0.0
        return self.completed_batches / self.total_batches * 100.0

    @property
    def elapsed_seconds(self) -> float:
        """Get elapsed time in seconds."""
        if self.start_time is None:
            return 0.0
        return (datetime.now() - self.start_time).total_seconds()

    def format_summary(self) -> str:
        """Format progress summary string."""
        elapsed_min = int(self.elapsed_seconds / 60)
        elapsed_sec = int(self.elapsed_seconds % 60)
        return (
            f"{self.completed_batches}/{self.total_batches} batches "
            f"({self.percent_complete:.1f}%), {self.tokens_used:,} tokens "
            f"[{elapsed_min}m {elapsed_sec}s elapsed]"
        )


class ProgressReporter:
    """Per-job progress stream with callback support."""

    def __init__(
        self,
        *,
        provider: str = "",
        model: str = "",
        total_images: int = 0,
        on_update: Optional[Callable[[ProgressUpdate], None]] = None,
    ) -> None:
        """Initialize the reporter.

        Args:
            provider: Provider name stamped on updates that do not set one.
            model: Model name stamped on updates that do not set one.
            total_images: Number of images in the job.
            on_update: Optional callback invoked for every published update.
        """
        self.provider = provider
        self.model = model
        self.total_images = total_images
        self.on_update = on_update
        self.state = ProgressState()
        self._queue: "asyncio.Queue[Optional[ProgressUpdate]]" = asyncio.Queue()
        self._closed = False

    @property
    def tokens_used(self) -> int:
        return self.state.tokens_used

    @property
    def closed(self) -> bool:
        return self._closed

    def set_total_batches(self, total: int) -> None:
        self.state.total_batches = total

    def add_tokens(self, tokens: int) -> None:
        if tokens > 0:
            self.state.tokens_used += tokens

    def batch_completed(self) -> None:
        self.state.completed_batches += 1

    def publish(self, update: ProgressUpdate) -> ProgressUpdate:
        """Fill job-level fields on ``update`` and deliver it.

        Returns:
            The update as delivered.
        """
        if self._closed:
            logger.debug(f"Dropping progress update after close: {update.status.value}")
            return update

        update = replace(
            update,
            provider=update.provider or self.provider,
            model=update.model or self.model,
            total_images=update.total_images or self.total_images,
            total_batches=update.total_batches or self.state.total_batches,
            tokens_used=self.state.tokens_used,
            elapsed=self.state.elapsed_seconds,
        )
        if update.progress == 0 and update.current_batch > 0 and update.total_batches > 0:
            update.progress = (update.current_batch - 1) / update.total_batches

        self._queue.put_nowait(update)
        if self.on_update is not None:
            try:
                self.on_update(update)
            except Exception as e:
                logger.error(f"Progress callback failed: {e}")
        return update

    def emit(self, status: ProgressStatus, message: str = "", **fields: Any) -> ProgressUpdate:
        """Build and publish an update in one call."""
        return self.publish(ProgressUpdate(status=status, message=message, **fields))

    def complete(self, message: str = "Transcription complete", **fields: Any) -> None:
        """Publish the terminal COMPLETE update and close the stream."""
        self.emit(ProgressStatus.COMPLETE, message, progress=1.0, **fields)
        self.close()

    def fail(self, error: BaseException, **fields: Any) -> None:
        """Publish the terminal ERROR update and close the stream."""
        self.emit(ProgressStatus.ERROR, "Transcription failed", error=str(error), **fields)
        self.close()

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    async def __aiter__(self) -> AsyncIterator[ProgressUpdate]:
        while True:
            update = await self._queue.get()
            if update is None:
                return
            yield update
