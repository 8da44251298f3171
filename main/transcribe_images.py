# transcribe_images.py
"""
Command-line entry point for PageScribe.

Discovers page images, runs the transcription pipeline with the backend
selected from the environment and model_config.yaml, and writes the resulting
markdown documents. Progress updates go to the application log.
"""

from __future__ import annotations

import asyncio
import signal
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from pagescribe.config.config_loader import PROJECT_ROOT
from pagescribe.config.service import get_config_service
from pagescribe.core.cli_args import create_parser, resolve_path, validate_output_path
from pagescribe.core.errors import PageScribeError, TranscriptionCancelledError
from pagescribe.core.models import TranscribeRequest
from pagescribe.core.pipeline import TranscriptionPipeline
from pagescribe.infra.logger import setup_logger
from pagescribe.infra.progress import ProgressReporter, ProgressUpdate
from pagescribe.io.image_loader import format_size, load_images, total_size
from pagescribe.io.markdown_writer import WriteOptions, write_documents

logger = setup_logger(__name__)


def log_progress(update: ProgressUpdate) -> None:
    line = f"[{update.status.display}] {update.message}"
    if update.total_batches:
        line += f" ({update.current_batch}/{update.total_batches}, {update.progress:.0%})"
    if update.detail:
        line += f" - {update.detail}"
    logger.info(line)
    if update.error:
        logger.error(f"{update.provider}/{update.model}: {update.error}")


def _install_cancel_handler(cancel_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except NotImplementedError:
        # Not available on Windows event loops
        pass


async def run(args) -> int:
    cfg = get_config_service()
    output_cfg = cfg.get_value("paths", "output", default={}) or {}
    prompt_cfg = cfg.get_value("model", "prompt", default={}) or {}

    images = load_images(args.sources)
    print(f"Found {len(images)} images ({format_size(total_size(images))})")

    output_dir = resolve_path(args.output) if args.output else resolve_path(
        str(output_cfg.get("directory") or "output"), PROJECT_ROOT
    )
    validate_output_path(output_dir)

    request = TranscribeRequest(
        images=images,
        output_dir=output_dir,
        model=args.model,
        language=args.language or prompt_cfg.get("language"),
        detect_chapters=args.chapters,
        combine_pages=args.combine,
        preserve_formatting=args.preserve_formatting and prompt_cfg.get("preserve_formatting", True),
        include_image_descriptions=args.image_descriptions,
        temperature=args.temperature,
        max_retries=args.retries,
    )

    cancel_event = asyncio.Event()
    _install_cancel_handler(cancel_event)

    async with TranscriptionPipeline.from_config(args.provider, args.model) as pipeline:
        print(f"Using {pipeline.provider.display_name} ({pipeline.provider.model})")
        progress = ProgressReporter(
            provider=pipeline.provider.provider_name,
            model=pipeline.provider.model,
            total_images=len(images),
            on_update=log_progress,
        )
        response = await pipeline.run(request, progress=progress, cancel_event=cancel_event)

    options = WriteOptions(
        output_dir=output_dir,
        overwrite=args.overwrite or bool(output_cfg.get("overwrite", False)),
        add_front_matter=args.front_matter or bool(output_cfg.get("add_front_matter", False)),
        add_table_of_contents=args.toc or bool(output_cfg.get("add_table_of_contents", False)),
        create_index_file=args.index or bool(output_cfg.get("create_index_file", False)),
    )
    metadata = {"model": request.model or pipeline.provider.model}
    if request.language:
        metadata["language"] = request.language
    result = await write_documents(response.documents, options, metadata)

    for path in result.written:
        print(f"  Wrote: {path}")
    for error in result.errors:
        print(f"  Skipped: {error}")
    print(
        f"Transcribed {response.total_pages} pages into {len(response.documents)} "
        f"document(s) in {response.processing_time:.1f}s ({response.tokens_used:,} tokens)"
    )
    return 1 if result.errors and not result.written else 0


def main() -> None:
    parser = create_parser()
    args = parser.parse_args()
    try:
        sys.exit(asyncio.run(run(args)))
    except (KeyboardInterrupt, TranscriptionCancelledError):
        print("Transcription cancelled.")
        sys.exit(130)
    except (PageScribeError, ValueError) as e:
        logger.error(f"Transcription failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
