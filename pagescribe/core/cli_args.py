"""CLI argument parsing for main/transcribe_images.py."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Optional

from pagescribe.llm.providers.factory import ProviderType


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the transcription script.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        description="PageScribe - transcribe page images into markdown documents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Transcribe a folder of scans into one markdown file per page
  python main/transcribe_images.py scans/book --output output/book

  # Split into chapters, using a local OpenAI-compatible server
  LLM_ENDPOINT=http://localhost:1234 python main/transcribe_images.py scans/book --chapters

  # Combine selected pages into one document with front matter
  python main/transcribe_images.py "scans/*.png" --combine --front-matter --provider google
        """,
    )

    parser.add_argument(
        "sources",
        nargs="+",
        help="Image files, directories or glob patterns. Pages follow natural filename order.",
    )
    parser.add_argument(
        "--output", "-o",
        type=str,
        default=None,
        help="Output directory (default: output.directory in paths_config.yaml).",
    )

    provider_group = parser.add_argument_group("model")
    provider_group.add_argument(
        "--provider",
        choices=["auto"] + [p.value for p in ProviderType],
        default=None,
        help="Backend to use (default: transcription_model.provider in model_config.yaml).",
    )
    provider_group.add_argument(
        "--model", "-m",
        type=str,
        default=None,
        help="Vision model name; provider default when omitted.",
    )
    provider_group.add_argument(
        "--temperature",
        type=float,
        default=None,
        help="Sampling temperature for the vision model.",
    )
    provider_group.add_argument(
        "--retries",
        type=int,
        default=None,
        help="Retries per request on transient errors (default: retry.attempts in concurrency_config.yaml).",
    )

    content_group = parser.add_argument_group("content")
    content_group.add_argument(
        "--language",
        type=str,
        default=None,
        help="Document language hint, e.g. 'German'.",
    )
    layout = content_group.add_mutually_exclusive_group()
    layout.add_argument(
        "--chapters",
        action="store_true",
        help="Write one document per detected chapter.",
    )
    layout.add_argument(
        "--combine",
        action="store_true",
        help="Write all pages into a single document.",
    )
    content_group.add_argument(
        "--no-preserve-formatting",
        dest="preserve_formatting",
        action="store_false",
        help="Do not ask the model to keep tables, lists and emphasis.",
    )
    content_group.add_argument(
        "--image-descriptions",
        action="store_true",
        help="Include descriptions of figures and photos in the output.",
    )

    output_group = parser.add_argument_group("output")
    output_group.add_argument(
        "--front-matter",
        action="store_true",
        help="Prepend YAML front matter to each document.",
    )
    output_group.add_argument(
        "--toc",
        action="store_true",
        help="Add a table of contents to documents with several sections.",
    )
    output_group.add_argument(
        "--index",
        action="store_true",
        help="Write index.md listing all documents.",
    )
    output_group.add_argument(
        "--overwrite",
        action="store_true",
        help="Replace existing output files instead of skipping them.",
    )

    return parser


def resolve_path(path_str: str, base_path: Optional[Path] = None) -> Path:
    """Resolve a path string; relative paths are taken against ``base_path``.

    Args:
        path_str: Path string from the command line
        base_path: Base directory for relative paths (default: cwd)

    Returns:
        Resolved absolute Path
    """
    path = Path(path_str).expanduser()
    if path.is_absolute():
        return path
    return ((base_path or Path.cwd()) / path).resolve()


def validate_output_path(path: Path) -> None:
    """Create the output directory if needed.

    Raises:
        ValueError: If the path exists and is not a directory
    """
    if path.exists() and not path.is_dir():
        raise ValueError(f"Output path is not a directory: {path}")
    path.mkdir(parents=True, exist_ok=True)
