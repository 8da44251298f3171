"""Writing assembled documents to disk.

Files are written asynchronously with aiofiles. Per-file failures are
collected in the WriteResult instead of aborting the remaining writes.
"""

from __future__ import annotations

import datetime
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import aiofiles
import yaml

from pagescribe.core.models import MarkdownDocument
from pagescribe.infra.logger import setup_logger

logger = setup_logger(__name__)

INDEX_FILENAME = "index.md"

_ANCHOR_STRIP = re.compile(r"[^\w\- ]")


@dataclass
class WriteOptions:
    output_dir: Path = Path(".")
    overwrite: bool = False
    add_front_matter: bool = False
    add_table_of_contents: bool = False
    create_index_file: bool = False


@dataclass
class WriteResult:
    written: List[Path] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    total_bytes: int = 0


def heading_anchor(title: str) -> str:
    """GitHub-style anchor for a heading."""
    return _ANCHOR_STRIP.sub("", title.strip().lower()).replace(" ", "-")


def _front_matter(fields: Dict[str, Any]) -> str:
    body = yaml.safe_dump(fields, sort_keys=False, allow_unicode=True, default_flow_style=False)
    return f"---\n{body}---\n\n"


def _page_label(doc: MarkdownDocument) -> str:
    if doc.page_range.start == doc.page_range.end:
        return str(doc.page_range.start)
    return f"{doc.page_range.start}-{doc.page_range.end}"


def render_document(
    doc: MarkdownDocument,
    options: WriteOptions,
    metadata: Optional[Dict[str, Any]] = None,
    generated: Optional[datetime.datetime] = None,
) -> str:
    """
    Build the file content for one document.

    Front matter carries ``title``, ``pages``, ``generated`` and any extra
    metadata. The table of contents is only added when the document has more
    than one section. The result always ends with a newline.
    """
    generated = generated or datetime.datetime.now().astimezone()
    parts: List[str] = []

    if options.add_front_matter:
        fields: Dict[str, Any] = {
            "title": doc.title,
            "pages": _page_label(doc),
            "generated": generated.isoformat(timespec="seconds"),
        }
        fields.update(metadata or {})
        parts.append(_front_matter(fields))

    if options.add_table_of_contents and len(doc.sections) > 1:
        parts.append("## Table of Contents\n\n")
        for section in doc.sections:
            indent = "  " * max(section.level - 1, 0)
            parts.append(f"{indent}- [{section.title}](#{heading_anchor(section.title)})\n")
        parts.append("\n---\n\n")

    parts.append(doc.content)
    content = "".join(parts)
    if not content.endswith("\n"):
        content += "\n"
    return content


def render_index(
    documents: Sequence[MarkdownDocument],
    options: WriteOptions,
    generated: Optional[datetime.datetime] = None,
) -> str:
    """Build index.md: a table linking every document with its page range."""
    generated = generated or datetime.datetime.now().astimezone()
    parts: List[str] = []
    if options.add_front_matter:
        parts.append(_front_matter({
            "title": "Document Index",
            "generated": generated.isoformat(timespec="seconds"),
            "documents": len(documents),
        }))

    total_pages = sum(d.page_range.end - d.page_range.start + 1 for d in documents)
    parts.append("# Document Index\n\n")
    parts.append(f"*Generated: {generated.strftime('%B %d, %Y %H:%M')}*\n\n")
    parts.append(f"**Total Documents:** {len(documents)}  \n")
    parts.append(f"**Total Pages:** {total_pages}\n\n")
    parts.append("## Documents\n\n")
    parts.append("| # | Title | Pages | Filename |\n")
    parts.append("|---|-------|-------|----------|\n")
    for i, doc in enumerate(documents, start=1):
        parts.append(f"| {i} | [{doc.title}]({doc.filename}) | {_page_label(doc)} | {doc.filename} |\n")
    parts.append("\n")
    return "".join(parts)


async def _write_text(path: Path, content: str) -> None:
    async with aiofiles.open(path, "w", encoding="utf-8") as f:
        await f.write(content)


async def write_documents(
    documents: Sequence[MarkdownDocument],
    options: WriteOptions,
    metadata: Optional[Dict[str, Any]] = None,
) -> WriteResult:
    """
    Write documents (and optionally index.md) into ``options.output_dir``.

    Existing files are skipped with an error entry unless ``overwrite`` is
    set. index.md is only written when more than one document was written.

    Args:
        documents: Assembled documents.
        options: Output settings.
        metadata: Extra front matter fields, e.g. model or language.

    Returns:
        WriteResult listing written paths and per-file errors.

    Raises:
        ValueError: If ``documents`` is empty.
        OSError: If the output directory cannot be created.
    """
    if not documents:
        raise ValueError("no documents to write")

    output_dir = Path(options.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    result = WriteResult()

    for doc in documents:
        path = output_dir / doc.filename
        if path.exists() and not options.overwrite:
            result.errors.append(f"file exists: {path} (use --overwrite to replace)")
            continue
        content = render_document(doc, options, metadata)
        try:
            await _write_text(path, content)
        except OSError as e:
            logger.error(f"Failed to write {path}: {e}")
            result.errors.append(f"failed to write {path}: {e}")
            continue
        result.written.append(path)
        result.total_bytes += len(content.encode("utf-8"))
        logger.debug(f"Wrote {path}")

    if options.create_index_file and len(result.written) > 1:
        index_path = output_dir / INDEX_FILENAME
        content = render_index(documents, options)
        try:
            await _write_text(index_path, content)
        except OSError as e:
            logger.error(f"Failed to write index: {e}")
            result.errors.append(f"failed to write index: {e}")
        else:
            result.written.append(index_path)
            result.total_bytes += len(content.encode("utf-8"))

    logger.info(f"Wrote {len(result.written)} file(s) to {output_dir} with {len(result.errors)} error(s)")
    return result


def get_output_filenames(
    documents: Sequence[MarkdownDocument],
    output_dir: Path,
    create_index: bool = False,
) -> List[Path]:
    """Paths that write_documents() would produce."""
    paths = [Path(output_dir) / doc.filename for doc in documents]
    if create_index and len(documents) > 1:
        paths.append(Path(output_dir) / INDEX_FILENAME)
    return paths


def cleanup_files(paths: Sequence[Path]) -> None:
    """Remove previously generated files; missing files are ignored."""
    for path in paths:
        Path(path).unlink(missing_ok=True)
