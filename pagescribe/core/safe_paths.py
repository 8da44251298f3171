"""
Filename helpers for generated markdown documents.

Chapter titles come from model output and can contain anything, so they are
reduced to a short, lower-case name that is safe on every common filesystem.
"""

from __future__ import annotations

import re

from pagescribe.config.constants import MAX_FILENAME_LENGTH

DEFAULT_FILENAME = "document"

# Characters rejected by Windows plus any whitespace
_UNSAFE_CHARS = re.compile(r'[/\\:*?"<>|\s]')
_REPEATED_UNDERSCORES = re.compile(r"_{2,}")


def sanitize_filename(title: str, max_length: int = MAX_FILENAME_LENGTH) -> str:
	"""
	Turn a document title into a filename stem.

	Unsafe characters become underscores, runs of underscores collapse to
	one, leading/trailing underscores are dropped, the result is capped at
	``max_length`` characters and lower-cased.

	Args:
		title: The title to convert.
		max_length: Maximum stem length.

	Returns:
		The sanitized stem, or "document" when nothing usable remains.

	Example:
		>>> sanitize_filename("Chapter 1: The Beginning")
		'chapter_1_the_beginning'
	"""
	result = _UNSAFE_CHARS.sub("_", title)
	result = _REPEATED_UNDERSCORES.sub("_", result)
	result = result.strip("_")
	result = result[:max_length]
	if not result:
		result = DEFAULT_FILENAME
	return result.lower()


def numbered_filename(title: str, index: int, extension: str = ".md") -> str:
	"""
	Build ``NN_<stem><extension>``; index 0 means no numeric prefix.
	"""
	stem = sanitize_filename(title)
	if index > 0:
		stem = f"{index:02d}_{stem}"
	return stem + extension
