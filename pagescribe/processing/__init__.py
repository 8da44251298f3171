"""Image processing helpers."""
