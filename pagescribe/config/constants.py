"""Centralized constants used across the application.

Defines supported image formats, request limits, provider defaults and
other shared constants. YAML configuration overrides most of these at runtime.
"""

from __future__ import annotations

# Supported image extensions and their MIME types for data URLs
# This is the single source of truth for image format support
SUPPORTED_IMAGE_FORMATS = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".tiff": "image/tiff",
    ".tif": "image/tiff",
    ".bmp": "image/bmp",
    ".gif": "image/gif",
    ".webp": "image/webp",
}

# Convenience set of supported extensions (derived from SUPPORTED_IMAGE_FORMATS)
SUPPORTED_IMAGE_EXTENSIONS = set(SUPPORTED_IMAGE_FORMATS.keys())

# Validation limits
MAX_FILE_SIZE_BYTES = 20 * 1024 * 1024
MAX_TOTAL_IMAGES = 100

# Batch planning limits
MAX_IMAGES_PER_REQUEST = 20
MAX_PAYLOAD_BYTES = 14 * 1024 * 1024
# base64 + JSON framing growth
ENCODING_OVERHEAD = 1.4

# Execution
MAX_CONCURRENT_REQUESTS = 3
SEQUENTIAL_BATCH_THRESHOLD = 2
DEFAULT_TIMEOUT_SECONDS = 300.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_STEPS = (2.0, 4.0, 8.0, 16.0)

# Provider defaults
DEFAULT_GOOGLE_MODEL = "gemini-3-pro-preview"
GOOGLE_API_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-20250514"
DEFAULT_LOCAL_MODEL = "local-model"
DEFAULT_MAX_OUTPUT_TOKENS = 32768
LOCAL_MAX_OUTPUT_TOKENS = 8192
LOCAL_TEMPERATURE = 0.1

# Local provider image shrinking
LOCAL_RESIZE_THRESHOLD_BYTES = 500 * 1024
LOCAL_MAX_DIMENSION = 768
LOCAL_JPEG_QUALITY = 80

# Refinement stage
REFINEMENT_MAX_OUTPUT_TOKENS = 16384
REFINEMENT_TEMPERATURE = 0.2

# Document assembly
PAGE_SEPARATOR = "\n\n---\n\n"
COMBINED_DOCUMENT_TITLE = "Document"
MAX_FILENAME_LENGTH = 50
