"""Testing utilities package.

Provides builders for descriptors, pages, images and provider doubles.
"""

from pagescribe.testing.fixtures import (
    echo_pages,
    make_descriptors,
    make_mock_provider,
    make_page,
    write_image,
)

__all__ = [
    "echo_pages",
    "make_descriptors",
    "make_mock_provider",
    "make_page",
    "write_image",
]
