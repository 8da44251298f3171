"""Pytest configuration and shared fixtures for PageScribe tests.

This module provides reusable fixtures for:
- Configuration management
- Generated page images in temporary directories
- Provider doubles
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, List

import pytest

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from pagescribe.config.service import ConfigService  # noqa: E402
from pagescribe.llm.providers.base import RetryPolicy  # noqa: E402
from pagescribe.testing.fixtures import make_mock_provider, write_image  # noqa: E402

PROVIDER_ENV_VARS = (
    "LLM_ENDPOINT", "IMAGE_LLM_ENDPOINT", "LLM_MODEL", "IMAGE_LLM_MODEL",
    "IMAGE_VISION_MODEL", "IMAGE_TEXT_MODEL", "IMAGE_TEXT_ENDPOINT",
    "AZURE_ANTHROPIC_ENDPOINT", "AZURE_ANTHROPIC_API_KEY", "AZURE_ANTHROPIC_MODEL",
    "GEMINI_API_KEY", "GOOGLE_API_KEY",
)


# =============================================================================
# Configuration Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def reset_config_service():
    """Give every test a fresh configuration singleton."""
    ConfigService.reset()
    yield
    ConfigService.reset()


@pytest.fixture
def clean_env(monkeypatch):
    """Remove provider selection variables from the environment."""
    for name in PROVIDER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def fast_retry_policy() -> RetryPolicy:
    """Retry policy that does not actually wait."""
    return RetryPolicy(max_retries=2, backoff_steps=(0,))


# =============================================================================
# Image Fixtures
# =============================================================================

@pytest.fixture
def image_factory(tmp_path) -> Callable[..., Path]:
    """Create image files under tmp_path: ``image_factory("page1.png")``."""
    def _make(name: str, **kwargs) -> Path:
        return write_image(tmp_path / name, **kwargs)
    return _make


@pytest.fixture
def page_images(tmp_path) -> List[Path]:
    """Five PNG pages named page1.png .. page5.png."""
    return [write_image(tmp_path / "pages" / f"page{i}.png") for i in range(1, 6)]


@pytest.fixture
def mock_provider():
    return make_mock_provider()


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")
