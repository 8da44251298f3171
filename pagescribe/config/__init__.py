"""Configuration management modules.

Provides centralized configuration loading, validation, and caching.
"""

from pagescribe.config.service import (
    ConfigService,
    get_config_service,
    get_concurrency_config,
    get_image_processing_config,
    get_model_config,
    get_paths_config,
)

__all__ = [
    "ConfigService",
    "get_config_service",
    "get_concurrency_config",
    "get_image_processing_config",
    "get_model_config",
    "get_paths_config",
]
