"""Centralized configuration service with caching and singleton pattern.

Provides a single point of access to all configuration dictionaries so the
pipeline, providers and logger read consistent values, plus a few typed
lookups that tolerate missing or malformed entries.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Dict, Optional

from pagescribe.config.config_loader import ConfigLoader


class ConfigService:
    """Thread-safe singleton configuration service with lazy loading and caching."""

    _instance: Optional[ConfigService] = None
    _lock = threading.Lock()

    def __new__(cls) -> ConfigService:
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self) -> None:
        if self._initialized:
            return

        self._loader: Optional[ConfigLoader] = None
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._initialized = True

    def load(self, config_path: Optional[Path] = None) -> None:
        """Load all configurations.

        Args:
            config_path: Optional path to model_config.yaml. If None, uses default.
        """
        with self._lock:
            self._loader = ConfigLoader(config_path)
            self._loader.load_configs()
            self._cache.clear()

    def _ensure_loaded(self) -> None:
        if self._loader is None:
            self.load()

    def _get(self, name: str) -> Dict[str, Any]:
        self._ensure_loaded()
        if name not in self._cache:
            with self._lock:
                if name not in self._cache:
                    getter = getattr(self._loader, f"get_{name}_config")
                    self._cache[name] = getter()
        return self._cache[name].copy()

    def get_model_config(self) -> Dict[str, Any]:
        """Get model configuration (cached)."""
        return self._get("model")

    def get_paths_config(self) -> Dict[str, Any]:
        """Get paths configuration with normalized paths (cached)."""
        return self._get("paths")

    def get_concurrency_config(self) -> Dict[str, Any]:
        """Get concurrency configuration (cached)."""
        return self._get("concurrency")

    def get_image_processing_config(self) -> Dict[str, Any]:
        """Get image processing configuration (cached)."""
        return self._get("image_processing")

    def get_value(self, config_name: str, *keys: str, default: Any = None) -> Any:
        """Look up a nested value, returning ``default`` when any level is missing.

        Args:
            config_name: One of "model", "paths", "concurrency", "image_processing".
            *keys: Path of keys into the configuration dictionary.
            default: Value returned when the path does not resolve.

        Returns:
            The configured value or ``default``.
        """
        node: Any = self._get(config_name)
        for key in keys:
            if not isinstance(node, dict):
                return default
            node = node.get(key)
            if node is None:
                return default
        return node

    def get_int(self, config_name: str, *keys: str, default: int) -> int:
        """Typed variant of get_value() that falls back on unparsable values."""
        value = self.get_value(config_name, *keys, default=default)
        try:
            return int(value)
        except (TypeError, ValueError):
            return default

    def get_float(self, config_name: str, *keys: str, default: float) -> float:
        """Typed variant of get_value() that falls back on unparsable values."""
        value = self.get_value(config_name, *keys, default=default)
        try:
            return float(value)
        except (TypeError, ValueError):
            return default

    def reload(self, config_path: Optional[Path] = None) -> None:
        """Force reload of all configurations."""
        self.load(config_path)

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton instance (primarily for testing)."""
        with cls._lock:
            cls._instance = None


def get_config_service() -> ConfigService:
    """Get the singleton ConfigService instance."""
    return ConfigService()


def get_model_config() -> Dict[str, Any]:
    return get_config_service().get_model_config()


def get_paths_config() -> Dict[str, Any]:
    return get_config_service().get_paths_config()


def get_concurrency_config() -> Dict[str, Any]:
    return get_config_service().get_concurrency_config()


def get_image_processing_config() -> Dict[str, Any]:
    return get_config_service().get_image_processing_config()
