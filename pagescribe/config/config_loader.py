# pagescribe/config/config_loader.py

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


def _expand_path_str(p: str) -> Path:
    """
    Expand ~ and environment variables in a path string and return a Path.
    """
    return Path(os.path.expandvars(os.path.expanduser(p)))


def _compute_config_dir() -> Path:
    """
    Resolve PAGESCRIBE_CONFIG_DIR:
    - If absolute: use it.
    - If relative: resolve against PROJECT_ROOT.
    - If unset: default to PROJECT_ROOT/config.
    """
    raw = os.environ.get("PAGESCRIBE_CONFIG_DIR")
    if raw:
        expanded = _expand_path_str(raw)
        return (expanded if expanded.is_absolute()
                else (PROJECT_ROOT / expanded)).resolve()
    return (PROJECT_ROOT / "config").resolve()


CONFIG_DIR = _compute_config_dir()
DEFAULT_CONFIG_PATH = CONFIG_DIR / "model_config.yaml"
DEFAULT_PATHS_CONFIG_PATH = CONFIG_DIR / "paths_config.yaml"
DEFAULT_CONCURRENCY_CONFIG_PATH = CONFIG_DIR / "concurrency_config.yaml"
DEFAULT_IMAGE_PROCESSING_CONFIG_PATH = CONFIG_DIR / "image_processing_config.yaml"

_KNOWN_PROVIDERS = ("auto", "google", "local", "azure_anthropic")


@dataclass(slots=True)
class _TranscriptionModel:
    provider: str = "auto"
    name: Optional[str] = None
    endpoint: Optional[str] = None
    max_output_tokens: Optional[int] = None
    temperature: Optional[float] = None
    timeout: Optional[float] = None


class ConfigLoader:
    """
    Loads configuration files and exposes normalized dictionaries to callers.
    """

    def __init__(self, config_path: Optional[Path] = None) -> None:
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self._raw: Dict[str, Any] = {}
        self._paths: Optional[Dict[str, Any]] = None
        self._concurrency: Optional[Dict[str, Any]] = None
        self._image_processing: Optional[Dict[str, Any]] = None

    @staticmethod
    def _load_yaml_file(path: Path) -> Dict[str, Any]:
        if not path.exists():
            raise FileNotFoundError(f"Missing configuration file: {path}")
        try:
            with path.open("r", encoding="utf-8") as f:
                return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(
                f"YAML parsing error in {path}.\n"
                f"Tip: Windows paths in double quotes require escaped backslashes "
                f"or forward slashes (e.g., C:/Users/name).\nOriginal error: {e}"
            ) from e

    def load_configs(self) -> None:
        """
        Load YAML configuration into memory and validate the model section.
        """
        self._raw = self._load_yaml_file(self.config_path)

        tm_raw = self._raw.get("transcription_model") or {}
        tm = _TranscriptionModel(
            provider=str(tm_raw.get("provider") or "auto").lower(),
            name=tm_raw.get("name"),
            endpoint=tm_raw.get("endpoint"),
            max_output_tokens=tm_raw.get("max_output_tokens"),
            temperature=tm_raw.get("temperature"),
            timeout=tm_raw.get("timeout"),
        )
        if tm.provider not in _KNOWN_PROVIDERS:
            raise ValueError(
                f"Unknown transcription_model.provider '{tm.provider}' in "
                f"{self.config_path}. Expected one of: {', '.join(_KNOWN_PROVIDERS)}"
            )

    def get_model_config(self) -> Dict[str, Any]:
        """
        Return the raw model configuration dictionary.
        """
        return self._raw.copy()

    def get_paths_config(self) -> Dict[str, Any]:
        """
        Load and return the paths configuration (cached). Relative paths are
        resolved against PROJECT_ROOT.
        """
        if self._paths is None:
            raw = self._load_yaml_file(DEFAULT_PATHS_CONFIG_PATH)
            self._paths = self._normalize_paths_config(raw)
        return self._paths

    @staticmethod
    def _normalize_paths_config(raw: Dict[str, Any]) -> Dict[str, Any]:
        general = dict(raw.get("general", {}) or {})
        output = dict(raw.get("output", {}) or {})

        def _resolve(value: Optional[str]) -> Optional[str]:
            if not value:
                return value
            p = _expand_path_str(str(value))
            if not p.is_absolute():
                p = (PROJECT_ROOT / p).resolve()
            return str(p)

        if general.get("logs_dir"):
            general["logs_dir"] = _resolve(general["logs_dir"])
        if output.get("directory"):
            output["directory"] = _resolve(output["directory"])

        normalized = dict(raw)
        normalized["general"] = general
        normalized["output"] = output
        return normalized

    def get_concurrency_config(self) -> Dict[str, Any]:
        """
        Load and return the concurrency configuration (cached).
        """
        if self._concurrency is None:
            self._concurrency = self._load_yaml_file(DEFAULT_CONCURRENCY_CONFIG_PATH)
        return self._concurrency

    def get_image_processing_config(self) -> Dict[str, Any]:
        """
        Load and return the image processing configuration (cached).
        """
        if self._image_processing is None:
            self._image_processing = self._load_yaml_file(
                DEFAULT_IMAGE_PROCESSING_CONFIG_PATH
            )
        return self._image_processing
