"""
Application configuration and settings.

Two layers live here:
- Settings: process-level settings from environment variables / .env
  (service URLs, models, paths, logging).
- ProcessingConfig: the nested processing configuration consulted by the
  orchestrator and processors (feature toggles, tunables), built from
  defaults, an optional processing.yaml and MM_* environment overrides.
"""

import copy
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml
from pydantic import TypeAdapter, ValidationError
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # AI Services
    ollama_url: str = "http://localhost:11434"
    whisper_url: str = "http://localhost:9000"
    openai_url: str = "https://api.openai.com"
    claude_model: str = "claude-sonnet-4-5"
    ollama_vision_model: str = "llava:13b"
    ollama_text_model: str = "qwen2.5:14b"
    whisper_model: str = "large-v3-turbo"
    openai_transcription_model: str = "whisper-1"
    whisper_language: str | None = None  # None = auto-detect
    llm_timeout: int = 300

    # Paths
    config_dir: Path = Path("/app/config")
    results_dir: Path | None = None  # Write processing results as JSON when set
    thumbnail_dir: Path | None = None  # Write thumbnails to disk instead of inlining

    # Logging
    log_level: str = "INFO"
    log_format: str = "structured"  # "simple" or "structured"

    # Per-module log levels (optional overrides)
    log_level_ai_clients: str | None = None
    log_level_plugins: str | None = None
    log_level_pipeline: str | None = None
    log_level_processors: str | None = None
    log_level_api: str | None = None

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# ═══════════════════════════════════════════════════════════════════════════
# Processing configuration
# ═══════════════════════════════════════════════════════════════════════════

PROCESSING_CONFIG_FILE = "processing.yaml"


def _default_max_concurrent_jobs() -> int:
    cpus = os.cpu_count() or 2
    return min(4, max(2, cpus // 2))


DEFAULT_PROCESSING_CONFIG: dict[str, Any] = {
    "base": {
        "retry_attempts": 3,
        "retry_delay_ms": 1000,
        "timeout_ms": 300000,
        "max_file_size": 100 * 1024 * 1024,
        "enable_progress_tracking": True,
    },
    "video": {
        "supported_formats": [".mp4", ".avi", ".mov", ".mkv", ".webm", ".m4v"],
        "enable_transcription": True,
        "enable_thumbnails": True,
        "enable_ocr": False,
        "enable_quality_analysis": True,
        "thumbnail_sizes": {"small": [160, 90], "medium": [320, 180], "large": [640, 360]},
        "frame_timestamp_seconds": 1.0,
    },
    "audio": {
        "supported_formats": [".mp3", ".wav", ".m4a", ".aac", ".ogg", ".flac", ".opus"],
        "enable_transcription": True,
        "enable_speaker_diarization": True,
        "enable_sentiment_analysis": True,
        "enable_quality_analysis": True,
        "transcription_language": None,
        "quality_thresholds": {
            "min_bitrate_kbps": 64,
            "min_sample_rate": 16000,
        },
    },
    "image": {
        "supported_formats": [".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp", ".tiff"],
        "enable_object_detection": True,
        "enable_ocr": True,
        "enable_ai_description": True,
        "enable_thumbnails": True,
        "enable_quality_analysis": True,
        "enable_tag_generation": True,
        "thumbnail_sizes": {"small": [150, 150], "medium": [300, 300], "large": [800, 600]},
        "max_dimensions": [4096, 4096],
        "description_max_tokens": 500,
    },
    "plugins": {
        "fallback_chains": {
            "transcription": ["whisper_local", "openai_whisper"],
            "object_detection": ["claude_object_detection", "ollama_object_detection"],
            "ocr": ["claude_ocr", "ollama_ocr"],
            "image_analysis": ["claude_image_description", "ollama_image_description"],
            "sentiment": ["claude_sentiment", "ollama_sentiment"],
            "tagging": ["claude_tagging", "ollama_tagging"],
        },
    },
    "performance": {
        "concurrent_processing": {
            "max_concurrent_jobs": _default_max_concurrent_jobs(),
        },
        "caching": {
            "enable_result_caching": True,
            "cache_ttl_seconds": 3600,
            "max_cache_size": 1000,
        },
        "memory": {
            "high_water_mark_mb": 512,
            "admission_wait_seconds": 10,
        },
        "cleanup": {
            "interval_seconds": 300,
            "max_job_age_seconds": 3600,
            "job_retention_seconds": 3600,
        },
    },
}


def _int_range(low: int, high: int | None = None) -> Callable[[Any], bool]:
    def check(value: Any) -> bool:
        if isinstance(value, bool) or not isinstance(value, int):
            return False
        return value >= low and (high is None or value <= high)

    return check


# Validators for tunables that must stay within sane bounds
CONFIG_VALIDATORS: dict[str, Callable[[Any], bool]] = {
    "base.retry_attempts": _int_range(0, 10),
    "base.timeout_ms": _int_range(1000, 1800000),
    "base.max_file_size": _int_range(1),
    "performance.concurrent_processing.max_concurrent_jobs": _int_range(1, 10),
    "performance.caching.cache_ttl_seconds": _int_range(1),
    "performance.caching.max_cache_size": _int_range(1),
}

# MM_* environment variable -> (config path, value type)
ENV_OVERRIDES: dict[str, tuple[str, type]] = {
    "MM_RETRY_ATTEMPTS": ("base.retry_attempts", int),
    "MM_TIMEOUT_MS": ("base.timeout_ms", int),
    "MM_MAX_FILE_SIZE": ("base.max_file_size", int),
    "MM_ENABLE_TRANSCRIPTION": ("audio.enable_transcription", bool),
    "MM_ENABLE_SPEAKER_DIARIZATION": ("audio.enable_speaker_diarization", bool),
    "MM_ENABLE_SENTIMENT_ANALYSIS": ("audio.enable_sentiment_analysis", bool),
    "MM_ENABLE_OBJECT_DETECTION": ("image.enable_object_detection", bool),
    "MM_ENABLE_AI_DESCRIPTION": ("image.enable_ai_description", bool),
    "MM_IMAGE_ENABLE_OCR": ("image.enable_ocr", bool),
    "MM_VIDEO_ENABLE_OCR": ("video.enable_ocr", bool),
    "MM_VIDEO_ENABLE_TRANSCRIPTION": ("video.enable_transcription", bool),
    "MM_MAX_CONCURRENT_JOBS": ("performance.concurrent_processing.max_concurrent_jobs", int),
    "MM_ENABLE_CACHING": ("performance.caching.enable_result_caching", bool),
    "MM_CACHE_TTL_SECONDS": ("performance.caching.cache_ttl_seconds", int),
    "MM_MEMORY_HIGH_WATER_MB": ("performance.memory.high_water_mark_mb", int),
}


class ConfigurationError(ValueError):
    """Raised when a configuration value fails validation."""

    def __init__(self, path: str, value: Any):
        self.path = path
        self.value = value
        super().__init__(f"Invalid configuration value for {path}: {value!r}")


def deep_merge(base: dict, override: Mapping) -> dict:
    """
    Recursively merge override into a copy of base.

    Nested dicts are merged key by key, everything else is replaced.
    """
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class ProcessingConfig:
    """
    Nested processing configuration with dotted-path access.

    Example:
        config = ProcessingConfig()
        config.get_config("base.retry_attempts")          # 3
        config.is_feature_enabled("audio.enable_transcription")
        config.set_config("performance.caching.max_cache_size", 50)
    """

    def __init__(
        self,
        overrides: Mapping | None = None,
        environ: Mapping[str, str] | None = None,
    ):
        """
        Build configuration from defaults, overrides and environment.

        Args:
            overrides: Nested dict merged over the defaults (e.g. from YAML)
            environ: Environment mapping for MM_* overrides (None = skip)
        """
        self._config = copy.deepcopy(DEFAULT_PROCESSING_CONFIG)
        if overrides:
            self._config = deep_merge(self._config, overrides)
        if environ is not None:
            self._apply_env_overrides(environ)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        environ: Mapping[str, str] | None = None,
    ) -> "ProcessingConfig":
        """
        Create configuration from application settings.

        Loads {config_dir}/processing.yaml when present and applies MM_*
        overrides from the process environment.

        Args:
            settings: Application settings
            environ: Environment mapping (default: os.environ)

        Returns:
            Configured ProcessingConfig instance
        """
        overrides = load_processing_config(settings)
        return cls(overrides=overrides, environ=os.environ if environ is None else environ)

    def get_config(self, path: str, default: Any = None) -> Any:
        """
        Look up a value by dotted path.

        Args:
            path: Dotted path, e.g. "image.enable_ocr"
            default: Value returned when any path segment is missing

        Returns:
            Configuration value or default
        """
        node: Any = self._config
        for key in path.split("."):
            if not isinstance(node, dict) or key not in node:
                return default
            node = node[key]
        return node

    def is_feature_enabled(self, path: str) -> bool:
        """Check whether a feature toggle is on (True, "true", 1 or "1")."""
        value = self.get_config(path, False)
        return value is True or value == 1 or value in ("true", "1")

    def set_config(self, path: str, value: Any) -> None:
        """
        Set a value by dotted path, creating intermediate sections.

        Raises:
            ConfigurationError: If a validator rejects the value
        """
        validator = CONFIG_VALIDATORS.get(path)
        if validator is not None and not validator(value):
            raise ConfigurationError(path, value)

        keys = path.split(".")
        node = self._config
        for key in keys[:-1]:
            if not isinstance(node.get(key), dict):
                node[key] = {}
            node = node[key]
        node[keys[-1]] = value
        logger.debug(f"Config updated: {path}={value!r}")

    def get_processor_config(self, media_type: str) -> dict:
        """Get base settings merged with the section for a media type."""
        return deep_merge(self._config.get("base", {}), self._config.get(media_type, {}))

    def get_section(self, section: str) -> dict:
        """Get a deep copy of a top-level section."""
        return copy.deepcopy(self._config.get(section, {}))

    def get_summary(self) -> dict:
        """Get a short summary of the active configuration."""
        return {
            "base": self.get_section("base"),
            "features": {
                media: {
                    key: value
                    for key, value in self._config.get(media, {}).items()
                    if key.startswith("enable_")
                }
                for media in ("video", "audio", "image")
            },
            "performance": {
                "max_concurrent_jobs": self.get_config(
                    "performance.concurrent_processing.max_concurrent_jobs"
                ),
                "result_caching": self.is_feature_enabled(
                    "performance.caching.enable_result_caching"
                ),
                "cache_ttl_seconds": self.get_config("performance.caching.cache_ttl_seconds"),
                "max_cache_size": self.get_config("performance.caching.max_cache_size"),
            },
        }

    def reset_to_defaults(self) -> None:
        """Discard all changes and restore default configuration."""
        self._config = copy.deepcopy(DEFAULT_PROCESSING_CONFIG)
        logger.info("Processing configuration reset to defaults")

    def _apply_env_overrides(self, environ: Mapping[str, str]) -> None:
        for env_var, (path, value_type) in ENV_OVERRIDES.items():
            raw = environ.get(env_var)
            if raw is None:
                continue
            try:
                value = TypeAdapter(value_type).validate_python(raw)
                self.set_config(path, value)
                logger.debug(f"Env override {env_var} -> {path}={value!r}")
            except (ValidationError, ConfigurationError) as e:
                logger.warning(f"Ignoring invalid {env_var}={raw!r}: {e}")


def load_processing_config(settings: Settings | None = None) -> dict:
    """
    Load processing configuration overrides from config/processing.yaml.

    Args:
        settings: Optional settings instance

    Returns:
        Overrides dictionary (empty if the file doesn't exist)
    """
    if settings is None:
        settings = get_settings()

    config_path = settings.config_dir / PROCESSING_CONFIG_FILE
    if not config_path.exists():
        logger.debug(f"No processing config at {config_path}, using defaults")
        return {}

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    return data or {}
