"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (CANVASCONTEXT__CANVAS__BASE_URL=https://...)
  2. canvascontext.yaml     (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional. Only the Canvas base URL and access token are
needed for a useful server; every other field has a working default.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, SecretStr
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("canvascontext")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "embeddings.db")


def _find_config_file() -> str | None:
    """Return the path of the first canvascontext.yaml found, or None."""
    candidates = [
        Path("canvascontext.yaml"),
        Path(platformdirs.user_config_dir("canvascontext")) / "canvascontext.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class CanvasSettings(BaseModel):
    base_url: str = "https://canvas.instructure.com"
    access_token: SecretStr = SecretStr("")
    request_timeout_seconds: float = 10.0


class DiscoverySettings(BaseModel):
    index_ttl_seconds: int = 3600
    max_pages: int = 20
    timeout_ms: int = 30_000
    include_navigation: bool = True
    extract_embedded_content: bool = True
    respect_rate_limit: bool = True
    rate_limit_delay_seconds: float = 0.5
    # Web discovery is recommended once the restricted share of probed
    # endpoints is strictly greater than this ratio.
    restricted_ratio_threshold: float = 0.5
    max_retries: int = 3


class FileCacheSettings(BaseModel):
    enabled: bool = True
    max_entries: int = 100
    ttl_hours: float = 24
    revalidate_after_hours: float = 6
    max_content_size: int = 10 * 1024 * 1024
    preview_max_chars: int = 1500
    sweep_interval_seconds: int = 3600
    sweep_enabled: bool = True


class EmbeddingSettings(BaseModel):
    enabled: bool = True
    api_key: SecretStr = SecretStr("")
    base_url: str = "https://api.openai.com/v1"
    model: str = "text-embedding-3-small"
    batch_size: int = 20
    timeout_seconds: float = 60.0
    chunk_size: int = 512
    chunk_overlap: int = 128
    db_path: str = _DEFAULT_DB_PATH


class SmallModelSettings(BaseModel):
    enabled: bool = True
    api_key: SecretStr = SecretStr("")
    base_url: str = "https://openrouter.ai/api/v1"
    model: str = "google/gemini-2.5-flash"
    timeout_seconds: float = 15.0
    max_retries: int = 2
    cache_ttl_seconds: int = 300
    min_rerank_candidates: int = 2


class ParserSettings(BaseModel):
    api_key: SecretStr = SecretStr("")
    base_url: str = "https://api.cloud.llamaindex.ai"
    result_format: Literal["markdown", "text", "json"] = "markdown"
    allow_upload: bool = False
    max_bytes: int = 50 * 1024 * 1024
    timeout_seconds: float = 120.0
    poll_interval_seconds: float = 2.0


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: CANVASCONTEXT__FILE_CACHE__MAX_ENTRIES=50
        env_prefix="CANVASCONTEXT__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    canvas: CanvasSettings = CanvasSettings()
    discovery: DiscoverySettings = DiscoverySettings()
    file_cache: FileCacheSettings = FileCacheSettings()
    embeddings: EmbeddingSettings = EmbeddingSettings()
    small_model: SmallModelSettings = SmallModelSettings()
    parser: ParserSettings = ParserSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
