"""Application configuration and settings."""

import json
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from burstwise.models import GROUP_WINDOW_MS, MAX_GROUP_IMAGES, MIN_MERGE_IMAGES


def get_config_dir() -> Path:
    """Get the burstwise config directory, creating it if needed."""
    config_dir = Path.home() / ".burstwise"
    config_dir.mkdir(exist_ok=True)
    return config_dir


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


class Settings(BaseSettings):
    """Application settings loaded from environment and config file."""

    model_config = SettingsConfigDict(
        env_prefix="BURSTWISE_",
        env_file=".env",
        extra="ignore",
    )

    # Grouping
    group_window_ms: int = Field(
        default=GROUP_WINDOW_MS,
        description="Maximum gap between consecutive images of a burst (ms)",
    )
    max_group_images: int = Field(
        default=MAX_GROUP_IMAGES,
        description="Maximum number of images per burst group",
    )
    min_merge_images: int = Field(
        default=MIN_MERGE_IMAGES,
        description="Minimum number of images required to merge",
    )

    # Watcher
    watch_folder: Optional[str] = Field(default=None, description="Folder to watch for new images")
    image_extensions: list[str] = Field(
        default=["png", "jpg", "jpeg"],
        description="File extensions treated as images",
    )

    # Merge output
    output_directory: Optional[str] = Field(
        default=None,
        description="Merge output folder (defaults to the watch folder)",
    )
    include_exr: bool = Field(default=True, description="Also write an EXR when merging")

    # Imaging collaborator
    analyze_command: Optional[str] = Field(
        default=None,
        description="Command that computes average luma for images",
    )
    merge_command: Optional[str] = Field(
        default=None,
        description="Command that merges images into HDR outputs",
    )

    log_level: str = Field(default="WARNING", description="Logging level")

    @classmethod
    def load(cls) -> "Settings":
        """Load settings from config file and environment."""
        config_file = get_config_file()
        file_settings = {}

        if config_file.exists():
            with open(config_file) as f:
                file_settings = json.load(f)

        return cls(**file_settings)

    def save(self) -> None:
        """Save current settings to config file."""
        config_file = get_config_file()

        # Only save non-default, non-None values
        data = {}
        for field_name, field_info in type(self).model_fields.items():
            value = getattr(self, field_name)
            if value is not None and value != field_info.default:
                data[field_name] = value

        with open(config_file, "w") as f:
            json.dump(data, f, indent=2)

    def set_value(self, key: str, value: str) -> None:
        """Set a configuration value and save."""
        setattr(self, key, self.coerce_value(key, value))
        self.save()

    @classmethod
    def coerce_value(cls, key: str, value: str):
        """Convert a string from the command line to the field's type."""
        if key not in cls.model_fields:
            raise ValueError(f"Unknown configuration key: {key}")

        annotation = cls.model_fields[key].annotation
        if annotation is int:
            return int(value)
        if annotation is float:
            return float(value)
        if annotation is bool:
            lowered = value.lower()
            if lowered in ("1", "true", "yes", "on"):
                return True
            if lowered in ("0", "false", "no", "off"):
                return False
            raise ValueError(f"Invalid boolean for {key}: {value}")
        if annotation == list[str]:
            return [item.strip().lstrip(".").lower() for item in value.split(",") if item.strip()]
        return value


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def reload_settings() -> Settings:
    """Reload settings from disk."""
    global _settings
    _settings = Settings.load()
    return _settings
