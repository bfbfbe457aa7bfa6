"""
Configuration management for the prescription pipeline.

This module provides centralized configuration using Pydantic Settings
for environment-based configuration management.
"""

from typing import Any, List, Optional

import logging
import os
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Database configuration settings."""

    model_config = SettingsConfigDict(env_prefix="MONGO_")

    uri: str = Field(default="mongodb://localhost:27017", description="MongoDB connection URI")
    db_name: str = Field(default="rxpipeline", description="MongoDB database name")
    server_selection_timeout_ms: int = Field(default=15000, description="Server selection timeout")

    @field_validator("uri")
    @classmethod
    def validate_mongo_uri(cls, v: str) -> str:
        """Validate MongoDB URI format."""
        if not v.startswith(("mongodb://", "mongodb+srv://")):
            raise ValueError(
                "MongoDB URI must start with 'mongodb://' or 'mongodb+srv://'"
            )
        return v


class OpenAISettings(BaseSettings):
    """OpenAI API configuration settings."""

    model_config = SettingsConfigDict(env_prefix="OPENAI_")

    api_key: str = Field(default="", description="OpenAI API key (not used when Azure OpenAI is configured)")
    model: str = Field(default="gpt-4o", description="Chat model used for prescription analysis")
    max_tokens: int = Field(default=2000, description="Maximum tokens for responses")
    temperature: float = Field(default=0.2, description="Temperature for model responses")

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: str) -> str:
        """Validate OpenAI API key format (optional when Azure OpenAI is configured)."""
        if v and not v.startswith("sk-"):
            raise ValueError("OpenAI API key must start with 'sk-'")
        return v

    @field_validator("temperature")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        """Validate temperature."""
        if not 0.0 <= v <= 2.0:
            raise ValueError("Temperature must be between 0.0 and 2.0")
        return v


class AzureOpenAISettings(BaseSettings):
    """Azure OpenAI configuration settings."""

    model_config = SettingsConfigDict(env_prefix="AZURE_OPENAI_")

    endpoint: str = Field(default="", description="Azure OpenAI endpoint URL")
    api_key: str = Field(default="", description="Azure OpenAI API key")
    api_version: str = Field(default="2024-12-01-preview", description="Azure OpenAI API version")
    deployment_name: str = Field(default="gpt-4o", description="Azure OpenAI chat deployment name")

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        """Validate Azure OpenAI endpoint format."""
        if v and not (v.startswith("https://") and ".openai.azure.com" in v):
            raise ValueError("Invalid Azure OpenAI endpoint format. Must be: https://xxx.openai.azure.com/")
        return v

    @property
    def is_configured(self) -> bool:
        return bool(self.endpoint and self.api_key)


class QueueSettings(BaseSettings):
    """Job queue policy shared by every queue backend."""

    model_config = SettingsConfigDict(env_prefix="QUEUE_")

    backend: str = Field(default="azure", description="Queue backend: 'azure' or 'memory'")
    max_attempts: int = Field(default=3, description="Default attempts per job before dead-lettering")
    extraction_backoff_seconds: float = Field(default=5.0, description="Base backoff delay for extraction jobs")
    analysis_backoff_seconds: float = Field(default=5.0, description="Base backoff delay for analysis jobs")
    notification_backoff_seconds: float = Field(default=2.0, description="Base backoff delay for notification jobs")
    poll_interval: float = Field(default=5.0, description="Worker poll interval in seconds when a queue is empty")

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Validate queue backend."""
        if v.lower() not in ["azure", "memory"]:
            raise ValueError("Queue backend must be 'azure' or 'memory'")
        return v.lower()

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if not 1 <= v <= 20:
            raise ValueError("max_attempts must be between 1 and 20")
        return v

    def backoff_for(self, stage: str) -> float:
        """Base backoff delay in seconds for a pipeline stage."""
        return {
            "extraction": self.extraction_backoff_seconds,
            "analysis": self.analysis_backoff_seconds,
            "notification": self.notification_backoff_seconds,
        }[stage]


class AzureQueueSettings(BaseSettings):
    """Azure Queue Storage configuration settings."""

    model_config = SettingsConfigDict(env_prefix="AZURE_QUEUE_")

    connection_string: str = Field(default="", description="Azure Storage connection string")
    queue_prefix: str = Field(default="rx", description="Prefix for per-stage queue names")
    visibility_timeout: int = Field(default=600, description="Message visibility timeout in seconds while a job runs")
    max_dequeue_count: int = Field(default=5, description="Deliveries after which a message is treated as poison")

    @model_validator(mode="before")
    @classmethod
    def apply_fallbacks(cls, data: Any) -> Any:
        """Fall back to AZURE_STORAGE_CONNECTION_STRING when the queue string is unset."""
        if isinstance(data, dict) and not data.get("connection_string"):
            fallback = os.getenv("AZURE_STORAGE_CONNECTION_STRING", "")
            if fallback:
                data["connection_string"] = fallback
        return data

    @field_validator("connection_string", mode="before")
    @classmethod
    def validate_connection_string(cls, v: str) -> str:
        """Validate Azure Storage connection string format."""
        if not v:
            return v
        if not v.startswith(("DefaultEndpointsProtocol=", "UseDevelopmentStorage=true")):
            raise ValueError("Invalid Azure Storage connection string format. Must start with 'DefaultEndpointsProtocol='")
        return v

    @field_validator("queue_prefix")
    @classmethod
    def validate_queue_prefix(cls, v: str) -> str:
        # Azure queue names: lowercase letters, digits and single hyphens
        if not v or not v.replace("-", "").isalnum() or v.lower() != v:
            raise ValueError("Queue prefix must be lowercase alphanumeric (hyphens allowed)")
        return v


class WorkerSettings(BaseSettings):
    """Per-stage worker pool configuration."""

    model_config = SettingsConfigDict(env_prefix="WORKER_")

    extraction_concurrency: int = Field(default=2, description="Concurrent extraction jobs per process")
    analysis_concurrency: int = Field(default=4, description="Concurrent analysis jobs per process")
    notification_concurrency: int = Field(default=4, description="Concurrent notification jobs per process")
    shutdown_timeout: float = Field(default=60.0, description="Seconds to wait for active jobs on shutdown")

    @field_validator("extraction_concurrency", "analysis_concurrency", "notification_concurrency")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Worker concurrency must be at least 1")
        return v

    def concurrency_for(self, stage: str) -> int:
        return {
            "extraction": self.extraction_concurrency,
            "analysis": self.analysis_concurrency,
            "notification": self.notification_concurrency,
        }[stage]


class OCRSettings(BaseSettings):
    """OCR engine configuration settings."""

    model_config = SettingsConfigDict(env_prefix="OCR_")

    supported_languages: List[str] = Field(default=["eng", "fra"], description="Tesseract languages installed on the host")
    default_language: str = Field(default="eng", description="Language used when no requested language is supported")
    min_confidence: float = Field(default=70.0, description="Confidence (0-100) below which a result is flagged")
    temp_dir: str = Field(default="/tmp/rxpipeline_ocr", description="Directory for normalized OCR input files")
    timeout_seconds: float = Field(default=60.0, description="Per-call recognition timeout")
    tesseract_cmd: Optional[str] = Field(default=None, description="Path to the tesseract binary")
    page_segmentation_mode: int = Field(default=6, description="Tesseract --psm value (6 = single uniform block)")
    engine_pool_size: int = Field(default=1, description="Number of engine instances per worker process")

    @field_validator("supported_languages", mode="before")
    @classmethod
    def parse_languages(cls, v):
        """Accept comma or plus separated strings as well as lists."""
        if isinstance(v, str):
            if v.startswith("[") and v.endswith("]"):
                import json

                return json.loads(v)
            return [lang.strip() for lang in v.replace("+", ",").split(",") if lang.strip()]
        return v

    @field_validator("min_confidence")
    @classmethod
    def validate_min_confidence(cls, v: float) -> float:
        if not 0.0 <= v <= 100.0:
            raise ValueError("OCR min_confidence must be between 0 and 100")
        return v

    @field_validator("engine_pool_size")
    @classmethod
    def validate_pool_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("OCR engine pool size must be at least 1")
        return v

    @model_validator(mode="after")
    def default_language_supported(self) -> "OCRSettings":
        if not self.supported_languages:
            raise ValueError("At least one OCR language must be supported")
        if self.default_language not in self.supported_languages:
            raise ValueError(
                f"OCR default language '{self.default_language}' is not in {self.supported_languages}"
            )
        return self


class AnalysisSettings(BaseSettings):
    """Language-model analysis stage settings."""

    model_config = SettingsConfigDict(env_prefix="ANALYSIS_")

    timeout_seconds: float = Field(default=90.0, description="Per-call language model timeout")
    provider: str = Field(default="auto", description="'azure', 'openai' or 'auto' (Azure when configured)")

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        if v.lower() not in ["auto", "azure", "openai"]:
            raise ValueError("Analysis provider must be 'auto', 'azure' or 'openai'")
        return v.lower()


class StorageSettings(BaseSettings):
    """Uploaded image storage settings."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    upload_dir: str = Field(default="./uploads/prescriptions", description="Directory for uploaded prescription images")
    max_image_size_mb: int = Field(default=10, description="Maximum upload size in MB")
    allowed_extensions: List[str] = Field(
        default=["jpg", "jpeg", "png", "tif", "tiff", "bmp", "webp"],
        description="Accepted image file extensions",
    )

    @field_validator("max_image_size_mb")
    @classmethod
    def validate_max_size(cls, v: int) -> int:
        if v <= 0 or v > 50:
            raise ValueError("Max image size must be between 1 and 50 MB")
        return v


class NotificationSettings(BaseSettings):
    """Downstream notification settings."""

    model_config = SettingsConfigDict(env_prefix="NOTIFICATION_")

    webhook_url: str = Field(default="", description="URL receiving status notifications (log only when empty)")
    timeout_seconds: float = Field(default=10.0, description="Webhook request timeout")

    @field_validator("webhook_url")
    @classmethod
    def validate_webhook_url(cls, v: str) -> str:
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("Notification webhook URL must be http(s)")
        return v


class SweeperSettings(BaseSettings):
    """Stuck pipeline sweeper settings."""

    model_config = SettingsConfigDict(env_prefix="PIPELINE_SWEEPER_")

    enabled: bool = Field(default=False, description="Enable periodic re-enqueue of stuck records")
    interval_seconds: int = Field(default=300, description="Seconds between sweeps")
    threshold_seconds: int = Field(default=900, description="Age after which an unqueued record is considered stuck")
    queued_threshold_seconds: int = Field(
        default=3600,
        description="Age after which an in-flight record whose job was queued is considered lost",
    )


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = Field(default="INFO", description="Logging level")
    format: str = Field(default="json", description="Log format (json or text)")

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate logging level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v.lower() not in ["json", "text"]:
            raise ValueError("Log format must be 'json' or 'text'")
        return v.lower()


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    app_name: str = Field(default="Rx-Pipeline", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    app_env: str = Field(default="development", description="Application environment")

    # Sub-settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    azure_openai: AzureOpenAISettings = Field(default_factory=AzureOpenAISettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    azure_queue: AzureQueueSettings = Field(default_factory=AzureQueueSettings)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)
    ocr: OCRSettings = Field(default_factory=OCRSettings)
    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    notification: NotificationSettings = Field(default_factory=NotificationSettings)
    sweeper: SweeperSettings = Field(default_factory=SweeperSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("app_env")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        """Validate application environment."""
        valid_envs = ["development", "staging", "production", "testing"]
        if v.lower() not in valid_envs:
            raise ValueError(f"App environment must be one of: {valid_envs}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"


# Global settings instance (loaded after attempting to read .env)
_settings: Optional[Settings] = None


def _load_env_file_if_available() -> None:
    """Best-effort load of .env by searching current and parent directories.

    Sub-settings read os.environ directly, so the file has to be loaded into the
    process environment before they are constructed.
    """
    from dotenv import load_dotenv

    cwd = Path(os.getcwd()).resolve()
    for parent in [cwd, *cwd.parents]:
        candidate = parent / ".env"
        if candidate.exists():
            # Do not override already-set environment variables
            load_dotenv(dotenv_path=str(candidate), override=False)
            logging.getLogger("rxpipeline").debug(f"Loaded environment from {candidate}")
            break


def get_settings() -> Settings:
    """Get application settings instance (lazy-init with .env discovery)."""
    global _settings
    if _settings is None:
        _load_env_file_if_available()
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
