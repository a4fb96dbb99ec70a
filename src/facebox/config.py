"""Environment-based configuration for facebox."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_VERSION = "0.1.0"


class Settings(BaseSettings):
    """Application settings loaded from FACEBOX_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FACEBOX_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8080
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Authentication (None = disabled)
    api_key: str | None = None

    # Detection
    detector: Literal["mock", "onnx"] = "mock"
    confidence_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    mock_min_dimension: int = Field(default=200, ge=0)

    # ONNX backend model source
    onnx_repo_id: str | None = None
    onnx_filename: str | None = None
    onnx_subfolder: str | None = None
    onnx_local_path: str | None = None
    models_dir: str = "models"

    # ONNX Runtime
    device: Literal["cpu", "cuda", "openvino"] = "cpu"
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    model_ttl: int = Field(default=300, ge=0)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    max_queue: int = Field(default=8, ge=0)
    call_timeout: float = Field(default=30.0, gt=0)

    # Output
    output_format: Literal["png", "jpeg"] = "jpeg"
    jpeg_quality: int = Field(default=85, ge=1, le=95)
    stroke_color: tuple[int, int, int] = (0, 255, 0)
    stroke_width: int = Field(default=2, ge=1)

    # Input limits
    max_file_size: int = Field(default=10_485_760, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
