"""
Purpose:
- Centralized configuration using pydantic-settings.
- Reads from environment variables and optional .env file.
- Built once at startup and passed into each component; the instance is frozen.
"""

from typing import List, Tuple
from pathlib import Path
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MIB = 1024 * 1024


class Settings(BaseSettings):
    # Pydantic v2 config (env file + ignore unexpected env vars, immutable once built)
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # API host/port
    host: str = Field(default="0.0.0.0", description="Bind address for FastAPI/Uvicorn")
    port: int = Field(default=5000, description="Port for FastAPI/Uvicorn")
    environment: str = Field(default="production", description="'development' exposes error details")
    log_level: str = Field(default="INFO")

    # CORS
    cors_allow_origins: List[str] = Field(default=["*"], description="Allowed origins for browser apps")

    # ---- Upload handling ----
    upload_dir: Path = Field(default=Path("./uploads"), description="Staging area for uploaded images")
    max_file_size: int = Field(default=16 * MIB, description="Max accepted upload size in bytes")
    allowed_extensions: Tuple[str, ...] = Field(default=(".png", ".jpg", ".jpeg", ".gif", ".webp"))

    # ---- Inference backend (Ollama) ----
    ollama_host: str = Field(default="localhost")
    ollama_port: int = Field(default=11434)
    vision_model: str = Field(
        default="gemma3:4b",
        validation_alias=AliasChoices("vision_model", "gemma_model"),
        description="Vision-capable model served by the backend",
    )
    liveness_timeout: float = Field(default=5.0, description="Seconds allowed for the /api/tags liveness check")
    inference_timeout: float = Field(default=120.0, description="Hard wall-clock bound on one generate call")

    # Sampling knobs sent with every generate call
    temperature: float = Field(default=0.7)
    top_p: float = Field(default=0.9)
    max_tokens: int = Field(default=500)
    default_prompt: str = Field(default="Analyze this image and provide a detailed summary")

    # ---- Preprocessing ----
    max_image_dimension: int = Field(default=1024, description="Longest side after downscaling")
    jpeg_quality: int = Field(default=85)

    # ---- Batch ----
    batch_max_files: int = Field(default=10)
    batch_concurrency: int = Field(default=1, ge=1, description="In-flight inference calls per batch")

    @property
    def backend_url(self) -> str:
        return f"http://{self.ollama_host}:{self.ollama_port}"

    @property
    def max_file_size_label(self) -> str:
        return f"{self.max_file_size / MIB:g}MB"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"
