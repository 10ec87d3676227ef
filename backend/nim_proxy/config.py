"""
Proxy configuration loaded from the environment (and an optional .env file).
"""
from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .catalog import DEFAULT_MODEL, MODEL_MAPPING


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        case_sensitive=False,
        env_file=".env",
    )

    # Upstream
    nim_api_key: str = Field(..., min_length=1)
    nim_api_base: str = "https://integrate.api.nvidia.com/v1"
    connect_timeout: float = 10.0
    request_timeout: float = 300.0

    # Server
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: List[str] = ["*"]

    # Models
    default_model: str = DEFAULT_MODEL
    strict_models: bool = False

    # Logging
    log_level: str = "INFO"
    enable_request_logging: bool = True

    @field_validator("nim_api_base")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("default_model")
    @classmethod
    def _known_default(cls, v: str) -> str:
        if v not in MODEL_MAPPING:
            raise ValueError(f"default_model must be one of {list(MODEL_MAPPING)}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings. Raises pydantic.ValidationError when NIM_API_KEY is missing."""
    return Settings()
