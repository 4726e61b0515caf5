"""Configuration utilities for the AskLLM gateway."""
from __future__ import annotations

import os
from functools import lru_cache
from typing import List

from pydantic import BaseModel, Field, field_validator

DEFAULT_UPSTREAM_URL = "https://llm.chutes.ai/v1/chat/completions"
DEFAULT_MODEL = "deepseek-ai/DeepSeek-R1"


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    api_token: str
    upstream_url: str = DEFAULT_UPSTREAM_URL
    model: str = DEFAULT_MODEL
    timeout_seconds: float = Field(default=60.0, gt=0)
    max_tokens: int = Field(default=1024, ge=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=1, le=65535)
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_origins(cls, value: List[str] | str) -> List[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @classmethod
    def from_env(cls) -> "Settings":
        data = {
            "api_token": (os.getenv("CHUTES_API_TOKEN") or "").strip(),
            "upstream_url": os.getenv("ASKLLM_UPSTREAM_URL", DEFAULT_UPSTREAM_URL),
            "model": os.getenv("ASKLLM_MODEL", DEFAULT_MODEL),
            "timeout_seconds": os.getenv("ASKLLM_TIMEOUT_SECONDS", "60"),
            "max_tokens": os.getenv("ASKLLM_MAX_TOKENS", "1024"),
            "temperature": os.getenv("ASKLLM_TEMPERATURE", "0.7"),
            "host": os.getenv("ASKLLM_HOST", "0.0.0.0"),
            "port": os.getenv("ASKLLM_PORT", "8080"),
            "allowed_origins": os.getenv("ASKLLM_ALLOWED_ORIGINS", "*"),
        }
        return cls(**data)


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings."""

    settings = Settings.from_env()
    if not settings.api_token:
        raise ValueError("CHUTES_API_TOKEN environment variable is not set.")
    return settings
