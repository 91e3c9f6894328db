"""
Settings for bg-blaster.

Model runtime switches (device, local models, Hub cache) and web surface
limits, read from the environment or a .env file.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Model runtime
    allow_local_models: bool = Field(False, description="Permit loading the model from a local directory")
    prefer_accelerator: bool = Field(True, description="Use CUDA / MPS when available")
    device: Optional[str] = Field(None, description="Force a torch device, e.g. 'cpu' or 'cuda:1'")
    trust_remote_code: bool = Field(True)
    hf_cache_dir: Optional[Path] = Field(None)

    # Web surface
    max_upload_bytes: int = Field(20 * 1024 * 1024)
    host: str = Field("127.0.0.1")
    port: int = Field(8000)
    log_level: str = Field("INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in LOG_LEVELS:
            raise ValueError("LOG_LEVEL must be one of " + "|".join(sorted(LOG_LEVELS)))
        return v

    @field_validator("max_upload_bytes")
    @classmethod
    def validate_max_upload_bytes(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("MAX_UPLOAD_BYTES must be positive")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Build the process-wide Settings on first use."""
    return Settings()
