"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

import hashlib

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_NAMESPACE = "collections"


class VendorConfig(BaseModel):
    """A validated configuration model for the application."""

    # Cache Settings
    cache_dir: str
    namespace: str = DEFAULT_NAMESPACE
    checksum_algorithm: str = "md5"
    sweep: bool = False

    # Fetch Settings
    max_workers: int = 8
    fetch_attempts: int = 3
    base_delay: float = 1.5
    connect_timeout: float = 15.0
    read_timeout: float = 90.0

    # Logging
    json_log: bool = False

    # Internal fields not loaded from INI file
    config_path: str = Field(..., repr=False)

    class Config:
        """Pydantic model configuration."""

        validate_assignment = True
        str_strip_whitespace = True

    @field_validator("cache_dir")
    @classmethod
    def validate_cache_dir(cls, v: str) -> str:
        if not v:
            raise ValueError("Cache directory cannot be empty.")
        return v

    @field_validator("namespace")
    @classmethod
    def validate_namespace(cls, v: str) -> str:
        """Ensures the namespace is a single directory name."""
        if not v or v in (".", "..") or "/" in v or "\\" in v:
            raise ValueError(f"Namespace must be a plain directory name, got: {v!r}")
        return v

    @field_validator("checksum_algorithm")
    @classmethod
    def validate_algorithm(cls, v: str) -> str:
        v = v.lower()
        if v not in hashlib.algorithms_available:
            raise ValueError(f"Unsupported checksum algorithm: {v}")
        return v

    @field_validator("max_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        """Ensures a reasonable number of workers."""
        if v < 1 or v > 32:
            raise ValueError("Max workers must be between 1 and 32.")
        return v

    @field_validator("fetch_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 1 or v > 10:
            raise ValueError("Fetch attempts must be between 1 and 10.")
        return v

    @model_validator(mode="after")
    def validate_timings(self) -> "VendorConfig":
        """Checks that delays and timeouts are usable."""
        if self.base_delay < 0:
            raise ValueError("Base delay cannot be negative.")
        if self.connect_timeout <= 0 or self.read_timeout <= 0:
            raise ValueError("Timeouts must be positive.")
        return self

