"""Configuration management for the kernel."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class KernelSettings(BaseSettings):
    """Kernel settings, read from ``REPL_KERNEL_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="REPL_KERNEL_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Log level")

    # Execution Configuration
    mirror_stdout: bool = Field(default=True, description="Echo captured cell stdout to the kernel's stdout")
    mirror_stderr: bool = Field(default=False, description="Echo captured cell stderr to the kernel's stderr")
    completion_include_builtins: bool = Field(default=True, description="Offer builtins as completions")

    # Server Configuration
    poll_interval_ms: int = Field(default=100, description="Socket poll timeout in milliseconds")
    banner: Optional[str] = Field(None, description="Banner shown by kernel_info; generated when unset")


def get_settings(**overrides: Any) -> KernelSettings:
    """Get kernel settings; explicit overrides win over the environment."""
    return KernelSettings(**overrides)
