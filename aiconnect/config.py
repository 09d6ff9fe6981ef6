import functools
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Per-user state directory (preferences file, logs)
STATE_DIR = Path.home() / ".aic"


class PTYTimeouts(BaseModel):
    """Timeout configuration for PTY sessions."""

    startup_grace: float = 2.0
    capture: float = 120.0
    read: float = 0.05
    stop_grace: float = 0.5

    @field_validator("startup_grace", "capture", "read", "stop_grace")
    @classmethod
    def validate_positive(cls, v: float, info) -> float:
        """Ensure timeout values are positive."""
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive, got {v}")
        return v


class AttachTimeouts(BaseModel):
    """Timing for interactive (attached) mode."""

    double_escape_window: float = 0.5
    # Delay before typing a //command into a freshly spawned tool vs. a live one
    initial_input_delay: float = 2.5
    reattach_input_delay: float = 0.1
    keystroke_interval: float = 0.02

    @field_validator(
        "double_escape_window",
        "initial_input_delay",
        "reattach_input_delay",
        "keystroke_interval",
    )
    @classmethod
    def validate_positive(cls, v: float, info) -> float:
        """Ensure timing values are positive."""
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive, got {v}")
        return v


class LimitsConfig(BaseModel):
    """Configuration for buffer sizes and thresholds."""

    buffer_limit: int = 100 * 1024  # Ring buffer cap in bytes
    prompt_tail_window: int = 500  # Bytes of recent output checked for the prompt
    min_attach_capture: int = 50  # Shorter attach output is not recorded

    @field_validator("buffer_limit", "prompt_tail_window", "min_attach_capture")
    @classmethod
    def validate_positive(cls, v: int, info) -> int:
        """Ensure limits are positive integers."""
        if v <= 0:
            raise ValueError(f"{info.field_name} must be a positive integer, got {v}")
        return v


class TimeoutConfig(BaseModel):
    """Centralized timeout configuration."""

    pty: PTYTimeouts = Field(default_factory=PTYTimeouts)
    attach: AttachTimeouts = Field(default_factory=AttachTimeouts)


class Config(BaseSettings):
    """
    Application configuration loaded from multiple sources.

    Priority (highest to lowest):
    1. Environment variables
    2. .env file
    3. Default values
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Tool selection
    AIC_DEFAULT_TOOL: Optional[str] = None
    WORKING_DIR: str = Field(default_factory=lambda: str(Path.cwd()))

    # Logging
    AIC_DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = Field(default_factory=lambda: str(STATE_DIR / "logs" / "aic.log"))

    # PTY timeout overrides from environment
    STARTUP_GRACE: float = 2.0
    CAPTURE_TIMEOUT: float = 120.0
    READ_TIMEOUT: float = 0.05
    STOP_GRACE: float = 0.5

    # Attach timing overrides from environment
    DOUBLE_ESCAPE_WINDOW: float = 0.5

    # Limit overrides from environment
    BUFFER_LIMIT: int = 100 * 1024
    PROMPT_TAIL_WINDOW: int = 500
    MIN_ATTACH_CAPTURE: int = 50

    @functools.cached_property
    def timeouts(self) -> TimeoutConfig:
        """Build TimeoutConfig from environment variables."""
        return TimeoutConfig(
            pty=PTYTimeouts(
                startup_grace=self.STARTUP_GRACE,
                capture=self.CAPTURE_TIMEOUT,
                read=self.READ_TIMEOUT,
                stop_grace=self.STOP_GRACE,
            ),
            attach=AttachTimeouts(
                double_escape_window=self.DOUBLE_ESCAPE_WINDOW,
            ),
        )

    @functools.cached_property
    def limits(self) -> LimitsConfig:
        """Build LimitsConfig from environment variables."""
        return LimitsConfig(
            buffer_limit=self.BUFFER_LIMIT,
            prompt_tail_window=self.PROMPT_TAIL_WINDOW,
            min_attach_capture=self.MIN_ATTACH_CAPTURE,
        )


config = Config()
