"""Configuration management for the streaming client.

This module contains the configuration schema and constants:
- StreamSettings: Global streaming configuration (backpressure, timeouts, HTTP)
- Environment variable loading (``LLM_STREAM_<FIELD>``)
- Defaults shared by the session, transport and response façade
"""

from __future__ import annotations

import logging
import os
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

LOGGER = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------

ENV_PREFIX = "LLM_STREAM_"
DEFAULT_HIGH_WATERMARK = 500
DEFAULT_RECEIVE_TIMEOUT_SECONDS = 30.0
DEFAULT_METADATA_TIMEOUT_SECONDS = 60.0
DEFAULT_READ_CHUNK_BYTES = 4096

# -----------------------------------------------------------------------------
# StreamSettings
# -----------------------------------------------------------------------------


class StreamSettings(BaseModel):
    """Global streaming configuration shared across sessions."""

    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    # Session
    HIGH_WATERMARK: int = Field(
        default=DEFAULT_HIGH_WATERMARK,
        ge=1,
        description=(
            "Pending-chunk queue length above which the session stops acknowledging "
            "transport data until consumers drain it. Bounds memory when the consumer "
            "is slower than the provider."
        ),
    )
    RECEIVE_TIMEOUT_SECONDS: float = Field(
        default=DEFAULT_RECEIVE_TIMEOUT_SECONDS,
        gt=0,
        description="Seconds a single pull from the chunk stream may wait before raising a timeout.",
    )
    METADATA_TIMEOUT_SECONDS: float = Field(
        default=DEFAULT_METADATA_TIMEOUT_SECONDS,
        gt=0,
        description="Seconds to wait for completion metadata (usage, finish reason) once requested.",
    )

    # HTTP transport
    HTTP_CONNECT_TIMEOUT_SECONDS: int = Field(
        default=10,
        ge=1,
        description="Seconds to wait for the TCP/TLS connection to the provider before failing.",
    )
    HTTP_TOTAL_TIMEOUT_SECONDS: Optional[int] = Field(
        default=None,
        ge=1,
        description=(
            "Overall HTTP timeout (seconds). Null disables the total timeout so long-running "
            "streams are not interrupted."
        ),
    )
    HTTP_SOCK_READ_SECONDS: int = Field(
        default=300,
        ge=1,
        description="Idle read timeout (seconds) applied to active streams when HTTP_TOTAL_TIMEOUT_SECONDS is disabled.",
    )
    CONNECT_MAX_RETRIES: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts made to establish the streaming connection before the first byte is delivered.",
    )
    READ_CHUNK_BYTES: int = Field(
        default=DEFAULT_READ_CHUNK_BYTES,
        ge=64,
        description="Maximum size of each raw fragment read from the HTTP response body.",
    )

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Minimum level for console output of stream session logs.",
    )
    SESSION_LOG_MAX_LINES: int = Field(
        default=2000,
        ge=100,
        le=200000,
        description="Maximum structured log events retained in memory per stream.",
    )

    @model_validator(mode="before")
    @classmethod
    def _normalize_blank(cls, values: Any) -> Any:
        """Treat blank strings as unset so environment placeholders fall back to defaults."""
        if not isinstance(values, dict):
            return values
        return {
            key: val
            for key, val in values.items()
            if not (isinstance(val, str) and not val.strip())
        }

    @property
    def log_level_value(self) -> int:
        return logging.getLevelName(self.LOG_LEVEL)

    @classmethod
    def from_env(cls, environ: Optional[dict[str, str]] = None, **overrides: Any) -> "StreamSettings":
        """Build settings from ``LLM_STREAM_*`` environment variables.

        Explicit keyword overrides win over the environment. Invalid values raise
        ``pydantic.ValidationError``.
        """
        source = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for name in cls.model_fields:
            raw = source.get(f"{ENV_PREFIX}{name}")
            if raw is not None:
                values[name] = raw
        if values:
            LOGGER.debug("Loaded stream settings from environment: %s", sorted(values))
        values.update(overrides)
        return cls(**values)
