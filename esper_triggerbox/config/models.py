"""
Configuration models using Pydantic for validation.

Configuration is loaded from a JSON file (see loader.py) or built in code.
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class SerialConfig(BaseModel):
    """Serial port configuration."""

    port: str = Field(default="", description="Serial port name (e.g., COM12, /dev/ttyACM0). Empty for auto-discover.")
    baud: int = Field(default=115200, description="Baud rate (fixed by trigger box firmware)")
    read_timeout_seconds: float = Field(
        default=0.1, gt=0, le=5.0, description="Reader thread poll timeout in seconds"
    )
    auto_discover: bool = Field(
        default=True, description="Automatically scan for a trigger box when port is empty"
    )


class HandshakeConfig(BaseModel):
    """Identity handshake and quiet-down timing."""

    max_attempts: int = Field(
        default=100, ge=1, le=10000, description="Attempt ceiling for handshake and quiet-down"
    )
    probe_interval_ms: int = Field(
        default=200, ge=1, le=10000, description="Delay between identity probes (ms)"
    )
    quiet_interval_ms: int = Field(
        default=100, ge=1, le=10000, description="Delay between stop-announce tokens (ms)"
    )
    quiet_gap_ms: int = Field(
        default=200, ge=1, le=10000, description="Silence required before the line is considered quiet (ms)"
    )


class CommandConfig(BaseModel):
    """Command/response timing."""

    response_timeout_ms: int = Field(
        default=1000, ge=1, le=60000, description="Default wait for a command reply (ms)"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL"
    )
    file: Optional[str] = Field(
        default=None,
        description="Log file path (None for console only)"
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v):
        """Validate logging level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class SimulatorConfig(BaseModel):
    """Simulated trigger box configuration."""

    enabled: bool = Field(default=False, description="Use simulator instead of real hardware")
    mode: str = Field(default="blue", description="Reported box mode: green or blue")
    box_id: int = Field(default=0, ge=0, le=65535, description="Reported box id")
    box_name: str = Field(default="ESPER", description="Initial box name")
    firmware_version: str = Field(default="1.3", description="Firmware version (X.X)")
    announce_interval_ms: int = Field(
        default=100, ge=1, le=5000, description="Identity repeat interval in announce mode (ms)"
    )

    @field_validator("mode")
    @classmethod
    def validate_mode(cls, v):
        """Validate box mode."""
        if v.lower() not in ("green", "blue"):
            raise ValueError(f"Invalid mode: {v}. Must be 'green' or 'blue'")
        return v.lower()

    @field_validator("box_name")
    @classmethod
    def validate_box_name(cls, v):
        """Box name must not break response framing."""
        if any(c in v for c in "[]\r\n"):
            raise ValueError("Box name must not contain '[', ']' or line breaks")
        return v

    @field_validator("firmware_version")
    @classmethod
    def validate_firmware_version(cls, v):
        """Validate firmware version format."""
        major, _, minor = v.partition(".")
        if not major.isdigit() or not minor.isdigit():
            raise ValueError("Firmware version must look like 'X.X' (e.g., '1.3')")
        return v


class AppConfig(BaseModel):
    """Root configuration model."""

    model_config = ConfigDict(extra="forbid")

    serial: SerialConfig = Field(default_factory=SerialConfig)
    handshake: HandshakeConfig = Field(default_factory=HandshakeConfig)
    command: CommandConfig = Field(default_factory=CommandConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    simulator: SimulatorConfig = Field(default_factory=SimulatorConfig)
