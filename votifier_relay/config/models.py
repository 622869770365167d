"""
Pydantic-based configuration models for the Votifier relay client.

Configuration is loaded from environment variables and an optional .env file.
Each section has its own prefix: VOTIFIER_ for relay behaviour and LOGGING_
for the logging system.
"""

from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class VotifierConfig(BaseSettings):
    """Vote relay behaviour."""

    timeout_ms: int = Field(default=5000, description="Hard deadline for one relay attempt in milliseconds")
    close_grace_ms: int = Field(
        default=100, description="Delay before closing a self-closing session so the peer can read"
    )
    service_name: str = Field(default="MCServerList", description="Service name sent in every vote payload")
    default_port: int = Field(default=8192, description="Votifier port used when a target omits one")
    v1_banner_uses_fixed_key: bool = Field(
        default=True,
        description="Treat a 'VOTIFIER 1' banner as the fixed-key RSA variant instead of legacy RSA",
    )
    fixed_key_pem: str | None = Field(default=None, description="PEM public key for the fixed-key RSA variant")
    fixed_key_file: str | None = Field(default=None, description="Path to a PEM file for the fixed-key RSA variant")
    max_handshake_bytes: int = Field(default=8192, description="Maximum accepted handshake line length in bytes")

    @field_validator("timeout_ms", "close_grace_ms", "max_handshake_bytes")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate durations and limits are positive."""
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @field_validator("default_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is in valid range."""
        if not 1 <= v <= 65535:
            logger.error("Invalid default Votifier port", port=v, valid_range="1-65535")
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator("service_name")
    @classmethod
    def validate_service_name(cls, v: str) -> str:
        """The service name is one line of the vote block, so it cannot be empty or contain newlines."""
        if not v or not v.strip():
            raise ValueError("Service name cannot be empty")
        if "\n" in v or "\r" in v:
            raise ValueError("Service name cannot contain line breaks")
        return v

    @model_validator(mode="after")
    def load_fixed_key_file(self) -> "VotifierConfig":
        """Load the fixed key from disk when only a file path was given."""
        if self.fixed_key_file and not self.fixed_key_pem:
            key_path = Path(self.fixed_key_file)
            if not key_path.exists():
                logger.error("Fixed Votifier key file does not exist", file_path=str(key_path))
                raise ValueError(f"Fixed key file not found: {key_path}")
            self.fixed_key_pem = key_path.read_text(encoding="utf-8")
        return self

    @property
    def timeout_seconds(self) -> float:
        """Deadline expressed in seconds for asyncio."""
        return self.timeout_ms / 1000

    @property
    def close_grace_seconds(self) -> float:
        """Grace delay expressed in seconds for asyncio."""
        return self.close_grace_ms / 1000

    model_config = {"env_prefix": "VOTIFIER_", "case_sensitive": False, "extra": "ignore"}


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    environment: str = Field(default="local", description="Logging environment")
    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="human", description="Log format (json or human)")
    log_base: str = Field(default="logs", description="Base directory for log files")
    log_to_file: bool = Field(default=True, description="Write logs to a rotating file")
    max_bytes: int = Field(default=10 * 1024 * 1024, description="Rotate the log file after this many bytes")
    backup_count: int = Field(default=5, description="Number of rotated log files to keep")
    disable_logging: bool = Field(default=False, description="Disable handler setup entirely")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is a known value."""
        valid_envs = ["unit_test", "local", "staging", "production"]
        if v not in valid_envs:
            raise ValueError(f"Environment must be one of {valid_envs}, got '{v}'")
        return v

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}, got '{v}'")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format."""
        if v not in ["json", "human"]:
            raise ValueError(f"Log format must be 'json' or 'human', got '{v}'")
        return v

    model_config = {"env_prefix": "LOGGING_", "case_sensitive": False, "extra": "ignore"}

    def to_legacy_dict(self) -> dict:
        """Convert to the dict shape setup_enhanced_logging() expects."""
        return {
            "environment": self.environment,
            "level": self.level,
            "format": self.format,
            "log_base": self.log_base,
            "log_to_file": self.log_to_file,
            "max_bytes": self.max_bytes,
            "backup_count": self.backup_count,
            "disable_logging": self.disable_logging,
        }


class AppConfig(BaseSettings):
    """
    Composite application configuration.

    Aggregates all other configs. Access via get_config().
    """

    votifier: VotifierConfig = Field(default_factory=VotifierConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "case_sensitive": False, "extra": "ignore"}

    def to_legacy_dict(self) -> dict:
        """Convert to dict format for the logging setup."""
        return {"logging": self.logging.to_legacy_dict()}
