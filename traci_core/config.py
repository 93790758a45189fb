"""
Client configuration management
"""
from pathlib import Path
from typing import Optional

from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from traci_core.exceptions import ConfigurationError


class Settings(BaseSettings):
    """TraCI client settings"""

    model_config = SettingsConfigDict(env_prefix="TRACI_", env_file=".env", extra="ignore")

    # Simulator endpoint
    host: str = "127.0.0.1"
    port: int = 8813

    # Socket behaviour
    connect_timeout_sec: Optional[float] = 10.0
    read_timeout_sec: Optional[float] = None  # None blocks until the simulator answers
    tcp_nodelay: bool = True
    max_frame_bytes: int = 64 * 1024 * 1024

    # Subscription clock
    track_simulation_time: bool = True

    # Paths
    project_root: Path = Path(__file__).parent.parent
    log_dir: Path = project_root / "logs"
    log_to_file: bool = False
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("port")
    @classmethod
    def _check_port(cls, value: int) -> int:
        if not 0 < value < 65536:
            raise ValueError("port must be between 1 and 65535")
        return value

    @field_validator("connect_timeout_sec", "read_timeout_sec")
    @classmethod
    def _check_timeout(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and value <= 0:
            raise ValueError("timeouts must be positive or unset")
        return value

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        if value not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return value

    @field_validator("max_frame_bytes")
    @classmethod
    def _check_frame_limit(cls, value: int) -> int:
        if value < 4:
            raise ValueError("max_frame_bytes must cover the 4-byte length prefix")
        return value


def load_settings(**overrides) -> Settings:
    """
    Build settings from the environment plus explicit overrides.

    Raises:
        ConfigurationError: If any value fails validation
    """
    try:
        return Settings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(
            "Invalid TraCI client configuration",
            details={"errors": e.errors()},
        ) from e


settings = Settings()
