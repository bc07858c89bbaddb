"""Configuration Management for BatchServe

This module provides centralized configuration management using Pydantic
settings. The scheduler configuration is immutable once the server starts.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

logger = structlog.get_logger(__name__)

VALID_DEVICES = ("auto", "cpu", "cuda", "mps")


class SchedulerConfig(BaseSettings):
    """Immutable batching configuration, read by the scheduler on every tick."""

    max_batch_size: int = Field(default=8, description="Rows per forward pass")
    tick_duration_ms: int = Field(default=100, description="Maximum wait before a cut (ms)")
    max_sequence_length: int = Field(default=512, description="Token limit per input")
    max_queue_size: int = Field(default=1024, description="Pending requests before QueueFull")
    truncation: bool = Field(default=True, description="Truncate inputs longer than the limit")
    device: str = Field(default="auto", description="Device preference: auto, cpu, cuda, mps")

    @field_validator("max_batch_size")
    @classmethod
    def validate_batch_size(cls, v):
        if v < 1:
            raise ValueError("max_batch_size must be at least 1")
        return v

    @field_validator("tick_duration_ms")
    @classmethod
    def validate_tick(cls, v):
        if v < 1:
            raise ValueError("tick_duration_ms must be at least 1")
        return v

    @field_validator("max_sequence_length")
    @classmethod
    def validate_sequence_length(cls, v):
        if v < 1:
            raise ValueError("max_sequence_length must be at least 1")
        return v

    @field_validator("device")
    @classmethod
    def validate_device(cls, v):
        v = v.lower().strip()
        if v not in VALID_DEVICES:
            raise ValueError(f"Invalid device: {v}")
        return v

    @model_validator(mode="after")
    def validate_queue_size(self):
        if self.max_queue_size < self.max_batch_size:
            raise ValueError("max_queue_size cannot be smaller than max_batch_size")
        return self

    @property
    def tick_seconds(self) -> float:
        return self.tick_duration_ms / 1000.0

    model_config = {"frozen": True}  # Immutable


@dataclass
class ModelConfig:
    """Where to load the classification model from."""

    model_id: Optional[str] = None
    model_path: Optional[str] = None
    revision: str = "main"
    use_safetensors: bool = True
    id2label: Optional[str] = None

    def __post_init__(self):
        """Validate model configuration."""
        if self.model_path and not Path(self.model_path).is_dir():
            raise ValueError(f"Model path {self.model_path} is not a directory")

        if self.id2label is not None and not self.parse_id2label():
            raise ValueError(f"Invalid id2label mapping: {self.id2label!r}")

    @property
    def source(self) -> Optional[str]:
        """Local path takes precedence over a Hub model id."""
        return self.model_path or self.model_id

    def parse_id2label(self) -> Optional[Dict[int, str]]:
        """Parse a mapping such as ``"0=No Claim,1=Claim"``.

        Malformed pairs are skipped.
        """
        if self.id2label is None:
            return None

        mapping: Dict[int, str] = {}
        for pair in self.id2label.split(","):
            label_id, sep, label = pair.partition("=")
            if not sep:
                continue
            try:
                mapping[int(label_id.strip())] = label.strip()
            except ValueError:
                continue
        return mapping


@dataclass
class ServerConfig:
    """HTTP transport settings."""

    host: str = "127.0.0.1"
    port: int = 8000

    def __post_init__(self):
        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}")

    @property
    def server_address(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass
class LoggingConfig:
    """Configuration for logging and monitoring."""

    log_level: str = "INFO"
    log_format: str = "console"
    enable_metrics: bool = True

    def __post_init__(self):
        """Validate logging configuration."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level not in valid_levels:
            raise ValueError(f"Invalid log level: {self.log_level}")

        valid_formats = ["console", "json"]
        if self.log_format not in valid_formats:
            raise ValueError(f"Invalid log format: {self.log_format}")


@dataclass
class ServeConfig:
    """Main configuration class for BatchServe."""

    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "ServeConfig":
        """Load configuration from environment variables."""

        # Load from .env file if specified
        if env_file:
            cls._load_env_file(env_file)

        device = os.getenv("DEVICE", "auto")
        if cls._get_bool_env("CPU_ONLY", False):
            device = "cpu"

        scheduler = SchedulerConfig(
            max_batch_size=cls._get_int_env("BATCH_SIZE", 8),
            tick_duration_ms=cls._get_int_env("TICK_DURATION_MS", 100),
            max_sequence_length=cls._get_int_env("MAX_SEQUENCE_LENGTH", 512),
            max_queue_size=cls._get_int_env("MAX_QUEUE_SIZE", 1024),
            truncation=cls._get_bool_env("TRUNCATION", True),
            device=device,
        )

        model = ModelConfig(
            model_id=os.getenv("MODEL_ID"),
            model_path=os.getenv("MODEL_PATH"),
            revision=os.getenv("MODEL_REVISION", "main"),
            use_safetensors=not cls._get_bool_env("USE_PTH", False),
            id2label=os.getenv("ID2LABEL"),
        )

        server = ServerConfig(
            host=os.getenv("HOST", "127.0.0.1"),
            port=cls._get_int_env("PORT", 8000),
        )

        logging = LoggingConfig(
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("LOG_FORMAT", "console"),
            enable_metrics=cls._get_bool_env("ENABLE_METRICS", True),
        )

        return cls(scheduler=scheduler, model=model, server=server, logging=logging)

    @staticmethod
    def _load_env_file(env_file: str):
        """Load environment variables from file."""
        env_path = Path(env_file)
        if not env_path.exists():
            return

        with open(env_path, "r") as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, value = line.split("=", 1)
                    os.environ[key.strip()] = value.strip()

    @staticmethod
    def _get_bool_env(key: str, default: bool) -> bool:
        """Get boolean environment variable."""
        value = os.getenv(key, str(default)).lower()
        return value in ("true", "1", "yes", "on")

    @staticmethod
    def _get_int_env(key: str, default: int) -> int:
        """Get integer environment variable."""
        try:
            return int(os.getenv(key, str(default)))
        except ValueError:
            return default

    def validate(self, require_model: bool = False) -> List[str]:
        """Validate the entire configuration and return any errors."""
        errors = []

        if require_model and not self.model.source:
            errors.append("Either MODEL_ID or MODEL_PATH must be provided")

        return errors

    def sizing_warnings(self) -> List[str]:
        """Valid but probably unintended batch sizing."""
        warnings = []

        if self.scheduler.max_batch_size > 1024:
            warnings.append("max_batch_size > 1024 is likely to exhaust device memory")

        if self.scheduler.device == "cpu" and self.scheduler.max_batch_size > 64:
            warnings.append("max_batch_size > 64 on CPU adds latency without throughput gains")

        return warnings

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "scheduler": self.scheduler.model_dump(),
            "model": {
                "model_id": self.model.model_id,
                "model_path": self.model.model_path,
                "revision": self.model.revision,
                "use_safetensors": self.model.use_safetensors,
                "id2label": self.model.parse_id2label(),
            },
            "server": {"host": self.server.host, "port": self.server.port},
            "logging": {
                "log_level": self.logging.log_level,
                "log_format": self.logging.log_format,
                "enable_metrics": self.logging.enable_metrics,
            },
        }

    def __str__(self) -> str:
        return (
            f"ServeConfig(batch_size={self.scheduler.max_batch_size}, "
            f"tick_ms={self.scheduler.tick_duration_ms}, model={self.model.source})"
        )


# Global configuration instance
_global_config: Optional[ServeConfig] = None


def get_config() -> ServeConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = ServeConfig.from_env()
    return _global_config


def set_config(config: ServeConfig):
    """Set the global configuration instance."""
    global _global_config

    errors = config.validate()
    if errors:
        raise ValueError(f"Configuration validation failed: {errors}")

    for warning in config.sizing_warnings():
        logger.warning("Unusual batch sizing", warning=warning)

    _global_config = config


def reset_config():
    """Reset the global configuration to default."""
    global _global_config
    _global_config = None
