"""Service configuration.

Settings come from a YAML file (``service_config.yaml`` next to this module,
or the path in ``SERVICE_CONFIG``) validated into pydantic models. A few
deployment switches can be overridden from the environment.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_CONFIG_PATH = Path(__file__).with_name("service_config.yaml")


class StreamConfig(BaseModel):
    window_duration_s: float = Field(1.0, gt=0)
    overlap_duration_s: float = Field(0.25, gt=0)
    highpass_cutoff_hz: float = Field(0.5, gt=0)
    allowed_channels: list[str] = Field(default_factory=lambda: ["AF7", "AF8"])
    idle_timeout_s: Optional[float] = 600.0
    max_ownership_violations: int = Field(5, ge=1)
    worker_threads: int = Field(2, ge=1)
    quarantine_file: Optional[str] = None
    verbose: bool = False


class AggregationConfig(BaseModel):
    epoch_duration_ms: int = Field(15_000, gt=0)
    enable_synchrony: bool = True
    enable_alignment: bool = True
    # how far before the epoch start a reference reading may still be matched
    reference_lookback_ms: int = Field(300_000, ge=0)
    job_timeout_s: float = Field(10.0, gt=0)

    @model_validator(mode="after")
    def _timeout_within_epoch(self) -> "AggregationConfig":
        # a job must give up before the next epoch closes
        if self.job_timeout_s * 1000 >= self.epoch_duration_ms:
            raise ValueError("job_timeout_s must be shorter than epoch_duration_ms")
        return self


class StorageConfig(BaseModel):
    db_path: str = "features.db"


class AuthConfig(BaseModel):
    tokens: dict[str, int] = Field(default_factory=dict)


class LogFileConfig(BaseModel):
    log_file_name: str = "logs/pipeline_metrics.log"
    log_file_max_size: int = 5_000_000
    log_file_max_count: int = 3


class MetricsConfig(BaseModel):
    log_to_console: bool = False
    log_file_configuration: Optional[LogFileConfig] = None


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: Optional[str] = None

    @field_validator("level")
    @classmethod
    def _known_level(cls, level: str) -> str:
        level = level.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {level}")
        return level


class ServiceConfig(BaseModel):
    stream: StreamConfig = Field(default_factory=StreamConfig)
    aggregation: AggregationConfig = Field(default_factory=AggregationConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)


def _env_flag(name: str) -> Optional[bool]:
    value = os.getenv(name)
    if value is None:
        return None
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_service_config(path: str | Path | None = None) -> ServiceConfig:
    """Load configuration from YAML; a missing default file yields the defaults."""
    explicit = path or os.getenv("SERVICE_CONFIG")
    config_path = Path(explicit) if explicit else DEFAULT_CONFIG_PATH

    data: dict = {}
    if config_path.exists():
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    elif explicit:
        raise FileNotFoundError(f"Config file not found: {config_path}")

    config = ServiceConfig.model_validate(data)

    synchrony = _env_flag("ENABLE_SYNCHRONY_CALCULATION")
    if synchrony is not None:
        config.aggregation.enable_synchrony = synchrony
    alignment = _env_flag("ENABLE_ALIGNMENT_CALCULATION")
    if alignment is not None:
        config.aggregation.enable_alignment = alignment
    db_path = os.getenv("FEATURE_DB_PATH")
    if db_path:
        config.storage.db_path = db_path

    return config


def configure_logging(config: LoggingConfig, verbose: bool = False) -> None:
    """Root logging setup; only applied when no handlers are configured yet."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=config.level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
        if config.file:
            Path(config.file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(config.file)
            file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
            root.addHandler(file_handler)

    # the per-window pipeline chatter stays at WARNING unless verbose
    logging.getLogger("stream_pipeline").setLevel(logging.DEBUG if verbose else logging.WARNING)
