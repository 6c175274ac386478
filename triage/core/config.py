"""
Configuration Management System
Handles pipeline, analyzer, proxy and logging settings from the environment and YAML
"""

import yaml
from pathlib import Path
from typing import Dict, Any, Optional, List
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings
import structlog

logger = structlog.get_logger()

MIN_CONSUMER_WORKERS = 1
MAX_CONSUMER_WORKERS = 10

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
LOG_FORMATS = ("console", "json")


class ScanConfig(BaseSettings):
    """Scan pipeline settings: consumer pool, queue and pre-filter engine"""

    # Consumer pool pulling from the bounded queue
    consumer_workers: int = Field(3)
    queue_capacity: int = Field(1000, gt=0)

    # Idle consumers wake up this often to re-check the stop flag
    poll_interval_seconds: float = Field(1.0, gt=0)
    stop_grace_seconds: float = Field(5.0, ge=0)

    # Pre-filter engine; its pool is shared by every consumer
    prefilter_enabled: bool = Field(True)
    filter_workers: int = Field(2)
    filter_budget_ms: int = Field(500, ge=0)

    # Optional YAML rule file replacing the packaged rule set
    rules_file: Optional[Path] = Field(None)

    @field_validator("consumer_workers", mode="after")
    @classmethod
    def clamp_consumer_workers(cls, v):
        """Keep the consumer pool within the supported range"""
        return max(MIN_CONSUMER_WORKERS, min(MAX_CONSUMER_WORKERS, v))

    @model_validator(mode="after")
    def clamp_filter_workers(self):
        """The filter pool must stay smaller than the consumer pool"""
        ceiling = max(1, self.consumer_workers - 1)
        if self.filter_workers < 1 or self.filter_workers > ceiling:
            clamped = max(1, min(self.filter_workers, ceiling))
            logger.warning(
                "Filter workers clamped",
                requested=self.filter_workers,
                clamped=clamped,
                consumer_workers=self.consumer_workers
            )
            self.filter_workers = clamped
        if self.filter_workers >= self.consumer_workers:
            logger.warning(
                "Filter pool not smaller than consumer pool",
                filter_workers=self.filter_workers,
                consumer_workers=self.consumer_workers
            )
        return self

    @property
    def thread_ceiling(self) -> int:
        """Upper bound of outstanding filter batch tasks across all consumers"""
        return self.consumer_workers * self.filter_workers

    model_config = {
        "env_prefix": "SCAN_",
        "env_file": ".env",
        "extra": "ignore"
    }


class AnalyzerConfig(BaseSettings):
    """Deep analyzer (OpenAI-compatible chat completions endpoint) settings"""

    api_url: str = Field("http://127.0.0.1:11434/v1/chat/completions")
    api_key: Optional[str] = Field(None)
    model: str = Field("qwen-plus")
    temperature: float = Field(0.2, ge=0, le=2)

    # Tool-heavy analyses may take several minutes
    timeout_seconds: float = Field(600.0, gt=0)
    connect_timeout_seconds: float = Field(10.0, gt=0)

    # Request/response text beyond this is truncated before prompting
    max_content_chars: int = Field(28220, gt=0)

    model_config = {
        "env_prefix": "ANALYZER_",
        "env_file": ".env",
        "extra": "ignore"
    }


class ProxyConfig(BaseSettings):
    """HTTP interception proxy configuration"""

    proxy_host: str = Field("127.0.0.1")
    proxy_port: int = Field(8080, gt=0, lt=65536)
    ca_cert_dir: Path = Field(Path("data/certs"))

    # Responses of these content types are never handed to the pipeline
    ignored_content_types: List[str] = Field(
        default=["image/", "video/", "audio/", "font/"]
    )

    model_config = {
        "env_prefix": "PROXY_",
        "env_file": ".env",
        "extra": "ignore"
    }


class LoggingConfig(BaseSettings):
    """Log level, console format and rotating log files"""

    level: str = Field("INFO")
    directory: Path = Field(Path("logs"))

    # "console" renders key=value lines for people, "json" one object per line
    console_format: str = Field("console")

    max_bytes: int = Field(10 * 1024 * 1024, gt=0)
    backup_count: int = Field(5, ge=0)

    # Third-party loggers held at WARNING so per-flow chatter stays out
    quiet_loggers: List[str] = Field(default=["mitmproxy", "aiohttp", "asyncio"])

    @field_validator("level")
    @classmethod
    def validate_level(cls, v):
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("console_format")
    @classmethod
    def validate_console_format(cls, v):
        if v not in LOG_FORMATS:
            raise ValueError(f"console_format must be one of {', '.join(LOG_FORMATS)}")
        return v

    model_config = {
        "env_prefix": "LOG_",
        "env_file": ".env",
        "extra": "ignore"
    }


class ApplicationConfig:
    """
    Main configuration class that combines all config sections
    This is what the rest of the application will use
    """

    def __init__(self, config_file: Path = Path("config/default.yaml"), **overrides):
        self.config_file = Path(config_file)

        # Load custom configuration from YAML if it exists
        self.custom_config = self._load_custom_config()

        self.scan = ScanConfig(**self._section("scan", overrides))
        self.analyzer = AnalyzerConfig(**self._section("analyzer", overrides))
        self.proxy = ProxyConfig(**self._section("proxy", overrides))
        self.logging = LoggingConfig(**self._section("logging", overrides))

    def _load_custom_config(self) -> Dict[str, Any]:
        """Load user-defined configuration from YAML files"""
        if self.config_file.exists():
            with open(self.config_file, 'r', encoding='utf-8') as f:
                return yaml.safe_load(f) or {}
        return {}

    def _section(self, name: str, overrides: Dict[str, Any]) -> Dict[str, Any]:
        """Merge YAML values for a section with explicit keyword overrides"""
        values = dict(self.custom_config.get(name) or {})
        values.update(overrides.get(name) or {})
        return values

    def summary(self) -> Dict[str, Any]:
        """Settings worth logging at startup (no secrets)"""
        return {
            "consumer_workers": self.scan.consumer_workers,
            "filter_workers": self.scan.filter_workers,
            "thread_ceiling": self.scan.thread_ceiling,
            "queue_capacity": self.scan.queue_capacity,
            "filter_budget_ms": self.scan.filter_budget_ms,
            "analyzer_model": self.analyzer.model,
            "proxy": f"{self.proxy.proxy_host}:{self.proxy.proxy_port}",
        }
