"""
Configuration loading for simfinity applications.

Usage:
    config = load_config("simfinity.yaml")
    configure_logging(config)
    store = MongoStore.from_config(config.store)
    executor = MutationExecutor(registry, store, config.retry.to_policy())

Environment overrides (applied after the file):
    SIMFINITY_MONGO_URL, SIMFINITY_DATABASE,
    SIMFINITY_MAX_RETRIES, SIMFINITY_LOG_LEVEL
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from simfinity.core.errors import ConfigurationError
from simfinity.runtime.transaction_executor import ExponentialBackoff, RetryPolicy


@dataclass
class StoreConfig:
    """MongoDB connection."""
    url: str = "mongodb://localhost:27017/?replicaSet=rs0"
    database: str = "simfinity"


@dataclass
class RetryConfig:
    """Transient transaction retries."""
    max_attempts: int = 5
    backoff_base: float = 0.05
    backoff_max: float = 2.0

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            backoff=ExponentialBackoff(base=self.backoff_base, maximum=self.backoff_max),
        )


@dataclass
class QueryConfig:
    """List query defaults."""
    default_limit: int = 100


@dataclass
class SimfinityConfig:
    """Main simfinity configuration."""
    store: StoreConfig = field(default_factory=StoreConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    query: QueryConfig = field(default_factory=QueryConfig)
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SimfinityConfig":
        """Create config from dictionary."""
        store_data = data.get("store", {})
        store = StoreConfig(
            url=store_data.get("url", StoreConfig.url),
            database=store_data.get("database", StoreConfig.database),
        )

        retry_data = data.get("retry", {})
        retry = RetryConfig(
            max_attempts=int(retry_data.get("max_attempts", RetryConfig.max_attempts)),
            backoff_base=float(retry_data.get("backoff_base", RetryConfig.backoff_base)),
            backoff_max=float(retry_data.get("backoff_max", RetryConfig.backoff_max)),
        )

        query_data = data.get("query", {})
        query = QueryConfig(
            default_limit=int(query_data.get("default_limit", QueryConfig.default_limit)),
        )

        return cls(
            store=store,
            retry=retry,
            query=query,
            log_level=str(data.get("log_level", "INFO")).upper(),
        )

    def apply_env(self, environ: dict[str, str] | None = None) -> "SimfinityConfig":
        """Override values from SIMFINITY_* environment variables."""
        env = os.environ if environ is None else environ

        if env.get("SIMFINITY_MONGO_URL"):
            self.store.url = env["SIMFINITY_MONGO_URL"]
        if env.get("SIMFINITY_DATABASE"):
            self.store.database = env["SIMFINITY_DATABASE"]
        if env.get("SIMFINITY_MAX_RETRIES"):
            try:
                self.retry.max_attempts = int(env["SIMFINITY_MAX_RETRIES"])
            except ValueError as e:
                raise ConfigurationError(
                    f"SIMFINITY_MAX_RETRIES must be an integer, got {env['SIMFINITY_MAX_RETRIES']!r}",
                    cause=e,
                )
        if env.get("SIMFINITY_LOG_LEVEL"):
            self.log_level = env["SIMFINITY_LOG_LEVEL"].upper()
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary for YAML serialization."""
        return {
            "store": {
                "url": self.store.url,
                "database": self.store.database,
            },
            "retry": {
                "max_attempts": self.retry.max_attempts,
                "backoff_base": self.retry.backoff_base,
                "backoff_max": self.retry.backoff_max,
            },
            "query": {
                "default_limit": self.query.default_limit,
            },
            "log_level": self.log_level,
        }

    def save(self, path: Path | str = "simfinity.yaml") -> None:
        """Save configuration to YAML file."""
        path = Path(path)
        content = yaml.dump(self.to_dict(), default_flow_style=False, sort_keys=False)
        path.write_text(content)


def load_config(path: Path | str = "simfinity.yaml", environ: dict[str, str] | None = None) -> SimfinityConfig:
    """Load configuration from YAML file (defaults when missing), then env overrides."""
    path = Path(path)
    data: dict[str, Any] = {}
    if path.exists():
        data = yaml.safe_load(path.read_text()) or {}
    return SimfinityConfig.from_dict(data).apply_env(environ)


def configure_logging(config: SimfinityConfig) -> None:
    """Apply the configured log level to the root logger."""
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
