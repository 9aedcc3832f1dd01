"""
Engine Configuration
====================

Tuning knobs for the SLA scheduler and the rule batch runner, loaded from
YAML and hot-reloaded with watchdog so pacing can be changed without a
restart.
"""

import threading
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, model_validator
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from serviflow.core.exceptions import ConfigurationException
from serviflow.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class SchedulerTuning(BaseModel):
    """SLA notification scheduler pacing."""
    batch_size: int = Field(default=5, ge=1, description="Open tickets evaluated per tenant pass")
    ticket_delay_seconds: float = Field(default=2.0, ge=0, description="Pause between tickets")
    default_check_interval_seconds: int = Field(default=300, ge=1)
    min_check_interval_seconds: int = Field(default=60, ge=1)


class RuleRunnerTuning(BaseModel):
    """Rule batch runner pacing and failure policy."""
    default_batch_size: int = Field(default=5, ge=1)
    max_batch_size: int = Field(default=10, ge=1)
    default_batch_delay_seconds: float = Field(default=3.0, ge=0)
    min_batch_delay_seconds: float = Field(default=3.0, ge=0)
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_delay_seconds: float = Field(default=1.0, ge=0, description="Backoff unit, multiplied by attempt")
    circuit_breaker_threshold: int = Field(default=5, ge=1)
    match_limit: int = Field(default=100, ge=1)
    completion_error_limit: int = Field(default=10, ge=0)
    job_queue_size: int = Field(default=100, ge=1)
    job_workers: int = Field(default=1, ge=1)

    @model_validator(mode="after")
    def check_batch_bounds(self) -> "RuleRunnerTuning":
        if self.default_batch_size > self.max_batch_size:
            raise ValueError("default_batch_size cannot exceed max_batch_size")
        return self


class EngineConfig(BaseModel):
    """
    Engine configuration loaded from YAML.

    Every section is optional; a missing file means all defaults.
    """
    scheduler: SchedulerTuning = Field(default_factory=SchedulerTuning)
    rules: RuleRunnerTuning = Field(default_factory=RuleRunnerTuning)


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for engine config file changes."""

    def __init__(self, config_manager: "EngineConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("Engine config file changed", extra={"path": str(event.src_path)})
            self.config_manager.reload()


class EngineConfigManager:
    """
    Thread-safe configuration holder with hot-reload support.

    Uses watchdog to monitor file changes. A reload that fails validation
    keeps the previous configuration.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self._config: Optional[EngineConfig] = config
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> EngineConfig:
        """Initial configuration load."""
        self._path = path
        self._config = self._load_from_file(path)
        return self._config

    def _load_from_file(self, path: Path) -> EngineConfig:
        if not path.exists():
            logger.warning("Engine config file not found, using defaults", extra={"path": str(path)})
            return EngineConfig()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        try:
            return EngineConfig(**data)
        except ValueError as e:
            raise ConfigurationException(f"Invalid engine config in {path}: {e}") from e

    def reload(self) -> bool:
        """Reload configuration from file."""
        if self._path is None:
            return False

        try:
            new_config = self._load_from_file(self._path)
        except (ConfigurationException, OSError, yaml.YAMLError) as e:
            logger.error("Failed to reload engine config", extra={"error": str(e)})
            return False

        with self._lock:
            self._config = new_config
        logger.info("Engine configuration reloaded")
        return True

    def start_watching(self) -> None:
        """
        Start watching the configuration file for changes.

        Skipped when the file does not exist or inotify is unavailable.
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info("Engine config file absent, not watching", extra={"path": str(self._path)})
            return

        try:
            self._observer = Observer()
            self._observer.schedule(
                ConfigFileHandler(self, self._path),
                str(self._path.parent),
                recursive=False
            )
            self._observer.start()
            logger.info("Watching engine config file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static config", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def config(self) -> EngineConfig:
        with self._lock:
            if self._config is None:
                raise RuntimeError("Engine configuration not loaded")
            return self._config
