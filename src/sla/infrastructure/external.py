"""
SLA External Integrations
==========================

SLA policy loading with hot reload:
- defaults from application settings
- optional YAML overrides
- watchdog observer reloading the YAML file on change
"""

import threading
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from src.config import Settings, Priority
from src.sla.application.services import ISLAPolicyProvider
from src.sla.domain import SLAPolicy
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


def policy_from_settings(settings: Settings) -> SLAPolicy:
    """Build the default SLA policy from environment settings."""
    return SLAPolicy(
        target_hours={
            Priority.P1: settings.sla_p1_hours,
            Priority.P2: settings.sla_p2_hours,
            Priority.P3: settings.sla_p3_hours,
        },
        warning_threshold=settings.sla_warning_threshold,
        critical_threshold=settings.sla_critical_threshold,
    )


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for SLA config file changes."""

    def __init__(self, config_manager: "SLAConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def _is_config_file(self, event) -> bool:
        if event.is_directory:
            return False
        paths = [getattr(event, "src_path", None), getattr(event, "dest_path", None)]
        target = self.config_path.resolve()
        return any(p and Path(p).resolve() == target for p in paths)

    def on_modified(self, event):
        if self._is_config_file(event):
            logger.info("SLA config file changed", extra={"path": str(self.config_path)})
            self.config_manager.reload()

    # Editors often replace the file instead of writing in place
    on_created = on_modified
    on_moved = on_modified


class SLAConfigManager(ISLAPolicyProvider):
    """
    Thread-safe SLA policy provider with hot-reload support.

    The YAML file may override any of ``target_hours``, ``warning_threshold``
    and ``critical_threshold``; keys it omits keep their default. An invalid
    file never replaces a working policy.
    """

    def __init__(self, defaults: Optional[SLAPolicy] = None):
        self._defaults = defaults or SLAPolicy()
        self._policy: Optional[SLAPolicy] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> SLAPolicy:
        """Initial configuration load."""
        self._path = Path(path)
        policy = self._load_from_file(self._path)
        with self._lock:
            self._policy = policy
        return policy

    def _load_from_file(self, path: Path) -> SLAPolicy:
        """Load and parse YAML config file over the defaults."""
        if not path.exists():
            logger.warning("SLA config file not found, using defaults", extra={"path": str(path)})
            return self._defaults

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"SLA config must be a mapping, got {type(data).__name__}")

        merged: Dict[str, Any] = self._defaults.model_dump()
        overrides = {k: v for k, v in data.items() if k in merged}
        if "target_hours" in overrides:
            merged["target_hours"] = {**merged["target_hours"], **(overrides.pop("target_hours") or {})}
        merged.update(overrides)
        return SLAPolicy(**merged)

    def reload(self) -> bool:
        """Reload configuration from file, keeping the previous policy on error."""
        if self._path is None:
            return False

        try:
            new_policy = self._load_from_file(self._path)
        except (OSError, yaml.YAMLError, ValidationError, ValueError) as e:
            logger.error("Failed to reload SLA config", extra={"error": str(e), "path": str(self._path)})
            return False

        with self._lock:
            self._policy = new_policy
        logger.info(
            "SLA configuration reloaded",
            extra={
                "target_hours": new_policy.target_hours,
                "warning_threshold": new_policy.warning_threshold,
                "critical_threshold": new_policy.critical_threshold,
            }
        )
        return True

    def start_watching(self) -> None:
        """
        Start watching configuration file for changes.

        Skips watching if the file doesn't exist or the platform has no
        usable file notification backend.
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                "SLA config file doesn't exist, skipping file watch",
                extra={"path": str(self._path)}
            )
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.parent.resolve()), recursive=False)
            self._observer.start()
            logger.info("Started watching SLA config file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static config", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching configuration file (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def is_watching(self) -> bool:
        return self._observer is not None

    def get_policy(self) -> SLAPolicy:
        with self._lock:
            if self._policy is None:
                return self._defaults
            return self._policy
