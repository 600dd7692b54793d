"""
Triage External Integrations
=============================

Engine policy file loading with hot-reload.

The policy YAML is watched with watchdog; on change it is re-parsed and the
whole EnginePolicy is swapped under a lock. A file that fails validation is
logged and the previous policy stays active.
"""

import threading
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from src.core import ConfigurationException
from src.shared.infrastructure.logging import get_logger
from src.triage.domain import EnginePolicy

logger = get_logger(__name__)


class PolicyFileHandler(FileSystemEventHandler):
    """Watchdog event handler for policy file changes."""

    def __init__(self, manager: "PolicyConfigManager", policy_path: Path):
        self.manager = manager
        self.policy_path = policy_path
        super().__init__()

    def _is_policy_file(self, path) -> bool:
        return Path(path).resolve() == self.policy_path.resolve()

    def on_modified(self, event):
        if not event.is_directory and self._is_policy_file(event.src_path):
            logger.info("Policy file changed", extra={"path": str(event.src_path)})
            self.manager.reload()

    def on_created(self, event):
        self.on_modified(event)

    def on_moved(self, event):
        # Editors that save atomically rename a temp file over the original
        if not event.is_directory and self._is_policy_file(event.dest_path):
            logger.info("Policy file replaced", extra={"path": str(event.dest_path)})
            self.manager.reload()


class PolicyConfigManager:
    """
    Thread-safe engine policy manager with hot-reload support.

    ``config`` always returns one complete EnginePolicy; callers take a
    snapshot per decision.
    """

    def __init__(self):
        self._config: Optional[EnginePolicy] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None
        self._source = "defaults"

    def load(self, path: Path) -> EnginePolicy:
        """
        Initial policy load.

        Raises:
            ConfigurationException: If the file exists but is invalid
        """
        self._path = Path(path)
        try:
            policy = self._load_from_file(self._path)
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            raise ConfigurationException(
                f"Invalid engine policy file {self._path}: {e}",
                details={"path": str(self._path)}
            )
        with self._lock:
            self._config = policy
        return policy

    def use(self, policy: EnginePolicy) -> EnginePolicy:
        """Install a policy directly, without a backing file."""
        with self._lock:
            self._config = policy
            self._source = "inline"
        return policy

    def _load_from_file(self, path: Path) -> EnginePolicy:
        """Load and parse the YAML policy file."""
        if not path.exists():
            logger.warning(f"Policy file not found: {path}, using defaults")
            self._source = "defaults"
            return EnginePolicy()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        policy = EnginePolicy(**data)
        self._source = str(path)
        return policy

    def reload(self) -> bool:
        """Reload the policy from file; keeps the current policy on failure."""
        if self._path is None:
            return False

        try:
            new_policy = self._load_from_file(self._path)
        except (OSError, yaml.YAMLError, ValidationError, TypeError) as e:
            logger.error(f"Failed to reload engine policy: {e}", extra={"path": str(self._path)})
            return False

        with self._lock:
            self._config = new_policy
        logger.info("Engine policy reloaded", extra={"source": self._source})
        return True

    def start_watching(self) -> None:
        """
        Start watching the policy file for changes.

        Skipped when the file does not exist (defaults are in use) or when
        the platform has no file watching support.
        """
        if self._path is None:
            raise RuntimeError("Policy not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(f"Policy file doesn't exist, skipping file watch: {self._path}")
            return

        try:
            self._observer = Observer()
            handler = PolicyFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.resolve().parent), recursive=False)
            self._observer.start()
            logger.info(f"Started watching policy file: {self._path}")
        except OSError as e:
            logger.warning(f"File watching not available, using static policy: {e}")
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def is_watching(self) -> bool:
        return self._observer is not None

    @property
    def source(self) -> str:
        return self._source

    @property
    def config(self) -> EnginePolicy:
        """Get the current policy."""
        with self._lock:
            if self._config is None:
                raise RuntimeError("Engine policy not loaded")
            return self._config
