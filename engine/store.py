from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
import threading
import time
from typing import Any, Dict, Optional


class MemoryStateStore:
    def __init__(self):
        self.logger = logging.getLogger("state_store")
        self._snapshot: Optional[Dict[str, Any]] = None
        self._lock = threading.Lock()

    def save(self, snapshot: Dict[str, Any]) -> None:
        with self._lock:
            self._snapshot = copy.deepcopy(snapshot)

    def load(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self._snapshot)

    def quarantine(self, error: Exception) -> None:
        with self._lock:
            self._snapshot = None
        self.logger.error("state_snapshot_discarded error=%s", error)


class EngineStateStore:
    """JSON file snapshot of the engine, rewritten after every mutation.

    A file that cannot be read back is moved aside to ``<name>.corrupt`` so
    the next start begins from defaults instead of failing on the same file.
    """

    def __init__(self, path: Path):
        self.logger = logging.getLogger("state_store")
        self.path = Path(path)
        self._lock = threading.Lock()

    @property
    def backup_path(self) -> Path:
        return self.path.with_name(self.path.name + ".corrupt")

    def save(self, snapshot: Dict[str, Any]) -> None:
        payload = {"saved_at": int(time.time()), "engine": snapshot}
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_name(self.path.name + ".tmp")
            tmp.write_text(json.dumps(payload), encoding="utf-8")
            os.replace(tmp, self.path)

    def load(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            if not self.path.exists():
                return None
            try:
                data = json.loads(self.path.read_text(encoding="utf-8"))
                snapshot = data["engine"]
                if not isinstance(snapshot, dict):
                    raise ValueError("engine snapshot is not an object")
                return snapshot
            except (ValueError, KeyError, TypeError) as exc:
                self._move_aside(exc)
                return None

    def quarantine(self, error: Exception) -> None:
        """Move a snapshot that parsed but could not be applied out of the way."""
        with self._lock:
            if self.path.exists():
                self._move_aside(error)

    def _move_aside(self, error: Exception) -> None:
        backup = self.backup_path
        os.replace(self.path, backup)
        self.logger.error("state_file_corrupt path=%s backup=%s error=%s", self.path, backup, error)
