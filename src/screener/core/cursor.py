"""Durable row cursor for the append-only source table."""

from __future__ import annotations

import logging
from pathlib import Path
from threading import Lock
from typing import Protocol

from .config_loader import resolve_repo_path

logger = logging.getLogger(__name__)

DEFAULT_CURSOR_DIR = "data/cursor"
DEFAULT_CURSOR_KEY = "last_fetched_row_index"


class ScalarStorage(Protocol):
    def read_int(self, key: str) -> int | None: ...

    def write_int(self, key: str, value: int) -> None: ...


class FileScalarStorage:
    """One plaintext integer per key, stored as `<root>/<key>.txt`."""

    def __init__(self, root: str | Path = DEFAULT_CURSOR_DIR) -> None:
        self._root = resolve_repo_path(root)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: str) -> Path:
        safe = "".join(ch if ch.isalnum() or ch in {"_", "-", "."} else "_" for ch in key.strip())
        return self._root / f"{safe or 'cursor'}.txt"

    def read_int(self, key: str) -> int | None:
        path = self.path_for(key)
        if not path.exists():
            return None
        return int(path.read_text(encoding="utf-8").strip())

    def write_int(self, key: str, value: int) -> None:
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_name(f"{path.name}.tmp")
        temp_path.write_text(str(int(value)), encoding="utf-8")
        temp_path.replace(path)


class CursorTracker:
    """Index of the last source row handed to the evaluator (row 0 is the header).

    The in-memory value never decreases. Persistence is best-effort: read and
    write failures are logged and otherwise ignored.
    """

    def __init__(self, storage: ScalarStorage, *, key: str = DEFAULT_CURSOR_KEY) -> None:
        self._storage = storage
        self._key = key
        self._lock = Lock()
        self._value = self.load()

    @property
    def key(self) -> str:
        return self._key

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def load(self) -> int:
        try:
            stored = self._storage.read_int(self._key)
        except (OSError, ValueError) as exc:
            logger.error("Failed to read cursor %s; starting from 0: %s", self._key, exc)
            return 0
        if stored is None or stored < 0:
            return 0
        return int(stored)

    def save(self, index: int) -> None:
        try:
            self._storage.write_int(self._key, int(index))
        except OSError as exc:
            logger.error("Failed to write cursor %s=%s: %s", self._key, index, exc)

    def advance_to(self, index: int) -> int:
        """Move the cursor forward to `index` (never backwards) and persist it."""
        with self._lock:
            target = max(self._value, int(index))
            changed = target != self._value
            self._value = target
        if changed:
            self.save(target)
        return target
