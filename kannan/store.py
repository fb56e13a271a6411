"""Persistent per-project state for Kannan runs."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any
import json
import os
import tempfile

from kannan.config import PROJECT_DIR_NAME


def atomic_write(path: Path, content: str) -> None:
    """Write to a sibling temp file, then rename over the target."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def atomic_write_json(path: Path, payload: Any) -> None:
    atomic_write(path, json.dumps(payload, indent=2) + "\n")


@dataclass
class StateStore:
    """Flat key/value files under <project>/.kannan/cache."""

    project_dir: Path

    @property
    def state_dir(self) -> Path:
        return Path(self.project_dir) / PROJECT_DIR_NAME

    def _cache_dir(self) -> Path:
        return self.state_dir / "cache"

    def _key_path(self, key: str) -> Path:
        safe = "".join(ch if ch.isalnum() or ch in "-_." else "_" for ch in str(key))
        return self._cache_dir() / safe

    def init(self) -> None:
        for sub in ("cache", "memory"):
            (self.state_dir / sub).mkdir(parents=True, exist_ok=True)

    def set(self, key: str, value: Any) -> None:
        text = value if isinstance(value, str) else json.dumps(value)
        atomic_write(self._key_path(key), text)

    def get(self, key: str, default: str = "") -> str:
        path = self._key_path(key)
        if not path.exists():
            return default
        try:
            return path.read_text(encoding="utf-8")
        except OSError:
            return default

    def get_json(self, key: str, default: Any = None) -> Any:
        raw = self.get(key)
        if not raw:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            return default
