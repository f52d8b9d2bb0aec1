"""JSON file persistence for the profile-local shared store."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional

from .errors import StorePersistenceError


class JsonStoreFile:
    """Whole-file JSON snapshot of the store, replaced atomically on save."""

    def __init__(self, path: str | Path, logger: Optional[logging.Logger] = None):
        self._path = Path(path)
        self._logger = logger or logging.getLogger("store")

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as error:
            raise StorePersistenceError(
                f"Failed to read store file {self._path}: {error}"
            ) from error
        if not isinstance(raw, dict):
            raise StorePersistenceError(
                f"Store file {self._path} must contain a JSON object."
            )
        return raw

    def save(self, data: Mapping[str, Any]) -> None:
        temp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(json.dumps(dict(data)), encoding="utf-8")
            os.replace(temp_path, self._path)
        except OSError as error:
            # Keep serving from memory; the next write tries again.
            self._logger.warning("Failed to persist store to %s: %s", self._path, error)
