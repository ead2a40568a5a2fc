"""Durable key-value slot for engine state.

A store holds one JSON document (the serialised GameState). The engine owns
encoding and decoding; stores only move text:

    JsonFileStore: one file on disk, written whole on every save.
    MemoryStore:   a string in memory; for tests and throwaway sessions.

A missing slot loads as None. Anything unreadable is the engine's problem to
treat as "no prior state".
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class StateStore(Protocol):
    def load(self) -> str | None: ...

    def save(self, document: str) -> None: ...

    def clear(self) -> None: ...


class JsonFileStore:
    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> str | None:
        if not self._path.is_file():
            return None
        try:
            return self._path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            logger.warning("Cannot read saved state at %s", self._path, exc_info=True)
            return None

    def save(self, document: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(document, encoding="utf-8")
        tmp.replace(self._path)

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)


class MemoryStore:
    def __init__(self, document: str | None = None) -> None:
        self.document = document

    def load(self) -> str | None:
        return self.document

    def save(self, document: str) -> None:
        self.document = document

    def clear(self) -> None:
        self.document = None
