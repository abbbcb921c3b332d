"""Persistence layers that store exactly one state value."""

from __future__ import annotations

import abc
import asyncio
import os
from pathlib import Path

STATE_FILE_NAME = "state.dat"


class PersistenceError(Exception):
    """Raised when state cannot be stored or read back."""


class PersistenceLayer(abc.ABC):
    """Stores and retrieves a single opaque state value."""

    @abc.abstractmethod
    async def save_state(self, state: bytes) -> None:
        """Replace the stored state with ``state``."""

    @abc.abstractmethod
    async def load_state(self) -> bytes | None:
        """Return the stored state, or ``None`` if nothing was saved."""


class InMemoryPersistence(PersistenceLayer):
    """Keeps the state in memory; it does not survive the process."""

    def __init__(self) -> None:
        self._state: bytes | None = None

    def __repr__(self) -> str:
        size = None if self._state is None else len(self._state)
        return f"{type(self).__name__}(stored_bytes={size})"

    async def save_state(self, state: bytes) -> None:
        self._state = bytes(state)

    async def load_state(self) -> bytes | None:
        return self._state


class FileSystemPersistence(PersistenceLayer):
    """Keeps the state in a single file inside ``data_dir``.

    Writes go to a temporary file that is then moved over the state file,
    so a reader never sees a half-written state.
    """

    def __init__(self, data_dir: str | os.PathLike[str]) -> None:
        directory = Path(data_dir)
        if not directory.exists():
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise PersistenceError(
                    f"Failed to create data directory: {exc}"
                ) from exc
        self.state_file_path = directory / STATE_FILE_NAME

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self.state_file_path)!r})"

    @property
    def _temp_file_path(self) -> Path:
        return self.state_file_path.with_suffix(".tmp")

    async def save_state(self, state: bytes) -> None:
        await asyncio.to_thread(self._write, bytes(state))

    async def load_state(self) -> bytes | None:
        return await asyncio.to_thread(self._read)

    def _write(self, data: bytes) -> None:
        temp_path = self._temp_file_path
        try:
            temp_path.write_bytes(data)
        except OSError as exc:
            raise PersistenceError(
                f"Failed to write state to temp file: {exc}"
            ) from exc
        try:
            os.replace(temp_path, self.state_file_path)
        except OSError as exc:
            raise PersistenceError(
                f"Failed to rename temp file to state file: {exc}"
            ) from exc

    def _read(self) -> bytes | None:
        if not self.state_file_path.exists():
            return None
        try:
            return self.state_file_path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise PersistenceError(f"Failed to read state file: {exc}") from exc