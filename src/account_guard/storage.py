"""Key-value storage substrate and typed record access.

All guard state lives in a :class:`KeyValueStore` as JSON strings. Components
never talk to the backend directly; they go through :class:`RecordStore`, which
validates records on the way in and out and serializes read-modify-write cycles
per key.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel, ValidationError

from account_guard.errors import StorageError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

# Store file permission: rw------- (owner only)
_STORE_FILE_MODE = 0o600


@runtime_checkable
class KeyValueStore(Protocol):
    """Protocol for pluggable string key-value backends.

    Implement this protocol to keep guard state in Redis, a database table, or
    any other store. Values are opaque strings (serialized JSON records).
    """

    def get(self, key: str) -> str | None:
        """Return the value stored under *key*, or ``None`` if absent."""
        ...

    def set(self, key: str, value: str) -> None:
        """Store *value* under *key*, replacing any previous value."""
        ...

    def delete(self, key: str) -> None:
        """Remove *key*. Deleting a missing key is a no-op."""
        ...


class InMemoryKeyValueStore:
    """Non-persistent, in-memory store for development and testing.

    .. warning::
        All state is lost on process restart. Use :class:`JsonFileKeyValueStore`
        or a custom backend when lockouts must survive restarts.
    """

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)


class JsonFileKeyValueStore:
    """Durable store backed by a single JSON object on disk.

    Every write rewrites the whole file through a temporary file and an atomic
    rename, so a crash never leaves a half-written store behind. The file is
    created owner-readable only because it holds 2FA secrets.

    Args:
        path: Location of the JSON file. Parent directories are created on
            first write.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("Store file %s is not valid JSON; starting from an empty store", self.path)
            return {}
        except OSError as exc:
            raise StorageError(f"Cannot read store file {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            logger.warning("Store file %s does not hold a JSON object; starting from an empty store", self.path)
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _write(self, data: dict[str, str]) -> None:
        content = json.dumps(data, indent=2, sort_keys=True) + "\n"
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
            try:
                os.chmod(tmp_name, _STORE_FILE_MODE)
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(content)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StorageError(f"Cannot write store file {self.path}: {exc}") from exc

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._read())


class _KeyedLock:
    """Per-key mutual exclusion; entries are dropped once no thread holds or waits on them."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        # key -> [lock, number of holders/waiters]
        self._entries: dict[str, list] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._entries[key]


class RecordStore:
    """Typed JSON records on top of a :class:`KeyValueStore`.

    Records are pydantic models serialized by alias (camelCase on disk). A
    record that fails to parse is logged and treated as absent, so a corrupt
    entry self-heals on the next write instead of breaking the caller.

    Read-modify-write cycles must run inside :meth:`locked` for the same key;
    this keeps counters and single-use codes consistent when several threads
    touch one identifier at once. Locking is process-local: backends shared
    between processes need their own atomicity.
    """

    def __init__(self, backend: KeyValueStore | None = None) -> None:
        self.backend: KeyValueStore = backend if backend is not None else InMemoryKeyValueStore()
        self._locks = _KeyedLock()

    def locked(self, key: str):
        """Context manager serializing access to *key* within this process."""
        return self._locks.hold(key)

    def load(self, key: str, model: type[M]) -> M | None:
        raw = self.backend.get(key)
        if raw is None:
            return None
        try:
            return model.model_validate_json(raw)
        except ValidationError:
            logger.warning("Ignoring malformed %s record at key=%s", model.__name__, key)
            return None

    def save(self, key: str, record: BaseModel) -> None:
        self.backend.set(key, record.model_dump_json(by_alias=True))

    def delete(self, key: str) -> None:
        self.backend.delete(key)
