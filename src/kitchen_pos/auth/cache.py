"""Local profile cache.

Holds the last-known profile in a single key of a small key-value store so a
restarted console can paint before the live session check completes. The
cache is never authoritative: the reconciler overwrites or removes it after
every live reconciliation.
"""

import json
import logging
import os
import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, Field, ValidationError

from kitchen_pos.models.identity import Profile

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Minimal string key-value storage."""

    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class MemoryStore:
    """Process-local store, used in tests and ephemeral deployments."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class FileStore:
    """Key-value store persisted as one JSON object on disk.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace`` so a crash never leaves a half-written file.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _load(self) -> dict[str, str]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Discarding unreadable store file {self.path}")
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _save(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".tmp-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, key: str) -> str | None:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def remove(self, key: str) -> None:
        data = self._load()
        if key not in data:
            return
        del data[key]
        self._save(data)


class CachedSnapshot(BaseModel):
    """Serialized copy of the last reconciled profile."""

    profile: Profile
    subject_id: str
    cached_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def is_expired(self, ttl_seconds: float, now: datetime | None = None) -> bool:
        now = now or datetime.now(UTC)
        return now - self.cached_at >= timedelta(seconds=ttl_seconds)


class ProfileCache:
    """Single-slot profile cache with a time-to-live.

    Only the session reconciler writes to this cache.
    """

    def __init__(
        self,
        store: KeyValueStore,
        key: str = "user",
        ttl_seconds: float = 12 * 60 * 60,
    ) -> None:
        self._store = store
        self.key = key
        self.ttl_seconds = ttl_seconds

    def read(self) -> CachedSnapshot | None:
        """Return the cached snapshot, or None if absent, unreadable or expired."""
        try:
            raw = self._store.get(self.key)
        except OSError as e:
            logger.error(f"Error reading cached profile: {e}")
            return None

        if raw is None:
            return None

        try:
            snapshot = CachedSnapshot.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding malformed cached profile: {e.error_count()} errors")
            self.clear()
            return None

        if snapshot.is_expired(self.ttl_seconds):
            logger.debug(f"Cached profile for {snapshot.subject_id} expired")
            self.clear()
            return None

        return snapshot

    def write(self, profile: Profile, subject_id: str) -> None:
        """Replace the cached snapshot."""
        snapshot = CachedSnapshot(profile=profile, subject_id=subject_id)
        try:
            self._store.set(self.key, snapshot.model_dump_json())
        except OSError as e:
            logger.error(f"Error caching profile: {e}")

    def clear(self) -> None:
        """Remove the cache key entirely."""
        try:
            self._store.remove(self.key)
        except OSError as e:
            logger.error(f"Error clearing cached profile: {e}")
