"""Time-bounded weather cache with an optional on-disk JSON mirror."""

import json
import logging
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

from bms_telemetry.models import WeatherSample

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WeatherCache:
    """
    Caches weather sample windows by key for a fixed time-to-live.

    Entries are replaced whole, never mutated, so concurrent readers always
    see a complete window. When ``cache_dir`` is set every entry is also
    written to ``<cache_dir>/<key>.json`` and read back after a restart.
    A failed disk write is logged and otherwise ignored.
    """

    def __init__(
        self,
        ttl_hours: float = 24.0,
        cache_dir: Optional[Path] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize the cache.

        Args:
            ttl_hours: How long an entry stays valid after it was stored
            cache_dir: Directory for the JSON mirror (memory only if None)
            clock: Returns the current aware time (injectable for tests)
        """
        self.ttl = timedelta(hours=ttl_hours)
        self.cache_dir = Path(cache_dir) if cache_dir else None
        self._clock = clock
        self._entries: dict[str, tuple[datetime, list[WeatherSample]]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def _path(self, key: str) -> Path:
        return self.cache_dir / f"{key}.json"

    def _is_valid(self, stored_at: datetime) -> bool:
        return self._clock() - stored_at < self.ttl

    def get(self, key: str) -> Optional[list[WeatherSample]]:
        """Return the cached window for key, or None if missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            entry = self._load(key)

        if entry is not None and self._is_valid(entry[0]):
            with self._lock:
                self._entries[key] = entry
                self._hits += 1
            logger.debug("Weather cache hit for %s", key)
            return entry[1]

        with self._lock:
            self._misses += 1
        logger.debug("Weather cache miss for %s", key)
        return None

    def put(self, key: str, samples: list[WeatherSample]) -> None:
        """Store a window, replacing any previous entry for key.

        Expired entries are evicted (with their JSON files) on every put.
        """
        entry = (self._clock(), list(samples))
        with self._lock:
            expired = [
                k for k, (stored_at, _) in self._entries.items()
                if k != key and not self._is_valid(stored_at)
            ]
            for k in expired:
                del self._entries[k]
            self._entries[key] = entry
        for k in expired:
            self._remove_file(k)
        if expired:
            logger.debug("Evicted %d expired weather cache entries", len(expired))
        self._save(key, entry)

    def _remove_file(self, key: str) -> None:
        if self.cache_dir is None:
            return
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to remove weather cache file for %s: %s", key, e)

    def _load(self, key: str) -> Optional[tuple[datetime, list[WeatherSample]]]:
        if self.cache_dir is None:
            return None
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with open(path) as f:
                data = json.load(f)
            stored_at = datetime.fromisoformat(data["stored_at"])
            samples = [WeatherSample.from_dict(item) for item in data["samples"]]
        except (OSError, ValueError, KeyError) as e:
            logger.warning("Ignoring unreadable weather cache file %s: %s", path, e)
            return None
        return stored_at, samples

    def _save(self, key: str, entry: tuple[datetime, list[WeatherSample]]) -> None:
        if self.cache_dir is None:
            return
        stored_at, samples = entry
        data = {
            "stored_at": stored_at.isoformat(),
            "samples": [sample.to_dict() for sample in samples],
        }
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            with open(self._path(key), "w") as f:
                json.dump(data, f)
        except OSError as e:
            logger.warning("Failed to write weather cache for %s: %s", key, e)

    def clear(self) -> int:
        """
        Remove all entries from memory and disk.

        Returns:
            Number of entries removed
        """
        with self._lock:
            keys = set(self._entries)
            self._entries.clear()

        if self.cache_dir is not None and self.cache_dir.exists():
            for path in self.cache_dir.glob("*.json"):
                keys.add(path.stem)
                try:
                    path.unlink()
                except OSError as e:
                    logger.warning("Failed to remove weather cache file %s: %s", path, e)

        logger.info("Cleared %d weather cache entries", len(keys))
        return len(keys)

    def stats(self) -> dict:
        """Entry counts and hit/miss counters for the in-memory cache."""
        with self._lock:
            entries = list(self._entries.values())
            hits, misses = self._hits, self._misses
        valid = sum(1 for stored_at, _ in entries if self._is_valid(stored_at))
        return {
            "entries": len(entries),
            "valid": valid,
            "expired": len(entries) - valid,
            "hits": hits,
            "misses": misses,
        }
