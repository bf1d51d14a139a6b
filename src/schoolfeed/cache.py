"""Filesystem cache for SIS responses.

One directory per logical source name; each file is named

    <name>-<startYYYYMMDD>-<endYYYYMMDD>-<writeYYYYMMDDHHMM>

so the write time is readable without opening the file. A write replaces the
file atomically and then removes every older file of the same identity, which
leaves at most one file per (name, start, end).
"""

import os
import re
import threading
import weakref
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Callable

from schoolfeed.errors import CacheMiss
from schoolfeed.logging import get_logger

logger = get_logger(__name__)

DATE_FORMAT = "%Y%m%d"
TIMESTAMP_FORMAT = "%Y%m%d%H%M"

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_]+")

# an entry disappears once no caller references its lock
_locks: "weakref.WeakValueDictionary[tuple[str, CacheKey], threading.Lock]" = (
    weakref.WeakValueDictionary()
)
_locks_guard = threading.Lock()


def sanitize_name(name: str) -> str:
    """Make a cache name safe for file names; '-' is the field separator."""
    cleaned = _UNSAFE_NAME_CHARS.sub("_", name.strip()).strip("_")
    if not cleaned:
        raise ValueError(f"Cache name {name!r} has no usable characters")
    return cleaned


@dataclass(frozen=True)
class CacheKey:
    """Identity of a cached response."""

    name: str
    start: date
    end: date

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", sanitize_name(self.name))

    @property
    def prefix(self) -> str:
        return f"{self.name}-{self.start.strftime(DATE_FORMAT)}-{self.end.strftime(DATE_FORMAT)}"


def _minute(moment: datetime) -> datetime:
    """Truncate to minutes and drop any timezone by a format round trip."""
    return datetime.strptime(moment.strftime(TIMESTAMP_FORMAT), TIMESTAMP_FORMAT)


class ResponseCache:
    """TTL-based response cache with single-file retention per identity."""

    def __init__(
        self,
        base_dir: str | Path,
        ttl_minutes: int = 60,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.base_dir = Path(base_dir)
        self.ttl = timedelta(minutes=ttl_minutes)
        self.clock = clock

    def _lock(self, key: CacheKey) -> threading.Lock:
        lock_id = (str(self.base_dir.resolve()), key)
        with _locks_guard:
            return _locks.setdefault(lock_id, threading.Lock())

    def directory(self, key: CacheKey) -> Path:
        return self.base_dir / key.name

    def path_for(self, key: CacheKey, written: datetime) -> Path:
        return self.directory(key) / f"{key.prefix}-{written.strftime(TIMESTAMP_FORMAT)}"

    def cached_times(self, key: CacheKey) -> list[datetime]:
        """Write timestamps of all files for `key`, most recent first."""
        directory = self.directory(key)
        if not directory.is_dir():
            return []
        times: list[datetime] = []
        for path in directory.glob(f"{key.prefix}-*"):
            stamp = path.name[len(key.prefix) + 1 :]
            try:
                times.append(datetime.strptime(stamp, TIMESTAMP_FORMAT))
            except ValueError:
                continue
        return sorted(times, reverse=True)

    def is_valid(self, key: CacheKey) -> bool:
        """Check if the newest file for `key` is younger than the TTL."""
        times = self.cached_times(key)
        if not times:
            logger.debug("cache_check", cache=key.prefix, result="missing")
            return False
        valid = times[0] > _minute(self.clock()) - self.ttl
        logger.debug(
            "cache_check",
            cache=key.prefix,
            result="valid" if valid else "expired",
            written=times[0].isoformat(),
        )
        return valid

    def load(self, key: CacheKey) -> bytes:
        """Read the newest file for `key`.

        Raises:
            CacheMiss: If no file exists or it disappeared before reading.
        """
        with self._lock(key):
            times = self.cached_times(key)
            if not times:
                raise CacheMiss(f"No cache for {key.prefix}")
            path = self.path_for(key, times[0])
            try:
                return path.read_bytes()
            except FileNotFoundError as e:
                raise CacheMiss(f"Cache file vanished: {path.name}") from e

    def write(self, key: CacheKey, payload: bytes) -> Path:
        """Store `payload` as the current response for `key`."""
        with self._lock(key):
            directory = self.directory(key)
            directory.mkdir(parents=True, exist_ok=True)
            path = self.path_for(key, _minute(self.clock()))
            tmp_path = directory / f".{path.name}.{os.getpid()}.tmp"
            tmp_path.write_bytes(payload)
            os.replace(tmp_path, path)
            self._cleanup(key)
        logger.info("cache_written", cache=key.prefix, path=str(path), size=len(payload))
        return path

    def cleanup(self, key: CacheKey) -> None:
        with self._lock(key):
            self._cleanup(key)

    def _cleanup(self, key: CacheKey) -> None:
        for stale in self.cached_times(key)[1:]:
            try:
                self.path_for(key, stale).unlink()
            except FileNotFoundError:
                continue
            logger.debug("cache_removed", cache=key.prefix, written=stale.isoformat())
