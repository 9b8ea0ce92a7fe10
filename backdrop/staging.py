"""
In-memory staging cache for uploaded images.

Holds the raw bytes of an upload between the moment it is validated and the
moment it is saved (or abandoned). The cache is bounded two ways:

- Capacity: the sum of stored buffer sizes never exceeds max_bytes. When a new
  upload does not fit, the oldest entries are evicted first.
- Time: an entry expires ttl_ms after it was stored. Expired entries are
  dropped lazily on read and by a periodic sweep task.

Nothing here is persisted; staged uploads live for the process lifetime only.
"""

import asyncio
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .errors import ErrorKind

logger = logging.getLogger("backdrop.staging")

CAPACITY_EXCEEDED_MESSAGE = "Temp storage full - try again later"


@dataclass(frozen=True)
class ImageMetadata:
    """
    Facts captured about an upload when it was validated.

    Attributes:
        original_name: Filename supplied by the client
        width: Decoded width in pixels
        height: Decoded height in pixels
        format: Lower-case decoded format name ("jpeg" or "png")
    """
    original_name: str
    width: int
    height: int
    format: str

    def to_dict(self) -> Dict[str, object]:
        return {
            "original_name": self.original_name,
            "width": self.width,
            "height": self.height,
            "format": self.format,
        }


@dataclass(frozen=True)
class StagingEntry:
    """
    A staged upload.

    Attributes:
        id: Opaque identifier handed back to the client
        raw_bytes: The bytes exactly as uploaded (before HEIC normalization)
        metadata: Validation metadata
        uploaded_at: Clock reading (seconds) when the entry was stored
        size_bytes: len(raw_bytes), cached for accounting
    """
    id: str
    raw_bytes: bytes
    metadata: ImageMetadata
    uploaded_at: float
    size_bytes: int


@dataclass(frozen=True)
class StoreResult:
    """Outcome of StagingCache.store: an entry id or an error kind."""
    entry_id: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.entry_id is not None


@dataclass(frozen=True)
class CacheStats:
    """Point-in-time usage snapshot."""
    count: int
    used_bytes: int
    max_bytes: int
    used_percent: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "count": self.count,
            "used_bytes": self.used_bytes,
            "max_bytes": self.max_bytes,
            "used_percent": self.used_percent,
        }


class StagingCache:
    """
    Thread-safe, capacity- and TTL-bounded store of raw upload bytes.

    Every public method holds a single lock for its whole duration, so size
    accounting and the entry map always change together. Compositions run on
    worker threads and may read entries while the event loop stores new ones.
    """

    def __init__(
        self,
        max_bytes: int,
        ttl_ms: int,
        sweep_interval_s: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the cache.

        Args:
            max_bytes: Total capacity in bytes
            ttl_ms: Maximum age of an entry in milliseconds
            sweep_interval_s: Seconds between background expiry sweeps
            clock: Source of the current time in seconds
        """
        if max_bytes <= 0:
            raise ValueError("max_bytes must be positive")
        self.max_bytes = max_bytes
        self.ttl_ms = ttl_ms
        self.sweep_interval_s = sweep_interval_s
        self._ttl_s = ttl_ms / 1000.0
        self._clock = clock
        self._entries: Dict[str, StagingEntry] = {}
        self._used_bytes = 0
        self._lock = threading.Lock()
        self._sweeper: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Internal helpers (caller holds the lock)
    # ------------------------------------------------------------------

    def _is_expired(self, entry: StagingEntry, now: float) -> bool:
        return now - entry.uploaded_at >= self._ttl_s

    def _drop(self, entry_id: str) -> bool:
        entry = self._entries.pop(entry_id, None)
        if entry is None:
            return False
        self._used_bytes -= entry.size_bytes
        return True

    def _evict_oldest(self, needed: int) -> List[str]:
        # sorted() is stable, so equal timestamps keep insertion order
        oldest_first = sorted(self._entries.values(), key=lambda e: e.uploaded_at)
        evicted: List[str] = []
        for entry in oldest_first:
            if self._used_bytes + needed <= self.max_bytes:
                break
            self._drop(entry.id)
            evicted.append(entry.id)
        return evicted

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def store(self, data: bytes, metadata: ImageMetadata) -> StoreResult:
        """
        Stage a buffer, evicting the oldest entries if needed.

        Args:
            data: Raw upload bytes
            metadata: Validation metadata for the upload

        Returns:
            StoreResult with the new entry id, or CAPACITY_EXCEEDED if the
            buffer is larger than the whole cache. A failed store leaves the
            cache unchanged.
        """
        data = bytes(data)
        size = len(data)

        with self._lock:
            if size > self.max_bytes:
                logger.warning(
                    "Rejected %d byte upload: larger than cache capacity (%d bytes)",
                    size, self.max_bytes,
                )
                return StoreResult(
                    error_kind=ErrorKind.CAPACITY_EXCEEDED,
                    error=CAPACITY_EXCEEDED_MESSAGE,
                )

            if self._used_bytes + size > self.max_bytes:
                evicted = self._evict_oldest(size)
                logger.info("Evicted %d staged upload(s) to make room", len(evicted))

            entry_id = str(uuid.uuid4())
            while entry_id in self._entries:
                entry_id = str(uuid.uuid4())

            self._entries[entry_id] = StagingEntry(
                id=entry_id,
                raw_bytes=data,
                metadata=metadata,
                uploaded_at=self._clock(),
                size_bytes=size,
            )
            self._used_bytes += size

        return StoreResult(entry_id=entry_id)

    def get(self, entry_id: str) -> Optional[StagingEntry]:
        """
        Look up a staged upload.

        Returns:
            The entry, or None if it is unknown or has expired. An expired
            entry is removed as a side effect.
        """
        with self._lock:
            entry = self._entries.get(entry_id)
            if entry is None:
                return None
            if self._is_expired(entry, self._clock()):
                self._drop(entry_id)
                return None
            return entry

    def has(self, entry_id: str) -> bool:
        """True if get() would return an entry (same expiry side effect)."""
        return self.get(entry_id) is not None

    def remove(self, entry_id: str) -> bool:
        """
        Remove a staged upload.

        Returns:
            True if something was removed. Removing twice is harmless.
        """
        with self._lock:
            return self._drop(entry_id)

    def stats(self) -> CacheStats:
        """Return a usage snapshot without touching expiry."""
        with self._lock:
            return CacheStats(
                count=len(self._entries),
                used_bytes=self._used_bytes,
                max_bytes=self.max_bytes,
                used_percent=round(self._used_bytes / self.max_bytes * 100),
            )

    def sweep(self) -> int:
        """
        Remove every expired entry.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired = [
                entry_id for entry_id, entry in self._entries.items()
                if self._is_expired(entry, now)
            ]
            for entry_id in expired:
                self._drop(entry_id)
        if expired:
            logger.debug("Swept %d expired staged upload(s)", len(expired))
        return len(expired)

    def clear(self) -> None:
        """Drop every entry."""
        with self._lock:
            self._entries.clear()
            self._used_bytes = 0

    # ------------------------------------------------------------------
    # Background sweep
    # ------------------------------------------------------------------

    @property
    def sweeping(self) -> bool:
        """True while the periodic sweep task is alive."""
        return self._sweeper is not None and not self._sweeper.done()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_s)
            try:
                self.sweep()
            except Exception:
                logger.exception("Staging cache sweep failed")

    def start(self) -> None:
        """
        Start the periodic sweep on the running event loop.

        Must be called from within a coroutine or event loop callback.
        Calling it while the sweep is already running does nothing.
        """
        if self.sweeping:
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Cancel the periodic sweep and wait for it to finish."""
        task, self._sweeper = self._sweeper, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
