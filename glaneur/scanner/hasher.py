"""
Content hasher for ROM files.

The hasher digests the canonical bytes of a ROM (as produced by the
decoder registry), caches digests and errors per path in a bounded LRU,
and makes sure concurrent requests for the same path are computed once.
It is safe to call from several threads; the pipeline runs it through
``asyncio.to_thread``.
"""

import hashlib
import logging
import os
import queue
import threading
import zlib
from collections import OrderedDict
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

from glaneur.scanner.archives import CORRUPT_DATA_ERRORS
from glaneur.scanner.errors import HashError, InvalidFormatError
from glaneur.scanner.formats import DecoderRegistry, default_registry

logger = logging.getLogger(__name__)

DEFAULT_CACHE_SIZE = 500
DEFAULT_BUFFER_SIZE = 1024 * 1024

SUPPORTED_ALGORITHMS = ('sha1', 'md5', 'crc32')


class _CRC32:
    """hashlib-style wrapper around zlib.crc32."""

    def __init__(self):
        self._crc = 0

    def update(self, data) -> None:
        self._crc = zlib.crc32(data, self._crc)

    def hexdigest(self) -> str:
        return f"{self._crc & 0xFFFFFFFF:08x}"


def new_digest(algorithm: str):
    """Create a fresh digest accumulator for ``algorithm``."""
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"Unsupported hash algorithm: {algorithm}")
    if algorithm == 'crc32':
        return _CRC32()
    return hashlib.new(algorithm)


class Hasher:
    """
    Caching, deduplicating hasher of canonical ROM bytes.

    Locking is two-level: a short-held directory lock guards the map of
    per-path in-flight locks, and a per-path lock is held only while that
    path is being computed. Callers that find a computation in flight wait
    on its lock and then start over from the cache check.

    Example:
        hasher = Hasher(workers=4)
        digest = hasher.hash('/roms/nes/zelda.nes')
    """

    def __init__(
        self,
        registry: Optional[DecoderRegistry] = None,
        algorithm: str = 'sha1',
        cache_size: int = DEFAULT_CACHE_SIZE,
        workers: int = 1,
        buffer_size: int = DEFAULT_BUFFER_SIZE
    ):
        """
        Args:
            registry: Decoder registry (built-in formats when omitted)
            algorithm: 'sha1', 'md5' or 'crc32'
            cache_size: LRU capacity in entries
            workers: Number of pooled read buffers (expected concurrency)
            buffer_size: Size of each read buffer in bytes
        """
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"Unsupported hash algorithm: {algorithm}")
        if cache_size < 1:
            raise ValueError("cache_size must be at least 1")
        if buffer_size < 1:
            raise ValueError("buffer_size must be at least 1")

        self.registry = registry if registry is not None else default_registry()
        self.algorithm = algorithm
        self.cache_size = cache_size

        self._cache: OrderedDict[str, Union[str, HashError]] = OrderedDict()
        self._cache_lock = threading.Lock()

        self._directory_lock = threading.Lock()
        self._inflight: Dict[str, threading.Lock] = {}

        self._buffers: queue.Queue = queue.Queue()
        for _ in range(max(1, workers)):
            self._buffers.put(bytearray(buffer_size))

        self._stats = {
            'hits': 0,
            'misses': 0,
            'computations': 0,
            'waits': 0,
            'errors': 0,
        }

    def hash(self, path) -> str:
        """
        Return the lower-case hex digest of the canonical bytes of ``path``.

        Raises:
            NotReadableError: File missing or unreadable
            InvalidFormatError: Decoder rejected the file
            NoValidRomFoundError: Container without a decodable entry
            HashError: Any other I/O failure while reading
        """
        key = os.path.abspath(os.fspath(path))

        while True:
            found, value = self._lookup(key)
            if found:
                return self._unwrap(value)

            with self._directory_lock:
                lock = self._inflight.get(key)
                owner = lock is None
                if owner:
                    lock = threading.Lock()
                    lock.acquire()
                    self._inflight[key] = lock

            if not owner:
                self._bump('waits')
                # Block until the computing caller is done, then re-check
                with lock:
                    pass
                continue

            try:
                found, value = self._lookup(key, count=False)
                if not found:
                    value = self._compute(key)
                    self._store(key, value)
            finally:
                with self._directory_lock:
                    del self._inflight[key]
                lock.release()
            return self._unwrap(value)

    def cached(self, path) -> Tuple[bool, Optional[Union[str, HashError]]]:
        """Peek at the cache without computing. Returns (found, digest or error)."""
        return self._lookup(os.path.abspath(os.fspath(path)), count=False)

    def stats(self) -> Dict[str, int]:
        with self._cache_lock:
            stats = dict(self._stats)
            stats['cached'] = len(self._cache)
        with self._directory_lock:
            stats['in_flight'] = len(self._inflight)
        return stats

    def _lookup(self, key: str, count: bool = True) -> Tuple[bool, Optional[Union[str, HashError]]]:
        with self._cache_lock:
            if key in self._cache:
                self._cache.move_to_end(key)
                if count:
                    self._stats['hits'] += 1
                return True, self._cache[key]
            if count:
                self._stats['misses'] += 1
            return False, None

    def _store(self, key: str, value: Union[str, HashError]) -> None:
        with self._cache_lock:
            self._cache[key] = value
            self._cache.move_to_end(key)
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)

    def _bump(self, name: str) -> None:
        with self._cache_lock:
            self._stats[name] += 1

    @staticmethod
    def _unwrap(value: Union[str, HashError]) -> str:
        if isinstance(value, HashError):
            raise value
        return value

    def _compute(self, key: str) -> Union[str, HashError]:
        self._bump('computations')
        try:
            stream = self.registry.decode(Path(key))
        except Exception as e:
            logger.debug(f"Decode failed for {key}: {e}")
            self._bump('errors')
            return _as_hash_error(key, e)

        buffer = self._buffers.get()
        try:
            digest = new_digest(self.algorithm)
            view = memoryview(buffer)
            while True:
                n = stream.readinto(view)
                if not n:
                    break
                digest.update(view[:n])
            return digest.hexdigest()
        except Exception as e:
            logger.debug(f"Read failed for {key}: {e}")
            self._bump('errors')
            return _as_hash_error(key, e)
        finally:
            self._buffers.put(buffer)
            stream.close()


def _as_hash_error(key: str, error: Exception) -> HashError:
    """Map any decode or read failure onto the HashError family."""
    if isinstance(error, HashError):
        return error
    if isinstance(error, CORRUPT_DATA_ERRORS):
        return InvalidFormatError(f"{key}: {error}")
    if isinstance(error, OSError):
        return HashError(f"error reading {key}: {error}")
    return HashError(f"{key}: {type(error).__name__}: {error}")
