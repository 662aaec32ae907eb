from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Hashable, Optional, TypeVar

from .logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 600.0


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
  key: Hashable
  payload: T
  cached_at: float


class ResponseCache(Generic[T]):
  """
  Process-local TTL cache in front of remote sheet reads.

  Eviction is lazy: expired entries are dropped by ``sweep()``, which readers
  call at the start of each read. There is no timer thread, so the cache is
  safe to use in request-scoped deployments. It is best-effort only; a miss
  must always fall through to a live read.
  """

  def __init__(
    self,
    ttl_seconds: float = DEFAULT_TTL_SECONDS,
    clock: Callable[[], float] = time.monotonic,
  ) -> None:
    self.ttl_seconds = ttl_seconds
    self._clock = clock
    self._entries: Dict[Hashable, CacheEntry[T]] = {}
    self._lock = threading.Lock()

  def _expired(self, entry: CacheEntry[T], now: float) -> bool:
    return now - entry.cached_at >= self.ttl_seconds

  def get(self, key: Hashable) -> Optional[T]:
    with self._lock:
      entry = self._entries.get(key)
      if entry is None:
        return None
      if self._expired(entry, self._clock()):
        return None
      return entry.payload

  def put(self, key: Hashable, payload: T) -> None:
    with self._lock:
      self._entries[key] = CacheEntry(key=key, payload=payload, cached_at=self._clock())

  def sweep(self) -> int:
    """Remove every expired entry; returns how many were dropped."""
    with self._lock:
      now = self._clock()
      stale = [key for key, entry in self._entries.items() if self._expired(entry, now)]
      for key in stale:
        del self._entries[key]

    if stale:
      logger.debug(f"Cache sweep removed {len(stale)} expired entr{'y' if len(stale) == 1 else 'ies'}")
    return len(stale)

  def invalidate(self, predicate: Callable[[Hashable], bool]) -> int:
    with self._lock:
      doomed = [key for key in self._entries if predicate(key)]
      for key in doomed:
        del self._entries[key]
    return len(doomed)

  def clear(self) -> None:
    with self._lock:
      self._entries.clear()

  def __len__(self) -> int:
    with self._lock:
      return len(self._entries)
