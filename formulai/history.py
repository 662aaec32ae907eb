from __future__ import annotations

import threading
import uuid
from collections import deque
from typing import Deque, Dict, List, Optional

from .models import Action, HistoryItem


DEFAULT_HISTORY_LIMIT = 100


class HistoryLog:
  """
  Bounded, newest-first record of analysis requests.

  Items are immutable once appended; when the log is full the oldest entry
  is dropped.
  """

  def __init__(self, limit: int = DEFAULT_HISTORY_LIMIT) -> None:
    self.limit = limit
    self._items: Deque[HistoryItem] = deque(maxlen=limit)
    self._lock = threading.Lock()

  def append(
    self,
    query_text: str,
    result_action: Optional[Action] = None,
    error: Optional[str] = None,
  ) -> HistoryItem:
    item = HistoryItem(
      id=str(uuid.uuid4()),
      query_text=query_text,
      result_action=result_action,
      error=error,
    )
    with self._lock:
      self._items.appendleft(item)
    return item

  def items(self) -> List[HistoryItem]:
    with self._lock:
      return list(self._items)

  def clear(self) -> None:
    with self._lock:
      self._items.clear()

  def __len__(self) -> int:
    with self._lock:
      return len(self._items)


class HistoryRegistry:
  """
  In-memory history logs keyed by session id.

  This is process-local; restarting the server forgets every session.
  """

  def __init__(self, limit: int = DEFAULT_HISTORY_LIMIT) -> None:
    self.limit = limit
    self._sessions: Dict[str, HistoryLog] = {}
    self._lock = threading.Lock()

  def for_session(self, session_id: str) -> HistoryLog:
    with self._lock:
      log = self._sessions.get(session_id)
      if log is None:
        log = HistoryLog(self.limit)
        self._sessions[session_id] = log
      return log
