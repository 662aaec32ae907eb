"""
In-memory undo ledger: one snapshot per (spreadsheet, sheet, range).

Snapshots are captured with formulas rendered as formulas and padded to the
full size of the range, so restoring also clears cells that were empty before
the action wrote into them.
"""

from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional, Tuple

from .errors import FormulAiError, NothingToUndo
from .logging_config import get_logger
from .models import Snapshot, UndoResult
from .sheet_reader import SheetReader
from .utils import parse_a1, qualify_range, split_sheet_prefix

logger = get_logger(__name__)

SnapshotKey = Tuple[str, str, str]


def pad_values(values: List[List[Any]], rows: int, cols: int) -> List[List[Any]]:
  padded: List[List[Any]] = []
  for row_index in range(rows):
    row = list(values[row_index]) if row_index < len(values) else []
    row = row[:cols]
    row.extend([""] * (cols - len(row)))
    padded.append(row)
  return padded


class SnapshotStore:
  """Thread-safe process-wide snapshot map, shared by every request."""

  def __init__(self) -> None:
    self._snapshots: Dict[SnapshotKey, Snapshot] = {}
    self._lock = threading.Lock()

  def put(self, snapshot: Snapshot) -> None:
    with self._lock:
      # Re-insert so iteration order stays capture order after an overwrite
      self._snapshots.pop(snapshot.key, None)
      self._snapshots[snapshot.key] = snapshot

  def get(self, key: SnapshotKey) -> Optional[Snapshot]:
    with self._lock:
      return self._snapshots.get(key)

  def latest(self, spreadsheet_id: str, sheet_title: str) -> Optional[Snapshot]:
    latest: Optional[Snapshot] = None
    with self._lock:
      for key, snap in self._snapshots.items():
        if key[0] != spreadsheet_id or key[1] != sheet_title:
          continue
        # Ties on captured_at go to the later insertion
        if latest is None or snap.captured_at >= latest.captured_at:
          latest = snap
    return latest

  def discard(self, key: SnapshotKey) -> None:
    with self._lock:
      self._snapshots.pop(key, None)

  def __len__(self) -> int:
    with self._lock:
      return len(self._snapshots)


class UndoLedger:
  def __init__(self, reader: SheetReader, store: SnapshotStore) -> None:
    self.reader = reader
    self.store = store

  def snapshot(self, spreadsheet_id: str, sheet_title: str, range_a1: str) -> Snapshot:
    """
    Capture the current contents of ``range_a1``, replacing any earlier
    snapshot under the same key.

    A range that cannot be parsed or read still records a snapshot, marked
    unavailable, so the later undo reports there is nothing to restore.
    """
    captured: Optional[List[List[Any]]] = None
    try:
      bounds = parse_a1(range_a1)
      values = self.reader.read_values(spreadsheet_id, sheet_title, range_a1)
      if bounds.start_row is not None and bounds.end_row is not None:
        rows = bounds.end_row - bounds.start_row
      else:
        # An open range starts at row 1, which is always captured
        rows = max(len(values), 1)
      captured = pad_values(values, rows, bounds.width)
    except ValueError as exc:
      logger.warning(
        f"Cannot snapshot unparsable range {range_a1!r}: {exc}",
        extra={"spreadsheet_id": spreadsheet_id, "sheet_title": sheet_title},
      )
    except FormulAiError as exc:
      logger.warning(
        f"Snapshot read failed for {range_a1!r}: {exc.code}",
        extra={"spreadsheet_id": spreadsheet_id, "sheet_title": sheet_title},
      )

    snapshot = Snapshot(
      spreadsheet_id=spreadsheet_id,
      sheet_title=sheet_title,
      range=range_a1,
      captured_values=captured,
      available=captured is not None,
    )
    self.store.put(snapshot)
    logger.debug(
      f"Snapshot stored for {range_a1} (available={snapshot.available})",
      extra={"spreadsheet_id": spreadsheet_id, "sheet_title": sheet_title},
    )
    return snapshot

  def undo(self, spreadsheet_id: str, sheet_title: str, range_a1: Optional[str] = None) -> UndoResult:
    if range_a1:
      sheet, cells = split_sheet_prefix(range_a1.strip())
      if sheet == sheet_title:
        range_a1 = cells
      snapshot = self.store.get((spreadsheet_id, sheet_title, range_a1))
    else:
      snapshot = self.store.latest(spreadsheet_id, sheet_title)

    if snapshot is None:
      raise NothingToUndo()

    if not snapshot.available or snapshot.captured_values is None:
      self.store.discard(snapshot.key)
      raise NothingToUndo("The previous state of this range could not be captured.")

    client = self.reader.require_client()
    written = client.write_range(
      spreadsheet_id,
      qualify_range(sheet_title, snapshot.range),
      snapshot.captured_values,
    )
    self.store.discard(snapshot.key)

    logger.info(
      f"Restored {snapshot.range} from snapshot taken at {snapshot.captured_at.isoformat()}",
      extra={"spreadsheet_id": spreadsheet_id, "sheet_title": sheet_title},
    )
    return UndoResult(
      spreadsheet_id=spreadsheet_id,
      sheet_title=sheet_title,
      range=snapshot.range,
      updated_range=written.get("updatedRange"),
      updated_cells=written.get("updatedCells", 0),
    )
