from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .csv_import import CSV_ID_PREFIX
from .errors import TargetNotFound, UnsupportedAction
from .logging_config import get_logger
from .models import Action, ApplyResult, ChartAction, ChartSpec, FormulaAction
from .sheet_reader import SheetReader
from .undo import UndoLedger
from .utils import GridRange, parse_a1, qualify_range, split_sheet_prefix

logger = get_logger(__name__)


# Chart types that map onto Sheets' basicChart; anything else falls back to COLUMN
BASIC_CHART_TYPES = {"BAR", "LINE", "AREA", "COLUMN", "SCATTER", "COMBO", "STEPPED_AREA"}


class KeyedLocks:
  """Registry of one lock per (spreadsheet_id, sheet_title)."""

  def __init__(self) -> None:
    self._locks: Dict[Tuple[str, str], threading.Lock] = {}
    self._guard = threading.Lock()

  def _lock_for(self, key: Tuple[str, str]) -> threading.Lock:
    with self._guard:
      lock = self._locks.get(key)
      if lock is None:
        lock = threading.Lock()
        self._locks[key] = lock
      return lock

  @contextmanager
  def hold(self, spreadsheet_id: str, sheet_title: str) -> Iterator[None]:
    lock = self._lock_for((spreadsheet_id, sheet_title))
    with lock:
      yield


def _grid_range(sheet_id: int, bounds: GridRange, start_col: int, end_col: int) -> Dict[str, Any]:
  grid: Dict[str, Any] = {
    "sheetId": sheet_id,
    "startColumnIndex": start_col,
    "endColumnIndex": end_col,
  }
  if bounds.start_row is not None:
    grid["startRowIndex"] = bounds.start_row
  if bounds.end_row is not None:
    grid["endRowIndex"] = bounds.end_row
  return grid


def build_add_chart_request(
  sheet_id: int,
  chart: ChartSpec,
  anchor_range: str,
  data_sheet_id: Optional[int] = None,
) -> Dict[str, Any]:
  """
  addChart request for ``chart``: the first column of ``data_range`` is the
  domain and every remaining column becomes one series. The chart is anchored
  on ``sheet_id``; its data is read from ``data_sheet_id`` when given.
  """
  source_id = sheet_id if data_sheet_id is None else data_sheet_id
  try:
    data = parse_a1(chart.data_range)
    anchor = parse_a1(anchor_range)
  except ValueError as exc:
    raise TargetNotFound(f"Invalid chart range: {exc}") from exc

  options = chart.options or {}
  chart_type = str(options.get("chartType") or chart.type).upper()

  domain = {
    "domain": {
      "sourceRange": {"sources": [_grid_range(source_id, data, data.start_col, data.start_col + 1)]}
    }
  }
  series_cols = range(data.start_col + 1, data.end_col) if data.width > 1 else range(data.start_col, data.end_col)
  series = [
    {"series": {"sourceRange": {"sources": [_grid_range(source_id, data, col, col + 1)]}}}
    for col in series_cols
  ]

  if chart_type == "PIE":
    spec: Dict[str, Any] = {
      "pieChart": {
        "legendPosition": options.get("legendPosition", "RIGHT_LEGEND"),
        "domain": domain["domain"],
        "series": series[0]["series"] if series else domain["domain"],
      }
    }
  else:
    if chart_type not in BASIC_CHART_TYPES:
      logger.warning(f"Unsupported chart type {chart_type}, rendering as COLUMN")
      chart_type = "COLUMN"
    axes: List[Dict[str, Any]] = []
    if options.get("xAxisTitle"):
      axes.append({"position": "BOTTOM_AXIS", "title": str(options["xAxisTitle"])})
    if options.get("yAxisTitle"):
      axes.append({"position": "LEFT_AXIS", "title": str(options["yAxisTitle"])})
    basic: Dict[str, Any] = {
      "chartType": chart_type,
      "legendPosition": options.get("legendPosition", "BOTTOM_LEGEND"),
      "domains": [domain],
      "series": series,
      "headerCount": int(options.get("headerCount", 1)),
    }
    if axes:
      basic["axis"] = axes
    spec = {"basicChart": basic}

  spec["title"] = chart.title

  return {
    "addChart": {
      "chart": {
        "spec": spec,
        "position": {
          "overlayPosition": {
            "anchorCell": {
              "sheetId": sheet_id,
              "rowIndex": anchor.start_row or 0,
              "columnIndex": anchor.start_col,
            }
          }
        },
      }
    }
  }


def local_target(sheet_title: str, range_a1: str) -> str:
  """
  ``range_a1`` without its sheet prefix. A prefix naming a different sheet is
  rejected: locks, snapshots and undo are all kept per sheet.
  """
  sheet, cells = split_sheet_prefix(range_a1.strip())
  if sheet is not None and sheet != sheet_title:
    raise UnsupportedAction(
      f'Target {range_a1!r} is on sheet "{sheet}"; select that sheet to change it.'
    )
  return cells


class ActionApplier:
  """
  Executes formula and chart actions against the user's sheet.

  Each apply snapshots the target range first and holds the sheet lock for
  the snapshot and the mutation together.
  """

  def __init__(self, reader: SheetReader, ledger: UndoLedger, locks: KeyedLocks) -> None:
    self.reader = reader
    self.ledger = ledger
    self.locks = locks

  def apply(self, spreadsheet_id: str, sheet_title: str, action: Action) -> ApplyResult:
    if spreadsheet_id.startswith(CSV_ID_PREFIX):
      raise UnsupportedAction("Actions on uploaded CSV data can only be previewed.")
    if not isinstance(action, (FormulaAction, ChartAction)):
      raise UnsupportedAction(f"'{action.kind}' actions cannot be applied automatically yet.")

    target = local_target(sheet_title, action.target_range)
    try:
      first_cell = parse_a1(target).first_cell
    except ValueError as exc:
      raise TargetNotFound(f"Invalid target range {action.target_range!r}") from exc

    client = self.reader.require_client()

    with self.locks.hold(spreadsheet_id, sheet_title):
      self.ledger.snapshot(spreadsheet_id, sheet_title, target)

      if isinstance(action, FormulaAction):
        result = self._apply_formula(spreadsheet_id, sheet_title, first_cell, action)
      else:
        result = self._apply_chart(client, spreadsheet_id, sheet_title, target, action)

    logger.info(
      f"Applied {action.kind} action to {target}",
      extra={"spreadsheet_id": spreadsheet_id, "sheet_title": sheet_title},
    )
    return result

  def _apply_formula(
    self,
    spreadsheet_id: str,
    sheet_title: str,
    cell: str,
    action: FormulaAction,
  ) -> ApplyResult:
    written = self.reader.require_client().write_range(
      spreadsheet_id,
      qualify_range(sheet_title, cell),
      [[action.formula]],
    )
    return ApplyResult(
      kind="formula",
      spreadsheet_id=spreadsheet_id,
      sheet_title=sheet_title,
      updated_range=written.get("updatedRange"),
      updated_cells=written.get("updatedCells", 0),
    )

  def _sheet_ids(self, client: Any, spreadsheet_id: str) -> Dict[str, int]:
    metadata = client.get_spreadsheet_metadata(spreadsheet_id)
    return {
      sheet.get("title"): int(sheet.get("sheetId", 0))
      for sheet in metadata.get("sheets", [])
    }

  def _apply_chart(
    self,
    client: Any,
    spreadsheet_id: str,
    sheet_title: str,
    anchor: str,
    action: ChartAction,
  ) -> ApplyResult:
    sheet_ids = self._sheet_ids(client, spreadsheet_id)
    if sheet_title not in sheet_ids:
      raise TargetNotFound(f'Sheet "{sheet_title}" not found')

    data_sheet, data_cells = split_sheet_prefix(action.chart.data_range.strip())
    data_sheet = data_sheet or sheet_title
    if data_sheet not in sheet_ids:
      raise TargetNotFound(f'Sheet "{data_sheet}" not found')

    chart = action.chart.model_copy(update={"data_range": data_cells})
    request = build_add_chart_request(sheet_ids[sheet_title], chart, anchor, sheet_ids[data_sheet])
    response = client.batch_update(spreadsheet_id, [request])

    chart_id: Optional[int] = None
    replies = response.get("replies") or []
    if replies:
      chart_id = (((replies[0] or {}).get("addChart") or {}).get("chart") or {}).get("chartId")

    return ApplyResult(
      kind="chart",
      spreadsheet_id=spreadsheet_id,
      sheet_title=sheet_title,
      updated_range=action.chart.data_range,
      chart_id=chart_id,
    )
