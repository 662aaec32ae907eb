from __future__ import annotations

import re
from typing import Any, List, Optional, Sequence, Tuple

from .cache import ResponseCache
from .errors import NotAuthenticated, NotFound
from .logging_config import get_logger
from .models import ColumnType, SheetDescriptor, SheetInfo
from .sheets_client import UserSheetsClient
from .utils import parse_number, qualify_range

logger = get_logger(__name__)


# Deliberate cap on how much of a sheet is fetched for structure detection
READ_COLUMNS = "A1:Z1000"
SAMPLE_ROW_COUNT = 5
DATE_PATTERN = re.compile(r"^\d{1,4}[-/]\d{1,2}[-/]\d{1,4}$")

CacheKey = Tuple[str, Optional[str]]


def _is_blank(value: Any) -> bool:
  return value is None or (isinstance(value, str) and not value.strip())


def classify_value(value: Any) -> ColumnType:
  if isinstance(value, bool):
    return "boolean"
  if isinstance(value, (int, float)):
    return "number"

  text = str(value).strip()
  if parse_number(text) is not None:
    return "number"
  if text.lower() in ("true", "false"):
    return "boolean"
  if DATE_PATTERN.match(text):
    return "date"
  return "string"


def infer_column_types(headers: Sequence[Any], data_rows: Sequence[Sequence[Any]]) -> List[ColumnType]:
  """
  Classify each column from the first non-blank value found in ``data_rows``.

  Always returns exactly one type per header; columns without data are
  reported as ``string``.
  """
  types: List[ColumnType] = []
  for col_index in range(len(headers)):
    inferred: ColumnType = "string"
    for row in data_rows:
      if col_index < len(row) and not _is_blank(row[col_index]):
        inferred = classify_value(row[col_index])
        break
    types.append(inferred)
  return types


def _pad_row(row: Sequence[Any], width: int) -> List[Any]:
  padded = list(row[:width])
  padded.extend([""] * (width - len(padded)))
  return padded


class SheetReader:
  """
  Reads a sheet's header row, column types and a few sample rows.

  Descriptors are cached per (spreadsheet_id, sheet_title); the cache is
  swept at the start of every read instead of on a timer.
  """

  def __init__(self, client: Optional[UserSheetsClient], cache: ResponseCache) -> None:
    self.client = client
    self.cache = cache

  def require_client(self) -> UserSheetsClient:
    if self.client is None:
      raise NotAuthenticated()
    return self.client

  def read_sheet(self, spreadsheet_id: str, sheet_title: Optional[str] = None) -> SheetDescriptor:
    client = self.require_client()
    self.cache.sweep()

    # (spreadsheet_id, None) aliases whichever sheet a title-less read resolved to
    cached = self.cache.get((spreadsheet_id, sheet_title or None))
    if cached is not None:
      logger.debug(
        "Sheet descriptor served from cache",
        extra={"spreadsheet_id": spreadsheet_id, "sheet_title": cached.sheet_title},
      )
      return cached

    metadata = client.get_spreadsheet_metadata(spreadsheet_id)
    sheets = [
      SheetInfo(sheet_id=s["sheetId"], title=s["title"], index=s["index"])
      for s in metadata.get("sheets", [])
    ]
    if not sheets:
      raise NotFound(f"Spreadsheet {spreadsheet_id} has no sheets")

    target = next((s for s in sheets if s.title == sheet_title), None) if sheet_title else None
    if target is None:
      if sheet_title:
        logger.warning(
          f'Sheet "{sheet_title}" not found, falling back to "{sheets[0].title}"',
          extra={"spreadsheet_id": spreadsheet_id},
        )
      target = sheets[0]
      cached = self.cache.get((spreadsheet_id, target.title))
      if cached is not None:
        return cached

    grid = client.read_values(spreadsheet_id, qualify_range(target.title, READ_COLUMNS))
    headers = [str(cell) if cell is not None else "" for cell in (grid[0] if grid else [])]
    data_rows = grid[1:]
    samples = [_pad_row(row, len(headers)) for row in data_rows[:SAMPLE_ROW_COUNT]]

    descriptor = SheetDescriptor(
      spreadsheet_id=spreadsheet_id,
      spreadsheet_title=metadata.get("title", ""),
      sheet_title=target.title,
      sheets=sheets,
      headers=headers,
      inferred_types=infer_column_types(headers, data_rows[:SAMPLE_ROW_COUNT]),
      sample_rows=samples,
    )

    self.cache.put((spreadsheet_id, target.title), descriptor)
    if not sheet_title:
      self.cache.put((spreadsheet_id, None), descriptor)
    logger.info(
      f"Read sheet '{target.title}': {len(headers)} column(s), {len(data_rows)} data row(s)",
      extra={"spreadsheet_id": spreadsheet_id, "sheet_title": target.title},
    )
    return descriptor

  def read_values(self, spreadsheet_id: str, sheet_title: str, range_a1: str) -> List[List[Any]]:
    """
    Raw cell contents of ``range_a1`` with formulas rendered as formulas, so
    writing them back with USER_ENTERED reproduces the cells.
    """
    client = self.require_client()
    return client.read_values(
      spreadsheet_id,
      qualify_range(sheet_title, range_a1),
      value_render_option="FORMULA",
    )

  def invalidate(self, spreadsheet_id: str, sheet_title: Optional[str] = None) -> None:
    def _matches(key: CacheKey) -> bool:
      if key[0] != spreadsheet_id:
        return False
      return sheet_title is None or key[1] is None or key[1] == sheet_title

    self.cache.invalidate(_matches)
