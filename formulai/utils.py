from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Tuple


_SPREADSHEET_URL_RE = re.compile(r"/spreadsheets/d/([a-zA-Z0-9-_]+)")
_CELL_RE = re.compile(r"^\$?([A-Za-z]{1,3})\$?(\d+)?$")
# Plain decimal or scientific notation, thousands separators allowed
_NUMBER_RE = re.compile(r"^[-+]?(\d[\d,]*(\.\d*)?|\.\d+)([eE][-+]?\d+)?$")


def normalize_spreadsheet_id(raw: str) -> str:
  """
  Normalize a spreadsheet identifier that may be a bare ID or a full URL.
  """
  if not raw:
    return raw

  trimmed = raw.strip()
  match = _SPREADSHEET_URL_RE.search(trimmed)
  if match:
    return match.group(1)
  return trimmed


def parse_number(text: str) -> Optional[float]:
  """
  Numeric value of a cell's text, or None. Words that ``float`` would accept
  such as "nan", "inf" or "1_000" are not numbers here.
  """
  text = text.strip()
  if not _NUMBER_RE.match(text):
    return None
  return float(text.replace(",", ""))


def column_to_letter(column: int) -> str:
  letter = ""
  while column > 0:
    remainder = (column - 1) % 26
    letter = chr(65 + remainder) + letter
    column = (column - 1) // 26
  return letter


def letter_to_column(letter: str) -> int:
  """A=1, B=2, ..., Z=26, AA=27."""
  result = 0
  for char in letter.upper():
    result = result * 26 + (ord(char) - ord("A") + 1)
  return result


def quote_sheet_title(title: str) -> str:
  escaped = title.replace("'", "''")
  return f"'{escaped}'"


def split_sheet_prefix(range_a1: str) -> Tuple[Optional[str], str]:
  """
  Split ``'My Sheet'!A1:B2`` into ``("My Sheet", "A1:B2")``.
  """
  if "!" not in range_a1:
    return None, range_a1
  sheet, _, cells = range_a1.rpartition("!")
  if sheet.startswith("'") and sheet.endswith("'") and len(sheet) >= 2:
    sheet = sheet[1:-1].replace("''", "'")
  return sheet, cells


def qualify_range(sheet_title: str, range_a1: str) -> str:
  """
  Prefix a bare A1 range with the quoted sheet title. A range that already
  names a sheet is returned unchanged.
  """
  sheet, cells = split_sheet_prefix(range_a1.strip())
  if sheet is not None:
    return f"{quote_sheet_title(sheet)}!{cells}"
  return f"{quote_sheet_title(sheet_title)}!{cells}"


@dataclass(frozen=True)
class GridRange:
  """Zero-based, end-exclusive bounds of an A1 range (rows may be open)."""

  start_col: int
  end_col: int
  start_row: Optional[int]
  end_row: Optional[int]

  @property
  def first_cell(self) -> str:
    row = (self.start_row or 0) + 1
    return f"{column_to_letter(self.start_col + 1)}{row}"

  @property
  def width(self) -> int:
    return self.end_col - self.start_col


def parse_a1(range_a1: str) -> GridRange:
  """
  Parse ``B2``, ``A1:C10`` or ``A:B`` (optionally sheet-prefixed).

  Raises ValueError for anything else.
  """
  _, cells = split_sheet_prefix(range_a1.strip())
  if not cells:
    raise ValueError(f"Invalid A1 range: {range_a1!r}")

  parts = cells.split(":")
  if len(parts) > 2:
    raise ValueError(f"Invalid A1 range: {range_a1!r}")

  parsed = []
  for part in parts:
    match = _CELL_RE.match(part.strip())
    if not match:
      raise ValueError(f"Invalid A1 range: {range_a1!r}")
    col = letter_to_column(match.group(1)) - 1
    row = int(match.group(2)) - 1 if match.group(2) else None
    if row is not None and row < 0:
      raise ValueError(f"Invalid A1 range: {range_a1!r}")
    parsed.append((col, row))

  start_col, start_row = parsed[0]
  end_col, end_row = parsed[-1]
  if len(parsed) == 1 and start_row is None:
    raise ValueError(f"Invalid A1 range: {range_a1!r}")

  start_col, end_col = min(start_col, end_col), max(start_col, end_col)
  if start_row is not None and end_row is not None:
    start_row, end_row = min(start_row, end_row), max(start_row, end_row)

  return GridRange(
    start_col=start_col,
    end_col=end_col + 1,
    start_row=start_row,
    end_row=end_row + 1 if end_row is not None else None,
  )
