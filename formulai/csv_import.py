from __future__ import annotations

import csv
import io
import time
from collections import Counter
from typing import Any, List, Optional, Tuple

from .logging_config import get_logger
from .models import ColumnType, SheetDescriptor, SheetInfo
from .sheet_reader import DATE_PATTERN, SAMPLE_ROW_COUNT
from .utils import parse_number

logger = get_logger(__name__)


CSV_ID_PREFIX = "csv-"
MAX_CSV_BYTES = 5 * 1024 * 1024


class CsvImportError(ValueError):
  pass


def detect_value_type(value: str) -> ColumnType:
  text = value.strip()
  if not text:
    return "string"
  if parse_number(text) is not None:
    return "number"
  if DATE_PATTERN.match(text):
    return "date"
  if text.lower() in ("true", "false", "yes", "no"):
    return "boolean"
  return "string"


def detect_column_type(samples: List[str]) -> ColumnType:
  """Most frequent type among ``samples``; ties go to the first seen."""
  if not samples:
    return "string"
  counts = Counter(detect_value_type(sample) for sample in samples)
  return counts.most_common(1)[0][0]


def parse_csv(content: str) -> Tuple[List[str], List[List[str]]]:
  """
  Split CSV text into a header row and data rows padded to the header width.
  Blank lines are skipped.
  """
  reader = csv.reader(io.StringIO(content.lstrip("\ufeff")))
  rows = [row for row in reader if any(cell.strip() for cell in row)]
  if not rows:
    raise CsvImportError("CSV file is empty")

  headers = [cell.strip() for cell in rows[0]]
  if not any(headers):
    raise CsvImportError("CSV file has no header row")

  width = len(headers)
  data = []
  for row in rows[1:]:
    padded = [cell.strip() for cell in row[:width]]
    padded.extend([""] * (width - len(padded)))
    data.append(padded)
  return headers, data


def descriptor_from_csv(
  content: str,
  file_name: str,
  now_ms: Optional[int] = None,
) -> Tuple[SheetDescriptor, List[List[Any]]]:
  """
  Build a read-only sheet descriptor for an uploaded CSV file.

  Returns the descriptor and the full grid (header row first) for previews.
  """
  headers, data = parse_csv(content)
  now_ms = now_ms if now_ms is not None else int(time.time() * 1000)

  sheet_title = file_name[:-4] if file_name.lower().endswith(".csv") else file_name
  sheet_title = sheet_title or "Sheet1"
  samples = data[:SAMPLE_ROW_COUNT]
  types = [detect_column_type([row[i] for row in samples]) for i in range(len(headers))]

  descriptor = SheetDescriptor(
    spreadsheet_id=f"{CSV_ID_PREFIX}{now_ms}",
    spreadsheet_title=file_name,
    sheet_title=sheet_title,
    sheets=[SheetInfo(sheet_id=0, title=sheet_title, index=0)],
    headers=headers,
    inferred_types=types,
    sample_rows=[list(row) for row in samples],
  )
  logger.info(
    f"Imported CSV '{file_name}': {len(headers)} column(s), {len(data)} row(s)",
    extra={"spreadsheet_id": descriptor.spreadsheet_id},
  )
  return descriptor, [headers] + data
