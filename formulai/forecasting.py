from __future__ import annotations

import calendar
import re
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple

from pydantic import BaseModel

from .utils import parse_number


MIN_POINTS = 10
MIN_R_SQUARED = 0.5
STABLE_BAND_PERCENT = 5.0
TIME_TERMS = ("date", "time", "year", "month", "day", "quarter", "week")
DATE_PATTERN = re.compile(r"^\d{1,4}[-/]\d{1,2}[-/]\d{1,4}$")
DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%m/%d/%Y", "%d/%m/%Y", "%m-%d-%Y")

Trend = Literal["increasing", "decreasing", "stable"]


class Regression(BaseModel):
  slope: float
  intercept: float
  r_squared: float


class ForecastResult(BaseModel):
  original_data: List[float]
  predictions: List[float]
  labels: List[str]
  confidence: float
  trend: Trend
  percent_change: float
  method: str = "Linear Regression"


def _cell(row: Sequence[Any], index: int) -> str:
  if index >= len(row) or row[index] is None:
    return ""
  return str(row[index]).strip()


def _to_float(value: str) -> Optional[float]:
  if not value:
    return None
  return parse_number(value)


def is_time_column(header: str, values: Sequence[str]) -> bool:
  if any(term in header.lower() for term in TIME_TERMS):
    return True
  present = [v for v in values if v]
  if not present:
    return False
  matches = sum(1 for v in present if DATE_PATTERN.match(v))
  return matches > len(present) * 0.7


def linear_regression(x_values: Sequence[float], y_values: Sequence[float]) -> Regression:
  n = len(x_values)
  if n == 0 or n != len(y_values):
    raise ValueError("x and y must be non-empty and of equal length")

  x_mean = sum(x_values) / n
  y_mean = sum(y_values) / n
  numerator = sum((x - x_mean) * (y - y_mean) for x, y in zip(x_values, y_values))
  denominator = sum((x - x_mean) ** 2 for x in x_values)

  slope = numerator / denominator if denominator else 0.0
  intercept = y_mean - slope * x_mean

  ss_res = sum((y - (slope * x + intercept)) ** 2 for x, y in zip(x_values, y_values))
  ss_tot = sum((y - y_mean) ** 2 for y in y_values)
  if ss_tot:
    r_squared = 1 - ss_res / ss_tot
  else:
    # Constant series: a flat line fits it exactly
    r_squared = 1.0

  return Regression(slope=slope, intercept=intercept, r_squared=r_squared)


def _parse_date(value: str) -> Optional[date]:
  for fmt in DATE_FORMATS:
    try:
      return datetime.strptime(value, fmt).date()
    except ValueError:
      continue
  return None


def _add_months(start: date, months: int) -> date:
  month_index = start.month - 1 + months
  year = start.year + month_index // 12
  month = month_index % 12 + 1
  day = min(start.day, calendar.monthrange(year, month)[1])
  return date(year, month, day)


def future_labels(last_label: str, periods: int) -> List[str]:
  """
  Labels for the next ``periods`` points: monthly steps for dates, +1 for
  numbers, and ``<label>+n`` otherwise.
  """
  if DATE_PATTERN.match(last_label):
    parsed = _parse_date(last_label)
    if parsed is not None:
      return [_add_months(parsed, i).isoformat() for i in range(1, periods + 1)]

  numeric = _to_float(last_label)
  if numeric is not None:
    step_from = int(numeric) if numeric.is_integer() else numeric
    return [str(step_from + i) for i in range(1, periods + 1)]

  return [f"{last_label}+{i}" for i in range(1, periods + 1)]


def classify_trend(percent_change: float) -> Trend:
  if percent_change > STABLE_BAND_PERCENT:
    return "increasing"
  if percent_change < -STABLE_BAND_PERCENT:
    return "decreasing"
  return "stable"


def _numeric_series(rows: Sequence[Sequence[Any]], index: int) -> Tuple[List[float], List[int]]:
  values: List[float] = []
  positions: List[int] = []
  for row_index, row in enumerate(rows):
    number = _to_float(_cell(row, index))
    if number is not None:
      values.append(number)
      positions.append(row_index)
  return values, positions


def generate_forecasts(
  headers: Sequence[str],
  rows: Sequence[Sequence[Any]],
  periods: int = 6,
) -> Dict[str, ForecastResult]:
  """
  Fit a straight line to every numeric column with enough points and a
  reasonable fit, and project it ``periods`` steps ahead.
  """
  if periods < 1:
    raise ValueError("periods must be at least 1")

  time_index = next(
    (i for i, header in enumerate(headers)
     if is_time_column(header, [_cell(row, i) for row in rows])),
    None,
  )

  results: Dict[str, ForecastResult] = {}
  for index, header in enumerate(headers):
    if index == time_index:
      continue
    values, positions = _numeric_series(rows, index)
    if len(values) < MIN_POINTS:
      continue

    x_values = [float(p) for p in positions]
    regression = linear_regression(x_values, values)
    if regression.r_squared < MIN_R_SQUARED:
      continue

    last_x = x_values[-1]
    predictions = [regression.slope * (last_x + step) + regression.intercept for step in range(1, periods + 1)]

    last_value = values[-1]
    percent_change = (predictions[-1] - last_value) / abs(last_value) * 100 if last_value else 0.0

    if time_index is not None:
      last_label = _cell(rows[positions[-1]], time_index) or str(len(rows))
      labels = future_labels(last_label, periods)
    else:
      labels = [str(len(values) + i) for i in range(1, periods + 1)]

    results[header] = ForecastResult(
      original_data=values,
      predictions=predictions,
      labels=labels,
      confidence=regression.r_squared * 100,
      trend=classify_trend(percent_change),
      percent_change=percent_change,
    )

  return results
