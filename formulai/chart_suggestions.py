from __future__ import annotations

from typing import Any, List, Literal, Sequence

from pydantic import BaseModel

from .forecasting import is_time_column
from .utils import parse_number


ChartKind = Literal["line", "bar", "pie", "scatter", "area", "column", "table"]

MAX_SERIES_PER_AXIS = 3
OVERVIEW_COLUMNS = 5


class ChartSuggestion(BaseModel):
  id: str
  title: str
  description: str
  chart_type: ChartKind
  columns: List[str]
  confidence: int


def _column_values(rows: Sequence[Sequence[Any]], index: int) -> List[str]:
  values = []
  for row in rows:
    cell = row[index] if index < len(row) and row[index] is not None else ""
    values.append(str(cell).strip())
  return values


def is_numeric_column(values: Sequence[str]) -> bool:
  present = [v for v in values if v]
  if not present:
    return False
  numeric = sum(1 for value in present if parse_number(value) is not None)
  return numeric > len(present) * 0.7


def is_categorical_column(values: Sequence[str]) -> bool:
  present = [v for v in values if v]
  if not present:
    return False
  return len(set(present)) < min(20, len(present) * 0.3)


def suggest_charts(headers: Sequence[str], rows: Sequence[Sequence[Any]]) -> List[ChartSuggestion]:
  """
  Heuristic chart ideas for a table, highest confidence first.

  A table overview is always included.
  """
  columns = {header: _column_values(rows, i) for i, header in enumerate(headers)}
  time_cols = [h for h in headers if is_time_column(h, columns[h])]
  numeric_cols = [h for h in headers if is_numeric_column(columns[h]) and h not in time_cols]
  categorical_cols = [h for h in headers if is_categorical_column(columns[h]) and h not in numeric_cols]

  suggestions: List[ChartSuggestion] = []

  for time_col in time_cols:
    for num_col in numeric_cols[:MAX_SERIES_PER_AXIS]:
      suggestions.append(ChartSuggestion(
        id=f"timeseries-{time_col}-{num_col}",
        title=f"{num_col} over time",
        description=f"Line chart showing how {num_col} changes over {time_col}",
        chart_type="line",
        columns=[time_col, num_col],
        confidence=90,
      ))

  for cat_col in categorical_cols:
    for num_col in numeric_cols[:MAX_SERIES_PER_AXIS]:
      suggestions.append(ChartSuggestion(
        id=f"bar-{cat_col}-{num_col}",
        title=f"{num_col} by {cat_col}",
        description=f"Bar chart comparing {num_col} across different {cat_col} categories",
        chart_type="bar",
        columns=[cat_col, num_col],
        confidence=85,
      ))

  for cat_col in categorical_cols:
    categories = {v for v in columns[cat_col] if v}
    if not 2 <= len(categories) <= 7:
      continue
    if numeric_cols:
      suggestions.append(ChartSuggestion(
        id=f"pie-{cat_col}-{numeric_cols[0]}",
        title=f"{cat_col} distribution",
        description=f"Pie chart showing the distribution of {numeric_cols[0]} across {cat_col} categories",
        chart_type="pie",
        columns=[cat_col, numeric_cols[0]],
        confidence=75,
      ))
    else:
      suggestions.append(ChartSuggestion(
        id=f"pie-{cat_col}",
        title=f"{cat_col} distribution",
        description=f"Pie chart showing the distribution of {cat_col} categories",
        chart_type="pie",
        columns=[cat_col],
        confidence=70,
      ))

  for i, left in enumerate(numeric_cols[:2]):
    for right in numeric_cols[i + 1:i + 3]:
      suggestions.append(ChartSuggestion(
        id=f"scatter-{left}-{right}",
        title=f"{left} vs {right}",
        description=f"Scatter plot showing the relationship between {left} and {right}",
        chart_type="scatter",
        columns=[left, right],
        confidence=80,
      ))

  suggestions.append(ChartSuggestion(
    id="table-overview",
    title="Data Overview",
    description="Table view of your data with key columns",
    chart_type="table",
    columns=list(headers[:OVERVIEW_COLUMNS]),
    confidence=100,
  ))

  # sorted() is stable, so equal-confidence suggestions keep their order
  return sorted(suggestions, key=lambda s: s.confidence, reverse=True)
