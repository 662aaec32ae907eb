"""
Formula explainer, forecasting, CSV import and chart suggestions.
"""

import pytest

from formulai.chart_suggestions import suggest_charts
from formulai.csv_import import CsvImportError, descriptor_from_csv, detect_column_type
from formulai.forecasting import classify_trend, future_labels, generate_forecasts, linear_regression
from formulai.formula_explainer import determine_complexity, explain_formula, tokenize_formula


# --- formula explainer ---

def test_tokenize_keeps_ranges_and_strings_whole():
  assert tokenize_formula('=IF(A1>10, "big one", SUM(B1:B5))') == [
    "IF", "(", "A1", ">", "10", ",", '"big one"', ",", "SUM", "(", "B1:B5", ")", ")",
  ]


def test_explain_sum():
  explanation = explain_formula("=SUM(A1:A10)")

  assert explanation.original == "=SUM(A1:A10)"
  assert explanation.plain_language.startswith("This formula uses the SUM function, which adds")
  assert "A1:A10" in explanation.plain_language
  assert [p.snippet for p in explanation.parts] == ["SUM", "A1:A10"]
  assert explanation.complexity == "simple"
  assert explanation.examples[0].output == 60


def test_explain_arithmetic_only():
  explanation = explain_formula("=A1*B1+C1")

  assert "multiplication" in explanation.plain_language
  assert "addition" in explanation.plain_language
  assert explanation.parts[-1].snippet == "A1, B1, C1"


def test_complexity_levels():
  assert determine_complexity("=A1+1") == "simple"
  assert determine_complexity("=ROUND(AVERAGE(B2:B9), 2)") == "medium"
  assert determine_complexity("=IFERROR(INDEX(A:A, MATCH(MAX(B:B), B:B, 0)), \"\")") == "complex"


def test_empty_formula_is_rejected():
  with pytest.raises(ValueError):
    explain_formula("   ")


# --- forecasting ---

def test_linear_regression_exact_fit():
  regression = linear_regression([0, 1, 2, 3], [1, 3, 5, 7])

  assert regression.slope == pytest.approx(2.0)
  assert regression.intercept == pytest.approx(1.0)
  assert regression.r_squared == pytest.approx(1.0)


def test_forecast_projects_growing_series():
  headers = ["Month", "Sales", "Noise"]
  noise = [5, 90, 3, 70, 12, 88, 1, 60, 40, 2, 99, 7]
  rows = [[f"2023-{m:02d}-01", str(100 + 10 * m), str(noise[m - 1])] for m in range(1, 13)]

  results = generate_forecasts(headers, rows, periods=3)

  assert list(results) == ["Sales"]
  sales = results["Sales"]
  assert sales.predictions == pytest.approx([230.0, 240.0, 250.0])
  assert sales.labels == ["2024-01-01", "2024-02-01", "2024-03-01"]
  assert sales.trend == "increasing"
  assert sales.confidence == pytest.approx(100.0)


def test_short_columns_are_not_forecast():
  rows = [[str(i)] for i in range(9)]

  assert generate_forecasts(["Value"], rows) == {}


def test_future_labels_and_trend():
  assert future_labels("2023-01-31", 2) == ["2023-02-28", "2023-03-31"]
  assert future_labels("2019", 2) == ["2020", "2021"]
  assert future_labels("Q4", 2) == ["Q4+1", "Q4+2"]
  assert classify_trend(5.0) == "stable"
  assert classify_trend(-6.0) == "decreasing"


# --- CSV import ---

CSV_TEXT = "Region,Units,Shipped,Date\nNorth,10,yes,2024-01-01\nSouth,12.5,no,2024-01-02\n\nEast,,yes,2024-01-03\n"


def test_csv_becomes_read_only_descriptor():
  descriptor, grid = descriptor_from_csv(CSV_TEXT, "orders.csv", now_ms=1700000000000)

  assert descriptor.spreadsheet_id == "csv-1700000000000"
  assert descriptor.sheet_title == "orders"
  assert descriptor.headers == ["Region", "Units", "Shipped", "Date"]
  assert descriptor.inferred_types == ["string", "number", "boolean", "date"]
  assert len(grid) == 4
  assert grid[3] == ["East", "", "yes", "2024-01-03"]


def test_csv_type_vote_prefers_majority():
  assert detect_column_type(["1", "2", "x"]) == "number"
  assert detect_column_type([]) == "string"
  assert detect_column_type(["NaN", "inf", "n/a"]) == "string"


def test_empty_csv_is_rejected():
  with pytest.raises(CsvImportError):
    descriptor_from_csv("\n\n", "empty.csv")


# --- chart suggestions ---

def test_chart_suggestions_cover_time_category_and_overview():
  headers = ["Date", "Region", "Revenue", "Cost"]
  regions = ["North", "South", "East"]
  rows = [[f"2024-01-{d:02d}", regions[d % 3], str(100 + d), str(50 + d * 2)] for d in range(1, 21)]

  suggestions = suggest_charts(headers, rows)
  kinds = {s.chart_type for s in suggestions}

  assert suggestions[0].id == "table-overview"
  assert {"line", "bar", "pie", "scatter", "table"} <= kinds
  assert [s.confidence for s in suggestions] == sorted((s.confidence for s in suggestions), reverse=True)
  pie = next(s for s in suggestions if s.chart_type == "pie")
  assert pie.columns == ["Region", "Revenue"]
