"""
Shared fixtures: an in-memory stand-in for the Google Sheets v4 service and a
scripted LLM, so no test touches the network.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import httplib2
import pytest
from googleapiclient.errors import HttpError

from formulai.cache import ResponseCache
from formulai.errors import MalformedResponse
from formulai.history import HistoryLog
from formulai.interpreter import IntentInterpreter
from formulai.models import Credential
from formulai.service import SharedState, SpreadsheetAssistant
from formulai.sheets_client import UserSheetsClient
from formulai.utils import column_to_letter, parse_a1, split_sheet_prefix


def make_http_error(status: int, message: str = "error") -> HttpError:
  resp = httplib2.Response({"status": str(status)})
  content = json.dumps({"error": {"code": status, "message": message}}).encode("utf-8")
  return HttpError(resp, content)


class _Request:
  def __init__(self, fn, *args: Any) -> None:
    self._fn = fn
    self._args = args

  def execute(self) -> Dict[str, Any]:
    return self._fn(*self._args)


class FakeSheetsService:
  """
  Minimal emulation of ``build("sheets", "v4")``: spreadsheet metadata,
  values get/update and batchUpdate over a dict of cells.

  ``fail_next[method] = HttpError`` makes the next call of that method raise.
  """

  def __init__(self) -> None:
    self.books: Dict[str, Dict[str, Any]] = {}
    self.calls: List[Tuple[str, Dict[str, Any]]] = []
    self.fail_next: Dict[str, Exception] = {}
    self._next_chart_id = 1000

  # --- fixtures helpers ---

  def add_sheet(self, spreadsheet_id: str, title: str, rows: List[List[Any]], book_title: str = "Budget") -> None:
    book = self.books.setdefault(spreadsheet_id, {"title": book_title, "sheets": [], "cells": {}})
    sheet_id = len(book["sheets"]) * 100
    book["sheets"].append({"sheetId": sheet_id, "title": title, "index": len(book["sheets"])})
    cells: Dict[Tuple[int, int], Any] = {}
    for r, row in enumerate(rows):
      for c, value in enumerate(row):
        if value != "":
          cells[(r, c)] = value
    book["cells"][title] = cells

  def cell(self, spreadsheet_id: str, title: str, a1: str) -> Any:
    bounds = parse_a1(a1)
    return self.books[spreadsheet_id]["cells"][title].get((bounds.start_row, bounds.start_col), "")

  def count(self, method: str) -> int:
    return sum(1 for name, _ in self.calls if name == method)

  # --- service surface ---

  def spreadsheets(self) -> "FakeSheetsService":
    return self

  def values(self) -> "FakeSheetsService":
    return self

  def _record(self, method: str, kwargs: Dict[str, Any]) -> None:
    self.calls.append((method, kwargs))
    if method in self.fail_next:
      raise self.fail_next.pop(method)

  def _book(self, spreadsheet_id: str) -> Dict[str, Any]:
    if spreadsheet_id not in self.books:
      raise make_http_error(404, "Requested entity was not found.")
    return self.books[spreadsheet_id]

  def _cells(self, spreadsheet_id: str, range_a1: str) -> Tuple[Dict[Tuple[int, int], Any], Any]:
    book = self._book(spreadsheet_id)
    title, cells = split_sheet_prefix(range_a1)
    if title not in book["cells"]:
      raise make_http_error(400, f"Unable to parse range: {range_a1}")
    return book["cells"][title], parse_a1(cells)

  def get(self, spreadsheetId: str, **kwargs: Any) -> _Request:
    if "range" in kwargs:
      return _Request(self._values_get, spreadsheetId, kwargs)
    return _Request(self._metadata, spreadsheetId, kwargs)

  def _metadata(self, spreadsheet_id: str, kwargs: Dict[str, Any]) -> Dict[str, Any]:
    self._record("spreadsheets.get", kwargs)
    book = self._book(spreadsheet_id)
    return {
      "spreadsheetId": spreadsheet_id,
      "properties": {"title": book["title"]},
      "sheets": [
        {"properties": {**sheet, "gridProperties": {"rowCount": 1000, "columnCount": 26}}}
        for sheet in book["sheets"]
      ],
    }

  def _values_get(self, spreadsheet_id: str, kwargs: Dict[str, Any]) -> Dict[str, Any]:
    self._record("values.get", kwargs)
    cells, bounds = self._cells(spreadsheet_id, kwargs["range"])
    max_row = max((r for r, _ in cells), default=-1)
    start_row = bounds.start_row or 0
    end_row = min(bounds.end_row if bounds.end_row is not None else max_row + 1, max_row + 1)

    grid: List[List[Any]] = []
    for r in range(start_row, end_row):
      row = [cells.get((r, c), "") for c in range(bounds.start_col, bounds.end_col)]
      while row and row[-1] == "":
        row.pop()
      grid.append(row)
    while grid and not grid[-1]:
      grid.pop()

    result: Dict[str, Any] = {"range": kwargs["range"]}
    if grid:
      result["values"] = grid
    return result

  def update(self, spreadsheetId: str, range: str, valueInputOption: str, body: Dict[str, Any]) -> _Request:
    return _Request(self._values_update, spreadsheetId, range, valueInputOption, body)

  def _values_update(self, spreadsheet_id: str, range_a1: str, option: str, body: Dict[str, Any]) -> Dict[str, Any]:
    self._record("values.update", {"range": range_a1, "valueInputOption": option, "body": body})
    cells, bounds = self._cells(spreadsheet_id, range_a1)
    values = body["values"]
    start_row = bounds.start_row or 0
    updated = 0
    for r, row in enumerate(values):
      for c, value in enumerate(row):
        key = (start_row + r, bounds.start_col + c)
        if value in ("", None):
          cells.pop(key, None)
        else:
          cells[key] = value
        updated += 1
    width = max((len(row) for row in values), default=1)
    last = f"{column_to_letter(bounds.start_col + width)}{start_row + max(len(values), 1)}"
    title, _ = split_sheet_prefix(range_a1)
    return {"updatedRange": f"{title}!{bounds.first_cell}:{last}", "updatedCells": updated}

  def batchUpdate(self, spreadsheetId: str, body: Dict[str, Any]) -> _Request:
    return _Request(self._batch_update, spreadsheetId, body)

  def _batch_update(self, spreadsheet_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
    self._record("batchUpdate", {"body": body})
    self._book(spreadsheet_id)
    replies = []
    for request in body["requests"]:
      if "addChart" in request:
        self._next_chart_id += 1
        replies.append({"addChart": {"chart": {"chartId": self._next_chart_id}}})
      else:
        replies.append({})
    return {"spreadsheetId": spreadsheet_id, "replies": replies}


class ScriptedLLM:
  """Returns queued payloads from ``chat_json``; exceptions in the queue are raised."""

  def __init__(self, *responses: Any) -> None:
    self.responses = list(responses)
    self.messages: List[List[Dict[str, str]]] = []
    self.overrides: List[Optional[Dict[str, Any]]] = []

  def chat_json(self, messages, overrides=None):
    self.messages.append(messages)
    self.overrides.append(overrides)
    if not self.responses:
      raise MalformedResponse(detail="no scripted response left")
    response = self.responses.pop(0)
    if isinstance(response, Exception):
      raise response
    return response


SHEET_ID = "sheet-123"
BUDGET_ROWS = [
  ["Item", "Amount", "Paid", "Due"],
  ["Rent", "1200", "TRUE", "2024-01-01"],
  ["Food", "300", "FALSE", "2024-01-05"],
  ["Gym", "45", "TRUE", "2024-01-07"],
]


@pytest.fixture
def fake_service() -> FakeSheetsService:
  service = FakeSheetsService()
  service.add_sheet(SHEET_ID, "Sheet1", [row[:] for row in BUDGET_ROWS])
  service.add_sheet(SHEET_ID, "Summary", [["Total"], [""]])
  return service


@pytest.fixture
def credential() -> Credential:
  return Credential(
    access_token="ya29.valid",
    refresh_token="1//refresh",
    expiry=datetime.now(timezone.utc) + timedelta(hours=1),
  )


@pytest.fixture
def sheets_client(fake_service: FakeSheetsService, credential: Credential) -> UserSheetsClient:
  return UserSheetsClient(credential, service=fake_service)


@pytest.fixture
def llm() -> ScriptedLLM:
  return ScriptedLLM()


@pytest.fixture
def shared_state(llm: ScriptedLLM) -> SharedState:
  return SharedState(interpreter=IntentInterpreter(llm), cache=ResponseCache(ttl_seconds=600))


@pytest.fixture
def assistant(sheets_client: UserSheetsClient, shared_state: SharedState) -> SpreadsheetAssistant:
  return SpreadsheetAssistant(sheets_client, shared_state, HistoryLog())
