"""
Sheet reader: structure detection, type inference and cache behaviour.
"""

import pytest

from conftest import SHEET_ID, FakeSheetsService
from formulai.cache import ResponseCache
from formulai.errors import NotAuthenticated, NotFound
from formulai.models import Credential
from formulai.sheet_reader import SheetReader, classify_value, infer_column_types
from formulai.sheets_client import UserSheetsClient


class FakeClock:
  def __init__(self) -> None:
    self.now = 0.0

  def __call__(self) -> float:
    return self.now


def _reader(service: FakeSheetsService, credential: Credential, cache: ResponseCache = None) -> SheetReader:
  return SheetReader(UserSheetsClient(credential, service=service), cache if cache is not None else ResponseCache())


def test_read_sheet_detects_structure(fake_service, credential):
  descriptor = _reader(fake_service, credential).read_sheet(SHEET_ID, "Sheet1")

  assert descriptor.spreadsheet_title == "Budget"
  assert descriptor.sheet_title == "Sheet1"
  assert [s.title for s in descriptor.sheets] == ["Sheet1", "Summary"]
  assert descriptor.headers == ["Item", "Amount", "Paid", "Due"]
  assert descriptor.inferred_types == ["string", "number", "boolean", "date"]
  assert descriptor.sample_rows[0] == ["Rent", "1200", "TRUE", "2024-01-01"]
  assert len(descriptor.sample_rows) == 3


def test_revenue_scenario_types(credential):
  service = FakeSheetsService()
  service.add_sheet("rev", "Sales", [["Name", "Revenue", "Date"], ["Acme", "1000", "2023-01-15"]])

  descriptor = _reader(service, credential).read_sheet("rev", "Sales")

  assert descriptor.inferred_types == ["string", "number", "date"]


def test_types_always_match_headers(credential):
  service = FakeSheetsService()
  service.add_sheet("ragged", "Data", [["A", "B", "C"], ["1"], ["", "x"]])

  descriptor = _reader(service, credential).read_sheet("ragged", "Data")

  assert len(descriptor.inferred_types) == len(descriptor.headers)
  assert descriptor.inferred_types == ["number", "string", "string"]
  assert all(len(row) == 3 for row in descriptor.sample_rows)


def test_header_only_sheet_reports_string_columns(credential):
  service = FakeSheetsService()
  service.add_sheet("empty", "Data", [["Name", "Amount"]])

  descriptor = _reader(service, credential).read_sheet("empty", "Data")

  assert descriptor.inferred_types == ["string", "string"]
  assert descriptor.sample_rows == []


def test_second_read_within_ttl_is_cache_hit(fake_service, credential):
  reader = _reader(fake_service, credential)

  first = reader.read_sheet(SHEET_ID, "Sheet1")
  second = reader.read_sheet(SHEET_ID, "Sheet1")

  assert second.model_dump_json() == first.model_dump_json()
  assert fake_service.count("values.get") == 1
  assert fake_service.count("spreadsheets.get") == 1


def test_titleless_read_is_cached_too(fake_service, credential):
  reader = _reader(fake_service, credential)

  first = reader.read_sheet(SHEET_ID)
  reader.read_sheet(SHEET_ID)
  by_title = reader.read_sheet(SHEET_ID, "Sheet1")

  assert first.sheet_title == "Sheet1"
  assert by_title == first
  assert fake_service.count("values.get") == 1


def test_expired_entry_triggers_remote_read(fake_service, credential):
  clock = FakeClock()
  reader = _reader(fake_service, credential, ResponseCache(ttl_seconds=600, clock=clock))

  reader.read_sheet(SHEET_ID, "Sheet1")
  clock.now = 601
  reader.read_sheet(SHEET_ID, "Sheet1")

  assert fake_service.count("values.get") == 2


def test_invalidate_forces_fresh_read(fake_service, credential):
  reader = _reader(fake_service, credential)
  reader.read_sheet(SHEET_ID, "Sheet1")

  fake_service.books[SHEET_ID]["cells"]["Sheet1"][(0, 4)] = "Notes"
  reader.invalidate(SHEET_ID, "Sheet1")
  descriptor = reader.read_sheet(SHEET_ID, "Sheet1")

  assert descriptor.headers[-1] == "Notes"
  assert fake_service.count("values.get") == 2


def test_unknown_sheet_falls_back_to_first(fake_service, credential):
  descriptor = _reader(fake_service, credential).read_sheet(SHEET_ID, "Nope")

  assert descriptor.sheet_title == "Sheet1"


def test_unknown_spreadsheet_is_not_found(fake_service, credential):
  with pytest.raises(NotFound) as excinfo:
    _reader(fake_service, credential).read_sheet("missing", "Sheet1")

  assert excinfo.value.status_code == 404


def test_reader_without_credential_is_not_authenticated():
  with pytest.raises(NotAuthenticated):
    SheetReader(None, ResponseCache()).read_sheet(SHEET_ID)


def test_classify_value():
  cases = [
    ("1000", "number"),
    ("1,250.50", "number"),
    (42, "number"),
    (True, "boolean"),
    ("false", "boolean"),
    ("2023-01-15", "date"),
    ("1/15/2023", "date"),
    ("Acme", "string"),
    ("nan", "string"),
    ("Infinity", "string"),
    ("1_000", "string"),
    ("-3.5e2", "number"),
  ]
  for value, expected in cases:
    assert classify_value(value) == expected, value


def test_inference_uses_first_non_blank_sample():
  assert infer_column_types(["Amount"], [[""], ["5"]]) == ["number"]
