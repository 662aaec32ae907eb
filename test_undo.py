"""
Undo ledger: apply/undo round trips and single-level semantics.
"""

import pytest

from conftest import SHEET_ID
from formulai.applier import ActionApplier, KeyedLocks
from formulai.cache import ResponseCache
from formulai.errors import NothingToUndo, UnsupportedAction
from formulai.models import FormulaAction
from formulai.sheet_reader import SheetReader
from formulai.undo import SnapshotStore, UndoLedger, pad_values


@pytest.fixture
def reader(sheets_client):
  return SheetReader(sheets_client, ResponseCache())


@pytest.fixture
def store():
  return SnapshotStore()


@pytest.fixture
def ledger(reader, store):
  return UndoLedger(reader, store)


@pytest.fixture
def applier(reader, ledger):
  return ActionApplier(reader, ledger, KeyedLocks())


def test_apply_then_undo_restores_previous_values(fake_service, applier, ledger):
  action = FormulaAction(formula="=SUM(B2:B4)", target_range="B2")

  applier.apply(SHEET_ID, "Sheet1", action)
  assert fake_service.cell(SHEET_ID, "Sheet1", "B2") == "=SUM(B2:B4)"

  result = ledger.undo(SHEET_ID, "Sheet1", "B2")

  assert fake_service.cell(SHEET_ID, "Sheet1", "B2") == "1200"
  assert result.range == "B2"
  assert result.updated_cells == 1


def test_undo_clears_a_cell_that_was_empty(fake_service, applier, ledger):
  applier.apply(SHEET_ID, "Summary", FormulaAction(formula="=SUM(Sheet1!B2:B4)", target_range="A2"))
  assert fake_service.cell(SHEET_ID, "Summary", "A2") == "=SUM(Sheet1!B2:B4)"

  ledger.undo(SHEET_ID, "Summary")

  assert fake_service.cell(SHEET_ID, "Summary", "A2") == ""


def test_undo_restores_formulas_not_their_results(fake_service, applier, ledger):
  fake_service.books[SHEET_ID]["cells"]["Sheet1"][(4, 1)] = "=SUM(B2:B4)"

  applier.apply(SHEET_ID, "Sheet1", FormulaAction(formula="=AVERAGE(B2:B4)", target_range="B5"))
  ledger.undo(SHEET_ID, "Sheet1", "B5")

  assert fake_service.cell(SHEET_ID, "Sheet1", "B5") == "=SUM(B2:B4)"
  reads = [kwargs for name, kwargs in fake_service.calls if name == "values.get"]
  assert reads[0]["valueRenderOption"] == "FORMULA"


def test_second_undo_has_nothing_to_undo(applier, ledger):
  applier.apply(SHEET_ID, "Sheet1", FormulaAction(formula="=1", target_range="E1"))

  ledger.undo(SHEET_ID, "Sheet1")
  with pytest.raises(NothingToUndo) as excinfo:
    ledger.undo(SHEET_ID, "Sheet1")

  assert excinfo.value.status_code == 409


def test_undo_without_snapshot_has_nothing_to_undo(ledger):
  with pytest.raises(NothingToUndo):
    ledger.undo(SHEET_ID, "Sheet1", "A1")


def test_second_snapshot_replaces_first_for_same_key(fake_service, ledger, store):
  ledger.snapshot(SHEET_ID, "Sheet1", "A2")
  fake_service.books[SHEET_ID]["cells"]["Sheet1"][(1, 0)] = "Mortgage"
  ledger.snapshot(SHEET_ID, "Sheet1", "A2")
  fake_service.books[SHEET_ID]["cells"]["Sheet1"][(1, 0)] = "Changed"

  ledger.undo(SHEET_ID, "Sheet1", "A2")

  assert fake_service.cell(SHEET_ID, "Sheet1", "A2") == "Mortgage"
  assert len(store) == 0
  with pytest.raises(NothingToUndo):
    ledger.undo(SHEET_ID, "Sheet1", "A2")


def test_undo_without_range_picks_most_recent_for_sheet(fake_service, ledger):
  ledger.snapshot(SHEET_ID, "Sheet1", "A2")
  ledger.snapshot(SHEET_ID, "Sheet1", "A3")
  ledger.snapshot(SHEET_ID, "Summary", "A1")

  result = ledger.undo(SHEET_ID, "Sheet1")

  assert result.range == "A3"


def test_unparsable_range_yields_unavailable_snapshot(ledger, store):
  snapshot = ledger.snapshot(SHEET_ID, "Sheet1", "not a range")

  assert snapshot.available is False
  with pytest.raises(NothingToUndo):
    ledger.undo(SHEET_ID, "Sheet1", "not a range")
  assert len(store) == 0


def test_target_on_another_sheet_is_rejected_untouched(fake_service, applier, store):
  with pytest.raises(UnsupportedAction):
    applier.apply(SHEET_ID, "Sheet1", FormulaAction(formula="=1+1", target_range="Summary!B1"))

  assert fake_service.cell(SHEET_ID, "Sheet1", "B1") == "Amount"
  assert fake_service.cell(SHEET_ID, "Summary", "B1") == ""
  assert len(store) == 0
  assert fake_service.count("values.update") == 0


def test_target_naming_its_own_sheet_round_trips(fake_service, applier, ledger):
  applier.apply(SHEET_ID, "Sheet1", FormulaAction(formula="=1+1", target_range="'Sheet1'!B2"))
  assert fake_service.cell(SHEET_ID, "Sheet1", "B2") == "=1+1"

  ledger.undo(SHEET_ID, "Sheet1", "Sheet1!B2")

  assert fake_service.cell(SHEET_ID, "Sheet1", "B2") == "1200"
  assert fake_service.cell(SHEET_ID, "Summary", "B2") == ""


def test_open_column_range_round_trips(fake_service, applier, ledger):
  applier.apply(SHEET_ID, "Sheet1", FormulaAction(formula="=2+2", target_range="H:H"))
  assert fake_service.cell(SHEET_ID, "Sheet1", "H1") == "=2+2"

  ledger.undo(SHEET_ID, "Sheet1")

  assert fake_service.cell(SHEET_ID, "Sheet1", "H1") == ""


def test_empty_open_column_still_captures_first_row(ledger):
  snapshot = ledger.snapshot(SHEET_ID, "Sheet1", "H:H")

  assert snapshot.available
  assert snapshot.captured_values == [[""]]


def test_multi_cell_snapshot_is_padded_to_range():
  assert pad_values([["a"], []], rows=3, cols=2) == [["a", ""], ["", ""], ["", ""]]
