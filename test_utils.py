#!/usr/bin/env python3
"""
A1 notation helpers and spreadsheet URL parsing.
"""

import pytest

from formulai.utils import (
  GridRange,
  column_to_letter,
  letter_to_column,
  normalize_spreadsheet_id,
  parse_a1,
  parse_number,
  qualify_range,
  split_sheet_prefix,
)


def test_url_parsing():
  test_cases = [
    ("https://docs.google.com/spreadsheets/d/1cRJNLsoww3OVcZ-PXI6QJac58E167R8OEii0WCcXvM4/edit?gid=0",
     "1cRJNLsoww3OVcZ-PXI6QJac58E167R8OEii0WCcXvM4"),
    ("https://docs.google.com/spreadsheets/d/abc123xyz/edit", "abc123xyz"),
    ("  abc123xyz  ", "abc123xyz"),
    ("", ""),
  ]
  for raw, expected in test_cases:
    assert normalize_spreadsheet_id(raw) == expected, raw


def test_column_letters():
  for number, letter in [(1, "A"), (26, "Z"), (27, "AA"), (52, "AZ"), (703, "AAA")]:
    assert column_to_letter(number) == letter
    assert letter_to_column(letter) == number


def test_sheet_prefix_and_qualification():
  assert split_sheet_prefix("'My ''Q1'' Sheet'!A1:B2") == ("My 'Q1' Sheet", "A1:B2")
  assert split_sheet_prefix("B7") == (None, "B7")
  assert qualify_range("Sheet 1", "A1:C3") == "'Sheet 1'!A1:C3"
  assert qualify_range("Sheet1", "Other!B2") == "'Other'!B2"


def test_parse_a1_shapes():
  assert parse_a1("B2") == GridRange(start_col=1, end_col=2, start_row=1, end_row=2)
  assert parse_a1("A1:C10") == GridRange(start_col=0, end_col=3, start_row=0, end_row=10)
  assert parse_a1("C10:A1") == GridRange(start_col=0, end_col=3, start_row=0, end_row=10)
  assert parse_a1("A:B") == GridRange(start_col=0, end_col=2, start_row=None, end_row=None)
  assert parse_a1("'Sales'!$D$4").first_cell == "D4"
  assert parse_a1("B3:D9").width == 3


@pytest.mark.parametrize("bad", ["", "A", "A0", "1:2", "A1:B2:C3", "not a range"])
def test_parse_a1_rejects_garbage(bad):
  with pytest.raises(ValueError):
    parse_a1(bad)


def test_parse_number_rejects_float_words():
  assert parse_number(" 1,250.50 ") == 1250.5
  assert parse_number(".5") == 0.5
  for text in ["nan", "inf", "-Infinity", "1_000", "", "12abc"]:
    assert parse_number(text) is None, text
