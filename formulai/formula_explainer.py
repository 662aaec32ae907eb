"""
Rule-based plain-language explanations for spreadsheet formulas.

No LLM call is made; explanations come from a fixed glossary of common
functions plus simple checks for operators and cell references.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Literal

from pydantic import BaseModel, Field


Complexity = Literal["simple", "medium", "complex"]

_SEPARATORS = set("+-*/^=<>(),;{}")
_CELL_REF_RE = re.compile(r"^\$?[A-Z]+\$?[0-9]+$", re.IGNORECASE)
_RANGE_REF_RE = re.compile(r"^\$?[A-Z]+\$?[0-9]+:\$?[A-Z]+\$?[0-9]+$", re.IGNORECASE)

FUNCTION_GLOSSARY: Dict[str, str] = {
  "SUM": "Adds all the numbers in a range of cells",
  "AVERAGE": "Calculates the average (arithmetic mean) of the numbers in a range",
  "COUNT": "Counts the number of cells in a range that contain numbers",
  "COUNTA": "Counts the number of cells in a range that are not empty",
  "COUNTIF": "Counts the cells in a range that meet a condition",
  "MAX": "Returns the largest value in a set of numbers",
  "MIN": "Returns the smallest value in a set of numbers",
  "IF": "Tests a condition and returns one value if true, another if false",
  "SUMIF": "Adds the cells specified by a given condition or criteria",
  "VLOOKUP": "Looks for a value in the leftmost column of a table, and returns a value in the same row from a column you specify",
  "HLOOKUP": "Looks for a value in the top row of a table and returns a value in the same column from a row you specify",
  "INDEX": "Returns the value at a given position in a range or array",
  "MATCH": "Searches for a specified item in a range of cells, and returns the relative position of that item",
  "CONCATENATE": "Joins several text strings into one text string",
  "LEFT": "Returns the specified number of characters from the start of a text string",
  "RIGHT": "Returns the specified number of characters from the end of a text string",
  "MID": "Returns a specific number of characters from a text string, starting at the position you specify",
  "TRIM": "Removes spaces from text except for single spaces between words",
  "ROUND": "Rounds a number to a specified number of digits",
  "ROUNDUP": "Rounds a number up, away from zero, to a specified number of digits",
  "ROUNDDOWN": "Rounds a number down, toward zero, to a specified number of digits",
  "TODAY": "Returns the current date",
  "NOW": "Returns the current date and time",
  "DATE": "Builds a date value from a year, month and day",
  "YEAR": "Returns the year corresponding to a date",
  "MONTH": "Returns the month of a date",
  "DAY": "Returns the day of a date",
  "NETWORKDAYS": "Returns the number of whole workdays between two dates",
  "WORKDAY": "Returns the date before or after a specified number of workdays",
  "IFERROR": "Returns a value you specify if a formula evaluates to an error; otherwise, returns the result of the formula",
  "SUMPRODUCT": "Multiplies corresponding components in the given arrays, and returns the sum of those products",
  "INDIRECT": "Returns the reference specified by a text string",
  "ROW": "Returns the row number of a reference",
  "COLUMN": "Returns the column number of a reference",
  "AND": "Returns TRUE if all of its arguments are TRUE",
  "OR": "Returns TRUE if any argument is TRUE",
  "NOT": "Reverses the logic of its argument",
  "TRUE": "Returns the logical value TRUE",
  "FALSE": "Returns the logical value FALSE",
}

_OPERATORS = [
  ("+", "Adds values together", "addition"),
  ("-", "Subtracts the right value from the left value", "subtraction"),
  ("*", "Multiplies values together", "multiplication"),
  ("/", "Divides the left value by the right value", "division"),
]


class FormulaPart(BaseModel):
  snippet: str
  explanation: str


class FormulaExample(BaseModel):
  input: List[Any]
  output: Any
  explanation: str


class FormulaExplanation(BaseModel):
  original: str
  plain_language: str
  parts: List[FormulaPart] = Field(default_factory=list)
  complexity: Complexity
  examples: List[FormulaExample] = Field(default_factory=list)


def tokenize_formula(formula: str) -> List[str]:
  """
  Split a formula into names, references, literals and single-character
  operators. Quoted strings are kept whole; the leading ``=`` is dropped.
  """
  text = formula[1:] if formula.startswith("=") else formula
  tokens: List[str] = []
  current = ""
  in_string = False

  for char in text:
    if char == '"':
      in_string = not in_string
      current += char
      continue
    if in_string:
      current += char
      continue

    if char in _SEPARATORS:
      if current:
        tokens.append(current)
        current = ""
      tokens.append(char)
    elif char.isspace():
      if current:
        tokens.append(current)
        current = ""
    else:
      current += char

  if current:
    tokens.append(current)
  return tokens


def find_functions(tokens: List[str]) -> List[str]:
  """Function names in order of first appearance, upper-cased."""
  names: List[str] = []
  for token, following in zip(tokens, tokens[1:]):
    if following == "(":
      name = token.upper()
      if name not in names:
        names.append(name)
  return names


def function_explanation(name: str) -> str:
  return FUNCTION_GLOSSARY.get(name.upper(), "A spreadsheet function")


def determine_complexity(formula: str) -> Complexity:
  function_count = len(find_functions(tokenize_formula(formula)))
  nesting = formula.count("(")
  if function_count > 3 or nesting > 3:
    return "complex"
  if function_count > 1 or nesting > 1:
    return "medium"
  return "simple"


def _references(tokens: List[str]) -> tuple:
  cells = [t for t in tokens if _CELL_REF_RE.match(t)]
  ranges = [t for t in tokens if _RANGE_REF_RE.match(t)]
  return cells, ranges


def break_down(tokens: List[str]) -> List[FormulaPart]:
  parts = [FormulaPart(snippet=name, explanation=function_explanation(name)) for name in find_functions(tokens)]

  for symbol, explanation, _ in _OPERATORS:
    if symbol in tokens:
      parts.append(FormulaPart(snippet=symbol, explanation=explanation))

  cells, ranges = _references(tokens)
  if cells:
    parts.append(FormulaPart(snippet=", ".join(cells), explanation="References to specific cells in the spreadsheet"))
  if ranges:
    parts.append(FormulaPart(snippet=", ".join(ranges), explanation="References to ranges of cells in the spreadsheet"))
  return parts


def _plural(count: int, word: str) -> str:
  return f"{count} {word}{'s' if count != 1 else ''}"


def plain_language(tokens: List[str]) -> str:
  sentences: List[str] = []
  functions = find_functions(tokens)

  if functions:
    main = functions[0]
    sentence = f"This formula uses the {main} function, which {function_explanation(main).lower()}."
    if len(functions) > 1:
      others = functions[1:]
      sentence += f" It also uses {_plural(len(others), 'other function')}: {', '.join(others)}."
    sentences.append(sentence)
  else:
    ops = [name for symbol, _, name in _OPERATORS if symbol in tokens]
    if ops:
      sentences.append(f"This formula performs a calculation using {' and '.join(ops)}.")
    else:
      sentences.append("This formula returns a single value or reference.")

  cells, ranges = _references(tokens)
  if cells:
    sentences.append(f"It references {_plural(len(cells), 'specific cell')}: {', '.join(cells)}.")
  if ranges:
    sentences.append(f"It works with {_plural(len(ranges), 'range')} of cells: {', '.join(ranges)}.")

  return " ".join(sentences)


def generate_examples(functions: List[str]) -> List[FormulaExample]:
  if "SUM" in functions:
    return [FormulaExample(
      input=[10, 20, 30],
      output=60,
      explanation="When SUM is used with the values 10, 20, and 30, it adds them together to get 60.",
    )]
  if "AVERAGE" in functions:
    return [FormulaExample(
      input=[10, 20, 30, 40],
      output=25,
      explanation="When AVERAGE is used with the values 10, 20, 30, and 40, it calculates (10+20+30+40)/4 = 25.",
    )]
  if "IF" in functions:
    return [
      FormulaExample(input=[True, "Yes", "No"], output="Yes",
                     explanation='When the condition is TRUE, IF returns the "Yes" value.'),
      FormulaExample(input=[False, "Yes", "No"], output="No",
                     explanation='When the condition is FALSE, IF returns the "No" value.'),
    ]
  return []


def explain_formula(formula: str) -> FormulaExplanation:
  formula = formula.strip()
  if not formula:
    raise ValueError("formula must not be empty")

  tokens = tokenize_formula(formula)
  return FormulaExplanation(
    original=formula,
    plain_language=plain_language(tokens),
    parts=break_down(tokens),
    complexity=determine_complexity(formula),
    examples=generate_examples(find_functions(tokens)),
  )
