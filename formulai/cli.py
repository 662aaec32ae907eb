from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from .config import load_settings
from .csv_import import CsvImportError, descriptor_from_csv
from .errors import FormulAiError
from .formula_explainer import explain_formula
from .history import HistoryLog
from .service import SharedState, SpreadsheetAssistant


def build_arg_parser() -> argparse.ArgumentParser:
  parser = argparse.ArgumentParser(
    description="Command-line client for FormulAi"
  )
  parser.add_argument(
    "--csv",
    help="CSV file to analyze (requests are previewed, never applied)",
  )
  parser.add_argument(
    "--explain",
    metavar="FORMULA",
    help="Explain a spreadsheet formula in plain language and exit",
  )
  return parser


def _print_explanation(formula: str) -> int:
  try:
    explanation = explain_formula(formula)
  except ValueError as exc:
    print(f"[error] {exc}", file=sys.stderr)
    return 1
  print(explanation.plain_language)
  for part in explanation.parts:
    print(f"  {part.snippet}: {part.explanation}")
  print(f"Complexity: {explanation.complexity}")
  return 0


def main(argv: list[str] | None = None) -> int:
  parser = build_arg_parser()
  args = parser.parse_args(argv)

  if args.explain:
    return _print_explanation(args.explain)

  if not args.csv:
    parser.error("either --csv or --explain is required")

  path = Path(args.csv)
  try:
    descriptor, _ = descriptor_from_csv(path.read_text(encoding="utf-8"), path.name)
  except (OSError, CsvImportError) as exc:
    print(f"[error] {exc}", file=sys.stderr)
    return 1

  settings = load_settings()
  assistant = SpreadsheetAssistant(None, SharedState.from_settings(settings), HistoryLog(settings.history_limit))

  print(f"Loaded {path.name}: {', '.join(descriptor.headers)}")
  print("Describe what you want to do and press Enter. Ctrl+C or EOF to exit.\n")

  try:
    while True:
      try:
        user_input = input("You: ")
      except EOFError:
        print()
        break

      if not user_input.strip():
        continue

      try:
        action = assistant.analyze_descriptor(user_input, descriptor)
      except FormulAiError as exc:
        print(f"[error] {exc.message}")
        continue

      print(f"Assistant: {action.analysis}")
      print(json.dumps(action.model_dump(), indent=2, default=str))
  except KeyboardInterrupt:
    print("\nExiting.")

  return 0


if __name__ == "__main__":
  raise SystemExit(main())
