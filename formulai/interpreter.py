from __future__ import annotations

import json
from typing import Any, Dict, List

from pydantic import ValidationError

from .errors import MalformedResponse
from .llm import LLMClient, PROMPTS
from .logging_config import get_logger
from .models import Action, ChartAction, ChartSpec, FormulaAction, PassthroughAction, SheetDescriptor

logger = get_logger(__name__)


PROMPT_SAMPLE_ROWS = 3
REQUIRED_FIELDS = ("analysis", "action", "implementation")
PASSTHROUGH_KINDS = ("pivot", "filter", "formatting")


def describe_sheet(descriptor: SheetDescriptor) -> Dict[str, Any]:
  """
  Structure summary embedded in the system prompt.
  """
  return {
    "title": descriptor.spreadsheet_title,
    "sheets": [sheet.title for sheet in descriptor.sheets],
    "currentSheet": descriptor.sheet_title,
    "headers": list(descriptor.headers),
    "dataTypes": list(descriptor.inferred_types),
    "sampleData": [list(row) for row in descriptor.sample_rows[:PROMPT_SAMPLE_ROWS]],
  }


def _string_list(value: Any) -> List[str]:
  if not value:
    return []
  if isinstance(value, str):
    return [value]
  if isinstance(value, list):
    return [str(item) for item in value]
  return [str(value)]


def parse_action(payload: Any) -> Action:
  """
  Turn the model's JSON object into an Action.

  Raises MalformedResponse when required fields are missing or the
  implementation does not fit the declared action kind.
  """
  if not isinstance(payload, dict):
    raise MalformedResponse(detail="response is not a JSON object")

  missing = [name for name in REQUIRED_FIELDS if payload.get(name) in (None, "")]
  if missing:
    raise MalformedResponse(detail=f"response is missing {', '.join(missing)}")

  kind = str(payload["action"]).strip().lower()
  implementation = payload["implementation"]
  common = {
    "analysis": str(payload.get("analysis", "")),
    "preview": str(payload.get("preview") or ""),
    "target_range": str(payload.get("range") or "A1").strip(),
    "additional_steps": _string_list(payload.get("additionalSteps")),
  }

  try:
    if kind == "formula":
      if not isinstance(implementation, str):
        raise MalformedResponse(detail="formula implementation must be a string")
      return FormulaAction(formula=implementation, **common)

    if kind == "chart":
      if not isinstance(implementation, dict):
        raise MalformedResponse(detail="chart implementation must be an object")
      chart = ChartSpec(
        type=implementation.get("type") or "",
        data_range=implementation.get("dataRange") or implementation.get("data_range") or "",
        title=implementation.get("title") or "Chart",
        options=implementation.get("options") or {},
      )
      if not chart.data_range:
        raise MalformedResponse(detail="chart implementation is missing dataRange")
      return ChartAction(chart=chart, **common)

    if kind in PASSTHROUGH_KINDS:
      return PassthroughAction(kind=kind, implementation=implementation, **common)
  except ValidationError as exc:
    raise MalformedResponse(detail=f"invalid {kind} action: {exc.errors()[0].get('msg')}") from exc

  raise MalformedResponse(detail=f"unknown action kind {payload['action']!r}")


class IntentInterpreter:
  """Asks the LLM what to do with a natural-language request."""

  def __init__(self, llm: LLMClient) -> None:
    self.llm = llm

  def build_messages(self, query_text: str, descriptor: SheetDescriptor) -> List[Dict[str, str]]:
    structure = json.dumps(describe_sheet(descriptor), indent=2, default=str)
    return [
      {"role": "system", "content": PROMPTS.INTENT.system(structure)},
      {"role": "user", "content": PROMPTS.INTENT.user(descriptor.sheet_title, query_text)},
    ]

  def interpret(self, query_text: str, descriptor: SheetDescriptor) -> Action:
    if not query_text or not query_text.strip():
      raise ValueError("query text must not be empty")

    messages = self.build_messages(query_text.strip(), descriptor)
    payload = self.llm.chat_json(messages, {"responseFormat": "json_object"})
    action = parse_action(payload)

    logger.info(
      f"Interpreted request as {action.kind} targeting {action.target_range}",
      extra={"spreadsheet_id": descriptor.spreadsheet_id, "sheet_title": descriptor.sheet_title},
    )
    return action
