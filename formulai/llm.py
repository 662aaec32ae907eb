from __future__ import annotations

import json
import time
from typing import Any, Dict, List, Optional

import httpx

from .config import Settings, load_settings
from .errors import MalformedResponse, UpstreamUnavailable
from .logging_config import get_logger

logger = get_logger(__name__)


class LLMClient:
  """
  Minimal HTTP client for an OpenAI-compatible chat completions API.

  Failures are reported as ``UpstreamUnavailable`` (transport, timeout,
  non-2xx) or ``MalformedResponse`` (unusable content). Nothing is retried:
  the user decides whether to resubmit.
  """

  def __init__(
    self,
    api_key: Optional[str],
    model: str,
    base_url: str = "https://api.openai.com/v1",
    temperature: float = 0.3,
    max_tokens: int = 2000,
    timeout: float = 30.0,
    headers: Optional[Dict[str, str]] = None,
    transport: Optional[httpx.BaseTransport] = None,
  ) -> None:
    self.api_key = api_key
    self.model = model
    self.base_url = base_url.rstrip("/")
    self.temperature = temperature
    self.max_tokens = max_tokens
    self.timeout = timeout
    self.headers = headers or {}
    self._transport = transport

  @property
  def configured(self) -> bool:
    return bool(self.api_key)

  def _build_headers(self) -> Dict[str, str]:
    base = {
      "Authorization": f"Bearer {self.api_key}",
      "Content-Type": "application/json",
    }
    base.update(self.headers)
    return base

  def chat(
    self,
    messages: List[Dict[str, str]],
    overrides: Optional[Dict[str, Any]] = None,
  ) -> Dict[str, Any]:
    """
    Send a chat completion request and return the raw JSON response.
    """
    if not self.configured:
      logger.error("LLM API key is not configured")
      raise UpstreamUnavailable(
        "AI service is not configured. Please set the OPENAI_API_KEY environment variable."
      )

    overrides = overrides or {}
    model = overrides.get("model", self.model)

    payload: Dict[str, Any] = {
      "model": model,
      "messages": messages,
      "temperature": overrides.get("temperature", self.temperature),
      "max_tokens": overrides.get("maxTokens", self.max_tokens),
    }
    if overrides.get("responseFormat"):
      payload["response_format"] = {"type": overrides["responseFormat"]}

    url = f"{self.base_url}/chat/completions"

    logger.debug(
        f"LLM API call: model={model}, messages={len(messages)}",
        extra={"model": model, "message_count": len(messages)}
    )

    start_time = time.time()
    try:
      with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
        response = client.post(url, headers=self._build_headers(), json=payload)
        response.raise_for_status()
      duration_ms = int((time.time() - start_time) * 1000)

      logger.info(
          f"LLM API success: {duration_ms}ms",
          extra={"model": model, "duration_ms": duration_ms, "status_code": response.status_code}
      )
    except httpx.TimeoutException as exc:
      duration_ms = int((time.time() - start_time) * 1000)
      logger.error(
          f"LLM API timed out after {duration_ms}ms",
          extra={"model": model, "duration_ms": duration_ms}
      )
      raise UpstreamUnavailable(detail=f"timeout after {self.timeout}s") from exc
    except httpx.RequestError as exc:
      duration_ms = int((time.time() - start_time) * 1000)
      logger.error(
          f"LLM API request failed after {duration_ms}ms: {str(exc)}",
          exc_info=True,
          extra={"model": model, "duration_ms": duration_ms}
      )
      raise UpstreamUnavailable(detail=str(exc)) from exc
    except httpx.HTTPStatusError as exc:
      duration_ms = int((time.time() - start_time) * 1000)
      logger.error(
          f"LLM API error {exc.response.status_code} after {duration_ms}ms",
          extra={
              "model": model,
              "status_code": exc.response.status_code,
              "duration_ms": duration_ms,
          }
      )
      raise UpstreamUnavailable(
        detail=f"LLM API returned {exc.response.status_code}: {exc.response.text[:500]}"
      ) from exc

    try:
      return response.json()
    except ValueError as exc:
      raise MalformedResponse(detail="LLM API returned a non-JSON body") from exc

  def chat_text(
    self,
    messages: List[Dict[str, str]],
    overrides: Optional[Dict[str, Any]] = None,
  ) -> str:
    data = self.chat(messages, overrides)
    choices = data.get("choices") or []
    if not choices:
      raise MalformedResponse(detail="LLM API returned no choices")
    content = (choices[0].get("message") or {}).get("content", "")
    return content or ""

  @staticmethod
  def _detect_json_truncation(json_str: str) -> bool:
    stripped = json_str.rstrip()
    truncation_indicators = [
      stripped.endswith(':'),
      stripped.endswith(','),
      stripped.count('{') > stripped.count('}'),
      stripped.count('[') > stripped.count(']'),
      stripped.startswith('{') and not stripped.endswith('}'),
    ]
    return any(truncation_indicators)

  @staticmethod
  def extract_json_text(content: str) -> str:
    """
    Strip markdown code fences and any prose before the first brace.
    """
    json_str = content.strip()

    if "```" in json_str:
      start = json_str.index("```")
      end = json_str.rindex("```")
      if end > start:
        block = json_str[start + 3 : end]
        if block.lstrip().startswith("json"):
          block = block.lstrip()[4:]
        json_str = block.strip()

    if not (json_str.startswith("{") or json_str.startswith("[")):
      for char in ["{", "["]:
        if char in json_str:
          json_str = json_str[json_str.index(char):]
          break

    return json_str

  def chat_json(
    self,
    messages: List[Dict[str, str]],
    overrides: Optional[Dict[str, Any]] = None,
  ) -> Any:
    """
    Send a request expecting a single JSON value in the response text.
    """
    content = self.chat_text(messages, overrides)

    if not content.strip():
      logger.error("LLM returned empty content when JSON was expected")
      raise MalformedResponse(detail="empty response")

    json_str = self.extract_json_text(content)

    if self._detect_json_truncation(json_str):
      logger.warning(
        "Detected truncated JSON response",
        extra={"content_length": len(content)}
      )
      raise MalformedResponse(detail=f"truncated response ({len(content)} chars)")

    try:
      return json.loads(json_str)
    except json.JSONDecodeError as exc:
      logger.error(
        f"JSON parsing failed: {exc}",
        extra={"content_length": len(content), "error_line": exc.lineno, "error_col": exc.colno}
      )
      raise MalformedResponse(detail=f"invalid JSON at line {exc.lineno}, column {exc.colno}") from exc


def create_llm_client(settings: Optional[Settings] = None) -> LLMClient:
  """
  Build the client from settings. A missing API key does not fail here; the
  first call reports ``UpstreamUnavailable`` instead.
  """
  settings = settings or load_settings()
  if not settings.openai_api_key:
    logger.warning("OPENAI_API_KEY not set - analysis requests will return 503")

  return LLMClient(
    api_key=settings.openai_api_key,
    model=settings.llm_model,
    base_url=settings.openai_base_url,
    timeout=float(settings.llm_timeout_seconds),
  )


# --- Prompt templates ---

class PROMPTS:
  class INTENT:
    @staticmethod
    def system(sheet_structure_json: str) -> str:
      return (
        "You are FormulAi, an advanced AI assistant specialized in spreadsheet analysis "
        "and formula generation for Google Sheets.\n\n"
        "SPREADSHEET STRUCTURE:\n"
        f"{sheet_structure_json}\n\n"
        "Your task is to analyze the user's request and generate the appropriate Google Sheets "
        "actions, formulas, or visualization code.\n\n"
        "IMPORTANT GUIDELINES:\n"
        "1. For formulas, use valid Google Sheets syntax\n"
        "2. For charts, specify the chart type and data range\n"
        "3. Consider the data types when suggesting formulas\n"
        "4. For any cell references, use A1 notation\n"
        "5. If you need to create a pivot table, specify the source data range and pivot fields\n"
        "6. If suggesting data filtering, specify the column and filter criteria\n\n"
        "Output a JSON object with these fields:\n"
        '- "analysis": A concise explanation of what you understood from the request\n'
        '- "action": The type of action to take (one of: "formula", "chart", "pivot", "filter", "formatting")\n'
        '- "implementation": The specific formula, chart configuration, or other settings '
        "(provide complete Google Sheets syntax)\n"
        '- "preview": A description of what the result will look like\n'
        '- "range": The target cell or range where this should be applied (in A1 notation)\n'
        '- "additionalSteps": [Optional] Array of follow-up steps if this is a multi-step process\n\n'
        "For charts, implementation must be an object with:\n"
        '- "type": The chart type (e.g., "BAR", "PIE", "LINE")\n'
        '- "dataRange": The data range for the chart (first column is the domain)\n'
        '- "title": Chart title\n'
        '- "options": Any additional chart options\n\n'
        "BE PRECISE: Users will directly apply your suggestions to their spreadsheets. "
        "Return JSON only."
      )

    @staticmethod
    def user(sheet_title: str, query_text: str) -> str:
      return f'I\'m working with the sheet "{sheet_title}" and I want to: {query_text}'
