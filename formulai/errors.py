"""
Error taxonomy shared by every component.

Transport and provider exceptions are translated into these classes at each
component boundary. Nothing here retries; ``retryable`` and
``reauthenticate`` only tell the caller what the user may do next.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from googleapiclient.errors import HttpError


class FormulAiError(Exception):
  status_code: int = 500
  retryable: bool = False
  reauthenticate: bool = False
  default_message: str = "Something went wrong. Please try again."

  def __init__(self, message: Optional[str] = None, detail: Optional[str] = None) -> None:
    self.message = message or self.default_message
    self.detail = detail
    super().__init__(self.message)

  @property
  def code(self) -> str:
    return type(self).__name__

  def to_dict(self) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
      "error": self.message,
      "code": self.code,
      "retryable": self.retryable,
      "reauthenticate": self.reauthenticate,
    }
    if self.detail:
      payload["detail"] = self.detail
    return payload


class NotAuthenticated(FormulAiError):
  status_code = 401
  reauthenticate = True
  default_message = "Authentication required. Please connect to Google Sheets."


class RefreshFailed(FormulAiError):
  status_code = 401
  reauthenticate = True
  default_message = "Your Google session has expired. Please reconnect to Google Sheets."


class AuthExpired(FormulAiError):
  status_code = 401
  reauthenticate = True
  default_message = "Authentication expired. Please log in again."


class NotFound(FormulAiError):
  status_code = 404
  default_message = "Spreadsheet not found. It may have been deleted or you don't have access."


class TargetNotFound(FormulAiError):
  status_code = 404
  default_message = "Spreadsheet or sheet not found."


class MalformedResponse(FormulAiError):
  status_code = 502
  retryable = True
  default_message = "The AI returned an unusable answer. Please try again."


class UpstreamUnavailable(FormulAiError):
  status_code = 503
  retryable = True
  default_message = "The AI service is unavailable right now. Please try again."


class UnsupportedAction(FormulAiError):
  status_code = 400
  default_message = "This kind of action cannot be applied automatically."


class NothingToUndo(FormulAiError):
  status_code = 409
  default_message = "No previous state found to restore."


class RemoteError(FormulAiError):
  status_code = 502
  default_message = "Error interacting with your spreadsheet."

  def __init__(
    self,
    message: Optional[str] = None,
    status: Optional[int] = None,
    detail: Optional[str] = None,
  ) -> None:
    super().__init__(message, detail)
    self.status = status

  def to_dict(self) -> Dict[str, Any]:
    payload = super().to_dict()
    if self.status is not None:
      payload["status"] = self.status
    return payload


class PermissionDenied(RemoteError):
  status_code = 403
  default_message = "You don't have permission to access this spreadsheet. Please check sharing settings."


class RateLimited(RemoteError):
  status_code = 429
  retryable = True
  default_message = "Too many requests. Please wait a moment and try again."


def _provider_message(exc: HttpError) -> Optional[str]:
  content = getattr(exc, "content", None)
  if not content:
    return None
  try:
    body = json.loads(content.decode("utf-8") if isinstance(content, bytes) else content)
  except (ValueError, UnicodeDecodeError):
    return None
  error = body.get("error") if isinstance(body, dict) else None
  if isinstance(error, dict):
    return error.get("message")
  return None


def http_status(exc: HttpError) -> int:
  resp = getattr(exc, "resp", None)
  status = getattr(resp, "status", None)
  try:
    return int(status)
  except (TypeError, ValueError):
    return 500


def from_http_error(exc: HttpError, *, not_found: type = TargetNotFound) -> FormulAiError:
  """
  Map a Google API ``HttpError`` onto the taxonomy.

  ``not_found`` lets readers report ``NotFound`` while writers report
  ``TargetNotFound`` for the same 404.
  """
  status = http_status(exc)
  message = _provider_message(exc)

  if status == 401:
    return AuthExpired(detail=message)
  if status == 403:
    return PermissionDenied(message, status=status)
  if status == 404:
    return not_found(message)
  if status == 429:
    return RateLimited(status=status, detail=message)
  return RemoteError(message or f"Google Sheets API returned {status}", status=status)
