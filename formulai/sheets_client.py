from __future__ import annotations

import socket
from typing import Any, Dict, List, Optional

import google_auth_httplib2
import httplib2
from google.oauth2.credentials import Credentials as UserCredentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .errors import NotAuthenticated, NotFound, RemoteError, TargetNotFound, from_http_error
from .logging_config import get_logger
from .models import Credential

logger = get_logger(__name__)


DEFAULT_TIMEOUT_SECONDS = 15


class UserSheetsClient:
  """
  Google Sheets API client acting on behalf of the signed-in user.

  Every call goes through ``_execute`` so provider errors surface as the
  shared error taxonomy instead of raw ``HttpError`` or socket exceptions.
  """

  def __init__(
    self,
    credential: Optional[Credential],
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    service: Any = None,
  ) -> None:
    if service is None:
      if credential is None or not credential.access_token:
        raise NotAuthenticated()
      creds = UserCredentials(token=credential.access_token)
      http = google_auth_httplib2.AuthorizedHttp(creds, http=httplib2.Http(timeout=timeout))
      service = build("sheets", "v4", http=http, cache_discovery=False)
    self._sheets = service.spreadsheets()

  @staticmethod
  def _execute(request: Any, *, not_found: type = TargetNotFound) -> Dict[str, Any]:
    try:
      return request.execute()
    except HttpError as exc:
      error = from_http_error(exc, not_found=not_found)
      logger.warning(
        f"Google Sheets API error: {error.code} ({error.message})",
        extra={"status_code": getattr(error, "status", None) or error.status_code},
      )
      raise error from exc
    except (socket.timeout, TimeoutError) as exc:
      raise RemoteError("Google Sheets did not respond in time. Please try again.") from exc
    except (httplib2.HttpLib2Error, OSError) as exc:
      raise RemoteError("Network error connecting to Google Sheets. Please try again.", detail=str(exc)) from exc

  # --- Metadata ---

  def get_spreadsheet_metadata(self, spreadsheet_id: str) -> Dict[str, Any]:
    result = self._execute(
      self._sheets.get(
        spreadsheetId=spreadsheet_id,
        fields="spreadsheetId,properties.title,sheets.properties",
      ),
      not_found=NotFound,
    )

    sheets_meta: List[Dict[str, Any]] = []
    for index, sheet in enumerate(result.get("sheets", []) or []):
      props = sheet.get("properties", {}) or {}
      grid_props = props.get("gridProperties", {}) or {}
      sheets_meta.append(
        {
          "sheetId": props.get("sheetId", 0),
          "title": props.get("title", ""),
          "index": props.get("index", index),
          "rowCount": grid_props.get("rowCount", 0),
          "columnCount": grid_props.get("columnCount", 0),
        }
      )

    return {
      "spreadsheetId": result.get("spreadsheetId", spreadsheet_id),
      "title": (result.get("properties") or {}).get("title", ""),
      "sheets": sheets_meta,
    }

  # --- Reading ---

  def read_values(
    self,
    spreadsheet_id: str,
    range_a1: str,
    value_render_option: str = "FORMATTED_VALUE",
  ) -> List[List[Any]]:
    result = self._execute(
      self._sheets.values().get(
        spreadsheetId=spreadsheet_id,
        range=range_a1,
        valueRenderOption=value_render_option,
      ),
      not_found=NotFound,
    )
    return result.get("values", []) or []

  # --- Writing / updates ---

  def write_range(
    self,
    spreadsheet_id: str,
    range_a1: str,
    values: List[List[Any]],
    value_input_option: str = "USER_ENTERED",
  ) -> Dict[str, Any]:
    result = self._execute(
      self._sheets.values().update(
        spreadsheetId=spreadsheet_id,
        range=range_a1,
        valueInputOption=value_input_option,
        body={"values": values},
      )
    )
    return {
      "updatedRange": result.get("updatedRange", range_a1),
      "updatedCells": result.get("updatedCells", 0),
    }

  def batch_update(self, spreadsheet_id: str, requests: List[Dict[str, Any]]) -> Dict[str, Any]:
    return self._execute(
      self._sheets.batchUpdate(
        spreadsheetId=spreadsheet_id,
        body={"requests": requests},
      )
    )
