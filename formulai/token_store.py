"""
OAuth credential lifecycle: cookie (de)serialization, refresh-on-expiry and
the Google web consent flow.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

import requests
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials as UserCredentials
from google_auth_oauthlib.flow import Flow
from oauthlib.oauth2.rfc6749.errors import OAuth2Error
from pydantic import ValidationError

from .errors import RefreshFailed
from .logging_config import get_logger
from .models import Credential, utcnow

logger = get_logger(__name__)


SCOPES = [
  "https://www.googleapis.com/auth/spreadsheets",
  "https://www.googleapis.com/auth/drive.readonly",
]
TOKEN_URI = "https://oauth2.googleapis.com/token"
AUTH_URI = "https://accounts.google.com/o/oauth2/v2/auth"

COOKIE_NAME = "google_tokens"
COOKIE_MAX_AGE = 3600
REFRESH_BUFFER = timedelta(minutes=5)

Refresher = Callable[[Credential], Credential]


def _to_aware(value: Optional[datetime]) -> Optional[datetime]:
  # google-auth keeps expiry as naive UTC
  if value is not None and value.tzinfo is None:
    return value.replace(tzinfo=timezone.utc)
  return value


class TokenStore:
  """
  Holds the Google client configuration and turns cookie payloads into
  usable credentials.

  ``refresher`` performs the actual token-endpoint exchange; it defaults to
  google-auth and is injectable so the refresh policy can be exercised
  without network access.
  """

  def __init__(
    self,
    client_id: Optional[str],
    client_secret: Optional[str],
    redirect_uri: str,
    refresher: Optional[Refresher] = None,
    clock: Callable[[], datetime] = utcnow,
    secure_cookies: bool = True,
    refresh_buffer: timedelta = REFRESH_BUFFER,
  ) -> None:
    self.client_id = client_id
    self.client_secret = client_secret
    self.redirect_uri = redirect_uri
    self._refresher = refresher or self._google_refresh
    self._clock = clock
    self.secure_cookies = secure_cookies
    self.refresh_buffer = refresh_buffer

  # --- cookie payloads ---

  def get_credential(self, cookie_value: Optional[str]) -> Optional[Credential]:
    """Parse the cookie payload; ``None`` means the user is not connected."""
    if not cookie_value:
      return None
    try:
      data = json.loads(cookie_value)
      if isinstance(data, dict) and ("expiry_date" in data or "expires_in" in data):
        # Raw Google token response, as stored by the original web client
        credential = credential_from_tokens(data)
      else:
        credential = Credential.model_validate(data)
    except (ValueError, KeyError, TypeError, ValidationError):
      logger.warning("Ignoring unparsable google_tokens cookie")
      return None
    if not credential.access_token:
      return None
    return credential

  @staticmethod
  def serialize(credential: Credential) -> str:
    return credential.model_dump_json()

  def cookie_kwargs(self) -> Dict[str, Any]:
    return {
      "key": COOKIE_NAME,
      "max_age": COOKIE_MAX_AGE,
      "path": "/",
      "httponly": True,
      "secure": self.secure_cookies,
      "samesite": "lax",
    }

  # --- refresh ---

  def refresh_if_needed(self, credential: Credential) -> Credential:
    """
    Return ``credential`` unchanged unless it expires within the refresh
    buffer, in which case exactly one refresh is attempted.

    Raises RefreshFailed when the provider rejects the refresh; callers must
    then treat the user as logged out. No retry happens here.
    """
    if not credential.needs_refresh(self._clock(), self.refresh_buffer):
      return credential

    if not credential.refresh_token:
      logger.warning("Access token expired and no refresh token is stored")
      raise RefreshFailed()

    logger.info("Access token expired or expiring soon, refreshing")
    refreshed = self._refresher(credential)
    logger.info("Access token refreshed", extra={"expiry": str(refreshed.expiry)})
    return refreshed

  def _user_credentials(self, credential: Credential) -> UserCredentials:
    return UserCredentials(
      token=credential.access_token,
      refresh_token=credential.refresh_token,
      token_uri=TOKEN_URI,
      client_id=self.client_id,
      client_secret=self.client_secret,
      scopes=SCOPES,
    )

  def _google_refresh(self, credential: Credential) -> Credential:
    if not (self.client_id and self.client_secret):
      logger.error("Cannot refresh tokens: GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET not configured")
      raise RefreshFailed()

    creds = self._user_credentials(credential)
    try:
      creds.refresh(Request())
    except (RefreshError, TransportError) as exc:
      logger.error(f"Token refresh rejected: {exc}")
      raise RefreshFailed(detail=str(exc)) from exc

    return Credential(
      access_token=creds.token,
      refresh_token=creds.refresh_token or credential.refresh_token,
      expiry=_to_aware(creds.expiry),
    )

  # --- consent flow ---

  def _flow(self, state: Optional[str] = None) -> Flow:
    client_config = {
      "web": {
        "client_id": self.client_id,
        "client_secret": self.client_secret,
        "auth_uri": AUTH_URI,
        "token_uri": TOKEN_URI,
        "redirect_uris": [self.redirect_uri],
      }
    }
    # The callback is served by a fresh Flow, so PKCE verifiers cannot be carried over
    return Flow.from_client_config(
      client_config,
      scopes=SCOPES,
      redirect_uri=self.redirect_uri,
      state=state,
      autogenerate_code_verifier=False,
    )

  def authorization_url(self, state: Optional[str] = None) -> Tuple[str, str]:
    url, state = self._flow(state).authorization_url(
      access_type="offline",
      prompt="consent",
      include_granted_scopes="true",
    )
    return url, state

  def exchange_code(self, code: str) -> Credential:
    flow = self._flow()
    try:
      flow.fetch_token(code=code)
    except (OAuth2Error, ValueError, requests.RequestException) as exc:
      logger.error(f"Authorization code exchange failed: {exc}")
      raise RefreshFailed("Failed to connect to Google. Please try again.", detail=str(exc)) from exc

    creds = flow.credentials
    return Credential(
      access_token=creds.token,
      refresh_token=creds.refresh_token,
      expiry=_to_aware(creds.expiry),
    )


def credential_from_tokens(tokens: Dict[str, Any]) -> Credential:
  """
  Build a Credential from a raw Google token response
  (``access_token``, ``refresh_token``, ``expires_in`` or ``expiry_date`` in ms).
  """
  expiry: Optional[datetime] = None
  if tokens.get("expiry_date"):
    expiry = datetime.fromtimestamp(int(tokens["expiry_date"]) / 1000, tz=timezone.utc)
  elif tokens.get("expires_in"):
    expiry = utcnow() + timedelta(seconds=int(tokens["expires_in"]))
  return Credential(
    access_token=tokens["access_token"],
    refresh_token=tokens.get("refresh_token"),
    expiry=expiry,
  )

