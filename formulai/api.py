from __future__ import annotations

import datetime as _dt
import secrets
import time
import urllib.parse
import uuid
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, File, HTTPException, Query, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from .chart_suggestions import suggest_charts
from .config import Settings, load_settings
from .csv_import import MAX_CSV_BYTES, CsvImportError, descriptor_from_csv
from .errors import FormulAiError, NotAuthenticated, RefreshFailed
from .forecasting import generate_forecasts
from .formula_explainer import explain_formula
from .history import HistoryLog
from .logging_config import get_logger
from .models import (
    AnalyzeRequest,
    ApplyRequest,
    Credential,
    CsvAnalyzeRequest,
    ExplainFormulaRequest,
    RestoreRequest,
    TabularRequest,
)
from .service import SharedState, SpreadsheetAssistant
from .sheets_client import UserSheetsClient
from .token_store import COOKIE_NAME, TokenStore
from .utils import normalize_spreadsheet_id

# Initialize logger
logger = get_logger(__name__)

SESSION_COOKIE = "formulai_session"
SESSION_MAX_AGE = 30 * 24 * 3600
STATE_COOKIE = "oauth_state"

SheetsFactory = Callable[[Credential], UserSheetsClient]

router = APIRouter()


# * ============================================================================
# * Dependencies
# * ============================================================================

def get_shared_state(request: Request) -> SharedState:
    return request.app.state.shared


def get_token_store(request: Request) -> TokenStore:
    return request.app.state.tokens


def get_history(request: Request, response: Response) -> HistoryLog:
    """History log for the caller's session; issues a session cookie on first use."""
    session_id = request.cookies.get(SESSION_COOKIE)
    if not session_id:
        session_id = uuid.uuid4().hex
        response.set_cookie(
            key=SESSION_COOKIE,
            value=session_id,
            max_age=SESSION_MAX_AGE,
            path="/",
            httponly=True,
            secure=request.app.state.tokens.secure_cookies,
            samesite="lax",
        )
    return request.app.state.shared.histories.for_session(session_id)


def get_credential(
    request: Request,
    response: Response,
    tokens: TokenStore = Depends(get_token_store),
) -> Credential:
    """
    Credential from the token cookie, refreshed when close to expiry.
    The cookie is rewritten on every authenticated request.
    """
    credential = tokens.get_credential(request.cookies.get(COOKIE_NAME))
    if credential is None:
        raise NotAuthenticated()

    credential = tokens.refresh_if_needed(credential)
    serialized = tokens.serialize(credential)
    response.set_cookie(value=serialized, **tokens.cookie_kwargs())
    # Re-attached by formulai_error_handler
    request.state.token_cookie = serialized
    return credential


def get_assistant(
    request: Request,
    credential: Credential = Depends(get_credential),
    history: HistoryLog = Depends(get_history),
    shared: SharedState = Depends(get_shared_state),
) -> SpreadsheetAssistant:
    client = request.app.state.sheets_factory(credential)
    return SpreadsheetAssistant(client, shared, history)


def get_offline_assistant(
    history: HistoryLog = Depends(get_history),
    shared: SharedState = Depends(get_shared_state),
) -> SpreadsheetAssistant:
    """Assistant without Google access, for uploaded CSV data."""
    return SpreadsheetAssistant(None, shared, history)


# * ============================================================================
# * Root & Health Check Endpoints
# * ============================================================================

@router.get("/")
def root() -> Dict[str, Any]:
    """Root endpoint - returns API info."""
    return {
        "name": "FormulAi API",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "data": "GET /spreadsheet/data",
            "analyze": "POST /spreadsheet/analyze",
            "apply": "POST /spreadsheet/apply",
            "restore": "POST /spreadsheet/restore",
            "history": "GET /history",
            "csv": "POST /csv/upload",
            "explain": "POST /formula/explain",
            "forecast": "POST /forecast",
            "charts": "POST /charts/suggest",
        },
    }


@router.get("/health")
def health() -> Dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": _dt.datetime.now(_dt.timezone.utc).isoformat()}


# * ============================================================================
# * Google OAuth
# * ============================================================================

def _frontend_redirect(request: Request, path: str, **params: str) -> RedirectResponse:
    base = request.app.state.settings.app_url.rstrip("/")
    query = f"?{urllib.parse.urlencode(params)}" if params else ""
    return RedirectResponse(f"{base}{path}{query}", status_code=302)


@router.get("/auth/google")
def auth_google(request: Request, tokens: TokenStore = Depends(get_token_store)) -> RedirectResponse:
    if not request.app.state.settings.google_oauth_configured:
        logger.error("Google OAuth requested but GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET are not set")
        raise HTTPException(status_code=500, detail="Google OAuth is not configured")

    url, state = tokens.authorization_url(secrets.token_urlsafe(24))
    response = RedirectResponse(url, status_code=302)
    response.set_cookie(
        key=STATE_COOKIE,
        value=state,
        max_age=600,
        path="/",
        httponly=True,
        secure=tokens.secure_cookies,
        samesite="lax",
    )
    return response


@router.get("/auth/google/callback")
def auth_google_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    tokens: TokenStore = Depends(get_token_store),
) -> RedirectResponse:
    if error:
        logger.warning(f"Google consent returned an error: {error}")
        return _frontend_redirect(request, "/dashboard", error=error)
    if not code:
        logger.error("No code provided in OAuth callback")
        return _frontend_redirect(request, "/dashboard", error="no_code")

    expected_state = request.cookies.get(STATE_COOKIE)
    if expected_state and state != expected_state:
        logger.warning("OAuth state mismatch in callback")
        return _frontend_redirect(request, "/dashboard", error="invalid_state")

    try:
        credential = tokens.exchange_code(code)
    except RefreshFailed as exc:
        return _frontend_redirect(request, "/dashboard", error="auth_failed", message=exc.message)

    response = _frontend_redirect(request, "/dashboard")
    response.set_cookie(value=tokens.serialize(credential), **tokens.cookie_kwargs())
    response.delete_cookie(STATE_COOKIE, path="/")
    logger.info("Stored Google tokens in cookie")
    return response


@router.post("/auth/refresh")
def auth_refresh(credential: Credential = Depends(get_credential)) -> Dict[str, Any]:
    return {
        "status": "authenticated",
        "expiry": credential.expiry.isoformat() if credential.expiry else None,
    }


@router.get("/auth/check")
def auth_check(request: Request, tokens: TokenStore = Depends(get_token_store)) -> Dict[str, str]:
    if tokens.get_credential(request.cookies.get(COOKIE_NAME)) is None:
        raise NotAuthenticated()
    return {"status": "authenticated"}


@router.post("/auth/logout")
def auth_logout(response: Response) -> Dict[str, bool]:
    response.delete_cookie(COOKIE_NAME, path="/")
    return {"success": True}


# * ============================================================================
# * Spreadsheet Endpoints
# * ============================================================================

@router.get("/spreadsheet/data")
def spreadsheet_data(
    spreadsheet_id: str = Query(..., alias="spreadsheetId"),
    sheet_name: Optional[str] = Query(None, alias="sheetName"),
    assistant: SpreadsheetAssistant = Depends(get_assistant),
) -> Dict[str, Any]:
    descriptor = assistant.read(normalize_spreadsheet_id(spreadsheet_id), sheet_name)
    return descriptor.model_dump()


@router.post("/spreadsheet/analyze")
def spreadsheet_analyze(
    body: AnalyzeRequest,
    assistant: SpreadsheetAssistant = Depends(get_assistant),
) -> Dict[str, Any]:
    if not body.prompt.strip():
        raise HTTPException(status_code=400, detail="Prompt must not be empty")

    descriptor, action = assistant.analyze(
        body.prompt,
        normalize_spreadsheet_id(body.spreadsheet_id),
        body.sheet_name,
    )
    return {"action": action.model_dump(), "sheet": descriptor.model_dump()}


@router.post("/spreadsheet/apply")
def spreadsheet_apply(
    body: ApplyRequest,
    assistant: SpreadsheetAssistant = Depends(get_assistant),
) -> Dict[str, Any]:
    result, descriptor = assistant.apply(
        normalize_spreadsheet_id(body.spreadsheet_id),
        body.sheet_name,
        body.action,
    )
    return {"result": result.model_dump(), "sheet": descriptor.model_dump()}


@router.post("/spreadsheet/restore")
def spreadsheet_restore(
    body: RestoreRequest,
    assistant: SpreadsheetAssistant = Depends(get_assistant),
) -> Dict[str, Any]:
    result, descriptor = assistant.undo(
        normalize_spreadsheet_id(body.spreadsheet_id),
        body.sheet_name,
        body.range,
    )
    return {"result": result.model_dump(), "sheet": descriptor.model_dump()}


# * ============================================================================
# * History
# * ============================================================================

@router.get("/history")
def history_list(history: HistoryLog = Depends(get_history)) -> Dict[str, Any]:
    return {"items": [item.model_dump(mode="json") for item in history.items()]}


@router.delete("/history")
def history_clear(history: HistoryLog = Depends(get_history)) -> Dict[str, bool]:
    history.clear()
    return {"success": True}


# * ============================================================================
# * CSV & Analytics Endpoints
# * ============================================================================

@router.post("/csv/upload")
def csv_upload(file: UploadFile = File(...)) -> Dict[str, Any]:
    raw = file.file.read(MAX_CSV_BYTES + 1)
    if len(raw) > MAX_CSV_BYTES:
        raise HTTPException(status_code=413, detail="CSV file is too large")
    try:
        content = raw.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="CSV file must be UTF-8 encoded")

    try:
        descriptor, grid = descriptor_from_csv(content, file.filename or "upload.csv")
    except CsvImportError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"sheet": descriptor.model_dump(), "grid": grid}


@router.post("/csv/analyze")
def csv_analyze(
    body: CsvAnalyzeRequest,
    assistant: SpreadsheetAssistant = Depends(get_offline_assistant),
) -> Dict[str, Any]:
    if not body.prompt.strip():
        raise HTTPException(status_code=400, detail="Prompt must not be empty")
    action = assistant.analyze_descriptor(body.prompt, body.descriptor)
    return {"action": action.model_dump()}


@router.post("/formula/explain")
def formula_explain(body: ExplainFormulaRequest) -> Dict[str, Any]:
    try:
        explanation = explain_formula(body.formula)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return explanation.model_dump()


@router.post("/forecast")
def forecast(body: TabularRequest) -> Dict[str, Any]:
    results = generate_forecasts(body.headers, body.rows, body.periods)
    return {"forecasts": {name: result.model_dump() for name, result in results.items()}}


@router.post("/charts/suggest")
def charts_suggest(body: TabularRequest) -> Dict[str, Any]:
    return {"suggestions": [s.model_dump() for s in suggest_charts(body.headers, body.rows)]}


# * ============================================================================
# * Application factory
# * ============================================================================

async def formulai_error_handler(request: Request, exc: FormulAiError) -> JSONResponse:
    logger.warning(
        f"{exc.code}: {exc.message}",
        extra={"endpoint": request.url.path, "status_code": exc.status_code},
    )
    response = JSONResponse(status_code=exc.status_code, content=exc.to_dict())
    if exc.reauthenticate:
        response.delete_cookie(COOKIE_NAME, path="/")
    else:
        token_cookie = getattr(request.state, "token_cookie", None)
        if token_cookie:
            response.set_cookie(value=token_cookie, **request.app.state.tokens.cookie_kwargs())
    return response


async def logging_middleware(request: Request, call_next):
    """
    Log every HTTP request and response with a short request id and timing.
    """
    request_id = str(uuid.uuid4())[:8]
    start_time = time.time()
    method = request.method
    path = request.url.path

    logger.info(
        f"→ {method} {path}",
        extra={
            "request_id": request_id,
            "method": method,
            "endpoint": path,
            "client": request.client.host if request.client else None,
        }
    )

    try:
        response = await call_next(request)
    except Exception:
        duration_ms = int((time.time() - start_time) * 1000)
        logger.error(
            f"✗ {method} {path} - Exception ({duration_ms}ms)",
            exc_info=True,
            extra={
                "request_id": request_id,
                "method": method,
                "endpoint": path,
                "duration_ms": duration_ms,
            }
        )
        raise

    duration_ms = int((time.time() - start_time) * 1000)
    log_level = logger.info if response.status_code < 400 else logger.error
    log_level(
        f"← {method} {path} - {response.status_code} ({duration_ms}ms)",
        extra={
            "request_id": request_id,
            "method": method,
            "endpoint": path,
            "status_code": response.status_code,
            "duration_ms": duration_ms,
        }
    )
    response.headers["X-Request-ID"] = request_id
    return response


def create_app(
    settings: Optional[Settings] = None,
    shared: Optional[SharedState] = None,
    tokens: Optional[TokenStore] = None,
    sheets_factory: Optional[SheetsFactory] = None,
) -> FastAPI:
    """
    Build the FastAPI application. Every collaborator can be injected; the
    defaults come from the environment.
    """
    settings = settings or load_settings()

    app = FastAPI(title="FormulAi API")
    app.state.settings = settings
    app.state.shared = shared or SharedState.from_settings(settings)
    app.state.tokens = tokens or TokenStore(
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        redirect_uri=settings.google_redirect_uri,
        secure_cookies=settings.is_production,
    )
    app.state.sheets_factory = sheets_factory or (
        lambda credential: UserSheetsClient(credential, timeout=settings.sheets_timeout_seconds)
    )

    allowed_origins = [settings.app_url] + [
        origin for origin in settings.cors_allowed_origins if origin != settings.app_url
    ]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(logging_middleware)
    app.add_exception_handler(FormulAiError, formulai_error_handler)
    app.include_router(router)
    return app
