from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple

from .applier import ActionApplier, KeyedLocks
from .cache import ResponseCache
from .config import Settings
from .errors import FormulAiError
from .history import HistoryLog, HistoryRegistry
from .interpreter import IntentInterpreter
from .llm import create_llm_client
from .logging_config import get_logger
from .models import Action, ApplyResult, SheetDescriptor, UndoResult
from .sheet_reader import SheetReader
from .sheets_client import UserSheetsClient
from .undo import SnapshotStore, UndoLedger

logger = get_logger(__name__)


@dataclass
class SharedState:
  """
  Process-wide stores. Built once at startup and handed to every request.
  """
  interpreter: IntentInterpreter
  cache: ResponseCache = field(default_factory=ResponseCache)
  snapshots: SnapshotStore = field(default_factory=SnapshotStore)
  locks: KeyedLocks = field(default_factory=KeyedLocks)
  histories: HistoryRegistry = field(default_factory=HistoryRegistry)

  @classmethod
  def from_settings(cls, settings: Settings) -> "SharedState":
    return cls(
      interpreter=IntentInterpreter(create_llm_client(settings)),
      cache=ResponseCache(ttl_seconds=settings.cache_ttl_seconds),
      histories=HistoryRegistry(limit=settings.history_limit),
    )


class SpreadsheetAssistant:
  """
  Per-request facade tying the sheet reader, interpreter, applier and undo
  ledger together for one user's credential.
  """

  def __init__(
    self,
    client: Optional[UserSheetsClient],
    state: SharedState,
    history: Optional[HistoryLog] = None,
  ) -> None:
    self.state = state
    self.history = history if history is not None else HistoryLog()
    self.reader = SheetReader(client, state.cache)
    self.ledger = UndoLedger(self.reader, state.snapshots)
    self.applier = ActionApplier(self.reader, self.ledger, state.locks)

  def read(self, spreadsheet_id: str, sheet_title: Optional[str] = None) -> SheetDescriptor:
    return self.reader.read_sheet(spreadsheet_id, sheet_title)

  def analyze(
    self,
    query_text: str,
    spreadsheet_id: str,
    sheet_title: Optional[str] = None,
  ) -> Tuple[SheetDescriptor, Action]:
    descriptor = self.read(spreadsheet_id, sheet_title)
    return descriptor, self.analyze_descriptor(query_text, descriptor)

  def analyze_descriptor(self, query_text: str, descriptor: SheetDescriptor) -> Action:
    """
    Interpret ``query_text`` against an already-read descriptor and record
    the outcome. Failed interpretations are kept with no action.
    """
    try:
      action = self.state.interpreter.interpret(query_text, descriptor)
    except FormulAiError as exc:
      self.history.append(query_text, None, error=exc.message)
      raise
    self.history.append(query_text, action)
    return action

  def apply(self, spreadsheet_id: str, sheet_title: str, action: Action) -> Tuple[ApplyResult, SheetDescriptor]:
    try:
      result = self.applier.apply(spreadsheet_id, sheet_title, action)
    finally:
      # A failed write may still have changed the sheet
      self.reader.invalidate(spreadsheet_id, sheet_title)
    return result, self.read(spreadsheet_id, sheet_title)

  def undo(
    self,
    spreadsheet_id: str,
    sheet_title: str,
    range_a1: Optional[str] = None,
  ) -> Tuple[UndoResult, SheetDescriptor]:
    with self.state.locks.hold(spreadsheet_id, sheet_title):
      result = self.ledger.undo(spreadsheet_id, sheet_title, range_a1)
    self.reader.invalidate(spreadsheet_id, sheet_title)
    return result, self.read(spreadsheet_id, sheet_title)
