from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


ColumnType = Literal["string", "number", "boolean", "date"]
ActionKind = Literal["formula", "chart", "pivot", "filter", "formatting"]


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


# ============================================================================
# Credentials
# ============================================================================

class Credential(BaseModel):
  """OAuth token pair as stored in the session cookie."""
  access_token: str
  refresh_token: Optional[str] = None
  expiry: Optional[datetime] = None

  @field_validator("expiry")
  @classmethod
  def _aware_expiry(cls, v: Optional[datetime]) -> Optional[datetime]:
    if v is not None and v.tzinfo is None:
      return v.replace(tzinfo=timezone.utc)
    return v

  def needs_refresh(self, now: datetime, buffer: timedelta) -> bool:
    # No recorded expiry means we cannot trust the token
    if self.expiry is None:
      return True
    return now >= self.expiry - buffer


# ============================================================================
# Sheet snapshots of structure
# ============================================================================

class SheetInfo(BaseModel):
  model_config = ConfigDict(frozen=True)

  sheet_id: int
  title: str
  index: int = 0


class SheetDescriptor(BaseModel):
  """Immutable view of one sheet's structure; replaced wholesale on re-read."""
  model_config = ConfigDict(frozen=True)

  spreadsheet_id: str
  spreadsheet_title: str = ""
  sheet_title: str
  sheets: List[SheetInfo] = Field(default_factory=list)
  headers: List[str] = Field(default_factory=list)
  inferred_types: List[ColumnType] = Field(default_factory=list)
  sample_rows: List[List[Any]] = Field(default_factory=list)


# ============================================================================
# Actions (tagged union on `kind`)
# ============================================================================

class ChartSpec(BaseModel):
  type: str
  data_range: str
  title: str = "Chart"
  options: Dict[str, Any] = Field(default_factory=dict)

  @field_validator("type")
  @classmethod
  def _upper_type(cls, v: str) -> str:
    if not v or not v.strip():
      raise ValueError("chart type is required")
    return v.strip().upper()


class _ActionBase(BaseModel):
  target_range: str
  preview: str = ""
  analysis: str = ""
  additional_steps: List[str] = Field(default_factory=list)


class FormulaAction(_ActionBase):
  kind: Literal["formula"] = "formula"
  formula: str

  @field_validator("formula")
  @classmethod
  def _non_empty(cls, v: str) -> str:
    if not v or not v.strip():
      raise ValueError("formula text is required")
    return v.strip()


class ChartAction(_ActionBase):
  kind: Literal["chart"] = "chart"
  chart: ChartSpec


class PassthroughAction(_ActionBase):
  """Pivot/filter/formatting suggestions: previewable, never applied."""
  kind: Literal["pivot", "filter", "formatting"]
  implementation: Any = None


Action = Annotated[
  Union[FormulaAction, ChartAction, PassthroughAction],
  Field(discriminator="kind"),
]


class ApplyResult(BaseModel):
  kind: ActionKind
  spreadsheet_id: str
  sheet_title: str
  updated_range: Optional[str] = None
  updated_cells: int = 0
  chart_id: Optional[int] = None


# ============================================================================
# Undo ledger, cache and history records
# ============================================================================

class Snapshot(BaseModel):
  spreadsheet_id: str
  sheet_title: str
  range: str
  captured_values: Optional[List[List[Any]]] = None
  captured_at: datetime = Field(default_factory=utcnow)
  available: bool = True

  @property
  def key(self) -> tuple:
    return (self.spreadsheet_id, self.sheet_title, self.range)


class UndoResult(BaseModel):
  spreadsheet_id: str
  sheet_title: str
  range: str
  updated_range: Optional[str] = None
  updated_cells: int = 0


class HistoryItem(BaseModel):
  model_config = ConfigDict(frozen=True)

  id: str
  query_text: str
  result_action: Optional[Action] = None
  timestamp: datetime = Field(default_factory=utcnow)
  error: Optional[str] = None


# ============================================================================
# HTTP request bodies
# ============================================================================

class AnalyzeRequest(BaseModel):
  prompt: str
  spreadsheet_id: str
  sheet_name: Optional[str] = None


class ApplyRequest(BaseModel):
  spreadsheet_id: str
  sheet_name: str
  action: Action


class RestoreRequest(BaseModel):
  spreadsheet_id: str
  sheet_name: str
  range: Optional[str] = None


class CsvAnalyzeRequest(BaseModel):
  prompt: str
  descriptor: SheetDescriptor


class ExplainFormulaRequest(BaseModel):
  formula: str


class TabularRequest(BaseModel):
  headers: List[str]
  rows: List[List[Any]]
  periods: int = Field(default=6, ge=1, le=60)
