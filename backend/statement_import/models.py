# Data models for the statement import pipeline
import datetime as dt
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class FileKind(str, Enum):
    CSV = "csv"
    XLSX = "xlsx"
    XLS = "xls"


class TransactionKind(str, Enum):
    EXPENSE = "expense"
    INCOME = "income"


class SignConvention(str, Enum):
    """How the sign of a raw amount maps to a transaction kind."""

    NEGATIVE_IS_INCOME = "negative_is_income"
    NEGATIVE_IS_EXPENSE = "negative_is_expense"


class ColumnMapping(BaseModel):
    date: str
    description: str
    amount: str
    type: Optional[str] = None
    category: Optional[str] = None
    note: Optional[str] = None


class PartialColumnMapping(BaseModel):
    date: Optional[str] = None
    description: Optional[str] = None
    amount: Optional[str] = None
    type: Optional[str] = None
    category: Optional[str] = None
    note: Optional[str] = None


class ImportCandidate(BaseModel):
    date: dt.date
    description: str
    amount: float = Field(ge=0)
    kind: TransactionKind
    category: str = "Other"
    note: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    content_hash: Optional[str] = None


class ImportErrorEntry(BaseModel):
    row: int
    field: str
    message: str
    raw_data: Dict[str, Any] = Field(default_factory=dict)


class ImportResult(BaseModel):
    total_rows: int
    valid_rows: int
    candidates: List[ImportCandidate]
    errors: List[ImportErrorEntry]


class PreviewResult(BaseModel):
    total_rows: int
    valid_rows: int
    errors: List[ImportErrorEntry]
    preview: List[ImportCandidate]
    duplicates: List[ImportCandidate]


class ExistingRecord(BaseModel):
    date: dt.date
    amount: float
    kind: TransactionKind = TransactionKind.EXPENSE
    note: Optional[str] = None
    description: Optional[str] = None
    content_hash: Optional[str] = None


class UpsertOperation(BaseModel):
    match_key: str
    doc: Dict[str, Any]
    overwrite: bool = False


class UpsertFailure(BaseModel):
    match_key: str
    message: str


class BulkUpsertResult(BaseModel):
    inserted: int = 0
    updated: int = 0
    failures: List[UpsertFailure] = Field(default_factory=list)


class CommitSummary(BaseModel):
    total_rows: int
    total_processed: int
    inserted: int
    updated: int
    duplicates_skipped: int
    failed: int
    failures: List[UpsertFailure]
    errors: List[ImportErrorEntry]


class ImportPreset(BaseModel):
    name: str
    signature: str
    mapping: PartialColumnMapping


class RuleCondition(BaseModel):
    field: Literal["description", "note"] = "description"
    type: Literal["contains", "regex"] = "contains"
    value: str = Field(min_length=1)


class RuleAction(BaseModel):
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class ImportRule(BaseModel):
    id: Optional[str] = None
    name: str = Field(min_length=1)
    order: int = 0
    enabled: bool = True
    when: RuleCondition
    action: RuleAction = Field(default_factory=RuleAction)


class ColumnsResponse(BaseModel):
    headers: List[str]
    sheets: List[str]
    sample_rows: List[Dict[str, Any]] = Field(default_factory=list)
    suggested_mapping: PartialColumnMapping
    signature: str
    preset: Optional[ImportPreset] = None


class JobState(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class JobStatus(BaseModel):
    job_id: str
    state: JobState
    result: Optional[CommitSummary] = None
    error: Optional[str] = None


class QueuedCommit(BaseModel):
    queued: bool = True
    job_id: str
