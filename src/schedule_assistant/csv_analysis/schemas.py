"""
Pydantic schemas for the schedule-import REST API.

Request bodies are validated by the server; the response payload models
describe the `data` field of the envelope and are what the API client
returns to its callers.
"""

import datetime as dt
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from .models import (
    AnalysisStatus,
    AnalysisType,
    EntryAnalysisStatus,
    ResultStatus,
)

# Envelope


class Envelope(BaseModel):
    success: bool
    data: Any = None
    message: str | None = None
    error: str | None = None


# /auth


class RegisterRequest(BaseModel):
    name: str
    email: str
    password: str
    profession: str | None = None


class LoginRequest(BaseModel):
    email: str
    password: str


class UserOut(BaseModel):
    id: int
    name: str
    email: str
    profession: str | None = None
    created_at: datetime


class AuthOut(BaseModel):
    user: UserOut
    token: str


# /schedule-imports


class ImportRequest(BaseModel):
    user_id: int
    content: str
    filename: str | None = None


class ScheduleImportOut(BaseModel):
    id: int
    user_id: int
    source_type: str
    original_filename: str | None = None
    status: str
    total_entries: int
    success_entries: int = 0
    failed_entries: int = 0
    created_at: datetime


# /csv-tasks


class AnalysisOptionsIn(BaseModel):
    language: Literal["vietnamese", "english"] = "vietnamese"
    optimize_schedule: bool = False
    detect_conflicts: bool = True


class AnalyzeRequest(BaseModel):
    user_id: int
    # Empty lists reach the service, which reports empty_entry_set
    entry_ids: list[int]
    analysis_type: AnalysisType = AnalysisType.BOTH
    options: AnalysisOptionsIn = Field(default_factory=AnalysisOptionsIn)


class BatchAnalyzeRequest(BaseModel):
    user_id: int
    import_ids: list[int]
    analysis_type: AnalysisType = AnalysisType.BOTH
    skip_locked: bool = True
    options: AnalysisOptionsIn = Field(default_factory=AnalysisOptionsIn)


class UnlockRequest(BaseModel):
    user_id: int
    entry_ids: list[int]


class ParseContextIn(BaseModel):
    date: dt.date | None = None
    time_format: Literal["12h", "24h"] = "24h"


class ParseVietnameseRequest(BaseModel):
    text: str = Field(min_length=1)
    context: ParseContextIn | None = None


class AnalysisSubmissionOut(BaseModel):
    analysis_id: str
    user_id: int
    entries_submitted: int
    entries_locked: int
    entries_skipped: int
    skipped_entry_ids: list[int] = Field(default_factory=list)
    status: AnalysisStatus
    estimated_time_seconds: float | None = None
    message: str


class ParsedEventOut(BaseModel):
    title: str
    description: str = ""
    start_datetime: datetime
    end_datetime: datetime
    duration_minutes: int
    location: str = ""
    priority: int = Field(ge=1, le=5)
    category: str
    participants: list[str] = Field(default_factory=list)
    requirements: list[str] = Field(default_factory=list)


class AIInsightsOut(BaseModel):
    confidence_score: float = Field(ge=0.0, le=1.0)
    suggestions: list[str] = Field(default_factory=list)
    detected_conflicts: list[str] = Field(default_factory=list)
    optimization_recommendations: list[str] = Field(default_factory=list)


class EntryResultOut(BaseModel):
    entry_id: int
    original_data: dict[str, Any] = Field(default_factory=dict)
    parsed_result: ParsedEventOut | None = None
    ai_analysis: AIInsightsOut | None = None
    status: ResultStatus
    error_message: str | None = None


class AnalysisResultsOut(BaseModel):
    analysis_id: str
    user_id: int
    analysis_type: AnalysisType
    status: AnalysisStatus
    entries_analyzed: int
    results: list[EntryResultOut] = Field(default_factory=list)
    completed_at: datetime | None = None
    processing_time_ms: int | None = None

    @property
    def failed_results(self) -> list[EntryResultOut]:
        return [r for r in self.results if r.status == ResultStatus.FAILED]


class AnalysisStatusOut(BaseModel):
    user_id: int
    total_entries: int
    available_for_analysis: int
    pending_analysis: int
    in_progress: int
    completed: int
    failed: int
    locked: int


class UnlockOut(BaseModel):
    user_id: int
    entries_requested: int
    entries_unlocked: int
    unlocked_entry_ids: list[int] = Field(default_factory=list)


class EntryLockOut(BaseModel):
    analysis_status: EntryAnalysisStatus | None = None
    is_locked: bool
    is_available_for_analysis: bool
    locked_by: str | None = None
    locked_at: datetime | None = None


class CSVTaskEntryOut(BaseModel):
    id: int
    import_id: int
    user_id: int
    row_number: int
    raw_text: str
    original_data: dict[str, str] = Field(default_factory=dict)
    parsed_data: dict[str, Any] = Field(default_factory=dict)
    ai_analysis: EntryLockOut
    parsing_errors: list[str] | None = None
    created_at: datetime
    updated_at: datetime
