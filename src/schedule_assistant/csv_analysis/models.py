"""Data models for CSV schedule-import analysis."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from schedule_assistant.csv_analysis.config import DEFAULT_LANGUAGE

# Canonical column keys of a Vietnamese class-schedule row
ENTRY_COLUMNS = (
    "lop",
    "ngay",
    "phong",
    "ghi_chu",
    "mon_hoc",
    "gio_bat_dau",
    "gio_ket_thuc",
)


class AnalysisType(str, Enum):
    """Which analysis stages to run."""

    PARSING = "parsing"
    AI = "ai"
    BOTH = "both"


class EntryAnalysisStatus(str, Enum):
    """Per-entry analysis status enumeration."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class AnalysisStatus(str, Enum):
    """Status of a submitted analysis."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ResultStatus(str, Enum):
    """Outcome of a single entry within an analysis."""

    SUCCESS = "success"
    FAILED = "failed"


class EntryState(str, Enum):
    """Position of an entry in the analysis lock state machine."""

    UNLOCKED = "unlocked"
    LOCKED_PENDING = "locked_pending"
    LOCKED_IN_PROGRESS = "locked_in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class User:
    """Represents an application user."""

    id: int
    name: str
    email: str
    created_at: datetime
    profession: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "profession": self.profession,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class ScheduleImport:
    """One imported schedule file."""

    id: int
    user_id: int
    source_type: str
    status: str
    total_entries: int
    created_at: datetime
    original_filename: str | None = None
    success_entries: int = 0
    failed_entries: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "source_type": self.source_type,
            "original_filename": self.original_filename,
            "status": self.status,
            "total_entries": self.total_entries,
            "success_entries": self.success_entries,
            "failed_entries": self.failed_entries,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class CSVTaskEntry:
    """A raw imported schedule row and its analysis lock state."""

    id: int
    import_id: int
    user_id: int
    row_number: int
    raw_text: str
    created_at: datetime
    updated_at: datetime
    original_data: dict[str, str] = field(default_factory=dict)
    parsed_data: dict[str, Any] = field(default_factory=dict)
    analysis_status: EntryAnalysisStatus | None = None
    is_locked: bool = False
    locked_by: str | None = None
    locked_at: datetime | None = None
    parsing_errors: list[str] | None = None

    @property
    def state(self) -> EntryState:
        """Tagged view of the entry's lock state."""
        if self.is_locked:
            if self.analysis_status == EntryAnalysisStatus.IN_PROGRESS:
                return EntryState.LOCKED_IN_PROGRESS
            return EntryState.LOCKED_PENDING
        if self.analysis_status == EntryAnalysisStatus.COMPLETED:
            return EntryState.COMPLETED
        if self.analysis_status == EntryAnalysisStatus.FAILED:
            return EntryState.FAILED
        return EntryState.UNLOCKED

    @property
    def is_available_for_analysis(self) -> bool:
        """Any unlocked entry can be submitted, including finished ones."""
        return not self.is_locked

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "import_id": self.import_id,
            "user_id": self.user_id,
            "row_number": self.row_number,
            "raw_text": self.raw_text,
            "original_data": dict(self.original_data),
            "parsed_data": dict(self.parsed_data),
            "ai_analysis": {
                "analysis_status": (
                    self.analysis_status.value if self.analysis_status else None
                ),
                "is_locked": self.is_locked,
                "is_available_for_analysis": self.is_available_for_analysis,
                "locked_by": self.locked_by,
                "locked_at": _iso(self.locked_at),
            },
            "parsing_errors": self.parsing_errors,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class ParsedEvent:
    """Structured calendar event extracted from a schedule entry."""

    title: str
    start_datetime: datetime
    end_datetime: datetime
    description: str = ""
    location: str = ""
    priority: int = 3
    category: str = "other"
    participants: list[str] = field(default_factory=list)
    requirements: list[str] = field(default_factory=list)

    @property
    def duration_minutes(self) -> int:
        return int((self.end_datetime - self.start_datetime).total_seconds() // 60)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "start_datetime": self.start_datetime.isoformat(),
            "end_datetime": self.end_datetime.isoformat(),
            "duration_minutes": self.duration_minutes,
            "location": self.location,
            "priority": self.priority,
            "category": self.category,
            "participants": list(self.participants),
            "requirements": list(self.requirements),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ParsedEvent":
        return cls(
            title=data["title"],
            description=data.get("description", ""),
            start_datetime=datetime.fromisoformat(data["start_datetime"]),
            end_datetime=datetime.fromisoformat(data["end_datetime"]),
            location=data.get("location", ""),
            priority=data.get("priority", 3),
            category=data.get("category", "other"),
            participants=data.get("participants") or [],
            requirements=data.get("requirements") or [],
        )


@dataclass
class AIInsights:
    """AI-derived metadata attached to an analyzed entry."""

    confidence_score: float
    suggestions: list[str] = field(default_factory=list)
    detected_conflicts: list[str] = field(default_factory=list)
    optimization_recommendations: list[str] = field(default_factory=list)
    category: str | None = None
    priority: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "confidence_score": self.confidence_score,
            "suggestions": list(self.suggestions),
            "detected_conflicts": list(self.detected_conflicts),
            "optimization_recommendations": list(self.optimization_recommendations),
        }


@dataclass
class EntryResult:
    """Outcome of analyzing one entry."""

    entry_id: int
    status: ResultStatus
    original_data: dict[str, Any] = field(default_factory=dict)
    parsed_result: ParsedEvent | None = None
    ai_analysis: AIInsights | None = None
    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "entry_id": self.entry_id,
            "original_data": dict(self.original_data),
            "parsed_result": self.parsed_result.to_dict() if self.parsed_result else None,
            "status": self.status.value,
        }
        if self.ai_analysis is not None:
            data["ai_analysis"] = self.ai_analysis.to_dict()
        if self.error_message:
            data["error_message"] = self.error_message
        return data


@dataclass
class AnalysisOptions:
    """Hints passed along with an analysis submission."""

    language: str = DEFAULT_LANGUAGE
    optimize_schedule: bool = False
    detect_conflicts: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "language": self.language,
            "optimize_schedule": self.optimize_schedule,
            "detect_conflicts": self.detect_conflicts,
        }


@dataclass
class AnalysisSubmission:
    """Response to an analysis submission."""

    analysis_id: str
    user_id: int
    entries_submitted: int
    entries_locked: int
    entries_skipped: int
    status: AnalysisStatus
    message: str
    skipped_entry_ids: list[int] = field(default_factory=list)
    estimated_time_seconds: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "analysis_id": self.analysis_id,
            "user_id": self.user_id,
            "entries_submitted": self.entries_submitted,
            "entries_locked": self.entries_locked,
            "entries_skipped": self.entries_skipped,
            "skipped_entry_ids": list(self.skipped_entry_ids),
            "status": self.status.value,
            "estimated_time_seconds": self.estimated_time_seconds,
            "message": self.message,
        }


@dataclass
class AnalysisRecord:
    """A submitted analysis and its per-entry results."""

    analysis_id: str
    user_id: int
    analysis_type: AnalysisType
    status: AnalysisStatus
    created_at: datetime
    entry_ids: list[int] = field(default_factory=list)
    options: AnalysisOptions = field(default_factory=AnalysisOptions)
    results: list[EntryResult] = field(default_factory=list)
    completed_at: datetime | None = None
    processing_time_ms: int | None = None

    @property
    def entries_analyzed(self) -> int:
        return len(self.results)

    def to_dict(self) -> dict[str, Any]:
        return {
            "analysis_id": self.analysis_id,
            "user_id": self.user_id,
            "analysis_type": self.analysis_type.value,
            "status": self.status.value,
            "entries_analyzed": self.entries_analyzed,
            "results": [result.to_dict() for result in self.results],
            "completed_at": _iso(self.completed_at),
            "processing_time_ms": self.processing_time_ms,
        }


@dataclass
class AnalysisStatusSummary:
    """Live per-user entry counts."""

    user_id: int
    total_entries: int = 0
    available_for_analysis: int = 0
    pending_analysis: int = 0
    in_progress: int = 0
    completed: int = 0
    failed: int = 0
    locked: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "total_entries": self.total_entries,
            "available_for_analysis": self.available_for_analysis,
            "pending_analysis": self.pending_analysis,
            "in_progress": self.in_progress,
            "completed": self.completed,
            "failed": self.failed,
            "locked": self.locked,
        }


@dataclass
class UnlockResult:
    """Acknowledgement of a force-unlock request."""

    user_id: int
    entries_requested: int
    entries_unlocked: int
    unlocked_entry_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "entries_requested": self.entries_requested,
            "entries_unlocked": self.entries_unlocked,
            "unlocked_entry_ids": list(self.unlocked_entry_ids),
        }
