"""Schedule-import analysis: parsing, per-entry locking and AI enrichment."""

from .analysis_service import CSVAnalysisService, create_service
from .models import (
    AIInsights,
    AnalysisOptions,
    AnalysisRecord,
    AnalysisStatus,
    AnalysisStatusSummary,
    AnalysisSubmission,
    AnalysisType,
    CSVTaskEntry,
    EntryAnalysisStatus,
    EntryResult,
    EntryState,
    ParsedEvent,
    ResultStatus,
    ScheduleImport,
    UnlockResult,
    User,
)
from .vietnamese_parser import ParseContext, VietnameseScheduleParser

__all__ = [
    "CSVAnalysisService",
    "create_service",
    "AIInsights",
    "AnalysisOptions",
    "AnalysisRecord",
    "AnalysisStatus",
    "AnalysisStatusSummary",
    "AnalysisSubmission",
    "AnalysisType",
    "CSVTaskEntry",
    "EntryAnalysisStatus",
    "EntryResult",
    "EntryState",
    "ParsedEvent",
    "ResultStatus",
    "ScheduleImport",
    "UnlockResult",
    "User",
    "ParseContext",
    "VietnameseScheduleParser",
]
