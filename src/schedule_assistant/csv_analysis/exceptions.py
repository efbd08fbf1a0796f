"""Custom exceptions for CSV schedule-import analysis."""


class CSVAnalysisError(Exception):
    """Base exception for schedule-import analysis errors."""

    pass


class DatabaseError(CSVAnalysisError):
    """Exception raised for database related errors."""

    pass


class SchemaError(DatabaseError):
    """Exception raised for database schema errors."""

    pass


class UserNotFoundError(CSVAnalysisError):
    """Exception raised when a user is not found."""

    pass


class EntryNotFoundError(CSVAnalysisError):
    """Exception raised when entries are unknown or not owned by the user."""

    def __init__(self, message: str, missing_ids: list[int] | None = None) -> None:
        super().__init__(message)
        self.missing_ids = missing_ids or []


class ImportNotFoundError(CSVAnalysisError):
    """Exception raised when a schedule import is not found."""

    pass


class AnalysisNotFoundError(CSVAnalysisError):
    """Exception raised when an analysis id is unknown."""

    pass


class EmptyEntrySetError(CSVAnalysisError):
    """Exception raised when an analysis is submitted without entries."""

    pass


class EntriesLockedError(CSVAnalysisError):
    """Exception raised when submitted entries are already locked."""

    def __init__(self, message: str, locked_ids: list[int] | None = None) -> None:
        super().__init__(message)
        self.locked_ids = locked_ids or []


class AllEntriesLockedError(EntriesLockedError):
    """Exception raised when every submitted entry is already locked."""

    pass


class ImportValidationError(CSVAnalysisError):
    """Exception raised for unreadable or empty CSV imports."""

    pass


class ParsingError(CSVAnalysisError):
    """Exception raised when schedule text cannot be parsed."""

    pass


class AIAnalysisError(CSVAnalysisError):
    """Exception raised for LLM analysis errors."""

    pass


class AuthenticationError(CSVAnalysisError):
    """Exception raised for bad credentials or unknown tokens."""

    pass


class RegistrationError(CSVAnalysisError):
    """Exception raised when a user cannot be registered."""

    pass
