"""MCP Server for schedule-import analysis using FastMCP."""

import logging
import sys
from typing import Any

from fastmcp import FastMCP

from .analysis_service import CSVAnalysisService, create_service
from .config import (
    DEFAULT_DATABASE_PATH,
    DEFAULT_MCP_HOST,
    DEFAULT_MCP_PORT,
    DEFAULT_MCP_SERVER_NAME,
)
from .exceptions import CSVAnalysisError, EntriesLockedError, EntryNotFoundError
from .models import AnalysisOptions, AnalysisType

logger = logging.getLogger(__name__)

# Create FastMCP server instance
mcp = FastMCP(DEFAULT_MCP_SERVER_NAME)

# Global analysis service (set in cli_entry() or by tests)
_service: CSVAnalysisService | None = None
_service_ready = False

TOOL_NAMES = [
    "import_schedule_csv",
    "analyze_entries",
    "get_analysis_results",
    "get_analysis_status",
    "unlock_entries",
    "batch_analyze",
    "parse_vietnamese",
]


def set_analysis_service(service: CSVAnalysisService | None, ready: bool = True) -> None:
    """Set the global analysis service (for testing)."""
    global _service, _service_ready
    _service = service
    _service_ready = ready


async def get_analysis_service() -> CSVAnalysisService:
    """Get the global analysis service, initializing it on first use."""
    global _service_ready
    if _service is None:
        raise RuntimeError("Analysis service not initialized")
    # Initialized on first use, inside the server's event loop
    if not _service_ready:
        await _service.initialize()
        _service_ready = True
    return _service


def _error(e: Exception) -> dict[str, Any]:
    result: dict[str, Any] = {"success": False, "error": str(e)}
    if isinstance(e, EntriesLockedError):
        result["locked_entry_ids"] = e.locked_ids
    elif isinstance(e, EntryNotFoundError):
        result["missing_entry_ids"] = e.missing_ids
    return result


def _parse_analysis_type(analysis_type: str) -> AnalysisType | None:
    try:
        return AnalysisType(analysis_type)
    except ValueError:
        return None


async def _import_schedule_csv_impl(
    user_id: int, content: str, filename: str | None = None
) -> dict[str, Any]:
    """Implementation of import_schedule_csv tool."""
    try:
        service = await get_analysis_service()
        schedule_import = await service.import_csv(user_id, content, filename)
        entries = await service.list_entries(user_id, schedule_import.id)
        return {
            "success": True,
            "import": schedule_import.to_dict(),
            "entry_ids": [entry.id for entry in entries],
        }
    except CSVAnalysisError as e:
        logger.warning(f"Import rejected: {e}")
        return _error(e)
    except Exception as e:
        logger.error(f"Error importing schedule: {e}")
        return _error(e)


async def _analyze_entries_impl(
    user_id: int,
    entry_ids: list[int],
    analysis_type: str = "both",
    optimize_schedule: bool = False,
    detect_conflicts: bool = True,
) -> dict[str, Any]:
    """
    Submit entries for analysis.

    Args:
        user_id: Owner of the entries
        entry_ids: Entries to analyze
        analysis_type: parsing, ai or both
        optimize_schedule: Add optimization recommendations
        detect_conflicts: Report overlapping entries

    Returns:
        Dictionary with the submission and success status
    """
    parsed_type = _parse_analysis_type(analysis_type)
    if parsed_type is None:
        return {"success": False, "error": f"Invalid analysis type: {analysis_type}"}

    try:
        service = await get_analysis_service()
        submission = await service.submit_analysis(
            user_id,
            entry_ids,
            parsed_type,
            AnalysisOptions(
                optimize_schedule=optimize_schedule, detect_conflicts=detect_conflicts
            ),
        )
        return {"success": True, **submission.to_dict()}
    except CSVAnalysisError as e:
        logger.warning(f"Analysis rejected: {e}")
        return _error(e)
    except Exception as e:
        logger.error(f"Error submitting analysis: {e}")
        return _error(e)


async def _get_analysis_results_impl(analysis_id: str) -> dict[str, Any]:
    """Implementation of get_analysis_results tool."""
    try:
        service = await get_analysis_service()
        record = await service.get_analysis_results(analysis_id)
        return {"success": True, **record.to_dict()}
    except CSVAnalysisError as e:
        logger.warning(f"Analysis not available: {e}")
        return _error(e)
    except Exception as e:
        logger.error(f"Error getting analysis results: {e}")
        return _error(e)


async def _get_analysis_status_impl(user_id: int) -> dict[str, Any]:
    """Implementation of get_analysis_status tool."""
    try:
        service = await get_analysis_service()
        summary = await service.get_analysis_status(user_id)
        return {"success": True, **summary.to_dict()}
    except CSVAnalysisError as e:
        logger.warning(f"Status not available: {e}")
        return _error(e)
    except Exception as e:
        logger.error(f"Error getting analysis status: {e}")
        return _error(e)


async def _unlock_entries_impl(user_id: int, entry_ids: list[int]) -> dict[str, Any]:
    """
    Force-unlock entries stuck in a locked state.

    Args:
        user_id: Owner of the entries
        entry_ids: Entries to unlock

    Returns:
        Dictionary with unlocked ids and success status
    """
    try:
        service = await get_analysis_service()
        result = await service.unlock_entries(user_id, entry_ids)
        return {"success": True, **result.to_dict()}
    except CSVAnalysisError as e:
        logger.warning(f"Unlock rejected: {e}")
        return _error(e)
    except Exception as e:
        logger.error(f"Error unlocking entries: {e}")
        return _error(e)


async def _batch_analyze_impl(
    user_id: int,
    import_ids: list[int],
    analysis_type: str = "both",
    skip_locked: bool = True,
) -> dict[str, Any]:
    """Implementation of batch_analyze tool."""
    parsed_type = _parse_analysis_type(analysis_type)
    if parsed_type is None:
        return {"success": False, "error": f"Invalid analysis type: {analysis_type}"}

    try:
        service = await get_analysis_service()
        submission = await service.batch_analyze(
            user_id, import_ids, parsed_type, skip_locked=skip_locked
        )
        return {"success": True, **submission.to_dict()}
    except CSVAnalysisError as e:
        logger.warning(f"Batch analysis rejected: {e}")
        return _error(e)
    except Exception as e:
        logger.error(f"Error submitting batch analysis: {e}")
        return _error(e)


async def _parse_vietnamese_impl(
    text: str, date: str | None = None, time_format: str = "24h"
) -> dict[str, Any]:
    """Implementation of parse_vietnamese tool."""
    if time_format not in ("12h", "24h"):
        return {"success": False, "error": f"Invalid time format: {time_format}"}

    try:
        service = await get_analysis_service()
        event = service.parse_vietnamese(text, {"date": date, "time_format": time_format})
        return {"success": True, "event": event.to_dict()}
    except CSVAnalysisError as e:
        return _error(e)
    except Exception as e:
        logger.error(f"Error parsing text: {e}")
        return _error(e)


# FastMCP decorated wrappers (for actual MCP server)
@mcp.tool()
async def import_schedule_csv(
    user_id: int, content: str, filename: str | None = None
) -> dict[str, Any]:
    """
    Import a Vietnamese schedule CSV for a user.

    Args:
        user_id: Owner of the import
        content: CSV text with a header row
        filename: Original file name (optional)

    Returns:
        Dictionary with the import and the created entry ids
    """
    return await _import_schedule_csv_impl(user_id, content, filename)


@mcp.tool()
async def analyze_entries(
    user_id: int,
    entry_ids: list[int],
    analysis_type: str = "both",
    optimize_schedule: bool = False,
    detect_conflicts: bool = True,
) -> dict[str, Any]:
    """
    Submit schedule entries for analysis. Already locked entries are skipped.

    Args:
        user_id: Owner of the entries
        entry_ids: Entries to analyze
        analysis_type: parsing, ai or both
        optimize_schedule: Add optimization recommendations
        detect_conflicts: Report overlapping entries

    Returns:
        Dictionary with analysis_id and locked/skipped counts
    """
    return await _analyze_entries_impl(
        user_id, entry_ids, analysis_type, optimize_schedule, detect_conflicts
    )


@mcp.tool()
async def get_analysis_results(analysis_id: str) -> dict[str, Any]:
    """
    Get the status and per-entry results of an analysis.

    Args:
        analysis_id: Id returned by analyze_entries or batch_analyze

    Returns:
        Dictionary with status, entries_analyzed and results
    """
    return await _get_analysis_results_impl(analysis_id)


@mcp.tool()
async def get_analysis_status(user_id: int) -> dict[str, Any]:
    """
    Get live entry counts for a user (available, pending, locked, ...).

    Args:
        user_id: User to report on

    Returns:
        Dictionary with entry counts
    """
    return await _get_analysis_status_impl(user_id)


@mcp.tool()
async def unlock_entries(user_id: int, entry_ids: list[int]) -> dict[str, Any]:
    """
    Force-unlock entries left locked by a crashed or stalled analysis.

    Args:
        user_id: Owner of the entries
        entry_ids: Entries to unlock

    Returns:
        Dictionary with the unlocked entry ids
    """
    return await _unlock_entries_impl(user_id, entry_ids)


@mcp.tool()
async def batch_analyze(
    user_id: int,
    import_ids: list[int],
    analysis_type: str = "both",
    skip_locked: bool = True,
) -> dict[str, Any]:
    """
    Analyze every entry of several imports.

    Args:
        user_id: Owner of the imports
        import_ids: Imports to analyze
        analysis_type: parsing, ai or both
        skip_locked: Skip locked entries instead of rejecting the batch

    Returns:
        Dictionary with analysis_id and locked/skipped counts
    """
    return await _batch_analyze_impl(user_id, import_ids, analysis_type, skip_locked)


@mcp.tool()
async def parse_vietnamese(
    text: str, date: str | None = None, time_format: str = "24h"
) -> dict[str, Any]:
    """
    Parse a Vietnamese schedule sentence into a calendar event.

    Args:
        text: Free text such as "Họp nhóm 9h sáng thứ 2 tại phòng A101"
        date: Reference date in ISO format (defaults to today)
        time_format: 12h or 24h

    Returns:
        Dictionary with the parsed event
    """
    return await _parse_vietnamese_impl(text, date, time_format)


# Compatibility wrapper for tests
class MCPServer:
    """
    Compatibility wrapper for testing.

    The actual MCP server uses FastMCP with function decorators.
    This class exposes the same tools as handler methods.
    """

    def __init__(
        self,
        service: CSVAnalysisService,
        server_name: str = DEFAULT_MCP_SERVER_NAME,
        host: str = DEFAULT_MCP_HOST,
        port: int = DEFAULT_MCP_PORT,
    ) -> None:
        """Initialize MCP Server wrapper."""
        self._service = service
        self._server_name = server_name
        self._host = host
        self._port = port
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize the server."""
        set_analysis_service(self._service)
        self._initialized = True

    async def shutdown(self) -> None:
        """Shutdown the server."""
        set_analysis_service(None, ready=False)
        self._initialized = False

    def get_available_tools(self) -> list[str]:
        """Get list of available tools."""
        return list(TOOL_NAMES)

    async def handle_import_schedule_csv(self, params: dict[str, Any]) -> dict[str, Any]:
        for key in ("user_id", "content"):
            if key not in params:
                return {"success": False, "error": f"Missing required field: {key}"}
        return await _import_schedule_csv_impl(
            params["user_id"], params["content"], params.get("filename")
        )

    async def handle_analyze_entries(self, params: dict[str, Any]) -> dict[str, Any]:
        """Handle analyze_entries request."""
        for key in ("user_id", "entry_ids"):
            if key not in params:
                return {"success": False, "error": f"Missing required field: {key}"}
        return await _analyze_entries_impl(
            params["user_id"],
            params["entry_ids"],
            params.get("analysis_type", "both"),
            params.get("optimize_schedule", False),
            params.get("detect_conflicts", True),
        )

    async def handle_get_analysis_results(self, params: dict[str, Any]) -> dict[str, Any]:
        if "analysis_id" not in params:
            return {"success": False, "error": "Missing required field: analysis_id"}
        return await _get_analysis_results_impl(params["analysis_id"])

    async def handle_get_analysis_status(self, params: dict[str, Any]) -> dict[str, Any]:
        if "user_id" not in params:
            return {"success": False, "error": "Missing required field: user_id"}
        return await _get_analysis_status_impl(params["user_id"])

    async def handle_unlock_entries(self, params: dict[str, Any]) -> dict[str, Any]:
        """Handle unlock_entries request."""
        for key in ("user_id", "entry_ids"):
            if key not in params:
                return {"success": False, "error": f"Missing required field: {key}"}
        return await _unlock_entries_impl(params["user_id"], params["entry_ids"])

    async def handle_batch_analyze(self, params: dict[str, Any]) -> dict[str, Any]:
        for key in ("user_id", "import_ids"):
            if key not in params:
                return {"success": False, "error": f"Missing required field: {key}"}
        return await _batch_analyze_impl(
            params["user_id"],
            params["import_ids"],
            params.get("analysis_type", "both"),
            params.get("skip_locked", True),
        )

    async def handle_parse_vietnamese(self, params: dict[str, Any]) -> dict[str, Any]:
        if "text" not in params:
            return {"success": False, "error": "Missing required field: text"}
        return await _parse_vietnamese_impl(
            params["text"], params.get("date"), params.get("time_format", "24h")
        )


def run(
    transport: str = "stdio",
    db_path: str = DEFAULT_DATABASE_PATH,
    use_ai: bool = True,
) -> None:
    """
    Run the MCP server until interrupted.

    Args:
        transport: "stdio" or "sse"
        db_path: SQLite database path
        use_ai: Enrich entries with the Ollama analyzer
    """
    set_analysis_service(create_service(db_path, use_ai=use_ai), ready=False)
    logger.info(f"MCP Server starting with {len(TOOL_NAMES)} tools (transport={transport})")

    # FastMCP's run() manages its own event loop
    if transport == "stdio":
        mcp.run(transport="stdio")
    else:
        logger.info(f"Server will listen on http://{DEFAULT_MCP_HOST}:{DEFAULT_MCP_PORT}")
        mcp.run(transport="sse", host=DEFAULT_MCP_HOST, port=DEFAULT_MCP_PORT)


def cli_entry() -> None:
    """CLI entry point for the MCP server."""
    # Check for transport argument
    transport_type = "stdio"
    if len(sys.argv) > 1 and sys.argv[1] in ("stdio", "sse", "http"):
        transport_type = "sse" if sys.argv[1] == "http" else sys.argv[1]

    logging.basicConfig(level=logging.INFO, stream=sys.stderr)
    run(transport_type)


if __name__ == "__main__":
    cli_entry()
