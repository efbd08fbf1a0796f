"""Unit tests for MCP Server."""

import uuid
from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from schedule_assistant.csv_analysis.analysis_service import CSVAnalysisService
from schedule_assistant.csv_analysis.database import ScheduleDatabase
from schedule_assistant.csv_analysis.exceptions import (
    AllEntriesLockedError,
    AnalysisNotFoundError,
)
from schedule_assistant.csv_analysis.models import (
    AnalysisStatus,
    AnalysisStatusSummary,
    AnalysisSubmission,
)

SCHEDULE_CSV = (
    "Lớp,Ngày,Phòng,Môn học,Giờ bắt đầu,Giờ kết thúc\n"
    "CNTT1,15/10/2024,A101,Lập trình Python,7:30,9:30\n"
    "CNTT1,16/10/2024,A102,Cơ sở dữ liệu,9:00,11:00\n"
)


@pytest.fixture
def mock_service() -> AsyncMock:
    """Create a mock analysis service."""
    service = AsyncMock()
    service.submit_analysis = AsyncMock(
        return_value=AnalysisSubmission(
            analysis_id=str(uuid.uuid4()),
            user_id=1,
            entries_submitted=2,
            entries_locked=2,
            entries_skipped=0,
            status=AnalysisStatus.PENDING,
            message="2 entries queued for both analysis",
        )
    )
    service.get_analysis_status = AsyncMock(
        return_value=AnalysisStatusSummary(user_id=1, total_entries=2, available_for_analysis=2)
    )
    return service


async def create_real_service() -> tuple[CSVAnalysisService, int]:
    service = CSVAnalysisService(ScheduleDatabase(":memory:"), auto_process=False)
    await service.initialize()
    user = await service.database.insert_user("An", "an@example.com", "hash")
    return service, user.id


@pytest.mark.unit
class TestMCPServerInitialization:
    """Test MCP server initialization."""

    @pytest.mark.asyncio
    async def test_server_initialization(self, mock_service: AsyncMock) -> None:
        """Test that the MCP server is created."""
        from schedule_assistant.csv_analysis.mcp_server import MCPServer

        server = MCPServer(service=mock_service)
        await server.initialize()

        assert server._initialized is True
        assert server._server_name == "schedule-assistant"

        await server.shutdown()
        assert server._initialized is False

    def test_available_tools(self, mock_service: AsyncMock) -> None:
        """Test that all tools are registered."""
        from schedule_assistant.csv_analysis.mcp_server import MCPServer

        server = MCPServer(service=mock_service)

        assert server.get_available_tools() == [
            "import_schedule_csv",
            "analyze_entries",
            "get_analysis_results",
            "get_analysis_status",
            "unlock_entries",
            "batch_analyze",
            "parse_vietnamese",
        ]

    @pytest.mark.asyncio
    async def test_tools_without_service(self) -> None:
        """Test that tools report an error before the service is set."""
        from schedule_assistant.csv_analysis.mcp_server import (
            _get_analysis_status_impl,
            set_analysis_service,
        )

        set_analysis_service(None, ready=False)
        result = await _get_analysis_status_impl(1)

        assert result["success"] is False
        assert "not initialized" in result["error"]

    @pytest.mark.asyncio
    async def test_service_initialized_lazily(self, mock_service: AsyncMock) -> None:
        """Test that the service is initialized on first use."""
        from schedule_assistant.csv_analysis.mcp_server import (
            get_analysis_service,
            set_analysis_service,
        )

        set_analysis_service(mock_service, ready=False)
        await get_analysis_service()
        await get_analysis_service()

        mock_service.initialize.assert_awaited_once()
        set_analysis_service(None, ready=False)


@pytest.mark.unit
class TestMCPServerTools:
    """Test MCP tool handlers against a mocked service."""

    @pytest.mark.asyncio
    async def test_analyze_entries(self, mock_service: AsyncMock) -> None:
        """Test submitting entries through the tool."""
        from schedule_assistant.csv_analysis.mcp_server import MCPServer

        server = MCPServer(service=mock_service)
        await server.initialize()

        result = await server.handle_analyze_entries({"user_id": 1, "entry_ids": [1, 2]})

        assert result["success"] is True
        assert result["entries_locked"] == 2
        assert result["status"] == "pending"
        mock_service.submit_analysis.assert_awaited_once()

        await server.shutdown()

    @pytest.mark.asyncio
    async def test_analyze_entries_missing_field(self, mock_service: AsyncMock) -> None:
        """Test that a missing field returns an error."""
        from schedule_assistant.csv_analysis.mcp_server import MCPServer

        server = MCPServer(service=mock_service)
        await server.initialize()

        result = await server.handle_analyze_entries({"user_id": 1})

        assert result == {"success": False, "error": "Missing required field: entry_ids"}
        mock_service.submit_analysis.assert_not_awaited()

        await server.shutdown()

    @pytest.mark.asyncio
    async def test_analyze_entries_invalid_type(self, mock_service: AsyncMock) -> None:
        """Test that an invalid analysis type returns an error."""
        from schedule_assistant.csv_analysis.mcp_server import MCPServer

        server = MCPServer(service=mock_service)
        await server.initialize()

        result = await server.handle_analyze_entries(
            {"user_id": 1, "entry_ids": [1], "analysis_type": "deep"}
        )

        assert result["success"] is False
        assert "Invalid analysis type" in result["error"]

        await server.shutdown()

    @pytest.mark.asyncio
    async def test_all_locked_reports_ids(self, mock_service: AsyncMock) -> None:
        """Test that an all-locked submission reports the locked ids."""
        from schedule_assistant.csv_analysis.mcp_server import MCPServer

        mock_service.submit_analysis.side_effect = AllEntriesLockedError(
            "All 2 entries are already locked", locked_ids=[1, 2]
        )
        server = MCPServer(service=mock_service)
        await server.initialize()

        result = await server.handle_analyze_entries({"user_id": 1, "entry_ids": [1, 2]})

        assert result == {
            "success": False,
            "error": "All 2 entries are already locked",
            "locked_entry_ids": [1, 2],
        }

        await server.shutdown()

    @pytest.mark.asyncio
    async def test_get_analysis_status(self, mock_service: AsyncMock) -> None:
        """Test reading analysis status through the tool."""
        from schedule_assistant.csv_analysis.mcp_server import MCPServer

        server = MCPServer(service=mock_service)
        await server.initialize()

        result = await server.handle_get_analysis_status({"user_id": 1})

        assert result["success"] is True
        assert result["available_for_analysis"] == 2

        await server.shutdown()

    @pytest.mark.asyncio
    async def test_unknown_analysis(self, mock_service: AsyncMock) -> None:
        """Test that an unknown analysis returns an error."""
        from schedule_assistant.csv_analysis.mcp_server import MCPServer

        mock_service.get_analysis_results = AsyncMock(
            side_effect=AnalysisNotFoundError("Analysis missing not found")
        )
        server = MCPServer(service=mock_service)
        await server.initialize()

        result = await server.handle_get_analysis_results({"analysis_id": "missing"})

        assert result == {"success": False, "error": "Analysis missing not found"}

        await server.shutdown()

    @pytest.mark.asyncio
    async def test_parse_vietnamese_invalid_time_format(self, mock_service: AsyncMock) -> None:
        """Test that an invalid time format returns an error."""
        from schedule_assistant.csv_analysis.mcp_server import MCPServer

        server = MCPServer(service=mock_service)
        await server.initialize()

        result = await server.handle_parse_vietnamese({"text": "Họp 9h", "time_format": "ampm"})

        assert result["success"] is False
        assert "Invalid time format" in result["error"]

        await server.shutdown()


@pytest.mark.integration
class TestMCPServerWorkflow:
    """Test MCP tool handlers against a real service."""

    @pytest.mark.asyncio
    async def test_import_analyze_unlock(self) -> None:
        """Test import, analyze and unlock through the tools."""
        from schedule_assistant.csv_analysis.mcp_server import MCPServer

        service, user_id = await create_real_service()
        server = MCPServer(service=service)
        await server.initialize()

        imported = await server.handle_import_schedule_csv(
            {"user_id": user_id, "content": SCHEDULE_CSV, "filename": "tkb.csv"}
        )
        assert imported["success"] is True
        assert imported["import"]["total_entries"] == 2
        entry_ids = imported["entry_ids"]

        submitted = await server.handle_analyze_entries(
            {"user_id": user_id, "entry_ids": entry_ids, "analysis_type": "parsing"}
        )
        assert submitted["entries_locked"] == 2

        again = await server.handle_batch_analyze(
            {"user_id": user_id, "import_ids": [imported["import"]["id"]]}
        )
        assert again["success"] is False
        assert again["locked_entry_ids"] == entry_ids

        unlocked = await server.handle_unlock_entries(
            {"user_id": user_id, "entry_ids": entry_ids}
        )
        assert unlocked["entries_unlocked"] == 2

        status = await server.handle_get_analysis_status({"user_id": user_id})
        assert status["available_for_analysis"] == 2

        await server.shutdown()
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_results_after_processing(self) -> None:
        """Test reading results after processing."""
        from schedule_assistant.csv_analysis.mcp_server import MCPServer

        service, user_id = await create_real_service()
        server = MCPServer(service=service)
        await server.initialize()
        imported = await server.handle_import_schedule_csv(
            {"user_id": user_id, "content": SCHEDULE_CSV}
        )
        submitted = await server.handle_analyze_entries(
            {
                "user_id": user_id,
                "entry_ids": imported["entry_ids"],
                "analysis_type": "parsing",
            }
        )
        await service.process_analysis(submitted["analysis_id"])

        result = await server.handle_get_analysis_results(
            {"analysis_id": submitted["analysis_id"]}
        )

        assert result["success"] is True
        assert result["status"] == "completed"
        assert [r["status"] for r in result["results"]] == ["success", "success"]

        await server.shutdown()
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_parse_vietnamese(self) -> None:
        """Test parsing Vietnamese text through the tool."""
        from schedule_assistant.csv_analysis.mcp_server import MCPServer

        service, _ = await create_real_service()
        server = MCPServer(service=service)
        await server.initialize()

        result = await server.handle_parse_vietnamese(
            {"text": "Họp nhóm lúc 14h30 thứ 6 tại phòng A1.203", "date": "2024-10-16"}
        )

        assert result["success"] is True
        assert result["event"]["start_datetime"] == datetime(2024, 10, 18, 14, 30).isoformat()

        await server.shutdown()
        await service.shutdown()
