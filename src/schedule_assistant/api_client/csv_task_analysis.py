"""CSV task analysis endpoints."""

import logging
from datetime import date
from typing import Any

from schedule_assistant.csv_analysis.schemas import (
    AnalysisResultsOut,
    AnalysisStatusOut,
    AnalysisSubmissionOut,
    CSVTaskEntryOut,
    ParsedEventOut,
    UnlockOut,
)
from .http import ApiClient

logger = logging.getLogger(__name__)


class CSVTaskAnalysisAPI:
    """
    Client for the CSV task analysis workflow.

    Submitted entries are locked server-side until their analysis finishes
    or they are unlocked. Partially failed analyses are returned as-is;
    callers inspect each result's `status` and `error_message`.
    """

    def __init__(self, client: ApiClient) -> None:
        self._client = client

    async def analyze_csv_tasks(
        self,
        user_id: int,
        entry_ids: list[int],
        analysis_type: str = "both",
        options: dict[str, Any] | None = None,
    ) -> AnalysisSubmissionOut:
        """
        Submit entries for analysis.

        Args:
            user_id: Owner of the entries
            entry_ids: Entries to analyze
            analysis_type: parsing, ai or both
            options: language, optimize_schedule, detect_conflicts

        Returns:
            Submission with locked/skipped counts
        """
        payload: dict[str, Any] = {
            "user_id": user_id,
            "entry_ids": entry_ids,
            "analysis_type": analysis_type,
        }
        if options:
            payload["options"] = options

        logger.info(f"🤖 Submitting {len(entry_ids)} entries for {analysis_type} analysis")
        response = await self._client.post("/csv-tasks/analyze", payload)
        submission = AnalysisSubmissionOut.model_validate(response.unwrap())
        logger.info(
            f"✅ Analysis {submission.analysis_id} initiated: "
            f"{submission.entries_locked} locked, {submission.entries_skipped} skipped"
        )
        return submission

    async def get_analysis_results(self, analysis_id: str) -> AnalysisResultsOut:
        response = await self._client.get(f"/csv-tasks/analysis-results/{analysis_id}")
        return AnalysisResultsOut.model_validate(response.unwrap())

    async def get_analysis_status(self, user_id: int) -> AnalysisStatusOut:
        response = await self._client.get(
            "/csv-tasks/analysis-status", {"user_id": user_id}
        )
        return AnalysisStatusOut.model_validate(response.unwrap())

    async def parse_vietnamese(
        self,
        text: str,
        reference_date: date | None = None,
        time_format: str | None = None,
    ) -> ParsedEventOut:
        """Parse a Vietnamese schedule sentence on the server."""
        payload: dict[str, Any] = {"text": text}
        context: dict[str, Any] = {}
        if reference_date is not None:
            context["date"] = reference_date.isoformat()
        if time_format is not None:
            context["time_format"] = time_format
        if context:
            payload["context"] = context

        response = await self._client.post("/csv-tasks/parse-vietnamese", payload)
        return ParsedEventOut.model_validate(response.unwrap())

    async def batch_analyze(
        self,
        user_id: int,
        import_ids: list[int],
        analysis_type: str = "both",
        skip_locked: bool = True,
    ) -> AnalysisSubmissionOut:
        """Analyze every entry of several imports."""
        logger.info(f"📦 Batch analyzing imports {import_ids}")
        response = await self._client.post(
            "/csv-tasks/batch-analyze",
            {
                "user_id": user_id,
                "import_ids": import_ids,
                "analysis_type": analysis_type,
                "skip_locked": skip_locked,
            },
        )
        return AnalysisSubmissionOut.model_validate(response.unwrap())

    async def unlock_tasks(self, user_id: int, entry_ids: list[int]) -> UnlockOut:
        """Force-unlock entries left locked by a stalled analysis."""
        logger.info(f"🔓 Unlocking entries {entry_ids}")
        response = await self._client.post(
            "/csv-tasks/unlock", {"user_id": user_id, "entry_ids": entry_ids}
        )
        return UnlockOut.model_validate(response.unwrap())

    async def get_locked_tasks(self, user_id: int) -> list[CSVTaskEntryOut]:
        response = await self._client.get("/csv-tasks/locked", {"user_id": user_id})
        return [CSVTaskEntryOut.model_validate(e) for e in response.unwrap()]
