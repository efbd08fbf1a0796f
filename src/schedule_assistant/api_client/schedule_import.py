"""Schedule import endpoints."""

import logging
from pathlib import Path

from schedule_assistant.csv_analysis.schemas import CSVTaskEntryOut, ScheduleImportOut
from .http import ApiClient

logger = logging.getLogger(__name__)


class ScheduleImportAPI:
    """Upload schedule CSVs and list their entries."""

    def __init__(self, client: ApiClient) -> None:
        self._client = client

    async def import_csv(
        self, user_id: int, content: str, filename: str | None = None
    ) -> ScheduleImportOut:
        """Import CSV text for a user."""
        response = await self._client.post(
            "/schedule-imports",
            {"user_id": user_id, "content": content, "filename": filename},
        )
        schedule_import = ScheduleImportOut.model_validate(response.unwrap())
        logger.info(
            f"📥 Imported {schedule_import.total_entries} entries "
            f"(import {schedule_import.id})"
        )
        return schedule_import

    async def import_csv_file(self, user_id: int, path: str | Path) -> ScheduleImportOut:
        """Import a CSV file from disk."""
        path = Path(path)
        return await self.import_csv(
            user_id, path.read_text(encoding="utf-8-sig"), path.name
        )

    async def list_imports(self, user_id: int) -> list[ScheduleImportOut]:
        response = await self._client.get("/schedule-imports", {"user_id": user_id})
        return [ScheduleImportOut.model_validate(i) for i in response.unwrap()]

    async def list_entries(self, import_id: int) -> list[CSVTaskEntryOut]:
        response = await self._client.get(f"/schedule-imports/{import_id}/entries")
        return [CSVTaskEntryOut.model_validate(e) for e in response.unwrap()]
