"""CSV task analysis service: submission, locking, processing and recovery."""

import asyncio
import logging
import os
import time
import uuid
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from .config import (
    DEFAULT_DATABASE_PATH,
    ESTIMATED_SECONDS_PER_ENTRY,
    RULE_BASED_CONFIDENCE,
    RULE_BASED_CONFIDENCE_FULL_ROW,
)
from .conflict_detector import detect_conflicts, recommend_optimizations
from .csv_importer import read_schedule_csv
from .database import ScheduleDatabase
from .exceptions import (
    AIAnalysisError,
    AllEntriesLockedError,
    EmptyEntrySetError,
    EntriesLockedError,
    EntryNotFoundError,
    ImportNotFoundError,
    ParsingError,
)
from .interfaces import EventAnalyzer
from .llm_analyzer import LLMScheduleAnalyzer
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
    ParsedEvent,
    ResultStatus,
    ScheduleImport,
    UnlockResult,
)
from .vietnamese_parser import ParseContext, VietnameseScheduleParser

logger = logging.getLogger(__name__)

_FULL_ROW_FIELDS = ("ngay", "mon_hoc", "gio_bat_dau", "gio_ket_thuc", "phong")


class CSVAnalysisService:
    """
    Service implementing the schedule-import analysis workflow.

    Entries lock on submission so at most one analysis works on an entry at
    a time. Locks are released when the analysis finishes an entry, or by
    an explicit unlock; there is no automatic expiry.
    """

    def __init__(
        self,
        database: ScheduleDatabase,
        parser: VietnameseScheduleParser | None = None,
        analyzer: EventAnalyzer | None = None,
        auto_process: bool = True,
    ) -> None:
        """
        Initialize CSV Analysis Service.

        Args:
            database: Storage for imports, entries and analyses
            parser: Rule-based schedule parser
            analyzer: Optional AI analyzer used for 'ai' and 'both' analyses
            auto_process: Run submitted analyses as background tasks
        """
        self._database = database
        self._parser = parser or VietnameseScheduleParser()
        self._analyzer = analyzer
        self._auto_process = auto_process
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def database(self) -> ScheduleDatabase:
        return self._database

    async def initialize(self) -> None:
        """Initialize storage and, with auto_process, resume pending analyses."""
        logger.info("Initializing CSV Analysis Service")
        await self._database.initialize()

        if self._auto_process:
            pending = await self._database.list_analysis_ids(AnalysisStatus.PENDING)
            if pending:
                logger.info(f"Resuming {len(pending)} pending analyses")
            for analysis_id in pending:
                self._schedule(analysis_id)

    def _schedule(self, analysis_id: str) -> None:
        task = asyncio.create_task(self._run_in_background(analysis_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def shutdown(self) -> None:
        """Cancel in-flight analyses and close storage."""
        logger.info("Shutting down CSV Analysis Service")
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        try:
            await self._database.close()
        except Exception as e:
            logger.error(f"Error closing database: {e}")

    async def wait_for_background_tasks(self) -> None:
        """Wait until every scheduled background analysis has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def import_csv(
        self, user_id: int, content: str | bytes, filename: str | None = None
    ) -> ScheduleImport:
        """
        Import a schedule CSV for a user.

        Raises:
            UserNotFoundError: If user not found
            ImportValidationError: If the CSV has no usable rows
        """
        await self._database.get_user(user_id)
        rows = read_schedule_csv(content)

        schedule_import = await self._database.insert_import(
            user_id=user_id,
            source_type="csv",
            original_filename=filename,
            rows=[(row.row_number, row.raw_text, row.original_data) for row in rows],
        )
        logger.info(
            f"📥 Imported {schedule_import.total_entries} entries for user {user_id} "
            f"(import {schedule_import.id})"
        )
        return schedule_import

    async def list_entries(
        self, user_id: int, import_id: int | None = None
    ) -> list[CSVTaskEntry]:
        """List a user's entries, optionally for one import."""
        await self._database.get_user(user_id)
        import_ids = [import_id] if import_id is not None else None
        return await self._database.list_entries(user_id, import_ids=import_ids)

    async def submit_analysis(
        self,
        user_id: int,
        entry_ids: Iterable[int],
        analysis_type: AnalysisType = AnalysisType.BOTH,
        options: AnalysisOptions | None = None,
    ) -> AnalysisSubmission:
        """
        Submit entries for analysis, locking those not already locked.

        Args:
            user_id: Owner of the entries
            entry_ids: Entries to analyze (duplicates are ignored)
            analysis_type: Stages to run
            options: Language and scheduling hints

        Returns:
            AnalysisSubmission with submitted/locked/skipped counts

        Raises:
            EmptyEntrySetError: If no entry ids were given
            UserNotFoundError: If user not found
            EntryNotFoundError: If an id is unknown or owned by another user
            AllEntriesLockedError: If every entry is already locked
        """
        ids = list(dict.fromkeys(entry_ids))
        if not ids:
            raise EmptyEntrySetError("entry_ids must contain at least one entry")

        await self._database.get_user(user_id)

        found = {entry.id for entry in await self._database.get_entries(user_id, ids)}
        missing = [entry_id for entry_id in ids if entry_id not in found]
        if missing:
            raise EntryNotFoundError(
                f"Entries not found for user {user_id}: {missing}", missing_ids=missing
            )

        return await self._submit(user_id, ids, analysis_type, options or AnalysisOptions())

    async def batch_analyze(
        self,
        user_id: int,
        import_ids: Iterable[int],
        analysis_type: AnalysisType = AnalysisType.BOTH,
        skip_locked: bool = True,
        options: AnalysisOptions | None = None,
    ) -> AnalysisSubmission:
        """
        Analyze every entry of several imports at once.

        Args:
            user_id: Owner of the imports
            import_ids: Imports whose entries should be analyzed
            analysis_type: Stages to run
            skip_locked: Report locked entries as skipped; when False, any
                locked entry rejects the whole batch
            options: Language and scheduling hints

        Raises:
            EmptyEntrySetError: If no imports or no entries were given
            ImportNotFoundError: If an import is unknown or owned by another user
            EntriesLockedError: If skip_locked is False and entries are locked
            AllEntriesLockedError: If every entry is already locked
        """
        imports = list(dict.fromkeys(import_ids))
        if not imports:
            raise EmptyEntrySetError("import_ids must contain at least one import")

        await self._database.get_user(user_id)
        for import_id in imports:
            schedule_import = await self._database.get_import(import_id)
            if schedule_import.user_id != user_id:
                raise ImportNotFoundError(
                    f"Import with ID {import_id} not found for user {user_id}"
                )

        entries = await self._database.list_entries(user_id, import_ids=imports)
        if not entries:
            raise EmptyEntrySetError(f"Imports {imports} contain no entries")

        return await self._submit(
            user_id,
            [entry.id for entry in entries],
            analysis_type,
            options or AnalysisOptions(),
            all_or_nothing=not skip_locked,
        )

    async def _submit(
        self,
        user_id: int,
        entry_ids: list[int],
        analysis_type: AnalysisType,
        options: AnalysisOptions,
        all_or_nothing: bool = False,
    ) -> AnalysisSubmission:
        analysis_id = str(uuid.uuid4())

        locked, skipped = await self._database.lock_entries(
            user_id, entry_ids, analysis_id, all_or_nothing=all_or_nothing
        )

        if not locked:
            if skipped and len(skipped) < len(entry_ids):
                raise EntriesLockedError(
                    f"{len(skipped)} of {len(entry_ids)} entries are already locked",
                    locked_ids=skipped,
                )
            raise AllEntriesLockedError(
                f"All {len(entry_ids)} entries are already locked", locked_ids=skipped
            )

        record = AnalysisRecord(
            analysis_id=analysis_id,
            user_id=user_id,
            analysis_type=analysis_type,
            status=AnalysisStatus.PENDING,
            created_at=datetime.now(),
            entry_ids=locked,
            options=options,
        )
        try:
            await self._database.insert_analysis(record)
        except Exception:
            # Release the locks taken above
            await self._database.unlock_entries(user_id, locked)
            raise

        logger.info(
            f"🔒 Analysis {analysis_id} submitted for user {user_id}: "
            f"{len(locked)} locked, {len(skipped)} skipped"
        )

        if self._auto_process:
            self._schedule(analysis_id)

        message = f"{len(locked)} entries queued for {analysis_type.value} analysis"
        if skipped:
            message += f", {len(skipped)} already locked entries skipped"

        return AnalysisSubmission(
            analysis_id=analysis_id,
            user_id=user_id,
            entries_submitted=len(entry_ids),
            entries_locked=len(locked),
            entries_skipped=len(skipped),
            skipped_entry_ids=skipped,
            status=AnalysisStatus.PENDING,
            estimated_time_seconds=round(
                len(locked) * ESTIMATED_SECONDS_PER_ENTRY[analysis_type.value], 1
            ),
            message=message,
        )

    async def _run_in_background(self, analysis_id: str) -> None:
        try:
            await self.process_analysis(analysis_id)
        except asyncio.CancelledError:
            logger.warning(f"Analysis {analysis_id} cancelled; its entries stay locked")
            raise
        except Exception as e:
            logger.error(f"Analysis {analysis_id} failed: {e}")

    async def process_analysis(self, analysis_id: str) -> AnalysisRecord:
        """
        Run a pending analysis to completion.

        Each entry succeeds or fails on its own; a partially failed batch
        still completes with one result per entry.

        Returns:
            The finished AnalysisRecord (unchanged if it was not pending)

        Raises:
            AnalysisNotFoundError: If analysis not found
        """
        record = await self._database.get_analysis(analysis_id)
        if record.status != AnalysisStatus.PENDING:
            return record
        if not await self._database.claim_analysis(analysis_id):
            logger.debug(f"Analysis {analysis_id} already claimed")
            return await self._database.get_analysis(analysis_id)

        start_time = time.time()
        await self._database.mark_entries_in_progress(analysis_id, record.entry_ids)

        try:
            results = await self._analyze_entries(record)
        except Exception as e:
            logger.error(f"❌ Analysis {analysis_id} aborted: {e}")
            for entry_id in record.entry_ids:
                await self._database.finish_entry(
                    analysis_id, entry_id, EntryAnalysisStatus.FAILED, parsing_errors=[str(e)]
                )
            await self._database.update_analysis(
                analysis_id,
                AnalysisStatus.FAILED,
                completed_at=datetime.now(),
                processing_time_ms=int((time.time() - start_time) * 1000),
            )
            raise

        for result in results:
            succeeded = result.status == ResultStatus.SUCCESS
            await self._database.finish_entry(
                analysis_id,
                result.entry_id,
                EntryAnalysisStatus.COMPLETED if succeeded else EntryAnalysisStatus.FAILED,
                parsed_data=result.parsed_result.to_dict() if result.parsed_result else None,
                parsing_errors=None if succeeded else [result.error_message or "failed"],
            )

        await self._database.insert_analysis_results(analysis_id, results)

        failures = sum(1 for r in results if r.status == ResultStatus.FAILED)
        final_status = (
            AnalysisStatus.FAILED if results and failures == len(results) else AnalysisStatus.COMPLETED
        )
        processing_time_ms = int((time.time() - start_time) * 1000)
        await self._database.update_analysis(
            analysis_id,
            final_status,
            completed_at=datetime.now(),
            processing_time_ms=processing_time_ms,
        )

        logger.info(
            f"✅ Analysis {analysis_id} {final_status.value}: "
            f"{len(results) - failures} succeeded, {failures} failed, "
            f"{processing_time_ms}ms"
        )
        return await self._database.get_analysis(analysis_id)

    async def _analyze_entries(self, record: AnalysisRecord) -> list[EntryResult]:
        entries = {
            entry.id: entry
            for entry in await self._database.get_entries(record.user_id, record.entry_ids)
        }
        context = ParseContext(reference_date=record.created_at.date())
        results: list[EntryResult] = []

        for entry_id in record.entry_ids:
            entry = entries.get(entry_id)
            if entry is None:
                results.append(
                    EntryResult(
                        entry_id=entry_id,
                        status=ResultStatus.FAILED,
                        error_message="Entry no longer exists",
                    )
                )
                continue
            if entry.locked_by != record.analysis_id:
                results.append(
                    EntryResult(
                        entry_id=entry_id,
                        status=ResultStatus.FAILED,
                        original_data=entry.original_data,
                        error_message="Entry was unlocked before analysis started",
                    )
                )
                continue
            results.append(await self._analyze_entry(entry, record, context))

        if record.analysis_type != AnalysisType.PARSING:
            self._attach_schedule_checks(results, record.options)

        return results

    async def _analyze_entry(
        self, entry: CSVTaskEntry, record: AnalysisRecord, context: ParseContext
    ) -> EntryResult:
        try:
            event = self._parse_entry(entry, context)
        except ParsingError as e:
            logger.info(f"Entry {entry.id} could not be parsed: {e}")
            return EntryResult(
                entry_id=entry.id,
                status=ResultStatus.FAILED,
                original_data=entry.original_data,
                error_message=str(e),
            )

        if record.analysis_type == AnalysisType.PARSING:
            return EntryResult(
                entry_id=entry.id,
                status=ResultStatus.SUCCESS,
                original_data=entry.original_data,
                parsed_result=event,
            )

        try:
            insights = await self._ai_insights(event, entry, record.options.language)
        except AIAnalysisError as e:
            if record.analysis_type == AnalysisType.AI:
                return EntryResult(
                    entry_id=entry.id,
                    status=ResultStatus.FAILED,
                    original_data=entry.original_data,
                    parsed_result=event,
                    error_message=f"AI analysis failed: {e}",
                )
            logger.warning(f"AI analysis unavailable for entry {entry.id}: {e}")
            insights = self._rule_based_insights(event, entry)
            insights.suggestions.append("AI analysis unavailable; rule-based result used")

        if insights.category:
            event.category = insights.category
        if insights.priority:
            event.priority = insights.priority

        return EntryResult(
            entry_id=entry.id,
            status=ResultStatus.SUCCESS,
            original_data=entry.original_data,
            parsed_result=event,
            ai_analysis=insights,
        )

    def _parse_entry(self, entry: CSVTaskEntry, context: ParseContext) -> ParsedEvent:
        data = entry.original_data
        if data.get("ngay") or data.get("gio_bat_dau") or data.get("mon_hoc"):
            return self._parser.parse_entry(data, context)
        return self._parser.parse_text(entry.raw_text, context)

    async def _ai_insights(
        self, event: ParsedEvent, entry: CSVTaskEntry, language: str
    ) -> AIInsights:
        if self._analyzer is None:
            raise AIAnalysisError("No AI analyzer configured")
        return await self._analyzer.analyze_event(event, entry.raw_text, language=language)

    @staticmethod
    def _rule_based_insights(event: ParsedEvent, entry: CSVTaskEntry) -> AIInsights:
        full_row = all(entry.original_data.get(key) for key in _FULL_ROW_FIELDS)
        suggestions = []
        if not event.location:
            suggestions.append("Add a room (phong) so the event has a location")
        if entry.original_data and not entry.original_data.get("gio_ket_thuc"):
            suggestions.append(
                f"No end time given; assumed {event.duration_minutes} minutes"
            )
        return AIInsights(
            confidence_score=(
                RULE_BASED_CONFIDENCE_FULL_ROW if full_row else RULE_BASED_CONFIDENCE
            ),
            suggestions=suggestions,
        )

    @staticmethod
    def _attach_schedule_checks(
        results: list[EntryResult], options: AnalysisOptions
    ) -> None:
        events = {
            r.entry_id: r.parsed_result
            for r in results
            if r.status == ResultStatus.SUCCESS and r.parsed_result is not None
        }
        by_id = {r.entry_id: r for r in results}

        if options.detect_conflicts:
            for entry_id, conflicts in detect_conflicts(events).items():
                insights = by_id[entry_id].ai_analysis
                if insights is not None:
                    insights.detected_conflicts.extend(conflicts)

        if options.optimize_schedule:
            for entry_id, recommendations in recommend_optimizations(events).items():
                insights = by_id[entry_id].ai_analysis
                if insights is not None:
                    insights.optimization_recommendations.extend(recommendations)

    async def get_analysis_results(self, analysis_id: str) -> AnalysisRecord:
        """
        Get an analysis and its results without changing anything.

        Raises:
            AnalysisNotFoundError: If analysis not found
        """
        return await self._database.get_analysis(analysis_id)

    async def get_analysis_status(self, user_id: int) -> AnalysisStatusSummary:
        """
        Get live per-user entry counts.

        Raises:
            UserNotFoundError: If user not found
        """
        await self._database.get_user(user_id)
        return await self._database.get_status_counts(user_id)

    async def unlock_entries(self, user_id: int, entry_ids: Iterable[int]) -> UnlockResult:
        """
        Force-unlock entries stuck in a locked state.

        Raises:
            EmptyEntrySetError: If no entry ids were given
            UserNotFoundError: If user not found
        """
        ids = list(dict.fromkeys(entry_ids))
        if not ids:
            raise EmptyEntrySetError("entry_ids must contain at least one entry")

        await self._database.get_user(user_id)
        unlocked = await self._database.unlock_entries(user_id, ids)

        logger.info(f"🔓 Unlocked {len(unlocked)}/{len(ids)} entries for user {user_id}")
        return UnlockResult(
            user_id=user_id,
            entries_requested=len(ids),
            entries_unlocked=len(unlocked),
            unlocked_entry_ids=unlocked,
        )

    async def get_locked_entries(self, user_id: int) -> list[CSVTaskEntry]:
        """
        List a user's locked entries.

        Raises:
            UserNotFoundError: If user not found
        """
        await self._database.get_user(user_id)
        return await self._database.list_entries(user_id, locked=True)

    def parse_vietnamese(
        self, text: str, context: dict[str, Any] | None = None
    ) -> ParsedEvent:
        """
        Parse a free-text Vietnamese sentence.

        Raises:
            ParsingError: If the text cannot be parsed
        """
        return self._parser.parse_text(text, ParseContext.from_dict(context))


def create_service(
    db_path: str = DEFAULT_DATABASE_PATH,
    use_ai: bool = True,
    auto_process: bool = True,
) -> CSVAnalysisService:
    """
    Build a service over a database file with the default parser.

    Args:
        db_path: SQLite database path
        use_ai: Enrich entries with the Ollama analyzer
        auto_process: Run submitted analyses in the background
    """
    if db_path != ":memory:":
        os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
    analyzer = LLMScheduleAnalyzer() if use_ai else None
    return CSVAnalysisService(
        ScheduleDatabase(db_path), analyzer=analyzer, auto_process=auto_process
    )
