"""Tests for the schedule database and its lock protocol."""

from datetime import datetime
from uuid import uuid4

import pytest

from schedule_assistant.csv_analysis.database import ScheduleDatabase
from schedule_assistant.csv_analysis.exceptions import (
    DatabaseError,
    ImportNotFoundError,
    UserNotFoundError,
)
from schedule_assistant.csv_analysis.models import (
    AnalysisRecord,
    AnalysisStatus,
    AnalysisType,
    EntryAnalysisStatus,
    EntryState,
)

ROWS = [
    (1, "Toán, 7:00", {"mon_hoc": "Toán", "gio_bat_dau": "7:00"}),
    (2, "Lý, 9:00", {"mon_hoc": "Lý", "gio_bat_dau": "9:00"}),
    (3, "Hóa, 13:00", {"mon_hoc": "Hóa", "gio_bat_dau": "13:00"}),
]


async def create_database() -> tuple[ScheduleDatabase, int, list[int]]:
    db = ScheduleDatabase(":memory:")
    await db.initialize()
    user = await db.insert_user("An", "an@example.com", "hash")
    schedule_import = await db.insert_import(user.id, "csv", "tkb.csv", ROWS)
    entries = await db.list_entries(user.id, import_ids=[schedule_import.id])
    return db, user.id, [entry.id for entry in entries]


@pytest.mark.unit
class TestDatabaseSchemaCreation:
    """Test cases for database schema creation and initialization."""

    @pytest.mark.asyncio
    async def test_schema_creation_creates_tables(self) -> None:
        """Test that schema creation creates the tables."""
        db = ScheduleDatabase(":memory:")
        await db.initialize()

        async with db._get_connection() as conn:
            cursor = await conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            tables = {row[0] for row in await cursor.fetchall()}

        assert {
            "users",
            "auth_tokens",
            "schedule_imports",
            "csv_entries",
            "analyses",
            "analysis_results",
            "entry_history",
        } <= tables

        await db.close()

    @pytest.mark.asyncio
    async def test_schema_version_tracking(self) -> None:
        """Test that the schema version is recorded."""
        db = ScheduleDatabase(":memory:")
        await db.initialize()

        assert await db.get_schema_version() == 1

        await db.close()

    @pytest.mark.asyncio
    async def test_initialize_twice_is_safe(self) -> None:
        """Test that initializing twice is safe."""
        db = ScheduleDatabase(":memory:")
        await db.initialize()
        await db.initialize()

        assert await db.get_schema_version() == 1

        await db.close()

    @pytest.mark.asyncio
    async def test_operations_require_initialization(self) -> None:
        """Test that operations fail before initialization."""
        db = ScheduleDatabase(":memory:")

        with pytest.raises(DatabaseError, match="not initialized"):
            await db.get_user(1)


@pytest.mark.unit
class TestUsersAndImports:
    """Test cases for users, tokens and imports."""

    @pytest.mark.asyncio
    async def test_duplicate_email_rejected(self) -> None:
        """Test that a duplicate email is rejected."""
        db = ScheduleDatabase(":memory:")
        await db.initialize()
        await db.insert_user("An", "an@example.com", "hash")

        with pytest.raises(DatabaseError, match="already exists"):
            await db.insert_user("An 2", "AN@example.com", "hash")

        await db.close()

    @pytest.mark.asyncio
    async def test_unknown_user(self) -> None:
        """Test that an unknown user raises."""
        db = ScheduleDatabase(":memory:")
        await db.initialize()

        with pytest.raises(UserNotFoundError):
            await db.get_user(42)

        await db.close()

    @pytest.mark.asyncio
    async def test_token_roundtrip(self) -> None:
        """Test storing, resolving and deleting a token."""
        db, user_id, _ = await create_database()

        await db.store_token("tok", user_id)
        assert await db.get_user_id_for_token("tok") == user_id

        await db.delete_token("tok")
        assert await db.get_user_id_for_token("tok") is None

        await db.close()

    @pytest.mark.asyncio
    async def test_import_creates_unlocked_entries(self) -> None:
        """Test that an import creates unlocked entries."""
        db, user_id, entry_ids = await create_database()

        entries = await db.get_entries(user_id, entry_ids)

        assert [entry.row_number for entry in entries] == [1, 2, 3]
        assert all(entry.state == EntryState.UNLOCKED for entry in entries)
        assert all(entry.analysis_status is None for entry in entries)

        await db.close()

    @pytest.mark.asyncio
    async def test_get_entries_ignores_other_users(self) -> None:
        """Test that entries of other users are not returned."""
        db, _, entry_ids = await create_database()
        other = await db.insert_user("Bình", "binh@example.com", "hash")

        assert await db.get_entries(other.id, entry_ids) == []

        await db.close()

    @pytest.mark.asyncio
    async def test_unknown_import(self) -> None:
        """Test that an unknown import raises."""
        db = ScheduleDatabase(":memory:")
        await db.initialize()

        with pytest.raises(ImportNotFoundError):
            await db.get_import(7)

        await db.close()


@pytest.mark.unit
class TestLockProtocol:
    """Test cases for locking, finishing and unlocking entries."""

    @pytest.mark.asyncio
    async def test_lock_unlocked_entries(self) -> None:
        """Test locking unlocked entries."""
        db, user_id, entry_ids = await create_database()
        analysis_id = str(uuid4())

        locked, skipped = await db.lock_entries(user_id, entry_ids, analysis_id)

        assert locked == entry_ids
        assert skipped == []
        for entry in await db.get_entries(user_id, entry_ids):
            assert entry.state == EntryState.LOCKED_PENDING
            assert entry.locked_by == analysis_id
            assert entry.locked_at is not None

        await db.close()

    @pytest.mark.asyncio
    async def test_locked_entries_are_skipped_not_relocked(self) -> None:
        """Test that locked entries are skipped, not relocked."""
        db, user_id, entry_ids = await create_database()
        first, second = str(uuid4()), str(uuid4())
        await db.lock_entries(user_id, entry_ids[:2], first)

        locked, skipped = await db.lock_entries(user_id, entry_ids, second)

        assert locked == [entry_ids[2]]
        assert skipped == entry_ids[:2]
        entries = {e.id: e for e in await db.get_entries(user_id, entry_ids)}
        assert entries[entry_ids[0]].locked_by == first
        assert entries[entry_ids[2]].locked_by == second

        await db.close()

    @pytest.mark.asyncio
    async def test_all_or_nothing_locks_nothing(self) -> None:
        """Test that an all-or-nothing lock locks nothing when one entry is locked."""
        db, user_id, entry_ids = await create_database()
        await db.lock_entries(user_id, [entry_ids[0]], str(uuid4()))

        locked, skipped = await db.lock_entries(
            user_id, entry_ids, str(uuid4()), all_or_nothing=True
        )

        assert locked == []
        assert skipped == [entry_ids[0]]
        locked_entries = await db.list_entries(user_id, locked=True)
        assert [entry.id for entry in locked_entries] == [entry_ids[0]]

        await db.close()

    @pytest.mark.asyncio
    async def test_finish_releases_lock(self) -> None:
        """Test that finishing an entry releases its lock."""
        db, user_id, entry_ids = await create_database()
        analysis_id = str(uuid4())
        await db.lock_entries(user_id, entry_ids, analysis_id)
        await db.mark_entries_in_progress(analysis_id, entry_ids)

        applied = await db.finish_entry(
            analysis_id,
            entry_ids[0],
            EntryAnalysisStatus.COMPLETED,
            parsed_data={"title": "Toán"},
        )

        assert applied is True
        entry = (await db.get_entries(user_id, [entry_ids[0]]))[0]
        assert entry.state == EntryState.COMPLETED
        assert entry.is_locked is False
        assert entry.locked_by is None
        assert entry.parsed_data == {"title": "Toán"}

        await db.close()

    @pytest.mark.asyncio
    async def test_finish_does_not_apply_after_unlock(self) -> None:
        """Test that a finish after unlock is not applied."""
        db, user_id, entry_ids = await create_database()
        analysis_id = str(uuid4())
        await db.lock_entries(user_id, entry_ids, analysis_id)
        await db.unlock_entries(user_id, [entry_ids[0]])

        applied = await db.finish_entry(
            analysis_id, entry_ids[0], EntryAnalysisStatus.COMPLETED
        )

        assert applied is False
        entry = (await db.get_entries(user_id, [entry_ids[0]]))[0]
        assert entry.state == EntryState.UNLOCKED

        await db.close()

    @pytest.mark.asyncio
    async def test_unlock_only_reports_locked_entries(self) -> None:
        """Test that unlock only reports entries that were locked."""
        db, user_id, entry_ids = await create_database()
        await db.lock_entries(user_id, entry_ids[:1], str(uuid4()))

        unlocked = await db.unlock_entries(user_id, entry_ids)

        assert unlocked == entry_ids[:1]
        entry = (await db.get_entries(user_id, entry_ids[:1]))[0]
        assert entry.analysis_status is None
        assert entry.locked_by is None

        await db.close()

    @pytest.mark.asyncio
    async def test_status_counts(self) -> None:
        """Test the per-user status counts."""
        db, user_id, entry_ids = await create_database()
        analysis_id = str(uuid4())
        await db.lock_entries(user_id, entry_ids[:2], analysis_id)
        await db.mark_entries_in_progress(analysis_id, entry_ids[:1])
        await db.finish_entry(analysis_id, entry_ids[0], EntryAnalysisStatus.COMPLETED)

        summary = await db.get_status_counts(user_id)

        assert summary.total_entries == 3
        assert summary.locked == 1
        assert summary.pending_analysis == 1
        assert summary.completed == 1
        assert summary.available_for_analysis == 2

        await db.close()

    @pytest.mark.asyncio
    async def test_history_records_transitions(self) -> None:
        """Test that history records each transition."""
        db, user_id, entry_ids = await create_database()
        analysis_id = str(uuid4())
        await db.lock_entries(user_id, entry_ids[:1], analysis_id)
        await db.mark_entries_in_progress(analysis_id, entry_ids[:1])
        await db.finish_entry(analysis_id, entry_ids[0], EntryAnalysisStatus.FAILED)

        history = await db.get_entry_history(entry_ids[0])

        assert [h["action"] for h in history] == ["locked", "status_updated", "status_updated"]
        assert history[-1]["new_value"] == "failed"

        await db.close()


@pytest.mark.unit
class TestAnalyses:
    """Test cases for analysis records."""

    @pytest.mark.asyncio
    async def test_claim_analysis_only_once(self) -> None:
        """Test that a pending analysis can be claimed once."""
        db, user_id, entry_ids = await create_database()
        record = AnalysisRecord(
            analysis_id=str(uuid4()),
            user_id=user_id,
            analysis_type=AnalysisType.PARSING,
            status=AnalysisStatus.PENDING,
            created_at=datetime.now(),
            entry_ids=entry_ids,
        )
        await db.insert_analysis(record)

        assert await db.list_analysis_ids(AnalysisStatus.PENDING) == [record.analysis_id]
        assert await db.claim_analysis(record.analysis_id) is True
        assert await db.claim_analysis(record.analysis_id) is False

        stored = await db.get_analysis(record.analysis_id)
        assert stored.status == AnalysisStatus.PROCESSING
        assert await db.list_analysis_ids(AnalysisStatus.PENDING) == []

        await db.close()

    @pytest.mark.asyncio
    async def test_claim_unknown_analysis(self) -> None:
        """Test that claiming an unknown analysis fails."""
        db, _, _ = await create_database()

        assert await db.claim_analysis("missing") is False

        await db.close()
