"""Database layer for schedule imports and analysis locks using SQLite."""

import asyncio
import json
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import aiosqlite

from schedule_assistant.csv_analysis.config import DEFAULT_WAL_MODE, SCHEMA_VERSION
from schedule_assistant.csv_analysis.exceptions import (
    AnalysisNotFoundError,
    DatabaseError,
    ImportNotFoundError,
    UserNotFoundError,
)
from schedule_assistant.csv_analysis.models import (
    AIInsights,
    AnalysisOptions,
    AnalysisRecord,
    AnalysisStatus,
    AnalysisStatusSummary,
    AnalysisType,
    CSVTaskEntry,
    EntryAnalysisStatus,
    EntryResult,
    ParsedEvent,
    ResultStatus,
    ScheduleImport,
    User,
)


def _dumps(value: Any) -> str | None:
    return json.dumps(value, ensure_ascii=False) if value is not None else None


class ScheduleDatabase:
    """SQLite database for users, imported entries, and analyses."""

    def __init__(self, db_path: str, wal_mode: bool = DEFAULT_WAL_MODE) -> None:
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file (use ":memory:" for in-memory)
            wal_mode: Enable WAL mode for concurrent access
        """
        self.db_path = db_path
        self.wal_mode = wal_mode
        self._connection: aiosqlite.Connection | None = None
        # Serializes multi-statement writes on the shared connection
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize database schema and connection."""
        if self._connection is None:
            self._connection = await aiosqlite.connect(self.db_path)
            self._connection.row_factory = aiosqlite.Row

            # WAL is not supported in :memory:
            if self.wal_mode and self.db_path != ":memory:":
                await self._connection.execute("PRAGMA journal_mode=WAL")

            await self._connection.execute("PRAGMA foreign_keys=ON")

        await self._create_schema()

    async def _create_schema(self) -> None:
        """Create database schema with tables and indexes."""
        async with self._get_connection() as conn:
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
                """
            )

            cursor = await conn.execute("SELECT version FROM schema_version")
            result = await cursor.fetchone()
            current_version = result[0] if result else 0

            if current_version < SCHEMA_VERSION:
                await self._apply_migrations(conn, current_version)

            await conn.commit()

    async def _apply_migrations(
        self, conn: aiosqlite.Connection, from_version: int
    ) -> None:
        """
        Apply database migrations.

        Args:
            conn: Database connection
            from_version: Current schema version
        """
        if from_version < 1:
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    profession TEXT,
                    created_at TIMESTAMP NOT NULL
                )
                """
            )
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS auth_tokens (
                    token TEXT PRIMARY KEY,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    created_at TIMESTAMP NOT NULL
                )
                """
            )
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schedule_imports (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL REFERENCES users(id),
                    source_type TEXT NOT NULL,
                    original_filename TEXT,
                    status TEXT NOT NULL,
                    total_entries INTEGER NOT NULL,
                    success_entries INTEGER NOT NULL DEFAULT 0,
                    failed_entries INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMP NOT NULL
                )
                """
            )
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS csv_entries (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    import_id INTEGER NOT NULL REFERENCES schedule_imports(id),
                    user_id INTEGER NOT NULL REFERENCES users(id),
                    row_number INTEGER NOT NULL,
                    raw_text TEXT NOT NULL,
                    original_data TEXT,
                    parsed_data TEXT,
                    analysis_status TEXT,
                    is_locked INTEGER NOT NULL DEFAULT 0,
                    locked_by TEXT,
                    locked_at TIMESTAMP,
                    parsing_errors TEXT,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
                """
            )
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_entries_user ON csv_entries(user_id)"
            )
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_entries_import ON csv_entries(import_id)"
            )
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_entries_locked ON csv_entries(is_locked)"
            )
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS analyses (
                    id TEXT PRIMARY KEY,
                    user_id INTEGER NOT NULL REFERENCES users(id),
                    analysis_type TEXT NOT NULL,
                    options TEXT,
                    status TEXT NOT NULL,
                    entry_ids TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    completed_at TIMESTAMP,
                    processing_time_ms INTEGER
                )
                """
            )
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS analysis_results (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    analysis_id TEXT NOT NULL REFERENCES analyses(id),
                    entry_id INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    original_data TEXT,
                    parsed_result TEXT,
                    ai_analysis TEXT,
                    error_message TEXT
                )
                """
            )
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_results_analysis "
                "ON analysis_results(analysis_id)"
            )

            # No foreign key: history outlives deleted entries
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS entry_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    entry_id INTEGER NOT NULL,
                    timestamp TIMESTAMP NOT NULL,
                    action TEXT NOT NULL,
                    old_value TEXT,
                    new_value TEXT,
                    source TEXT NOT NULL
                )
                """
            )
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_history_entry_id ON entry_history(entry_id)"
            )

            await conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )

    @asynccontextmanager
    async def _get_connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Get database connection context manager.

        Yields:
            Database connection

        Raises:
            DatabaseError: If connection is not initialized
        """
        if self._connection is None:
            raise DatabaseError("Database not initialized")
        yield self._connection

    async def get_schema_version(self) -> int:
        """Get current schema version."""
        async with self._get_connection() as conn:
            cursor = await conn.execute("SELECT version FROM schema_version")
            result = await cursor.fetchone()
            return result[0] if result else 0

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def insert_user(
        self,
        name: str,
        email: str,
        password_hash: str,
        profession: str | None = None,
    ) -> User:
        """
        Insert a new user.

        Raises:
            DatabaseError: If the email is already registered
        """
        now = datetime.now()
        try:
            async with self._write_lock, self._get_connection() as conn:
                cursor = await conn.execute(
                    """
                    INSERT INTO users (name, email, password_hash, profession, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (name, email.lower(), password_hash, profession, now.isoformat()),
                )
                await conn.commit()
                user_id = cursor.lastrowid
        except aiosqlite.IntegrityError as e:
            raise DatabaseError(f"User with email {email} already exists") from e

        return User(
            id=user_id, name=name, email=email.lower(), profession=profession, created_at=now
        )

    async def get_user(self, user_id: int) -> User:
        """
        Get a user by ID.

        Raises:
            UserNotFoundError: If user not found
        """
        async with self._get_connection() as conn:
            cursor = await conn.execute("SELECT * FROM users WHERE id = ?", (user_id,))
            row = await cursor.fetchone()

        if row is None:
            raise UserNotFoundError(f"User with ID {user_id} not found")
        return self._row_to_user(row)

    async def get_user_credentials(self, email: str) -> tuple[User, str]:
        """
        Get a user and the stored password hash by email.

        Raises:
            UserNotFoundError: If no user has that email
        """
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM users WHERE email = ?", (email.lower(),)
            )
            row = await cursor.fetchone()

        if row is None:
            raise UserNotFoundError(f"User with email {email} not found")
        return self._row_to_user(row), row["password_hash"]

    async def store_token(self, token: str, user_id: int) -> None:
        """Persist an issued bearer token."""
        async with self._write_lock, self._get_connection() as conn:
            await conn.execute(
                "INSERT INTO auth_tokens (token, user_id, created_at) VALUES (?, ?, ?)",
                (token, user_id, datetime.now().isoformat()),
            )
            await conn.commit()

    async def get_user_id_for_token(self, token: str) -> int | None:
        """Resolve a bearer token to its user id, or None if unknown."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT user_id FROM auth_tokens WHERE token = ?", (token,)
            )
            row = await cursor.fetchone()
        return row[0] if row else None

    async def delete_token(self, token: str) -> None:
        """Revoke a bearer token."""
        async with self._write_lock, self._get_connection() as conn:
            await conn.execute("DELETE FROM auth_tokens WHERE token = ?", (token,))
            await conn.commit()

    async def insert_import(
        self,
        user_id: int,
        source_type: str,
        original_filename: str | None,
        rows: list[tuple[int, str, dict[str, str]]],
    ) -> ScheduleImport:
        """
        Insert an import and its entries in one transaction.

        Args:
            user_id: Owner of the import
            source_type: Source format (e.g. 'csv')
            original_filename: Uploaded file name, if any
            rows: (row_number, raw_text, original_data) per entry

        Returns:
            The created ScheduleImport
        """
        now = datetime.now()
        try:
            async with self._write_lock, self._get_connection() as conn:
                cursor = await conn.execute(
                    """
                    INSERT INTO schedule_imports (
                        user_id, source_type, original_filename, status,
                        total_entries, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        user_id,
                        source_type,
                        original_filename,
                        "completed",
                        len(rows),
                        now.isoformat(),
                    ),
                )
                import_id = cursor.lastrowid

                await conn.executemany(
                    """
                    INSERT INTO csv_entries (
                        import_id, user_id, row_number, raw_text, original_data,
                        created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            import_id,
                            user_id,
                            row_number,
                            raw_text,
                            _dumps(original_data),
                            now.isoformat(),
                            now.isoformat(),
                        )
                        for row_number, raw_text, original_data in rows
                    ],
                )
                await conn.commit()
        except aiosqlite.Error as e:
            raise DatabaseError(f"Failed to insert import: {e}") from e

        return ScheduleImport(
            id=import_id,
            user_id=user_id,
            source_type=source_type,
            original_filename=original_filename,
            status="completed",
            total_entries=len(rows),
            created_at=now,
        )

    async def get_import(self, import_id: int) -> ScheduleImport:
        """
        Get an import by ID.

        Raises:
            ImportNotFoundError: If import not found
        """
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM schedule_imports WHERE id = ?", (import_id,)
            )
            row = await cursor.fetchone()

        if row is None:
            raise ImportNotFoundError(f"Import with ID {import_id} not found")
        return self._row_to_import(row)

    async def list_imports(self, user_id: int) -> list[ScheduleImport]:
        """List a user's imports, newest first."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM schedule_imports WHERE user_id = ? ORDER BY id DESC",
                (user_id,),
            )
            rows = await cursor.fetchall()
        return [self._row_to_import(row) for row in rows]

    async def get_entries(
        self, user_id: int, entry_ids: Iterable[int]
    ) -> list[CSVTaskEntry]:
        """
        Get the entries with the given ids that belong to a user.

        Ids that do not exist or belong to someone else are omitted.
        """
        ids = list(entry_ids)
        if not ids:
            return []

        placeholders = ", ".join("?" for _ in ids)
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                f"SELECT * FROM csv_entries WHERE user_id = ? AND id IN ({placeholders}) "
                "ORDER BY id",
                [user_id, *ids],
            )
            rows = await cursor.fetchall()
        return [self._row_to_entry(row) for row in rows]

    async def list_entries(
        self,
        user_id: int,
        import_ids: Iterable[int] | None = None,
        locked: bool | None = None,
    ) -> list[CSVTaskEntry]:
        """
        List a user's entries with optional filters.

        Args:
            user_id: Owner of the entries
            import_ids: Restrict to these imports
            locked: Filter by lock flag
        """
        query = "SELECT * FROM csv_entries WHERE user_id = ?"
        params: list[Any] = [user_id]

        if import_ids is not None:
            ids = list(import_ids)
            if not ids:
                return []
            query += f" AND import_id IN ({', '.join('?' for _ in ids)})"
            params.extend(ids)

        if locked is not None:
            query += " AND is_locked = ?"
            params.append(1 if locked else 0)

        query += " ORDER BY import_id, row_number"

        async with self._get_connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
        return [self._row_to_entry(row) for row in rows]

    async def lock_entries(
        self,
        user_id: int,
        entry_ids: Iterable[int],
        analysis_id: str,
        all_or_nothing: bool = False,
    ) -> tuple[list[int], list[int]]:
        """
        Lock every currently unlocked entry for an analysis.

        Each entry moves to locked+pending only if it was unlocked; entries
        already locked are reported as skipped and left untouched.

        Args:
            user_id: Owner of the entries
            entry_ids: Entries to lock
            analysis_id: Analysis that will own the locks
            all_or_nothing: Lock nothing if any entry is already locked

        Returns:
            Tuple of (locked_ids, skipped_ids)
        """
        ids = list(entry_ids)
        locked: list[int] = []
        skipped: list[int] = []
        now = datetime.now().isoformat()

        async with self._write_lock, self._get_connection() as conn:
            if all_or_nothing and ids:
                placeholders = ", ".join("?" for _ in ids)
                cursor = await conn.execute(
                    f"SELECT id FROM csv_entries WHERE user_id = ? AND is_locked = 1 "
                    f"AND id IN ({placeholders}) ORDER BY id",
                    [user_id, *ids],
                )
                already_locked = [row[0] for row in await cursor.fetchall()]
                if already_locked:
                    return [], already_locked

            for entry_id in ids:
                cursor = await conn.execute(
                    """
                    UPDATE csv_entries
                    SET is_locked = 1, locked_by = ?, locked_at = ?,
                        analysis_status = ?, updated_at = ?
                    WHERE id = ? AND user_id = ? AND is_locked = 0
                    """,
                    (
                        analysis_id,
                        now,
                        EntryAnalysisStatus.PENDING.value,
                        now,
                        entry_id,
                        user_id,
                    ),
                )
                if cursor.rowcount == 1:
                    locked.append(entry_id)
                    await self._add_history(
                        conn, entry_id, "locked", None, EntryAnalysisStatus.PENDING.value, analysis_id
                    )
                else:
                    skipped.append(entry_id)
            await conn.commit()

        return locked, skipped

    async def mark_entries_in_progress(
        self, analysis_id: str, entry_ids: Iterable[int]
    ) -> None:
        """Move entries still locked by an analysis to in_progress."""
        now = datetime.now().isoformat()
        async with self._write_lock, self._get_connection() as conn:
            for entry_id in entry_ids:
                cursor = await conn.execute(
                    """
                    UPDATE csv_entries
                    SET analysis_status = ?, updated_at = ?
                    WHERE id = ? AND locked_by = ? AND is_locked = 1
                    """,
                    (EntryAnalysisStatus.IN_PROGRESS.value, now, entry_id, analysis_id),
                )
                if cursor.rowcount == 1:
                    await self._add_history(
                        conn,
                        entry_id,
                        "status_updated",
                        EntryAnalysisStatus.PENDING.value,
                        EntryAnalysisStatus.IN_PROGRESS.value,
                        analysis_id,
                    )
            await conn.commit()

    async def finish_entry(
        self,
        analysis_id: str,
        entry_id: int,
        status: EntryAnalysisStatus,
        parsed_data: dict[str, Any] | None = None,
        parsing_errors: list[str] | None = None,
    ) -> bool:
        """
        Record the final status of an entry and release its lock.

        Only applies while the entry is still locked by this analysis, so a
        manual unlock in the meantime wins.

        Returns:
            True if the entry was updated
        """
        now = datetime.now().isoformat()
        async with self._write_lock, self._get_connection() as conn:
            cursor = await conn.execute(
                """
                UPDATE csv_entries
                SET analysis_status = ?, is_locked = 0, locked_by = NULL,
                    locked_at = NULL, parsed_data = COALESCE(?, parsed_data),
                    parsing_errors = ?, updated_at = ?
                WHERE id = ? AND locked_by = ? AND is_locked = 1
                """,
                (
                    status.value,
                    _dumps(parsed_data),
                    _dumps(parsing_errors),
                    now,
                    entry_id,
                    analysis_id,
                ),
            )
            applied = cursor.rowcount == 1
            if applied:
                await self._add_history(
                    conn,
                    entry_id,
                    "status_updated",
                    EntryAnalysisStatus.IN_PROGRESS.value,
                    status.value,
                    analysis_id,
                )
            await conn.commit()
        return applied

    async def unlock_entries(self, user_id: int, entry_ids: Iterable[int]) -> list[int]:
        """
        Force-unlock entries, returning them to the unlocked state.

        Returns:
            Ids of entries that were locked and are now unlocked
        """
        unlocked: list[int] = []
        now = datetime.now().isoformat()
        async with self._write_lock, self._get_connection() as conn:
            for entry_id in entry_ids:
                cursor = await conn.execute(
                    "SELECT analysis_status FROM csv_entries "
                    "WHERE id = ? AND user_id = ? AND is_locked = 1",
                    (entry_id, user_id),
                )
                row = await cursor.fetchone()
                if row is None:
                    continue

                await conn.execute(
                    """
                    UPDATE csv_entries
                    SET is_locked = 0, locked_by = NULL, locked_at = NULL,
                        analysis_status = NULL, updated_at = ?
                    WHERE id = ?
                    """,
                    (now, entry_id),
                )
                unlocked.append(entry_id)
                await self._add_history(conn, entry_id, "unlocked", row[0], None, "user")
            await conn.commit()
        return unlocked

    async def get_status_counts(self, user_id: int) -> AnalysisStatusSummary:
        """Live entry counts for a user."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                """
                SELECT
                    COUNT(*),
                    COALESCE(SUM(is_locked), 0),
                    COALESCE(SUM(CASE WHEN is_locked = 0 THEN 1 ELSE 0 END), 0)
                FROM csv_entries WHERE user_id = ?
                """,
                (user_id,),
            )
            total, locked, available = await cursor.fetchone()

            cursor = await conn.execute(
                "SELECT analysis_status, COUNT(*) FROM csv_entries "
                "WHERE user_id = ? AND analysis_status IS NOT NULL "
                "GROUP BY analysis_status",
                (user_id,),
            )
            status_counts = {row[0]: row[1] for row in await cursor.fetchall()}

        return AnalysisStatusSummary(
            user_id=user_id,
            total_entries=total,
            available_for_analysis=available,
            pending_analysis=status_counts.get(EntryAnalysisStatus.PENDING.value, 0),
            in_progress=status_counts.get(EntryAnalysisStatus.IN_PROGRESS.value, 0),
            completed=status_counts.get(EntryAnalysisStatus.COMPLETED.value, 0),
            failed=status_counts.get(EntryAnalysisStatus.FAILED.value, 0),
            locked=locked,
        )

    async def get_entry_history(self, entry_id: int) -> list[dict[str, Any]]:
        """Get the lock/status history of an entry."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                """
                SELECT timestamp, action, old_value, new_value, source
                FROM entry_history
                WHERE entry_id = ?
                ORDER BY id ASC
                """,
                (entry_id,),
            )
            rows = await cursor.fetchall()

        return [
            {
                "timestamp": row[0],
                "action": row[1],
                "old_value": row[2],
                "new_value": row[3],
                "source": row[4],
            }
            for row in rows
        ]

    async def _add_history(
        self,
        conn: aiosqlite.Connection,
        entry_id: int,
        action: str,
        old_value: str | None,
        new_value: str | None,
        source: str,
    ) -> None:
        await conn.execute(
            """
            INSERT INTO entry_history (
                entry_id, timestamp, action, old_value, new_value, source
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (entry_id, datetime.now().isoformat(), action, old_value, new_value, source),
        )

    async def insert_analysis(self, record: AnalysisRecord) -> None:
        """Insert a new analysis record."""
        try:
            async with self._write_lock, self._get_connection() as conn:
                await conn.execute(
                    """
                    INSERT INTO analyses (
                        id, user_id, analysis_type, options, status, entry_ids, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.analysis_id,
                        record.user_id,
                        record.analysis_type.value,
                        _dumps(record.options.to_dict()),
                        record.status.value,
                        _dumps(record.entry_ids),
                        record.created_at.isoformat(),
                    ),
                )
                await conn.commit()
        except aiosqlite.IntegrityError as e:
            raise DatabaseError(f"Analysis {record.analysis_id} already exists") from e

    async def claim_analysis(self, analysis_id: str) -> bool:
        """
        Move a pending analysis to processing.

        Returns:
            True if this call claimed it, False if it was not pending
        """
        async with self._write_lock, self._get_connection() as conn:
            cursor = await conn.execute(
                "UPDATE analyses SET status = ? WHERE id = ? AND status = ?",
                (
                    AnalysisStatus.PROCESSING.value,
                    analysis_id,
                    AnalysisStatus.PENDING.value,
                ),
            )
            await conn.commit()
        return cursor.rowcount == 1

    async def list_analysis_ids(self, status: AnalysisStatus) -> list[str]:
        """Ids of analyses in a status, oldest first."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT id FROM analyses WHERE status = ? ORDER BY created_at",
                (status.value,),
            )
            return [row[0] for row in await cursor.fetchall()]

    async def update_analysis(
        self,
        analysis_id: str,
        status: AnalysisStatus,
        completed_at: datetime | None = None,
        processing_time_ms: int | None = None,
    ) -> None:
        """Update the status of an analysis."""
        async with self._write_lock, self._get_connection() as conn:
            cursor = await conn.execute(
                """
                UPDATE analyses
                SET status = ?, completed_at = ?, processing_time_ms = ?
                WHERE id = ?
                """,
                (
                    status.value,
                    completed_at.isoformat() if completed_at else None,
                    processing_time_ms,
                    analysis_id,
                ),
            )
            await conn.commit()

        if cursor.rowcount == 0:
            raise AnalysisNotFoundError(f"Analysis {analysis_id} not found")

    async def insert_analysis_results(
        self, analysis_id: str, results: list[EntryResult]
    ) -> None:
        """Store per-entry results of an analysis."""
        async with self._write_lock, self._get_connection() as conn:
            await conn.executemany(
                """
                INSERT INTO analysis_results (
                    analysis_id, entry_id, status, original_data, parsed_result,
                    ai_analysis, error_message
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        analysis_id,
                        result.entry_id,
                        result.status.value,
                        _dumps(result.original_data),
                        _dumps(result.parsed_result.to_dict())
                        if result.parsed_result
                        else None,
                        _dumps(result.ai_analysis.to_dict())
                        if result.ai_analysis
                        else None,
                        result.error_message,
                    )
                    for result in results
                ],
            )
            await conn.commit()

    async def get_analysis(self, analysis_id: str) -> AnalysisRecord:
        """
        Get an analysis with its stored results.

        Raises:
            AnalysisNotFoundError: If analysis not found
        """
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM analyses WHERE id = ?", (analysis_id,)
            )
            row = await cursor.fetchone()
            if row is None:
                raise AnalysisNotFoundError(f"Analysis {analysis_id} not found")

            cursor = await conn.execute(
                "SELECT * FROM analysis_results WHERE analysis_id = ? ORDER BY id",
                (analysis_id,),
            )
            result_rows = await cursor.fetchall()

        record = self._row_to_analysis(row)
        record.results = [self._row_to_result(r) for r in result_rows]
        return record

    def _row_to_user(self, row: aiosqlite.Row) -> User:
        return User(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            profession=row["profession"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def _row_to_import(self, row: aiosqlite.Row) -> ScheduleImport:
        return ScheduleImport(
            id=row["id"],
            user_id=row["user_id"],
            source_type=row["source_type"],
            original_filename=row["original_filename"],
            status=row["status"],
            total_entries=row["total_entries"],
            success_entries=row["success_entries"],
            failed_entries=row["failed_entries"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def _row_to_entry(self, row: aiosqlite.Row) -> CSVTaskEntry:
        """Convert database row to CSVTaskEntry object."""
        return CSVTaskEntry(
            id=row["id"],
            import_id=row["import_id"],
            user_id=row["user_id"],
            row_number=row["row_number"],
            raw_text=row["raw_text"],
            original_data=json.loads(row["original_data"]) if row["original_data"] else {},
            parsed_data=json.loads(row["parsed_data"]) if row["parsed_data"] else {},
            analysis_status=(
                EntryAnalysisStatus(row["analysis_status"])
                if row["analysis_status"]
                else None
            ),
            is_locked=bool(row["is_locked"]),
            locked_by=row["locked_by"],
            locked_at=(
                datetime.fromisoformat(row["locked_at"]) if row["locked_at"] else None
            ),
            parsing_errors=(
                json.loads(row["parsing_errors"]) if row["parsing_errors"] else None
            ),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def _row_to_analysis(self, row: aiosqlite.Row) -> AnalysisRecord:
        options = json.loads(row["options"]) if row["options"] else {}
        return AnalysisRecord(
            analysis_id=row["id"],
            user_id=row["user_id"],
            analysis_type=AnalysisType(row["analysis_type"]),
            status=AnalysisStatus(row["status"]),
            entry_ids=json.loads(row["entry_ids"]),
            options=AnalysisOptions(**options),
            created_at=datetime.fromisoformat(row["created_at"]),
            completed_at=(
                datetime.fromisoformat(row["completed_at"])
                if row["completed_at"]
                else None
            ),
            processing_time_ms=row["processing_time_ms"],
        )

    def _row_to_result(self, row: aiosqlite.Row) -> EntryResult:
        ai_analysis = None
        if row["ai_analysis"]:
            ai_analysis = AIInsights(**json.loads(row["ai_analysis"]))
        return EntryResult(
            entry_id=row["entry_id"],
            status=ResultStatus(row["status"]),
            original_data=json.loads(row["original_data"]) if row["original_data"] else {},
            parsed_result=(
                ParsedEvent.from_dict(json.loads(row["parsed_result"]))
                if row["parsed_result"]
                else None
            ),
            ai_analysis=ai_analysis,
            error_message=row["error_message"],
        )
